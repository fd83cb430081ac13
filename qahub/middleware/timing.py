"""
Request timing and access lines.

``request_id`` is the first guard of the chain: it starts the clock and
adopts the caller's X-Request-ID or mints one. The after-request hook
echoes the id, reports X-Request-Duration-Ms and writes one access line
per request (``/health`` excepted), at a level picked by outcome:

    5xx                              ERROR
    slower than SLOW_REQUEST_MS      WARNING
    4xx                              INFO
    anything else                    DEBUG
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

_UNLOGGED_PATHS = frozenset({"/health"})


def request_id():
    """First guard of the chain: start the timer and assign a request id."""
    g.request_start = time.perf_counter()
    g.request_id = (request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])[:64]


def access_level(status, duration_ms, slow_ms):
    if status >= 500:
        return logging.ERROR
    if duration_ms > slow_ms:
        return logging.WARNING
    if status >= 400:
        return logging.INFO
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.after_request
    def _access_line(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        if request.path in _UNLOGGED_PATHS:
            return response

        level = access_level(
            response.status_code, duration_ms, current_app.config.get("SLOW_REQUEST_MS", 1000),
        )
        logger.log(
            level, "%s %s -> %d", request.method, request.path, response.status_code,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
                "remote_addr": request.remote_addr,
                "request_id": g.request_id,
                "tenant_id": getattr(g, "tenant_id", None),
                "user_id": getattr(g, "jwt_user_id", None),
            },
        )
        return response
