"""
Guard chain — one ``before_request`` hook running an explicit, ordered
list of guards for every ``/api/`` request.

A guard is a zero-argument callable. It may raise an ``AppError`` (turned
into the error envelope by the app's error handler) or return a response,
either of which ends the chain. Returning None passes to the next guard.
"""

import logging

from flask import request

from qahub.middleware.jwt_auth import authenticate
from qahub.middleware.tenant_context import verify_tenant
from qahub.middleware.timing import request_id

logger = logging.getLogger(__name__)

GUARDS = (
    request_id,
    authenticate,
    verify_tenant,
)

GUARDED_PREFIX = "/api/"


def run_guards(guards=GUARDS):
    for guard in guards:
        response = guard()
        if response is not None:
            return response
    return None


def init_guard_chain(app, guards=GUARDS):
    """Register the guard chain as the app's API ``before_request`` hook."""

    @app.before_request
    def _guard_chain():
        if not request.path.startswith(GUARDED_PREFIX):
            request_id()
            return None
        return run_guards(guards)

    logger.debug("Guard chain installed: %s", ", ".join(guard.__name__ for guard in guards))
