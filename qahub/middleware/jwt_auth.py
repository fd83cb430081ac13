"""
JWT Auth guard — parses the access token, sets g.jwt_*.

Token sources, first hit wins:
  1. ``Authorization: Bearer <token>``
  2. the ``access_token`` cookie set at login

The guard never rejects a request on its own. A missing, expired or
invalid token simply leaves the claims empty; the tenant guard that runs
next then reports the absent tenant claim.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from qahub.services.jwt_service import decode_access_token, tenant_claim_of

logger = logging.getLogger(__name__)


def _token_from_request():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    cookie_name = current_app.config.get("ACCESS_TOKEN_COOKIE_NAME", "access_token")
    return request.cookies.get(cookie_name) or None


def authenticate():
    """Guard: decode the caller's token into ``g``."""
    g.jwt_user_id = None
    g.jwt_claims = {}
    g.jwt_tenant_claim = None

    token = _token_from_request()
    if token is None:
        return None

    try:
        payload = decode_access_token(token)
    except pyjwt.ExpiredSignatureError:
        logger.info("Expired access token on %s", request.path,
                    extra={"request_id": getattr(g, "request_id", None)})
        return None
    except pyjwt.InvalidTokenError as exc:
        logger.info("Invalid access token on %s: %s", request.path, exc,
                    extra={"request_id": getattr(g, "request_id", None)})
        return None

    g.jwt_user_id = payload.get("sub")
    g.jwt_claims = payload
    g.jwt_tenant_claim = tenant_claim_of(payload)
    return None
