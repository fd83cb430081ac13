"""
Tenant Verification Guard — three tenant signals must agree.

Signals:
  (a) the ``TenantId`` cookie
  (b) the ``TenantId`` claim of the access token (set by ``jwt_auth``)
  (c) a live Tenant row

Order of checks (cheap ones first, the database lookup last):
  1. login path (case-insensitive substring)   -> pass through untouched
  2. cookie or claim absent / empty            -> TenantIdMissing   401
  3. cookie != claim                           -> TenantIdMismatch  403
  4. no live Tenant with that id               -> InvalidTenant     403
  5. otherwise the verified id is attached to ``g.tenant_id`` and bound
     on the database session for the write hooks

Chain order:
  request_id  →  authenticate  →  verify_tenant  →  route handler
"""

import logging

from flask import current_app, g, request

from qahub.core.exceptions import InvalidTenant, TenantIdMismatch, TenantIdMissing
from qahub.middleware.logging_config import alert
from qahub.models import db
from qahub.models._session_hooks import bind_request_context
from qahub.services.tenant_service import tenant_exists as tenant_row_exists

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PATHS = ("/api/auth/login",)


def is_exempt(path, exempt_paths=DEFAULT_EXEMPT_PATHS):
    lowered = (path or "").lower()
    return any(exempt.lower() in lowered for exempt in exempt_paths)


def verify_tenant_signals(path, cookie_value, claim_value, tenant_exists,
                          exempt_paths=DEFAULT_EXEMPT_PATHS):
    """
    Return the verified tenant id, or None for an exempt path.

    ``tenant_exists`` is a callable taking the tenant id; it is only
    called once both signals are present and identical.

    Raises:
        TenantIdMissing, TenantIdMismatch, InvalidTenant
    """
    if is_exempt(path, exempt_paths):
        return None
    if not cookie_value or not claim_value:
        raise TenantIdMissing()
    if cookie_value != claim_value:
        raise TenantIdMismatch()
    if not tenant_exists(cookie_value):
        raise InvalidTenant()
    return cookie_value


def verify_tenant():
    """Guard: run the three-signal check for the current request."""
    g.tenant_id = None
    cfg = current_app.config
    cookie_value = request.cookies.get(cfg.get("TENANT_COOKIE_NAME", "TenantId"))
    claim_value = getattr(g, "jwt_tenant_claim", None)
    extra = {
        "request_id": getattr(g, "request_id", None),
        "path": request.path,
        "user_id": getattr(g, "jwt_user_id", None),
    }

    try:
        tenant_id = verify_tenant_signals(
            request.path, cookie_value, claim_value, tenant_row_exists,
            exempt_paths=cfg.get("TENANT_GUARD_EXEMPT_PATHS", DEFAULT_EXEMPT_PATHS),
        )
    except (TenantIdMissing, TenantIdMismatch) as exc:
        logger.info("Tenant guard rejected %s: %s", request.path, exc.code,
                    extra={**extra, "event_type": "tenant_guard_rejected"})
        raise
    except InvalidTenant:
        # A correctly signed token naming a gone tenant: someone should look
        alert(
            "tenant_guard_invalid_tenant", "TENANT-001",
            "Token for unknown or deleted tenant %s on %s", cookie_value, request.path,
            **extra, tenant_id=cookie_value,
        )
        raise

    if tenant_id is None:
        return None

    g.tenant_id = tenant_id
    bind_request_context(db.session, tenant_id, getattr(g, "jwt_user_id", None))
    return None
