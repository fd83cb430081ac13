"""
Auth Blueprint — login, logout and the current user profile.

  POST /api/auth/login          — email + password → access token + cookies
  POST /api/v1/auth/logout      — clear the auth cookies
  GET  /api/v1/auth/me          — current user, tenant and roles
  POST /api/v1/auth/confirm-email — confirm the caller's own email { "token" }

Login is the one path exempt from the tenant guard. It sets two
HttpOnly, SameSite=Strict cookies: ``TenantId`` and ``access_token``.
"""

from flask import Blueprint, current_app, g

from qahub.services import user_service
from qahub.services.jwt_service import issue_token
from qahub.services.permission_service import user_role_summary
from qahub.services.tenant_service import get_tenant
from qahub.utils.errors import api_ok
from qahub.utils.helpers import db_commit_or_error, json_body, request_scope

login_bp = Blueprint("login", __name__, url_prefix="/api/auth")
auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _cookie_names():
    cfg = current_app.config
    return cfg.get("TENANT_COOKIE_NAME", "TenantId"), cfg.get("ACCESS_TOKEN_COOKIE_NAME", "access_token")


# ═══════════════════════════════════════════════════════════════
# POST /api/auth/login
# ═══════════════════════════════════════════════════════════════
@login_bp.route("/login", methods=["POST"])
def login():
    """
    Body: { "email": "...", "password": "..." }
    """
    data = json_body()
    user = user_service.authenticate(data.get("email"), data.get("password"))
    roles = user_role_summary(user.tenant_id, user.id)
    token = issue_token(user, [r["role_type"] for r in roles])

    err = db_commit_or_error()
    if err:
        return err

    response, status = api_ok({
        **token,
        "tenant_id": user.tenant_id,
        "user": user.to_dict(),
        "roles": roles,
    })
    tenant_cookie, token_cookie = _cookie_names()
    secure = current_app.config.get("AUTH_COOKIE_SECURE", True)
    for name, value in ((tenant_cookie, user.tenant_id), (token_cookie, token["access_token"])):
        response.set_cookie(
            name, value, max_age=token["expires_in"],
            httponly=True, secure=secure, samesite="Strict",
        )
    return response, status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    response, status = api_ok({"logged_out": True})
    for name in _cookie_names():
        response.delete_cookie(name, samesite="Strict")
    return response, status


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    tenant_id, user_id = request_scope()
    user = user_service.get_user(tenant_id, user_id)
    return api_ok({
        "user": user.to_dict(),
        "tenant": get_tenant(tenant_id).to_dict(),
        "roles": user_role_summary(tenant_id, user_id),
        "claims": {k: v for k, v in g.jwt_claims.items() if k not in ("iat", "exp", "jti")},
    })


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/confirm-email
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/confirm-email", methods=["POST"])
def confirm_email():
    tenant_id, user_id = request_scope()
    user = user_service.confirm_user_email(tenant_id, user_id, json_body().get("token"))
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(user.to_dict())
