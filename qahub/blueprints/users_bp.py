"""
Users Blueprint — tenant user administration.

  GET    /api/v1/users
  POST   /api/v1/users              (optional role_type / project_id)
  GET    /api/v1/users/<user_id>
  PUT    /api/v1/users/<user_id>
  DELETE /api/v1/users/<user_id>    (soft; roles and memberships follow)
  POST   /api/v1/users/<user_id>/email-confirmation   (new token, returned to the caller)
"""

from flask import Blueprint

from qahub.middleware.permission_required import require_permission
from qahub.models.base import iso
from qahub.services import user_service
from qahub.utils.errors import api_ok, api_page
from qahub.utils.helpers import db_commit_or_error, json_body, pagination_args, request_scope

users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@users_bp.route("", methods=["GET"])
@require_permission("users.view")
def list_users():
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = user_service.list_users(tenant_id, limit=limit, offset=offset)
    return api_page(items, total, limit, offset)


@users_bp.route("", methods=["POST"])
@require_permission("users.manage")
def create_user():
    tenant_id, actor_id = request_scope()
    user = user_service.create_user(tenant_id, actor_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(user.to_dict(), status=201)


@users_bp.route("/<user_id>", methods=["GET"])
@require_permission("users.view")
def get_user(user_id):
    tenant_id, _ = request_scope()
    return api_ok(user_service.get_user(tenant_id, user_id).to_dict())


@users_bp.route("/<user_id>", methods=["PUT"])
@require_permission("users.manage")
def update_user(user_id):
    tenant_id, actor_id = request_scope()
    user = user_service.update_user(tenant_id, actor_id, user_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(user.to_dict())


@users_bp.route("/<user_id>", methods=["DELETE"])
@require_permission("users.manage")
def delete_user(user_id):
    tenant_id, actor_id = request_scope()
    changed = user_service.delete_user(tenant_id, actor_id, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok({"id": user_id, "deleted": True, "changed": changed})


@users_bp.route("/<user_id>/email-confirmation", methods=["POST"])
@require_permission("users.manage")
def issue_email_confirmation(user_id):
    tenant_id, _ = request_scope()
    confirmation = user_service.issue_email_confirmation(tenant_id, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok({
        "user_id": confirmation.user_id,
        "token": confirmation.token,
        "expires_at": iso(confirmation.expires_at),
    }, status=201)
