"""
Admin Blueprint — permission catalog, roles and grants.

  GET/POST  /api/v1/permissions
  DELETE    /api/v1/permissions/<permission_id>
  GET/POST  /api/v1/roles                  { user_id, role_type, project_id?, grant_defaults? }
  DELETE    /api/v1/roles/<role_id>
  POST/DELETE /api/v1/roles/<role_id>/permissions/<permission_id>

Role administration is tenant-level: it needs ``roles.manage`` from a
tenant-wide role.
"""

from flask import Blueprint, request

from qahub.middleware.permission_required import require_permission
from qahub.services import role_service
from qahub.utils.errors import api_ok
from qahub.utils.helpers import db_commit_or_error, json_body, request_scope

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1")


def _committed(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(payload, status=status)


# ── Permissions ──────────────────────────────────────────────────────────────

@admin_bp.route("/permissions", methods=["GET"])
@require_permission("roles.manage")
def list_permissions():
    tenant_id, _ = request_scope()
    return api_ok([p.to_dict() for p in role_service.list_permissions(tenant_id)])


@admin_bp.route("/permissions", methods=["POST"])
@require_permission("roles.manage")
def create_permission():
    tenant_id, actor_id = request_scope()
    perm = role_service.create_permission(tenant_id, actor_id, json_body())
    return _committed(perm.to_dict(), status=201)


@admin_bp.route("/permissions/<permission_id>", methods=["DELETE"])
@require_permission("roles.manage")
def delete_permission(permission_id):
    tenant_id, actor_id = request_scope()
    changed = role_service.delete_permission(tenant_id, actor_id, permission_id)
    return _committed({"id": permission_id, "deleted": True, "changed": changed})


# ── Roles ────────────────────────────────────────────────────────────────────

@admin_bp.route("/roles", methods=["GET"])
@require_permission("roles.manage")
def list_roles():
    tenant_id, _ = request_scope()
    roles = role_service.list_roles(
        tenant_id,
        user_id=request.args.get("user_id"),
        project_id=request.args.get("project_id"),
    )
    return api_ok([role_service.role_to_dict(r) for r in roles])


@admin_bp.route("/roles", methods=["POST"])
@require_permission("roles.manage")
def create_role():
    tenant_id, actor_id = request_scope()
    data = json_body()
    role = role_service.create_role(
        tenant_id, actor_id,
        user_id=data.get("user_id"),
        role_type=data.get("role_type"),
        project_id=data.get("project_id"),
        grant_defaults=data.get("grant_defaults", True) is not False,
    )
    return _committed(role_service.role_to_dict(role), status=201)


@admin_bp.route("/roles/<role_id>", methods=["DELETE"])
@require_permission("roles.manage")
def delete_role(role_id):
    tenant_id, actor_id = request_scope()
    changed = role_service.delete_role(tenant_id, actor_id, role_id)
    return _committed({"id": role_id, "deleted": True, "changed": changed})


@admin_bp.route("/roles/<role_id>/permissions/<permission_id>", methods=["POST"])
@require_permission("roles.manage")
def grant_permission(role_id, permission_id):
    tenant_id, actor_id = request_scope()
    role_service.grant_permission(tenant_id, actor_id, role_id, permission_id)
    role = role_service.get_role(tenant_id, role_id)
    return _committed(role_service.role_to_dict(role), status=201)


@admin_bp.route("/roles/<role_id>/permissions/<permission_id>", methods=["DELETE"])
@require_permission("roles.manage")
def revoke_permission(role_id, permission_id):
    tenant_id, actor_id = request_scope()
    revoked = role_service.revoke_permission(tenant_id, actor_id, role_id, permission_id)
    role = role_service.get_role(tenant_id, role_id)
    payload = role_service.role_to_dict(role)
    payload["revoked"] = revoked
    return _committed(payload)
