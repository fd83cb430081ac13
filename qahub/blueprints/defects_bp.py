"""
Defects Blueprint — defect tracking and workflow.

  GET/POST        /api/v1/defects
  GET/PUT/DELETE  /api/v1/defects/<defect_id>
  POST            /api/v1/defects/<defect_id>/transition   { "status", "resolution_notes"? }
  GET             /api/v1/defects/<defect_id>/history

A defect's project is reached through its test case or result; a defect
with neither is tenant-level and needs a tenant-wide role. Project-scoped
callers list only the defects of their projects.
"""

from flask import Blueprint, g, request

from qahub.middleware.permission_required import require_list_permission, require_permission
from qahub.services import defect_service
from qahub.services.scope_resolver import defect_scope, defect_target
from qahub.utils.errors import api_ok, api_page
from qahub.utils.helpers import db_commit_or_error, json_body, pagination_args, request_scope

defects_bp = Blueprint("defects", __name__, url_prefix="/api/v1/defects")


@defects_bp.route("", methods=["GET"])
@require_list_permission("defects.view")
def list_defects():
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = defect_service.list_defects(
        tenant_id,
        status=request.args.get("status"),
        severity=request.args.get("severity"),
        assigned_user_id=request.args.get("assigned_user_id"),
        test_case_id=request.args.get("test_case_id"),
        project_ids=g.allowed_project_ids,
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@defects_bp.route("", methods=["POST"])
@require_permission("defects.manage", scope=defect_target)
def create_defect():
    tenant_id, actor_id = request_scope()
    defect = defect_service.create_defect(tenant_id, actor_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(defect.to_dict(), status=201)


@defects_bp.route("/<defect_id>", methods=["GET"])
@require_permission("defects.view", scope=defect_scope)
def get_defect(defect_id):
    tenant_id, _ = request_scope()
    return api_ok(defect_service.get_defect(tenant_id, defect_id).to_dict())


@defects_bp.route("/<defect_id>", methods=["PUT"])
@require_permission("defects.manage", scope=defect_scope)
def update_defect(defect_id):
    tenant_id, actor_id = request_scope()
    defect = defect_service.update_defect(tenant_id, actor_id, defect_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(defect.to_dict())


@defects_bp.route("/<defect_id>", methods=["DELETE"])
@require_permission("defects.manage", scope=defect_scope)
def delete_defect(defect_id):
    tenant_id, actor_id = request_scope()
    changed = defect_service.delete_defect(tenant_id, actor_id, defect_id)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok({"id": defect_id, "deleted": True, "changed": changed})


@defects_bp.route("/<defect_id>/transition", methods=["POST"])
@require_permission("defects.manage", scope=defect_scope)
def transition_defect(defect_id):
    tenant_id, actor_id = request_scope()
    defect = defect_service.transition_defect(tenant_id, actor_id, defect_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(defect.to_dict())


@defects_bp.route("/<defect_id>/history", methods=["GET"])
@require_permission("defects.view", scope=defect_scope)
def defect_history(defect_id):
    tenant_id, _ = request_scope()
    return api_ok([h.to_dict() for h in defect_service.list_history(tenant_id, defect_id)])
