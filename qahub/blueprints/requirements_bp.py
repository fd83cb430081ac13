"""
Requirements Blueprint — requirement tree and traceability links.

  GET/POST        /api/v1/projects/<project_id>/requirements
  GET/PUT/DELETE  /api/v1/requirements/<requirement_id>
  POST            /api/v1/requirements/<requirement_id>/restore
  POST/DELETE     /api/v1/requirements/<requirement_id>/testcases/<case_id>    { "weight"? }
  POST/DELETE     /api/v1/requirements/<requirement_id>/testsuites/<suite_id>
"""

from flask import Blueprint, request

from qahub.middleware.permission_required import require_permission
from qahub.services import requirement_service
from qahub.services.scope_resolver import project_arg, requirement_scope
from qahub.utils.errors import api_ok, api_page
from qahub.utils.helpers import db_commit_or_error, json_body, pagination_args, request_scope

requirements_bp = Blueprint("requirements", __name__, url_prefix="/api/v1")


def _committed(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(payload, status=status)


@requirements_bp.route("/projects/<project_id>/requirements", methods=["GET"])
@require_permission("requirements.view", scope=project_arg("project_id"))
def list_requirements(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = requirement_service.list_requirements(
        tenant_id, project_id,
        parent_requirement_id=request.args.get("parent_requirement_id"),
        tag=request.args.get("tag"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@requirements_bp.route("/projects/<project_id>/requirements", methods=["POST"])
@require_permission("requirements.manage", scope=project_arg("project_id"))
def create_requirement(project_id):
    tenant_id, actor_id = request_scope()
    requirement = requirement_service.create_requirement(tenant_id, actor_id, project_id, json_body())
    return _committed(requirement.to_dict(), status=201)


@requirements_bp.route("/requirements/<requirement_id>", methods=["GET"])
@require_permission("requirements.view", scope=requirement_scope)
def get_requirement(requirement_id):
    tenant_id, _ = request_scope()
    requirement = requirement_service.get_requirement(tenant_id, requirement_id)
    return api_ok(requirement_service.requirement_detail(tenant_id, requirement))


@requirements_bp.route("/requirements/<requirement_id>", methods=["PUT"])
@require_permission("requirements.manage", scope=requirement_scope)
def update_requirement(requirement_id):
    tenant_id, actor_id = request_scope()
    requirement = requirement_service.update_requirement(tenant_id, actor_id, requirement_id, json_body())
    return _committed(requirement.to_dict())


@requirements_bp.route("/requirements/<requirement_id>", methods=["DELETE"])
@require_permission("requirements.manage", scope=requirement_scope)
def delete_requirement(requirement_id):
    tenant_id, actor_id = request_scope()
    changed = requirement_service.delete_requirement(tenant_id, actor_id, requirement_id)
    return _committed({"id": requirement_id, "deleted": True, "changed": changed})


@requirements_bp.route("/requirements/<requirement_id>/restore", methods=["POST"])
@require_permission("requirements.manage", scope=requirement_scope)
def restore_requirement(requirement_id):
    tenant_id, actor_id = request_scope()
    requirement = requirement_service.restore_requirement(tenant_id, actor_id, requirement_id)
    return _committed(requirement.to_dict())


# ── Traceability links ───────────────────────────────────────────────────────

@requirements_bp.route("/requirements/<requirement_id>/testcases/<case_id>", methods=["POST"])
@require_permission("requirements.manage", scope=requirement_scope)
def link_test_case(requirement_id, case_id):
    tenant_id, actor_id = request_scope()
    link = requirement_service.link_test_case(tenant_id, actor_id, requirement_id, case_id, json_body())
    return _committed(link.to_dict(), status=201)


@requirements_bp.route("/requirements/<requirement_id>/testcases/<case_id>", methods=["DELETE"])
@require_permission("requirements.manage", scope=requirement_scope)
def unlink_test_case(requirement_id, case_id):
    tenant_id, actor_id = request_scope()
    requirement_service.unlink_test_case(tenant_id, actor_id, requirement_id, case_id)
    return _committed({"requirement_id": requirement_id, "test_case_id": case_id, "unlinked": True})


@requirements_bp.route("/requirements/<requirement_id>/testsuites/<suite_id>", methods=["POST"])
@require_permission("requirements.manage", scope=requirement_scope)
def link_test_suite(requirement_id, suite_id):
    tenant_id, actor_id = request_scope()
    link = requirement_service.link_test_suite(tenant_id, actor_id, requirement_id, suite_id)
    return _committed(link.to_dict(), status=201)


@requirements_bp.route("/requirements/<requirement_id>/testsuites/<suite_id>", methods=["DELETE"])
@require_permission("requirements.manage", scope=requirement_scope)
def unlink_test_suite(requirement_id, suite_id):
    tenant_id, actor_id = request_scope()
    requirement_service.unlink_test_suite(tenant_id, actor_id, requirement_id, suite_id)
    return _committed({"requirement_id": requirement_id, "test_suite_id": suite_id, "unlinked": True})
