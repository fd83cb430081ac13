"""
Projects Blueprint — projects, memberships and the hierarchy view.

  GET/POST        /api/v1/projects
  GET/PUT/DELETE  /api/v1/projects/<project_id>
  POST            /api/v1/projects/<project_id>/restore
  GET             /api/v1/projects/<project_id>/hierarchy
  GET/POST        /api/v1/projects/<project_id>/members
  PUT/DELETE      /api/v1/projects/<project_id>/members/<user_id>

Listing returns the projects the caller can view; everything under a
project id is checked against that project's scope.
"""

from flask import Blueprint, g

from qahub.middleware.permission_required import require_list_permission, require_permission
from qahub.services import project_service
from qahub.services.scope_resolver import project_arg
from qahub.utils.errors import api_ok, api_page
from qahub.utils.helpers import db_commit_or_error, json_body, pagination_args, request_scope

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")

project_scope = project_arg("project_id")


# ── Projects ─────────────────────────────────────────────────────────────────

@projects_bp.route("", methods=["GET"])
@require_list_permission("projects.view")
def list_projects():
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = project_service.list_projects(
        tenant_id, project_ids=g.allowed_project_ids, limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@projects_bp.route("", methods=["POST"])
@require_permission("projects.manage")
def create_project():
    tenant_id, actor_id = request_scope()
    project = project_service.create_project(tenant_id, actor_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(project.to_dict(), status=201)


@projects_bp.route("/<project_id>", methods=["GET"])
@require_permission("projects.view", scope=project_scope)
def get_project(project_id):
    tenant_id, _ = request_scope()
    return api_ok(project_service.get_project(tenant_id, project_id).to_dict())


@projects_bp.route("/<project_id>", methods=["PUT"])
@require_permission("projects.manage", scope=project_scope)
def update_project(project_id):
    tenant_id, actor_id = request_scope()
    project = project_service.update_project(tenant_id, actor_id, project_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(project.to_dict())


@projects_bp.route("/<project_id>", methods=["DELETE"])
@require_permission("projects.manage", scope=project_scope)
def delete_project(project_id):
    tenant_id, actor_id = request_scope()
    changed = project_service.delete_project(tenant_id, actor_id, project_id)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok({"id": project_id, "deleted": True, "changed": changed})


@projects_bp.route("/<project_id>/restore", methods=["POST"])
@require_permission("projects.manage", scope=project_scope)
def restore_project(project_id):
    tenant_id, actor_id = request_scope()
    project = project_service.restore_project(tenant_id, actor_id, project_id)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(project.to_dict())


@projects_bp.route("/<project_id>/hierarchy", methods=["GET"])
@require_permission("testsuites.view", scope=project_scope)
def project_hierarchy(project_id):
    tenant_id, _ = request_scope()
    return api_ok(project_service.get_hierarchy(tenant_id, project_id))


# ── Members ──────────────────────────────────────────────────────────────────

@projects_bp.route("/<project_id>/members", methods=["GET"])
@require_permission("projects.view", scope=project_scope)
def list_members(project_id):
    tenant_id, _ = request_scope()
    return api_ok([m.to_dict() for m in project_service.list_members(tenant_id, project_id)])


@projects_bp.route("/<project_id>/members", methods=["POST"])
@require_permission("members.manage", scope=project_scope)
def add_member(project_id):
    tenant_id, actor_id = request_scope()
    membership = project_service.add_member(tenant_id, actor_id, project_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(membership.to_dict(), status=201)


@projects_bp.route("/<project_id>/members/<user_id>", methods=["PUT"])
@require_permission("members.manage", scope=project_scope)
def update_member(project_id, user_id):
    tenant_id, actor_id = request_scope()
    membership = project_service.update_member_preferences(
        tenant_id, actor_id, project_id, user_id, json_body(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(membership.to_dict())


@projects_bp.route("/<project_id>/members/<user_id>", methods=["DELETE"])
@require_permission("members.manage", scope=project_scope)
def remove_member(project_id, user_id):
    tenant_id, actor_id = request_scope()
    project_service.remove_member(tenant_id, actor_id, project_id, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok({"project_id": project_id, "user_id": user_id, "removed": True})
