"""
Audit Blueprint — read-only access to the audit trail.

Endpoints:
    GET  /api/v1/auditlogs                          — tenant-wide (tenant-wide role)
    GET  /api/v1/projects/<project_id>/auditlogs    — one project

Query params:
    entity_type  — filter by entity type
    entity_id    — filter by entity id
    action       — exact action, e.g. "TestCaseCreated"
    limit/offset — paging
"""

from flask import Blueprint, request

from qahub.middleware.permission_required import require_permission
from qahub.services.audit_service import list_audit_logs
from qahub.services.project_service import get_project
from qahub.services.scope_resolver import project_arg
from qahub.utils.errors import api_page
from qahub.utils.helpers import pagination_args, request_scope

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


def _filters():
    return {
        "entity_type": request.args.get("entity_type"),
        "entity_id": request.args.get("entity_id"),
        "action": request.args.get("action"),
    }


@audit_bp.route("/auditlogs", methods=["GET"])
@require_permission("auditlogs.view")
def list_tenant_audit_logs():
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = list_audit_logs(tenant_id, limit=limit, offset=offset, **_filters())
    return api_page(items, total, limit, offset)


@audit_bp.route("/projects/<project_id>/auditlogs", methods=["GET"])
@require_permission("auditlogs.view", scope=project_arg("project_id"))
def list_project_audit_logs(project_id):
    tenant_id, _ = request_scope()
    get_project(tenant_id, project_id)
    limit, offset = pagination_args()
    items, total = list_audit_logs(
        tenant_id, project_id=project_id, limit=limit, offset=offset, **_filters(),
    )
    return api_page(items, total, limit, offset)
