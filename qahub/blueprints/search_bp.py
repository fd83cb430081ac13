"""
Search Blueprint — text search across the tenant and per-project filters.

  GET /api/v1/search?query=login&tags=smoke
  GET /api/v1/projects/<project_id>/filter/requirements?tags=
  GET /api/v1/projects/<project_id>/filter/testcases?tags=&priorities=&statuses=
  GET /api/v1/projects/<project_id>/filter/testruns?statuses=&assigned_tester_ids=
  GET /api/v1/projects/<project_id>/filter/defects?severities=&statuses=

Multi-valued parameters may repeat or hold comma-separated values.
Project-scoped callers search only their own projects.
"""

from flask import Blueprint, g, request

from qahub.middleware.permission_required import require_list_permission, require_permission
from qahub.services import search_service
from qahub.services.scope_resolver import project_arg
from qahub.utils.errors import api_page
from qahub.utils.helpers import pagination_args, request_scope

search_bp = Blueprint("search", __name__, url_prefix="/api/v1")

project_scope = project_arg("project_id")


def _multi(name):
    """``?x=a&x=b,c`` -> ``["a", "b", "c"]``."""
    values = []
    for raw in request.args.getlist(name):
        values.extend(v.strip() for v in raw.split(",") if v.strip())
    return values


@search_bp.route("/search", methods=["GET"])
@require_list_permission("projects.view")
def global_search():
    tenant_id, _ = request_scope()
    limit, offset = pagination_args(default_limit=50)
    hits, total = search_service.global_search(
        tenant_id, request.args.get("query"),
        tags=_multi("tags"),
        project_ids=g.allowed_project_ids,
        limit=limit, offset=offset,
    )
    return api_page(hits, total, limit, offset)


@search_bp.route("/projects/<project_id>/filter/requirements", methods=["GET"])
@require_permission("requirements.view", scope=project_scope)
def filter_requirements(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args(default_limit=50)
    items, total = search_service.filter_requirements(
        tenant_id, project_id, tags=_multi("tags"), limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@search_bp.route("/projects/<project_id>/filter/testcases", methods=["GET"])
@require_permission("testcases.view", scope=project_scope)
def filter_test_cases(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args(default_limit=50)
    items, total = search_service.filter_test_cases(
        tenant_id, project_id,
        tags=_multi("tags"),
        priorities=_multi("priorities"),
        statuses=_multi("statuses"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@search_bp.route("/projects/<project_id>/filter/testruns", methods=["GET"])
@require_permission("testruns.view", scope=project_scope)
def filter_test_runs(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args(default_limit=50)
    items, total = search_service.filter_test_runs(
        tenant_id, project_id,
        statuses=_multi("statuses"),
        assigned_tester_ids=_multi("assigned_tester_ids"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@search_bp.route("/projects/<project_id>/filter/defects", methods=["GET"])
@require_permission("defects.view", scope=project_scope)
def filter_defects(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args(default_limit=50)
    items, total = search_service.filter_defects(
        tenant_id, project_id,
        severities=_multi("severities"),
        statuses=_multi("statuses"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)
