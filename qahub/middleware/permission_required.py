"""
Permission Decorator — RBAC check for route protection.

Runs after the guard chain, so ``g.tenant_id`` is verified and
``g.jwt_user_id`` is the caller.

Usage:
    @bp.route("/api/v1/testcases/<case_id>", methods=["PUT"])
    @require_permission("testcases.manage", scope=case_scope)
    def update_case(case_id):
        ...

    @bp.route("/api/v1/users", methods=["GET"])
    @require_permission("users.view")          # tenant-level: no scope
    def list_users():
        ...

    @bp.route("/api/v1/projects", methods=["GET"])
    @require_list_permission("projects.view")  # g.allowed_project_ids
    def list_projects():
        ...

Denial raises ``Forbidden``; it is never turned into an empty result.
"""

import functools

from flask import g

from qahub.core.exceptions import Unauthorized
from qahub.services.permission_service import accessible_project_ids, authorize


def require_permission(codename: str, scope=None):
    """
    Decorator: require the caller to hold ``codename`` for the target.

    Args:
        codename: Permission codename, e.g. "testcases.manage".
        scope: Optional resolver ``(tenant_id, view_kwargs) -> project_id``.
               Without it the target is the tenant itself.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            tenant_id = getattr(g, "tenant_id", None)
            user_id = getattr(g, "jwt_user_id", None)
            if not tenant_id or not user_id:
                raise Unauthorized("Authentication required")
            project_id = scope(tenant_id, kwargs) if scope is not None else None
            authorize(tenant_id, user_id, codename, project_id=project_id)
            g.project_id = project_id
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_list_permission(codename: str):
    """
    Decorator for list views: ``codename`` tenant-wide or in any project.

    Sets ``g.allowed_project_ids`` to None for a tenant-wide grant, else to
    the project ids the caller's project-scoped roles cover. A caller with
    no grant at all gets ``Forbidden``.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            tenant_id = getattr(g, "tenant_id", None)
            user_id = getattr(g, "jwt_user_id", None)
            if not tenant_id or not user_id:
                raise Unauthorized("Authentication required")
            allowed = accessible_project_ids(tenant_id, user_id, codename)
            if allowed == []:
                authorize(tenant_id, user_id, codename)
            g.allowed_project_ids = allowed
            return f(*args, **kwargs)
        return decorated
    return decorator
