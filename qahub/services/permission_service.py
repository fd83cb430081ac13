"""
Authorization Evaluator — DB-driven RBAC against tenant + project scope.

A user is authorized for ``permission`` on ``project_id`` when one of
their live roles in the verified tenant

  1. has a scope covering the target (``TenantWide`` covers every
     project, ``ProjectScope(p)`` covers only ``p``; tenant-level
     operations with no project are covered by tenant-wide roles only), and
  2. is linked through RolePermission to a live Permission of that name.

Roles are evaluated one at a time and the first matching role/permission
pair wins. Nothing is cached across requests.

Usage:
    if is_authorized(tenant_id, user_id, "testcases.manage", project_id=pid):
        ...
    authorize(tenant_id, user_id, "defects.manage", project_id=pid)  # raises Forbidden
    accessible_project_ids(tenant_id, user_id, "projects.view")  # None = every project
"""

import logging

from sqlalchemy import select

from qahub.core.exceptions import Forbidden
from qahub.models import db
from qahub.models.auth import Permission, Role, RolePermission, TenantWide, User

logger = logging.getLogger(__name__)


def _candidate_roles(tenant_id, user_id):
    # Tenant-wide roles first: they cover any target
    stmt = (
        select(Role)
        .join(User, User.id == Role.user_id)
        .where(
            Role.tenant_id == tenant_id,
            Role.user_id == user_id,
            User.tenant_id == tenant_id,
        )
        .order_by(Role.project_id.is_not(None), Role.created_at)
    )
    return db.session.execute(stmt).scalars()


def _role_grants(role, permission):
    stmt = (
        select(RolePermission.id)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(
            RolePermission.role_id == role.id,
            RolePermission.tenant_id == role.tenant_id,
            Permission.tenant_id == role.tenant_id,
            Permission.name == permission,
        )
        .limit(1)
    )
    return db.session.execute(stmt).first() is not None


def is_authorized(tenant_id, user_id, permission, project_id=None) -> bool:
    """Return True on the first role whose scope covers the target and grants permission."""
    if not tenant_id or not user_id:
        return False
    for role in _candidate_roles(tenant_id, user_id):
        if not role.scope.covers(project_id):
            continue
        if _role_grants(role, permission):
            logger.debug(
                "Authorized %s for %s via role %s (%s)",
                user_id, permission, role.id, role.role_type,
                extra={"tenant_id": tenant_id, "project_id": project_id},
            )
            return True
    return False


def authorize(tenant_id, user_id, permission, project_id=None):
    """Raise Forbidden unless ``is_authorized``."""
    if is_authorized(tenant_id, user_id, permission, project_id=project_id):
        return
    logger.warning(
        "User %s denied '%s'", user_id, permission,
        extra={
            "tenant_id": tenant_id,
            "project_id": project_id,
            "event_type": "authorization_denied",
        },
    )
    raise Forbidden(f"Missing permission '{permission}'")


def user_role_summary(tenant_id, user_id):
    """Role types and scopes for token claims and /me responses."""
    return [
        {
            "role_type": role.role_type,
            "project_id": role.project_id,
            "tenant_wide": isinstance(role.scope, TenantWide),
        }
        for role in _candidate_roles(tenant_id, user_id)
    ]


def permissions_for_role(role):
    """Permission names granted to a role."""
    stmt = (
        select(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role.id, Permission.tenant_id == role.tenant_id)
        .order_by(Permission.name)
    )
    return list(db.session.execute(stmt).scalars())


def accessible_project_ids(tenant_id, user_id, permission):
    """Projects in which the caller holds ``permission``.

    Returns None when a tenant-wide role grants it (every project), else
    the sorted ids of the projects whose project-scoped roles grant it.
    An empty list means no access at all.
    """
    project_ids = set()
    for role in _candidate_roles(tenant_id, user_id):
        if not _role_grants(role, permission):
            continue
        if isinstance(role.scope, TenantWide):
            return None
        project_ids.add(role.project_id)
    return sorted(project_ids)
