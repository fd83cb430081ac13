"""
Role & permission administration.

Permissions are a per-tenant catalog seeded from ``PERMISSION_CATALOG``.
Roles bind a user to a role type, tenant-wide or scoped to one project,
and receive permissions through RolePermission rows.

Transaction policy: flush, caller commits.
"""

import logging

from sqlalchemy import select

from qahub.core.exceptions import ConflictError, ValidationError
from qahub.models import db
from qahub.models.auth import (
    DEFAULT_ROLE_GRANTS,
    PERMISSION_CATALOG,
    ROLE_TYPES,
    Permission,
    ProjectScope,
    Role,
    RolePermission,
    TenantWide,
    User,
)
from qahub.models.project import Project
from qahub.services import lifecycle
from qahub.services.audit_service import audit_action, record_audit
from qahub.services.helpers.scoped_queries import get_scoped
from qahub.services.permission_service import permissions_for_role

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# Permission catalog
# ═══════════════════════════════════════════════════════════════

def seed_permission_catalog(tenant_id):
    """Create any missing catalog permissions for a tenant. Idempotent.

    Returns ``{name: Permission}`` for the whole catalog.
    """
    existing = {
        p.name: p
        for p in db.session.execute(
            select(Permission).where(Permission.tenant_id == tenant_id)
        ).scalars()
    }
    for name, description in PERMISSION_CATALOG.items():
        if name not in existing:
            perm = Permission(tenant_id=tenant_id, name=name, description=description)
            db.session.add(perm)
            existing[name] = perm
    db.session.flush()
    return existing


def list_permissions(tenant_id):
    stmt = select(Permission).where(Permission.tenant_id == tenant_id).order_by(Permission.name)
    return db.session.execute(stmt).scalars().all()


def create_permission(tenant_id, actor_id, data):
    name = (data.get("name") or "").strip()
    errors = {}
    if not name:
        errors["name"] = "is required"
    elif len(name) > 100:
        errors["name"] = "must be at most 100 characters"
    if errors:
        raise ValidationError("Invalid permission", details=errors)

    dup = db.session.execute(
        select(Permission.id).where(Permission.tenant_id == tenant_id, Permission.name == name)
    ).first()
    if dup:
        raise ConflictError("Permission", "name", name)

    perm = Permission(tenant_id=tenant_id, name=name, description=data.get("description"))
    db.session.add(perm)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Permission", "Created"),
        entity_type="Permission", entity_id=perm.id, details={"name": name},
    )
    return perm


def delete_permission(tenant_id, actor_id, permission_id):
    perm = get_scoped(Permission, permission_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.soft_delete(perm)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Permission", "Deleted"),
            entity_type="Permission", entity_id=perm.id,
            details={"name": perm.name, "cascade": lifecycle.cascade_summary(rows)},
        )
    return bool(rows)


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════

def _scope_from(tenant_id, project_id):
    if project_id is None:
        return TenantWide()
    get_scoped(Project, project_id, tenant_id=tenant_id)
    return ProjectScope(project_id)


def create_role(tenant_id, actor_id, *, user_id, role_type, project_id=None, grant_defaults=True):
    """Bind ``user_id`` to ``role_type`` tenant-wide or within one project."""
    errors = {}
    if role_type not in ROLE_TYPES:
        errors["role_type"] = f"must be one of {', '.join(ROLE_TYPES)}"
    if not user_id:
        errors["user_id"] = "is required"
    if errors:
        raise ValidationError("Invalid role", details=errors)

    get_scoped(User, user_id, tenant_id=tenant_id)
    scope = _scope_from(tenant_id, project_id)

    role = Role(tenant_id=tenant_id, user_id=user_id, role_type=role_type)
    role.scope = scope
    db.session.add(role)
    db.session.flush()

    if grant_defaults:
        catalog = seed_permission_catalog(tenant_id)
        for name in DEFAULT_ROLE_GRANTS.get(role_type, ()):
            db.session.add(RolePermission(
                tenant_id=tenant_id, role_id=role.id, permission_id=catalog[name].id,
            ))
        db.session.flush()

    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Role", "Created"),
        entity_type="Role", entity_id=role.id, project_id=project_id,
        details={"user_id": user_id, "role_type": role_type},
    )
    return role


def list_roles(tenant_id, *, user_id=None, project_id=None):
    stmt = select(Role).where(Role.tenant_id == tenant_id)
    if user_id:
        stmt = stmt.where(Role.user_id == user_id)
    if project_id:
        stmt = stmt.where(Role.project_id == project_id)
    return db.session.execute(stmt.order_by(Role.created_at)).scalars().all()


def role_to_dict(role):
    return role.to_dict(permissions=permissions_for_role(role))


def delete_role(tenant_id, actor_id, role_id):
    role = get_scoped(Role, role_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.soft_delete(role)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Role", "Deleted"),
            entity_type="Role", entity_id=role.id, project_id=role.project_id,
            details={"user_id": role.user_id, "role_type": role.role_type},
        )
    return bool(rows)


def grant_permission(tenant_id, actor_id, role_id, permission_id):
    role = get_scoped(Role, role_id, tenant_id=tenant_id)
    perm = get_scoped(Permission, permission_id, tenant_id=tenant_id)
    existing = db.session.execute(
        select(RolePermission).where(
            RolePermission.role_id == role.id, RolePermission.permission_id == perm.id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    link = RolePermission(tenant_id=tenant_id, role_id=role.id, permission_id=perm.id)
    db.session.add(link)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Role", "PermissionGranted"),
        entity_type="Role", entity_id=role.id, project_id=role.project_id,
        details={"permission": perm.name},
    )
    return link


def revoke_permission(tenant_id, actor_id, role_id, permission_id):
    role = get_scoped(Role, role_id, tenant_id=tenant_id)
    perm = get_scoped(Permission, permission_id, tenant_id=tenant_id)
    link = db.session.execute(
        select(RolePermission).where(
            RolePermission.role_id == role.id, RolePermission.permission_id == perm.id,
        )
    ).scalar_one_or_none()
    if link is None:
        return False
    lifecycle.soft_delete(link)
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Role", "PermissionRevoked"),
        entity_type="Role", entity_id=role.id, project_id=role.project_id,
        details={"permission": perm.name},
    )
    return True


def get_role(tenant_id, role_id):
    return get_scoped(Role, role_id, tenant_id=tenant_id)


def apply_default_grants(tenant_id):
    """Give every live role its missing default permissions. Idempotent.

    Returns the number of grants added.
    """
    catalog = seed_permission_catalog(tenant_id)
    added = 0
    for role in list_roles(tenant_id):
        granted = set(permissions_for_role(role))
        for name in DEFAULT_ROLE_GRANTS.get(role.role_type, ()):
            if name in granted:
                continue
            db.session.add(RolePermission(
                tenant_id=tenant_id, role_id=role.id, permission_id=catalog[name].id,
            ))
            added += 1
    db.session.flush()
    logger.info("Applied %d default grants", added, extra={"tenant_id": tenant_id})
    return added
