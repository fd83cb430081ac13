"""
Project Service — projects, memberships and the suite hierarchy view.

Transaction policy: flush, caller commits.
"""

import logging

from sqlalchemy import func, select

from qahub.core.exceptions import ConflictError, NotFoundError
from qahub.models import db
from qahub.models.auth import User
from qahub.models.project import Project, UserProject
from qahub.models.testing import TestCase, TestFolder, TestSuite
from qahub.services import lifecycle
from qahub.services.audit_service import audit_action, diff_fields, record_audit
from qahub.services.helpers.scoped_queries import get_scoped, list_scoped
from qahub.services.hierarchy import build_tree
from qahub.services.validation import check_json, check_str, raise_if

logger = logging.getLogger(__name__)

_PROJECT_FIELDS = ("name", "description")


# ═══════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════

def _project_values(data, *, partial=False):
    errors = {}
    values = {}
    if not partial or "name" in data:
        values["name"] = check_str(errors, data, "name", max_len=100, required=True)
    if not partial or "description" in data:
        values["description"] = check_str(errors, data, "description")
    raise_if(errors, "Invalid project")
    return values


def create_project(tenant_id, actor_id, data):
    values = _project_values(data)
    project = Project(tenant_id=tenant_id, **values)
    db.session.add(project)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Project", "Created"),
        entity_type="Project", entity_id=project.id, project_id=project.id,
        details={"name": project.name},
    )
    return project


def list_projects(tenant_id, *, project_ids=None, limit=100, offset=0):
    """Projects of the tenant; ``project_ids`` (when not None) narrows the list."""
    stmt = select(Project).where(Project.tenant_id == tenant_id)
    if project_ids is not None:
        stmt = stmt.where(Project.id.in_(project_ids))
    stmt = stmt.order_by(Project.name)
    return list_scoped(stmt, limit=limit, offset=offset)


def get_project(tenant_id, project_id):
    return get_scoped(Project, project_id, tenant_id=tenant_id)


def update_project(tenant_id, actor_id, project_id, data):
    project = get_project(tenant_id, project_id)
    values = _project_values(data, partial=True)
    before = {f: getattr(project, f) for f in _PROJECT_FIELDS}
    for field, value in values.items():
        setattr(project, field, value)
    db.session.flush()
    changes = diff_fields(before, {f: getattr(project, f) for f in _PROJECT_FIELDS})
    if changes:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Project", "Updated"),
            entity_type="Project", entity_id=project.id, project_id=project.id,
            details={"changes": changes},
        )
    return project


def delete_project(tenant_id, actor_id, project_id):
    """Soft-delete a project and everything it owns. Returns True if changed."""
    project = get_scoped(Project, project_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.soft_delete(project)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Project", "Deleted"),
            entity_type="Project", entity_id=project.id, project_id=project.id,
            details={"cascade": lifecycle.cascade_summary(rows)},
        )
    return bool(rows)


def restore_project(tenant_id, actor_id, project_id):
    project = get_scoped(Project, project_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.restore(project)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Project", "Restored"),
            entity_type="Project", entity_id=project.id, project_id=project.id,
            details={"cascade": lifecycle.cascade_summary(rows)},
        )
    return project


def get_hierarchy(tenant_id, project_id):
    """Suite tree with live test case counts, plus the flat folder list."""
    get_project(tenant_id, project_id)
    suites = db.session.execute(
        select(TestSuite).where(
            TestSuite.tenant_id == tenant_id, TestSuite.project_id == project_id,
        ).order_by(TestSuite.name)
    ).scalars().all()
    counts = dict(db.session.execute(
        select(TestCase.test_suite_id, func.count(TestCase.id))
        .where(TestCase.tenant_id == tenant_id, TestCase.test_suite_id.in_([s.id for s in suites]))
        .group_by(TestCase.test_suite_id)
    ).all()) if suites else {}
    folders = db.session.execute(
        select(TestFolder).where(
            TestFolder.tenant_id == tenant_id, TestFolder.project_id == project_id,
        ).order_by(TestFolder.name)
    ).scalars().all()

    nodes = [
        {
            "id": s.id,
            "name": s.name,
            "parent_suite_id": s.parent_suite_id,
            "test_case_count": counts.get(s.id, 0),
        }
        for s in suites
    ]
    return {
        "project_id": project_id,
        "suites": build_tree(nodes, "parent_suite_id"),
        "folders": [{"id": f.id, "name": f.name} for f in folders],
    }


# ═══════════════════════════════════════════════════════════════
# Memberships
# ═══════════════════════════════════════════════════════════════

def _membership(tenant_id, project_id, user_id):
    return db.session.execute(
        select(UserProject).where(
            UserProject.tenant_id == tenant_id,
            UserProject.project_id == project_id,
            UserProject.user_id == user_id,
        )
    ).scalar_one_or_none()


def list_members(tenant_id, project_id):
    get_project(tenant_id, project_id)
    stmt = (
        select(UserProject)
        .where(UserProject.tenant_id == tenant_id, UserProject.project_id == project_id)
        .order_by(UserProject.created_at)
    )
    return db.session.execute(stmt).scalars().all()


def add_member(tenant_id, actor_id, project_id, data):
    errors = {}
    user_id = check_str(errors, data, "user_id", max_len=36, required=True)
    preferences = check_json(errors, data, "preferences", kind=dict, default={})
    raise_if(errors, "Invalid membership")

    project = get_project(tenant_id, project_id)
    user = get_scoped(User, user_id, tenant_id=tenant_id)
    if _membership(tenant_id, project.id, user.id) is not None:
        raise ConflictError("UserProject", "user_id", user.id)

    membership = UserProject(
        tenant_id=tenant_id, project_id=project.id, user_id=user.id, preferences=preferences,
    )
    db.session.add(membership)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Project", "MemberAdded"),
        entity_type="Project", entity_id=project.id, project_id=project.id,
        details={"user_id": user.id},
    )
    return membership


def update_member_preferences(tenant_id, actor_id, project_id, user_id, data):
    errors = {}
    preferences = check_json(errors, data, "preferences", kind=dict)
    if preferences is None and "preferences" not in errors:
        errors["preferences"] = "is required"
    raise_if(errors, "Invalid membership")

    get_project(tenant_id, project_id)
    membership = _membership(tenant_id, project_id, user_id)
    if membership is None:
        raise NotFoundError("UserProject", user_id)
    membership.preferences = preferences
    db.session.flush()
    return membership


def remove_member(tenant_id, actor_id, project_id, user_id):
    get_project(tenant_id, project_id)
    membership = _membership(tenant_id, project_id, user_id)
    if membership is None:
        raise NotFoundError("UserProject", user_id)
    lifecycle.soft_delete(membership)
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Project", "MemberRemoved"),
        entity_type="Project", entity_id=project_id, project_id=project_id,
        details={"user_id": user_id},
    )
    return True
