"""
Soft-delete and restore with an explicit cascade policy.

Policy (per parent type):
  - rows that REQUIRE the parent (non-null FK) are soft-deleted with it,
    recursively, in the same transaction
  - rows that only OPTIONALLY point at the parent (TestCase.folder_id,
    Defect.test_case_id / test_run_result_id, assignees) stay live; the
    dangling reference is hidden by the soft-delete filter
  - every row of one cascade gets the same ``deleted_at``; restoring the
    root brings back exactly that batch
  - deleting an already-deleted row is a no-op and returns no rows
  - restoring is refused while a required parent is still deleted
"""

import logging

from sqlalchemy import select

from qahub.core.exceptions import ValidationError
from qahub.models import db
from qahub.models.auth import Permission, Role, RolePermission, User, UserEmailConfirmation
from qahub.models.base import utcnow
from qahub.models.project import Project, UserProject
from qahub.models.requirement import Requirement, RequirementTestCase, RequirementTestSuite
from qahub.models.soft_delete import INCLUDE_DELETED
from qahub.models.testing import TestCase, TestFolder, TestRun, TestRunResult, TestSuite

logger = logging.getLogger(__name__)


# parent type -> (child type, FK column on child)
CASCADE_CHILDREN = {
    Project: (
        (TestSuite, "project_id"),
        (TestFolder, "project_id"),
        (TestRun, "project_id"),
        (Requirement, "project_id"),
        (UserProject, "project_id"),
        (Role, "project_id"),
    ),
    TestSuite: (
        (TestSuite, "parent_suite_id"),
        (TestCase, "test_suite_id"),
        (RequirementTestSuite, "test_suite_id"),
    ),
    TestCase: (
        (TestRunResult, "test_case_id"),
        (RequirementTestCase, "test_case_id"),
    ),
    TestRun: (
        (TestRunResult, "test_run_id"),
    ),
    Requirement: (
        (Requirement, "parent_requirement_id"),
        (RequirementTestCase, "requirement_id"),
        (RequirementTestSuite, "requirement_id"),
    ),
    User: (
        (Role, "user_id"),
        (UserProject, "user_id"),
        (UserEmailConfirmation, "user_id"),
    ),
    Role: (
        (RolePermission, "role_id"),
    ),
    Permission: (
        (RolePermission, "permission_id"),
    ),
}

# child type -> (FK column, parent type) that must be live for a restore
RESTORE_PARENTS = {
    TestSuite: (("project_id", Project), ("parent_suite_id", TestSuite)),
    TestFolder: (("project_id", Project),),
    TestCase: (("test_suite_id", TestSuite),),
    TestRun: (("project_id", Project),),
    TestRunResult: (("test_run_id", TestRun), ("test_case_id", TestCase)),
    Requirement: (("project_id", Project), ("parent_requirement_id", Requirement)),
    RequirementTestCase: (("requirement_id", Requirement), ("test_case_id", TestCase)),
    RequirementTestSuite: (("requirement_id", Requirement), ("test_suite_id", TestSuite)),
    UserProject: (("project_id", Project), ("user_id", User)),
    UserEmailConfirmation: (("user_id", User),),
    Role: (("user_id", User), ("project_id", Project)),
    RolePermission: (("role_id", Role), ("permission_id", Permission)),
}


def _children(obj, *, deleted_at=None):
    for child_model, fk in CASCADE_CHILDREN.get(type(obj), ()):
        stmt = select(child_model).where(
            getattr(child_model, fk) == obj.id,
            child_model.tenant_id == obj.tenant_id,
        )
        if deleted_at is not None:
            stmt = stmt.where(
                child_model.is_deleted.is_(True),
                child_model.deleted_at == deleted_at,
            ).execution_options(**{INCLUDE_DELETED: True})
        yield from db.session.execute(stmt).scalars().all()


def soft_delete(entity):
    """Soft-delete ``entity`` and cascade to required children.

    Returns the rows flagged by this call, root first. An already-deleted
    entity returns ``[]`` and nothing changes.
    """
    if entity.is_deleted:
        logger.debug("soft_delete no-op: %s id=%s already deleted", type(entity).__name__, entity.id)
        return []

    at = utcnow()
    deleted = []
    queue = [entity]
    while queue:
        obj = queue.pop(0)
        if not obj.mark_deleted(at):
            continue
        deleted.append(obj)
        # Flush so already-flagged rows drop out of the next child query
        db.session.flush()
        queue.extend(_children(obj))

    logger.info(
        "Soft-deleted %s id=%s (+%d cascaded)",
        type(entity).__name__, entity.id, len(deleted) - 1,
        extra={"tenant_id": entity.tenant_id},
    )
    return deleted


def _assert_parents_live(entity):
    missing = {}
    for attr, parent_model in RESTORE_PARENTS.get(type(entity), ()):
        parent_id = getattr(entity, attr)
        if parent_id is None:
            continue
        live = db.session.execute(
            select(parent_model.id).where(
                parent_model.id == parent_id,
                parent_model.tenant_id == entity.tenant_id,
            )
        ).first()
        if live is None:
            missing[attr] = f"{parent_model.__name__} is deleted; restore it first"
    if missing:
        raise ValidationError("Cannot restore while a parent is deleted", details=missing)


def restore(entity):
    """Restore ``entity`` and every row deleted in the same cascade.

    Returns the restored rows, root first. A live entity returns ``[]``.
    """
    if not entity.is_deleted:
        return []
    _assert_parents_live(entity)

    batch_at = entity.deleted_at
    restored = []
    queue = [entity]
    while queue:
        obj = queue.pop(0)
        children = list(_children(obj, deleted_at=batch_at)) if batch_at is not None else []
        if obj.mark_restored():
            restored.append(obj)
        queue.extend(children)
    db.session.flush()

    logger.info(
        "Restored %s id=%s (+%d cascaded)",
        type(entity).__name__, entity.id, len(restored) - 1,
        extra={"tenant_id": entity.tenant_id},
    )
    return restored


def cascade_summary(rows):
    """``{"TestCase": 3, ...}`` for the cascaded rows (root excluded)."""
    summary = {}
    for row in rows[1:]:
        name = type(row).__name__
        summary[name] = summary.get(name, 0) + 1
    return summary
