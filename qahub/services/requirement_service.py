"""
Requirement Service — requirement tree CRUD and traceability links to
test cases (weighted) and test suites.

Links are only allowed inside one project: the requirement, the test
case's suite and the linked suite must all belong to the same project.
"""

import logging

from sqlalchemy import select

from qahub.core.exceptions import ConflictError, NotFoundError, ValidationError
from qahub.models import db
from qahub.models.requirement import Requirement, RequirementTestCase, RequirementTestSuite
from qahub.models.testing import TestCase, TestSuite
from qahub.services import lifecycle
from qahub.services.audit_service import audit_action, diff_fields, record_audit
from qahub.services.helpers.scoped_queries import get_scoped, list_scoped
from qahub.services.hierarchy import assert_no_cycle, load_arena
from qahub.services.project_service import get_project
from qahub.services.validation import check_int, check_str, check_tags, raise_if

logger = logging.getLogger(__name__)

_REQUIREMENT_FIELDS = ("title", "description", "tags", "parent_requirement_id")


def _arena(tenant_id, project_id):
    return load_arena(
        Requirement, "parent_requirement_id", tenant_id=tenant_id, project_id=project_id,
    )


def _requirement_values(data, *, partial=False):
    errors = {}
    values = {}
    if not partial or "title" in data:
        values["title"] = check_str(errors, data, "title", max_len=200, required=True)
    if not partial or "description" in data:
        values["description"] = check_str(errors, data, "description")
    if not partial or "tags" in data:
        values["tags"] = check_tags(errors, data)
    if not partial or "parent_requirement_id" in data:
        values["parent_requirement_id"] = check_str(errors, data, "parent_requirement_id", max_len=36)
    raise_if(errors, "Invalid requirement")
    return values


# ═══════════════════════════════════════════════════════════════
# Requirements
# ═══════════════════════════════════════════════════════════════

def create_requirement(tenant_id, actor_id, project_id, data):
    values = _requirement_values(data)
    project = get_project(tenant_id, project_id)
    if values["parent_requirement_id"]:
        get_scoped(
            Requirement, values["parent_requirement_id"],
            tenant_id=tenant_id, project_id=project.id,
        )

    requirement = Requirement(tenant_id=tenant_id, project_id=project.id, **values)
    db.session.add(requirement)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Requirement", "Created"),
        entity_type="Requirement", entity_id=requirement.id, project_id=project.id,
        details={"title": requirement.title},
    )
    return requirement


def list_requirements(tenant_id, project_id, *, parent_requirement_id=None, tag=None,
                      limit=100, offset=0):
    get_project(tenant_id, project_id)
    stmt = select(Requirement).where(
        Requirement.tenant_id == tenant_id, Requirement.project_id == project_id,
    )
    if parent_requirement_id:
        stmt = stmt.where(Requirement.parent_requirement_id == parent_requirement_id)
    stmt = stmt.order_by(Requirement.title, Requirement.id)
    if tag:
        # JSON containment differs per dialect; filter tags in Python
        items = [r for r in db.session.execute(stmt).scalars().all() if tag in (r.tags or [])]
        end = offset + limit if limit is not None else None
        return items[offset:end], len(items)
    return list_scoped(stmt, limit=limit, offset=offset)


def get_requirement(tenant_id, requirement_id):
    return get_scoped(Requirement, requirement_id, tenant_id=tenant_id)


def requirement_detail(tenant_id, requirement):
    """Requirement dict with its linked test cases and suites."""
    data = requirement.to_dict()
    data["test_cases"] = [
        link.to_dict() for link in db.session.execute(
            select(RequirementTestCase).where(
                RequirementTestCase.tenant_id == tenant_id,
                RequirementTestCase.requirement_id == requirement.id,
            )
        ).scalars()
    ]
    data["test_suites"] = [
        link.to_dict() for link in db.session.execute(
            select(RequirementTestSuite).where(
                RequirementTestSuite.tenant_id == tenant_id,
                RequirementTestSuite.requirement_id == requirement.id,
            )
        ).scalars()
    ]
    return data


def update_requirement(tenant_id, actor_id, requirement_id, data):
    """Update fields; a ``parent_requirement_id`` key reparents (null = make root)."""
    requirement = get_requirement(tenant_id, requirement_id)
    values = _requirement_values(data, partial=True)

    new_parent = values.get("parent_requirement_id")
    if "parent_requirement_id" in values and new_parent != requirement.parent_requirement_id:
        assert_no_cycle(
            _arena(tenant_id, requirement.project_id), requirement.id, new_parent,
            field="parent_requirement_id",
        )

    before = {f: getattr(requirement, f) for f in _REQUIREMENT_FIELDS}
    for field, value in values.items():
        setattr(requirement, field, value)
    db.session.flush()

    changes = diff_fields(before, {f: getattr(requirement, f) for f in _REQUIREMENT_FIELDS})
    if changes:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Requirement", "Updated"),
            entity_type="Requirement", entity_id=requirement.id, project_id=requirement.project_id,
            details={"changes": changes},
        )
    return requirement


def delete_requirement(tenant_id, actor_id, requirement_id):
    requirement = get_scoped(Requirement, requirement_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.soft_delete(requirement)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Requirement", "Deleted"),
            entity_type="Requirement", entity_id=requirement.id, project_id=requirement.project_id,
            details={"cascade": lifecycle.cascade_summary(rows)},
        )
    return bool(rows)


def restore_requirement(tenant_id, actor_id, requirement_id):
    requirement = get_scoped(Requirement, requirement_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.restore(requirement)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Requirement", "Restored"),
            entity_type="Requirement", entity_id=requirement.id, project_id=requirement.project_id,
            details={"cascade": lifecycle.cascade_summary(rows)},
        )
    return requirement


# ═══════════════════════════════════════════════════════════════
# Traceability links
# ═══════════════════════════════════════════════════════════════

def _case_in_project(tenant_id, case_id, project_id):
    case = get_scoped(TestCase, case_id, tenant_id=tenant_id)
    suite = get_scoped(TestSuite, case.test_suite_id, tenant_id=tenant_id)
    if suite.project_id != project_id:
        raise ValidationError(
            "Test case belongs to another project",
            details={"test_case_id": "must be in the requirement's project"},
        )
    return case


def _find_link(model, tenant_id, requirement_id, column, target_id):
    return db.session.execute(
        select(model).where(
            model.tenant_id == tenant_id,
            model.requirement_id == requirement_id,
            getattr(model, column) == target_id,
        )
    ).scalar_one_or_none()


def link_test_case(tenant_id, actor_id, requirement_id, case_id, data=None):
    """Link a test case; ``data`` may carry an integer ``weight``."""
    errors = {}
    weight = check_int(errors, data or {}, "weight", minimum=0)
    raise_if(errors, "Invalid link")

    requirement = get_requirement(tenant_id, requirement_id)
    case = _case_in_project(tenant_id, case_id, requirement.project_id)
    if _find_link(RequirementTestCase, tenant_id, requirement.id, "test_case_id", case.id):
        raise ConflictError("RequirementTestCase", "test_case_id", case.id)

    link = RequirementTestCase(
        tenant_id=tenant_id, requirement_id=requirement.id, test_case_id=case.id, weight=weight,
    )
    db.session.add(link)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id,
        action=audit_action("RequirementTestCase", "Created"),
        entity_type="RequirementTestCase", entity_id=link.id, project_id=requirement.project_id,
        details={"requirement_id": requirement.id, "test_case_id": case.id, "weight": weight},
    )
    return link


def unlink_test_case(tenant_id, actor_id, requirement_id, case_id):
    requirement = get_requirement(tenant_id, requirement_id)
    link = _find_link(RequirementTestCase, tenant_id, requirement.id, "test_case_id", case_id)
    if link is None:
        raise NotFoundError(resource="RequirementTestCase", resource_id=case_id)
    lifecycle.soft_delete(link)
    record_audit(
        tenant_id=tenant_id, user_id=actor_id,
        action=audit_action("RequirementTestCase", "Deleted"),
        entity_type="RequirementTestCase", entity_id=link.id, project_id=requirement.project_id,
        details={"requirement_id": requirement.id, "test_case_id": case_id},
    )


def link_test_suite(tenant_id, actor_id, requirement_id, suite_id):
    requirement = get_requirement(tenant_id, requirement_id)
    suite = get_scoped(TestSuite, suite_id, tenant_id=tenant_id)
    if suite.project_id != requirement.project_id:
        raise ValidationError(
            "Test suite belongs to another project",
            details={"test_suite_id": "must be in the requirement's project"},
        )
    if _find_link(RequirementTestSuite, tenant_id, requirement.id, "test_suite_id", suite.id):
        raise ConflictError("RequirementTestSuite", "test_suite_id", suite.id)

    link = RequirementTestSuite(
        tenant_id=tenant_id, requirement_id=requirement.id, test_suite_id=suite.id,
    )
    db.session.add(link)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id,
        action=audit_action("RequirementTestSuite", "Created"),
        entity_type="RequirementTestSuite", entity_id=link.id, project_id=requirement.project_id,
        details={"requirement_id": requirement.id, "test_suite_id": suite.id},
    )
    return link


def unlink_test_suite(tenant_id, actor_id, requirement_id, suite_id):
    requirement = get_requirement(tenant_id, requirement_id)
    link = _find_link(RequirementTestSuite, tenant_id, requirement.id, "test_suite_id", suite_id)
    if link is None:
        raise NotFoundError(resource="RequirementTestSuite", resource_id=suite_id)
    lifecycle.soft_delete(link)
    record_audit(
        tenant_id=tenant_id, user_id=actor_id,
        action=audit_action("RequirementTestSuite", "Deleted"),
        entity_type="RequirementTestSuite", entity_id=link.id, project_id=requirement.project_id,
        details={"requirement_id": requirement.id, "test_suite_id": suite_id},
    )
