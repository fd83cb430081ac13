"""
Defect Service — defect CRUD, workflow transitions and history.

Every transition and every field change appends exactly one DefectHistory
row:
    create            -> "Created"
    field changes     -> "Updated"   details: {"changes": {field: {old, new}}}
    status change     -> transition name ("Start", "Resolve", "Close", "Reopen")
                         details: {"from": .., "to": ..}
    delete            -> "Deleted"

Relinking a defect to a case or result in another project requires
``defects.manage`` in that project as well.

Transaction policy: flush, caller commits.
"""

import logging

from sqlalchemy import or_, select

from qahub.core.exceptions import ConflictError, InvalidStateTransition, ValidationError
from qahub.models import db
from qahub.models.auth import User
from qahub.models.soft_delete import INCLUDE_DELETED
from qahub.models.testing import (
    DEFECT_STATUSES,
    DEFECT_TRANSITIONS,
    SEVERITIES,
    Defect,
    DefectHistory,
    TestCase,
    TestRun,
    TestRunResult,
    TestSuite,
    defect_transition_name,
)
from qahub.services import lifecycle
from qahub.services.audit_service import audit_action, diff_fields, record_audit
from qahub.services.helpers.scoped_queries import get_scoped, get_scoped_or_none, list_scoped
from qahub.services.permission_service import authorize
from qahub.services.validation import check_choice, check_json, check_str, raise_if

logger = logging.getLogger(__name__)

_TRACKED_FIELDS = (
    "title", "description", "severity", "attachments", "external_id",
    "resolution_notes", "test_run_result_id", "test_case_id", "assigned_user_id",
)


def _project_of_links(tenant_id, test_case_id, test_run_result_id):
    def lookup(model, pk):
        return get_scoped_or_none(model, pk, tenant_id=tenant_id, include_deleted=True)

    if test_case_id:
        case = lookup(TestCase, test_case_id)
        if case is not None:
            suite = lookup(TestSuite, case.test_suite_id)
            if suite is not None:
                return suite.project_id
    if test_run_result_id:
        result = lookup(TestRunResult, test_run_result_id)
        if result is not None:
            run = lookup(TestRun, result.test_run_id)
            if run is not None:
                return run.project_id
    return None


def project_id_of(tenant_id, defect):
    """Project reached through the linked case or result; None if unlinked.

    Soft-deleted links still count: the defect outlives them and stays in
    the project it was raised in.
    """
    return _project_of_links(tenant_id, defect.test_case_id, defect.test_run_result_id)


def _append_history(tenant_id, defect, actor_id, action, details=None):
    entry = DefectHistory(
        tenant_id=tenant_id, defect_id=defect.id, user_id=actor_id,
        action=action, details=details or {},
    )
    db.session.add(entry)
    return entry


def _defect_values(data, *, partial=False):
    errors = {}
    values = {}

    def wanted(field):
        return not partial or field in data

    if wanted("title"):
        values["title"] = check_str(errors, data, "title", max_len=200, required=True)
    if wanted("description"):
        values["description"] = check_str(errors, data, "description")
    if wanted("severity"):
        values["severity"] = check_choice(errors, data, "severity", SEVERITIES, default="Medium")
    if wanted("attachments"):
        values["attachments"] = check_json(errors, data, "attachments", kind=list, default=[])
    if wanted("external_id"):
        values["external_id"] = check_str(errors, data, "external_id", max_len=100)
    if wanted("resolution_notes"):
        values["resolution_notes"] = check_str(errors, data, "resolution_notes", max_len=1000)
    for ref in ("test_run_result_id", "test_case_id", "assigned_user_id"):
        if wanted(ref):
            values[ref] = check_str(errors, data, ref, max_len=36)
    if "status" in data:
        check_choice(errors, data, "status", DEFECT_STATUSES, required=True)
    return values, errors


def _check_links(tenant_id, values, *, defect_id=None, kept_result_id=None):
    """Resolve referenced rows in the tenant; one live defect per result.

    Only the links present in ``values`` are checked. ``kept_result_id`` is
    the result an update leaves in place; a new test case must match it.
    """
    result_id = values.get("test_run_result_id")
    if not result_id and kept_result_id and values.get("test_case_id"):
        kept = get_scoped_or_none(TestRunResult, kept_result_id, tenant_id=tenant_id, include_deleted=True)
        if kept is not None and kept.test_case_id != values["test_case_id"]:
            raise ValidationError(
                "Test case does not match the linked result",
                details={"test_case_id": "differs from the result's test case"},
            )
    if result_id:
        result = get_scoped(TestRunResult, result_id, tenant_id=tenant_id)
        stmt = select(Defect.id).where(Defect.test_run_result_id == result.id)
        if defect_id:
            stmt = stmt.where(Defect.id != defect_id)
        if db.session.execute(stmt).first():
            raise ConflictError("Defect", "test_run_result_id", result.id)
        if values.get("test_case_id") is None:
            values["test_case_id"] = result.test_case_id
        elif values["test_case_id"] != result.test_case_id:
            raise ValidationError(
                "Test case does not match the linked result",
                details={"test_case_id": "differs from the result's test case"},
            )
    if values.get("test_case_id"):
        get_scoped(TestCase, values["test_case_id"], tenant_id=tenant_id)
    if values.get("assigned_user_id"):
        get_scoped(User, values["assigned_user_id"], tenant_id=tenant_id)


def _snapshot(defect):
    return {f: getattr(defect, f) for f in _TRACKED_FIELDS}


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════

def create_defect(tenant_id, actor_id, data):
    """Create a defect. New defects always start ``Open``."""
    values, errors = _defect_values(data)
    if data.get("status") not in (None, "Open") and "status" not in errors:
        errors["status"] = "new defects start Open"
    raise_if(errors, "Invalid defect")
    _check_links(tenant_id, values)

    defect = Defect(tenant_id=tenant_id, status="Open", **values)
    db.session.add(defect)
    db.session.flush()
    _append_history(tenant_id, defect, actor_id, "Created", {
        "title": defect.title, "severity": defect.severity, "status": defect.status,
    })
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Defect", "Created"),
        entity_type="Defect", entity_id=defect.id, project_id=project_id_of(tenant_id, defect),
        details={"title": defect.title, "severity": defect.severity},
    )
    return defect


def linked_to_projects(tenant_id, project_ids):
    """Criterion: defect linked to a case or result in one of ``project_ids``.

    Deleted cases and results still place their defects in a project.
    """
    case_ids = db.session.execute(
        select(TestCase.id)
        .join(TestSuite, TestSuite.id == TestCase.test_suite_id)
        .where(TestCase.tenant_id == tenant_id, TestSuite.project_id.in_(project_ids))
        .execution_options(**{INCLUDE_DELETED: True})
    ).scalars().all()
    result_ids = db.session.execute(
        select(TestRunResult.id)
        .join(TestRun, TestRun.id == TestRunResult.test_run_id)
        .where(TestRunResult.tenant_id == tenant_id, TestRun.project_id.in_(project_ids))
        .execution_options(**{INCLUDE_DELETED: True})
    ).scalars().all()
    return or_(Defect.test_case_id.in_(case_ids), Defect.test_run_result_id.in_(result_ids))


def list_defects(tenant_id, *, status=None, severity=None, assigned_user_id=None,
                 test_case_id=None, project_ids=None, limit=100, offset=0):
    """Filtered defects; ``project_ids`` (when not None) keeps only those projects."""
    stmt = select(Defect).where(Defect.tenant_id == tenant_id)
    if project_ids is not None:
        stmt = stmt.where(linked_to_projects(tenant_id, project_ids))
    if status:
        stmt = stmt.where(Defect.status == status)
    if severity:
        stmt = stmt.where(Defect.severity == severity)
    if assigned_user_id:
        stmt = stmt.where(Defect.assigned_user_id == assigned_user_id)
    if test_case_id:
        stmt = stmt.where(Defect.test_case_id == test_case_id)
    return list_scoped(stmt.order_by(Defect.created_at.desc(), Defect.id), limit=limit, offset=offset)


def get_defect(tenant_id, defect_id):
    return get_scoped(Defect, defect_id, tenant_id=tenant_id)


def _transition(tenant_id, actor_id, defect, new_status, notes=None):
    old_status = defect.status
    name = defect_transition_name(old_status, new_status)
    if name is None:
        raise InvalidStateTransition(
            "Defect", old_status, new_status, allowed=DEFECT_TRANSITIONS.get(old_status, {}),
        )
    defect.status = new_status
    details = {"from": old_status, "to": new_status}
    if notes is not None:
        defect.resolution_notes = notes
        details["resolution_notes"] = notes
    _append_history(tenant_id, defect, actor_id, name, details)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("Defect", name),
        entity_type="Defect", entity_id=defect.id, project_id=project_id_of(tenant_id, defect),
        details=details,
    )
    logger.info("Defect %s %s: %s -> %s", defect.id, name, old_status, new_status,
                extra={"tenant_id": tenant_id})
    return name


def update_defect(tenant_id, actor_id, defect_id, data):
    """Update fields and, when ``status`` is sent, run the workflow transition.

    Field changes produce one "Updated" history row; a status change
    produces its own transition row.
    """
    defect = get_defect(tenant_id, defect_id)
    values, errors = _defect_values(data, partial=True)
    raise_if(errors, "Invalid defect")

    new_status = data.get("status")
    if new_status and new_status != defect.status and defect_transition_name(defect.status, new_status) is None:
        raise InvalidStateTransition(
            "Defect", defect.status, new_status, allowed=DEFECT_TRANSITIONS.get(defect.status, {}),
        )
    # Unchanged links are left alone even when their target was deleted
    links = {
        ref: values[ref]
        for ref in ("test_run_result_id", "test_case_id", "assigned_user_id")
        if ref in values and values[ref] != getattr(defect, ref)
    }
    if links:
        result_changed = "test_run_result_id" in links
        if result_changed and "test_case_id" in values:
            links["test_case_id"] = values["test_case_id"]
        _check_links(
            tenant_id, links, defect_id=defect.id,
            kept_result_id=None if result_changed else defect.test_run_result_id,
        )
        if result_changed and links["test_run_result_id"]:
            # A new result brings its own test case unless one is sent
            values["test_case_id"] = links["test_case_id"]
    if "test_case_id" in values or "test_run_result_id" in values:
        new_project = _project_of_links(
            tenant_id,
            values.get("test_case_id", defect.test_case_id),
            values.get("test_run_result_id", defect.test_run_result_id),
        )
        if new_project != project_id_of(tenant_id, defect):
            # Moving a defect needs the right in the project it moves to
            authorize(tenant_id, actor_id, "defects.manage", project_id=new_project)

    before = _snapshot(defect)
    for field, value in values.items():
        setattr(defect, field, value)
    changes = diff_fields(before, _snapshot(defect))
    if changes:
        _append_history(tenant_id, defect, actor_id, "Updated", {"changes": changes})
        db.session.flush()
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Defect", "Updated"),
            entity_type="Defect", entity_id=defect.id, project_id=project_id_of(tenant_id, defect),
            details={"changes": changes},
        )

    if new_status and new_status != defect.status:
        _transition(tenant_id, actor_id, defect, new_status)
    db.session.flush()
    return defect


def transition_defect(tenant_id, actor_id, defect_id, data):
    """Move a defect along the workflow. ``data``: {"status", "resolution_notes"?}."""
    errors = {}
    new_status = check_choice(errors, data, "status", DEFECT_STATUSES, required=True)
    notes = check_str(errors, data, "resolution_notes", max_len=1000)
    raise_if(errors, "Invalid transition")

    defect = get_defect(tenant_id, defect_id)
    if new_status == defect.status:
        raise InvalidStateTransition(
            "Defect", defect.status, new_status, allowed=DEFECT_TRANSITIONS.get(defect.status, {}),
        )
    _transition(tenant_id, actor_id, defect, new_status, notes=notes)
    return defect


def delete_defect(tenant_id, actor_id, defect_id):
    defect = get_scoped(Defect, defect_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.soft_delete(defect)
    if rows:
        _append_history(tenant_id, defect, actor_id, "Deleted", {"status": defect.status})
        db.session.flush()
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Defect", "Deleted"),
            entity_type="Defect", entity_id=defect.id, project_id=project_id_of(tenant_id, defect),
        )
    return bool(rows)


def list_history(tenant_id, defect_id):
    """Oldest-first history; available for deleted defects too."""
    defect = get_scoped(Defect, defect_id, tenant_id=tenant_id, include_deleted=True)
    stmt = (
        select(DefectHistory)
        .where(DefectHistory.tenant_id == tenant_id, DefectHistory.defect_id == defect.id)
        .order_by(DefectHistory.created_at, DefectHistory.id)
    )
    return db.session.execute(stmt).scalars().all()
