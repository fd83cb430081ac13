"""
Test Case Service — CRUD, copy, move and CSV import/export.

A test case lives in exactly one suite and optionally one folder of the
same project. Priority is High | Medium | Low; tags are free text, each at
most 50 characters. ``status``, ``actual_result`` and ``comments`` are
denormalised from the latest result and are not writable here.
"""

import csv
import io
import json
import logging

from sqlalchemy import select

from qahub.core.exceptions import ValidationError
from qahub.models import db
from qahub.models.testing import PRIORITIES, TestCase, TestFolder, TestSuite
from qahub.services import lifecycle
from qahub.services.audit_service import audit_action, diff_fields, record_audit
from qahub.services.helpers.scoped_queries import get_scoped, list_scoped
from qahub.services.validation import check_choice, check_json, check_str, check_tags, raise_if

logger = logging.getLogger(__name__)

_CASE_FIELDS = (
    "title", "description", "steps", "expected_results", "precondition",
    "test_data", "priority", "tags", "folder_id",
)
_COPY_FIELDS = (
    "description", "steps", "expected_results", "precondition",
    "test_data", "priority", "tags",
)


def _collect_case_values(data, *, partial=False):
    """Validated writable fields plus a field -> message map of the problems."""
    errors = {}
    values = {}

    def wanted(field):
        return not partial or field in data

    if wanted("title"):
        values["title"] = check_str(errors, data, "title", max_len=200, required=True)
    if wanted("description"):
        values["description"] = check_str(errors, data, "description")
    if wanted("steps"):
        values["steps"] = check_json(errors, data, "steps", kind=list, default=[])
    if wanted("expected_results"):
        values["expected_results"] = check_json(errors, data, "expected_results", kind=list, default=[])
    if wanted("precondition"):
        values["precondition"] = check_str(errors, data, "precondition")
    if wanted("test_data"):
        values["test_data"] = check_str(errors, data, "test_data")
    if wanted("priority"):
        values["priority"] = check_choice(errors, data, "priority", PRIORITIES, default="Medium")
    if wanted("tags"):
        values["tags"] = check_tags(errors, data, "tags")
    if wanted("folder_id"):
        values["folder_id"] = check_str(errors, data, "folder_id", max_len=36)
    return values, errors


def _case_values(data, *, partial=False):
    """Validate every writable field and report all problems at once."""
    values, errors = _collect_case_values(data, partial=partial)
    raise_if(errors, "Invalid test case")
    return values


def _check_folder(tenant_id, folder_id, project_id):
    if folder_id is None:
        return
    folder = db.session.execute(
        select(TestFolder).where(TestFolder.id == folder_id, TestFolder.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if folder is None or folder.project_id != project_id:
        raise ValidationError(
            "Folder must belong to the test case's project",
            details={"folder_id": "not found in project"},
        )


def suite_of(tenant_id, case):
    return get_scoped(TestSuite, case.test_suite_id, tenant_id=tenant_id)


def project_id_of(tenant_id, case):
    return suite_of(tenant_id, case).project_id


def create_test_case(tenant_id, actor_id, suite_id, data):
    values = _case_values(data)
    suite = get_scoped(TestSuite, suite_id, tenant_id=tenant_id)
    _check_folder(tenant_id, values.get("folder_id"), suite.project_id)

    case = TestCase(tenant_id=tenant_id, test_suite_id=suite.id, **values)
    db.session.add(case)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("TestCase", "Created"),
        entity_type="TestCase", entity_id=case.id, project_id=suite.project_id,
        details={"title": case.title, "test_suite_id": suite.id},
    )
    return case


def list_test_cases(tenant_id, suite_id, *, folder_id=None, priority=None, tag=None,
                    limit=100, offset=0):
    get_scoped(TestSuite, suite_id, tenant_id=tenant_id)
    stmt = select(TestCase).where(TestCase.tenant_id == tenant_id, TestCase.test_suite_id == suite_id)
    if folder_id:
        stmt = stmt.where(TestCase.folder_id == folder_id)
    if priority:
        stmt = stmt.where(TestCase.priority == priority)
    stmt = stmt.order_by(TestCase.created_at, TestCase.id)
    if tag:
        # JSON containment differs per engine; filter tags in Python
        items = [c for c in db.session.execute(stmt).scalars() if tag in (c.tags or [])]
        return items[offset:offset + limit], len(items)
    return list_scoped(stmt, limit=limit, offset=offset)


def get_test_case(tenant_id, case_id):
    return get_scoped(TestCase, case_id, tenant_id=tenant_id)


def update_test_case(tenant_id, actor_id, case_id, data):
    case = get_test_case(tenant_id, case_id)
    values = _case_values(data, partial=True)
    project_id = project_id_of(tenant_id, case)
    if "folder_id" in values:
        _check_folder(tenant_id, values["folder_id"], project_id)

    before = {f: getattr(case, f) for f in _CASE_FIELDS}
    for field, value in values.items():
        setattr(case, field, value)
    db.session.flush()

    changes = diff_fields(before, {f: getattr(case, f) for f in _CASE_FIELDS})
    if changes:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("TestCase", "Updated"),
            entity_type="TestCase", entity_id=case.id, project_id=project_id,
            details={"changes": changes},
        )
    return case


def delete_test_case(tenant_id, actor_id, case_id):
    case = get_scoped(TestCase, case_id, tenant_id=tenant_id, include_deleted=True)
    rows = lifecycle.soft_delete(case)
    if rows:
        suite = get_scoped(TestSuite, case.test_suite_id, tenant_id=tenant_id, include_deleted=True)
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("TestCase", "Deleted"),
            entity_type="TestCase", entity_id=case.id, project_id=suite.project_id,
            details={"cascade": lifecycle.cascade_summary(rows)},
        )
    return bool(rows)


# ═════════════════════════════════════════════════════════════════════════════
# COPY / MOVE
# ═════════════════════════════════════════════════════════════════════════════

def _target_suite(tenant_id, data, source_project_id):
    errors = {}
    target_id = check_str(errors, data, "target_suite_id", max_len=36, required=True)
    folder_id = check_str(errors, data, "folder_id", max_len=36)
    raise_if(errors, "Invalid target")
    target = get_scoped(TestSuite, target_id, tenant_id=tenant_id)
    if target.project_id != source_project_id:
        raise ValidationError(
            "Target suite must be in the same project",
            details={"target_suite_id": "belongs to another project"},
        )
    _check_folder(tenant_id, folder_id, target.project_id)
    return target, folder_id


def copy_test_case(tenant_id, actor_id, case_id, data):
    """Copy a case into ``target_suite_id`` (same project). Execution fields reset."""
    source = get_test_case(tenant_id, case_id)
    project_id = project_id_of(tenant_id, source)
    target, folder_id = _target_suite(tenant_id, data, project_id)

    fields = {f: getattr(source, f) for f in _COPY_FIELDS}
    fields["steps"] = list(fields["steps"] or [])
    fields["expected_results"] = list(fields["expected_results"] or [])
    fields["tags"] = list(fields["tags"] or [])
    title = data.get("title") or f"Copy of {source.title}"
    if len(title) > 200:
        title = title[:200]

    copy = TestCase(
        tenant_id=tenant_id, test_suite_id=target.id,
        folder_id=folder_id if "folder_id" in data else source.folder_id,
        title=title, status="NotRun", **fields,
    )
    db.session.add(copy)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("TestCase", "Copied"),
        entity_type="TestCase", entity_id=copy.id, project_id=project_id,
        details={"source_id": source.id, "test_suite_id": target.id},
    )
    return copy


def move_test_case(tenant_id, actor_id, case_id, data):
    case = get_test_case(tenant_id, case_id)
    project_id = project_id_of(tenant_id, case)
    target, folder_id = _target_suite(tenant_id, data, project_id)

    before = {"test_suite_id": case.test_suite_id, "folder_id": case.folder_id}
    case.test_suite_id = target.id
    if "folder_id" in data:
        case.folder_id = folder_id
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("TestCase", "Moved"),
        entity_type="TestCase", entity_id=case.id, project_id=project_id,
        details={"changes": diff_fields(before, {"test_suite_id": case.test_suite_id, "folder_id": case.folder_id})},
    )
    return case


# ═════════════════════════════════════════════════════════════════════════════
# CSV IMPORT / EXPORT
# ═════════════════════════════════════════════════════════════════════════════

# header -> TestCase attribute; the execution columns are exported only
CSV_COLUMNS = (
    ("Title", "title"),
    ("Description", "description"),
    ("Steps", "steps"),
    ("ExpectedResults", "expected_results"),
    ("Priority", "priority"),
    ("Tags", "tags"),
    ("ActualResult", "actual_result"),
    ("Comments", "comments"),
    ("TestData", "test_data"),
    ("Precondition", "precondition"),
    ("Status", "status"),
)
_IMPORTED = {"title", "description", "steps", "expected_results", "priority", "tags", "test_data", "precondition"}
MAX_IMPORT_ROWS = 1000


def _header_key(name):
    return name.strip().lower().replace("_", "").replace(" ", "")


_HEADER_TO_FIELD = {_header_key(header): attr for header, attr in CSV_COLUMNS if attr in _IMPORTED}


def _csv_cell(attr, value):
    if value is None:
        return ""
    if attr == "tags":
        return ";".join(value)
    if attr in ("steps", "expected_results"):
        return json.dumps(value, ensure_ascii=False) if value else ""
    return value


def export_test_cases_csv(tenant_id, suite_id) -> str:
    """Live cases of a suite as CSV text, one row per case in creation order."""
    items, _ = list_test_cases(tenant_id, suite_id, limit=None)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for case in items:
        writer.writerow([_csv_cell(attr, getattr(case, attr)) for _, attr in CSV_COLUMNS])
    return output.getvalue()


def _structured_cell(row_errors, field, text):
    """Steps and expected results: a JSON array, or one entry per line."""
    if text.startswith("["):
        try:
            return json.loads(text)
        except ValueError:
            row_errors[field] = "is not a valid JSON array"
            return None
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_test_case_csv(content):
    """Rows of ``content`` as test case payloads keyed by field name.

    Raises ValidationError when the text has no ``Title`` column or no rows.
    Returns ``[(line_number, data, row_errors)]``.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(content or ""))
    columns = {name: _HEADER_TO_FIELD.get(_header_key(name)) for name in reader.fieldnames or [] if name}
    if "title" not in columns.values():
        raise ValidationError("CSV must have a Title column", details={"file": "missing Title column"})

    rows = []
    for line_number, raw in enumerate(reader, start=2):
        data, row_errors = {}, {}
        for name, field in columns.items():
            text = (raw.get(name) or "").strip()
            if field is None or not text:
                continue
            if field == "tags":
                data[field] = [t.strip() for t in text.split(";") if t.strip()]
            elif field in ("steps", "expected_results"):
                data[field] = _structured_cell(row_errors, field, text)
            elif field == "priority":
                data[field] = next((p for p in PRIORITIES if p.lower() == text.lower()), text)
            else:
                data[field] = text
        rows.append((line_number, data, row_errors))
    if not rows:
        raise ValidationError("CSV has no data rows", details={"file": "has no data rows"})
    if len(rows) > MAX_IMPORT_ROWS:
        raise ValidationError(
            "CSV has too many rows", details={"file": f"at most {MAX_IMPORT_ROWS} rows per import"},
        )
    return rows


def import_test_cases_csv(tenant_id, actor_id, suite_id, content):
    """Create one case per CSV row in ``suite_id``.

    Every row is validated before anything is written; errors are keyed
    ``"<line>.<field>"`` with the header on line 1.
    """
    suite = get_scoped(TestSuite, suite_id, tenant_id=tenant_id)
    rows = parse_test_case_csv(content)

    errors = {}
    planned = []
    for line_number, data, row_errors in rows:
        values, field_errors = _collect_case_values(data)
        row_errors.update(field_errors)
        for field, message in row_errors.items():
            errors[f"{line_number}.{field}"] = message
        if not row_errors:
            planned.append(values)
    raise_if(errors, "Test case import rejected")

    cases = [TestCase(tenant_id=tenant_id, test_suite_id=suite.id, **values) for values in planned]
    db.session.add_all(cases)
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("TestCase", "Imported"),
        entity_type="TestSuite", entity_id=suite.id, project_id=suite.project_id,
        details={"count": len(cases)},
    )
    logger.info("Imported %d test cases into suite %s", len(cases), suite.id, extra={"tenant_id": tenant_id})
    return cases
