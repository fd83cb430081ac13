"""
Testing Models — suites, folders, test cases, runs, results, defects and
defect history.

Workflow tables live here next to the models they guard:
    DEFECT_TRANSITIONS  Open -> InProgress -> Resolved -> Closed, Reopen back to Open
    RESULT_TRANSITIONS  execution status changes of a TestRunResult
"""

from qahub.models import db
from qahub.models.base import TenantModel, iso
from qahub.models.soft_delete import live_unique_index


PRIORITIES = ("High", "Medium", "Low")
SEVERITIES = ("High", "Medium", "Low")

# ── Test execution status ────────────────────────────────────────────────
RESULT_STATUSES = ("NotRun", "Passed", "Failed", "Blocked", "Skipped")

RESULT_TRANSITIONS = {
    "NotRun":  {"Passed", "Failed", "Blocked", "Skipped"},
    "Blocked": {"NotRun", "Passed", "Failed", "Skipped"},
    "Skipped": {"NotRun", "Passed", "Failed", "Blocked"},
    "Passed":  {"NotRun", "Failed"},
    "Failed":  {"NotRun", "Passed"},
}


def validate_result_transition(old_status, new_status):
    """Return True if the result may move from old_status to new_status."""
    return new_status in RESULT_TRANSITIONS.get(old_status, set())


# ── Defect workflow ──────────────────────────────────────────────────────
DEFECT_STATUSES = ("Open", "InProgress", "Resolved", "Closed")

# old status -> {new status: transition name}
DEFECT_TRANSITIONS = {
    "Open":       {"InProgress": "Start"},
    "InProgress": {"Resolved": "Resolve"},
    "Resolved":   {"Closed": "Close", "Open": "Reopen"},
    "Closed":     {"Open": "Reopen"},
}


def defect_transition_name(old_status, new_status):
    """Return the transition name, or None if the move is not allowed."""
    return DEFECT_TRANSITIONS.get(old_status, {}).get(new_status)


# ═════════════════════════════════════════════════════════════════════════════
# TEST SUITE / FOLDER
# ═════════════════════════════════════════════════════════════════════════════

class TestSuite(TenantModel):
    """Tree of suites inside a project via ``parent_suite_id``."""

    __tablename__ = "test_suites"

    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    parent_suite_id = db.Column(
        db.String(36), db.ForeignKey("test_suites.id"), nullable=True, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "parent_suite_id": self.parent_suite_id,
            "name": self.name,
            "description": self.description,
            **self.stamps_dict(),
        }


class TestFolder(TenantModel):
    __tablename__ = "test_folders"

    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            **self.stamps_dict(),
        }


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASE
# ═════════════════════════════════════════════════════════════════════════════

class TestCase(TenantModel):
    __tablename__ = "test_cases"

    test_suite_id = db.Column(
        db.String(36), db.ForeignKey("test_suites.id"), nullable=False, index=True,
    )
    folder_id = db.Column(db.String(36), db.ForeignKey("test_folders.id"), nullable=True, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    steps = db.Column(db.JSON, default=list, comment="[{step, action, expected}]")
    expected_results = db.Column(db.JSON, default=list)
    precondition = db.Column(db.Text)
    test_data = db.Column(db.Text)
    priority = db.Column(db.String(10), nullable=False, default="Medium", comment="High | Medium | Low")
    tags = db.Column(db.JSON, default=list, comment="list of strings, each <= 50 chars")

    # Denormalised from the latest TestRunResult for quick display
    status = db.Column(db.String(20), nullable=False, default="NotRun", comment="last known execution status")
    actual_result = db.Column(db.Text)
    comments = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "test_suite_id": self.test_suite_id,
            "folder_id": self.folder_id,
            "title": self.title,
            "description": self.description,
            "steps": self.steps or [],
            "expected_results": self.expected_results or [],
            "precondition": self.precondition,
            "test_data": self.test_data,
            "priority": self.priority,
            "tags": self.tags or [],
            "status": self.status,
            "actual_result": self.actual_result,
            "comments": self.comments,
            **self.stamps_dict(),
        }


# ═════════════════════════════════════════════════════════════════════════════
# TEST RUN / RESULT
# ═════════════════════════════════════════════════════════════════════════════

class TestRun(TenantModel):
    __tablename__ = "test_runs"

    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    assigned_tester_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "assigned_tester_id": self.assigned_tester_id,
            "name": self.name,
            "description": self.description,
            **self.stamps_dict(),
        }


class TestRunResult(TenantModel):
    """One execution of a test case inside a run."""

    __tablename__ = "test_run_results"
    __table_args__ = (
        live_unique_index("uq_test_run_results_live", "test_run_id", "test_case_id"),
    )

    test_run_id = db.Column(db.String(36), db.ForeignKey("test_runs.id"), nullable=False, index=True)
    test_case_id = db.Column(db.String(36), db.ForeignKey("test_cases.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default="NotRun")
    comments = db.Column(db.String(1000))
    actual_result = db.Column(db.Text)
    attachments = db.Column(db.JSON, default=list, comment="[{name, url, content_type}]")

    def to_dict(self):
        return {
            "id": self.id,
            "test_run_id": self.test_run_id,
            "test_case_id": self.test_case_id,
            "status": self.status,
            "comments": self.comments,
            "actual_result": self.actual_result,
            "attachments": self.attachments or [],
            **self.stamps_dict(),
        }


# ═════════════════════════════════════════════════════════════════════════════
# DEFECT
# ═════════════════════════════════════════════════════════════════════════════

class Defect(TenantModel):
    __tablename__ = "defects"
    __table_args__ = (
        # A result anchors at most one live defect
        live_unique_index("uq_defects_result_live", "test_run_result_id"),
    )

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    severity = db.Column(db.String(10), nullable=False, default="Medium", comment="High | Medium | Low")
    status = db.Column(
        db.String(20), nullable=False, default="Open",
        comment="Open | InProgress | Resolved | Closed",
    )
    attachments = db.Column(db.JSON, default=list)
    external_id = db.Column(db.String(100), comment="Id in an external tracker")
    resolution_notes = db.Column(db.String(1000))

    test_run_result_id = db.Column(
        db.String(36), db.ForeignKey("test_run_results.id"), nullable=True, index=True,
    )
    test_case_id = db.Column(db.String(36), db.ForeignKey("test_cases.id"), nullable=True, index=True)
    assigned_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "attachments": self.attachments or [],
            "external_id": self.external_id,
            "resolution_notes": self.resolution_notes,
            "test_run_result_id": self.test_run_result_id,
            "test_case_id": self.test_case_id,
            "assigned_user_id": self.assigned_user_id,
            **self.stamps_dict(),
        }


class DefectHistory(TenantModel):
    """
    Append-only trail of actions taken against a defect.

    Rows are rejected by the session hooks if anything tries to update
    or delete them after insert.
    """

    __tablename__ = "defect_history"
    __append_only__ = True

    defect_id = db.Column(db.String(36), db.ForeignKey("defects.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), nullable=True, comment="Acting user")
    action = db.Column(db.String(20), nullable=False, comment="Created | Updated | Start | Reopen | ...")
    details = db.Column(db.JSON, default=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "defect_id": self.defect_id,
            "user_id": self.user_id,
            "action": self.action,
            "details": self.details or {},
            "created_at": iso(self.created_at),
        }
