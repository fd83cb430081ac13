"""
Search Service — tenant-wide text search and per-project filters.

``global_search`` looks for a text in test cases (title or tags), suites,
runs, requirements (title or tags) and defects, case-insensitively, and
returns one flat list of hits ordered by title:

    {"id", "entity_type", "title", "project_id", "tags"}

Suites and runs carry the tags of their cases; defects those of their
linked case. A ``tags`` filter keeps hits sharing at least one tag.

The ``filter_*`` functions page through one project's rows by structured
criteria. Multi-valued criteria match any of the given values.

Tag matching runs in Python because JSON containment differs per engine.
"""

import logging
from collections import defaultdict

from sqlalchemy import func, select

from qahub.core.exceptions import ValidationError
from qahub.models import db
from qahub.models.requirement import Requirement
from qahub.models.testing import (
    DEFECT_STATUSES,
    PRIORITIES,
    RESULT_STATUSES,
    SEVERITIES,
    Defect,
    TestCase,
    TestRun,
    TestRunResult,
    TestSuite,
)
from qahub.services import defect_service
from qahub.services.helpers.scoped_queries import list_scoped
from qahub.services.project_service import get_project
from qahub.services.validation import raise_if

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200


def _page(items, limit, offset):
    end = offset + limit if limit is not None else None
    return items[offset:end], len(items)


def _check_values(errors, field, values, allowed):
    unknown = [v for v in values or () if v not in allowed]
    if unknown:
        errors[field] = f"unknown value(s): {', '.join(unknown)}"


def _shares_tag(tags, wanted):
    return bool(wanted.intersection(tags or ()))


# ═════════════════════════════════════════════════════════════════════════════
# GLOBAL SEARCH
# ═════════════════════════════════════════════════════════════════════════════

def _hit(entity_type, row_id, title, project_id, tags):
    return {
        "id": row_id,
        "entity_type": entity_type,
        "title": title,
        "project_id": project_id,
        "tags": sorted(tags or ()),
    }


def _in_scope(stmt, column, project_ids):
    if project_ids is not None:
        stmt = stmt.where(column.in_(project_ids))
    return stmt


def _live_cases(tenant_id, project_ids):
    stmt = (
        select(TestCase, TestSuite.project_id)
        .join(TestSuite, TestSuite.id == TestCase.test_suite_id)
        .where(TestCase.tenant_id == tenant_id)
    )
    return db.session.execute(_in_scope(stmt, TestSuite.project_id, project_ids)).all()


def _title_matches(model, column, tenant_id, needle):
    return select(model).where(
        model.tenant_id == tenant_id,
        func.lower(column).contains(needle, autoescape=True),
    )


def global_search(tenant_id, query, *, tags=None, project_ids=None, limit=50, offset=0):
    """Hits of ``query`` across the tenant; ``project_ids`` (when not None) narrows it.

    Returns ``(hits, total)``.
    """
    text = (query or "").strip() if isinstance(query, str) else ""
    errors = {}
    if not text:
        errors["query"] = "is required"
    elif len(text) > MAX_QUERY_LENGTH:
        errors["query"] = f"must be at most {MAX_QUERY_LENGTH} characters"
    raise_if(errors, "Invalid search")

    needle = text.lower()
    wanted = set(tags or ())
    cases = _live_cases(tenant_id, project_ids)
    case_tags = {case.id: case.tags or [] for case, _ in cases}
    hits = []

    def keep(row_tags):
        return not wanted or _shares_tag(row_tags, wanted)

    for case, project_id in cases:
        matched = needle in case.title.lower() or any(needle in t.lower() for t in case.tags or ())
        if matched and keep(case.tags):
            hits.append(_hit("TestCase", case.id, case.title, project_id, case.tags))

    suite_tags = defaultdict(set)
    for case, _ in cases:
        suite_tags[case.test_suite_id].update(case.tags or ())
    suites = db.session.execute(
        _in_scope(_title_matches(TestSuite, TestSuite.name, tenant_id, needle), TestSuite.project_id, project_ids)
    ).scalars()
    for suite in suites:
        if keep(suite_tags[suite.id]):
            hits.append(_hit("TestSuite", suite.id, suite.name, suite.project_id, suite_tags[suite.id]))

    runs = db.session.execute(
        _in_scope(_title_matches(TestRun, TestRun.name, tenant_id, needle), TestRun.project_id, project_ids)
    ).scalars().all()
    run_tags = defaultdict(set)
    if runs:
        pairs = db.session.execute(
            select(TestRunResult.test_run_id, TestRunResult.test_case_id).where(
                TestRunResult.tenant_id == tenant_id,
                TestRunResult.test_run_id.in_([r.id for r in runs]),
            )
        ).all()
        for run_id, case_id in pairs:
            run_tags[run_id].update(case_tags.get(case_id, ()))
    for run in runs:
        if keep(run_tags[run.id]):
            hits.append(_hit("TestRun", run.id, run.name, run.project_id, run_tags[run.id]))

    stmt = _in_scope(
        select(Requirement).where(Requirement.tenant_id == tenant_id), Requirement.project_id, project_ids,
    )
    for req in db.session.execute(stmt).scalars():
        matched = needle in req.title.lower() or any(needle in t.lower() for t in req.tags or ())
        if matched and keep(req.tags):
            hits.append(_hit("Requirement", req.id, req.title, req.project_id, req.tags))

    stmt = _title_matches(Defect, Defect.title, tenant_id, needle)
    if project_ids is not None:
        stmt = stmt.where(defect_service.linked_to_projects(tenant_id, project_ids))
    for defect in db.session.execute(stmt).scalars():
        linked_tags = case_tags.get(defect.test_case_id, [])
        if keep(linked_tags):
            hits.append(_hit(
                "Defect", defect.id, defect.title,
                defect_service.project_id_of(tenant_id, defect), linked_tags,
            ))

    hits.sort(key=lambda h: (h["title"].lower(), h["entity_type"], h["id"]))
    logger.debug("Search %r matched %d rows", text, len(hits), extra={"tenant_id": tenant_id})
    return _page(hits, limit, offset)


# ═════════════════════════════════════════════════════════════════════════════
# PER-PROJECT FILTERS
# ═════════════════════════════════════════════════════════════════════════════

def filter_requirements(tenant_id, project_id, *, tags=None, limit=50, offset=0):
    get_project(tenant_id, project_id)
    stmt = select(Requirement).where(
        Requirement.tenant_id == tenant_id, Requirement.project_id == project_id,
    ).order_by(Requirement.title, Requirement.id)
    if tags:
        wanted = set(tags)
        items = [r for r in db.session.execute(stmt).scalars() if _shares_tag(r.tags, wanted)]
        return _page(items, limit, offset)
    return list_scoped(stmt, limit=limit, offset=offset)


def _ids_with_result_status(tenant_id, column, statuses):
    return db.session.execute(
        select(column).where(
            TestRunResult.tenant_id == tenant_id, TestRunResult.status.in_(statuses),
        ).distinct()
    ).scalars().all()


def filter_test_cases(tenant_id, project_id, *, tags=None, priorities=None, statuses=None,
                      limit=50, offset=0):
    """Cases of a project; ``statuses`` keeps cases with a result in any of them."""
    errors = {}
    _check_values(errors, "priorities", priorities, PRIORITIES)
    _check_values(errors, "statuses", statuses, RESULT_STATUSES)
    raise_if(errors, "Invalid filter")
    get_project(tenant_id, project_id)

    stmt = (
        select(TestCase)
        .join(TestSuite, TestSuite.id == TestCase.test_suite_id)
        .where(TestCase.tenant_id == tenant_id, TestSuite.project_id == project_id)
    )
    if priorities:
        stmt = stmt.where(TestCase.priority.in_(priorities))
    if statuses:
        stmt = stmt.where(TestCase.id.in_(
            _ids_with_result_status(tenant_id, TestRunResult.test_case_id, statuses)
        ))
    stmt = stmt.order_by(TestCase.title, TestCase.id)
    if tags:
        wanted = set(tags)
        items = [c for c in db.session.execute(stmt).scalars() if _shares_tag(c.tags, wanted)]
        return _page(items, limit, offset)
    return list_scoped(stmt, limit=limit, offset=offset)


def filter_test_runs(tenant_id, project_id, *, statuses=None, assigned_tester_ids=None,
                     limit=50, offset=0):
    """Runs of a project; ``statuses`` keeps runs holding a result in any of them."""
    errors = {}
    _check_values(errors, "statuses", statuses, RESULT_STATUSES)
    raise_if(errors, "Invalid filter")
    get_project(tenant_id, project_id)

    stmt = select(TestRun).where(TestRun.tenant_id == tenant_id, TestRun.project_id == project_id)
    if statuses:
        stmt = stmt.where(TestRun.id.in_(
            _ids_with_result_status(tenant_id, TestRunResult.test_run_id, statuses)
        ))
    if assigned_tester_ids:
        stmt = stmt.where(TestRun.assigned_tester_id.in_(assigned_tester_ids))
    return list_scoped(stmt.order_by(TestRun.name, TestRun.id), limit=limit, offset=offset)


def filter_defects(tenant_id, project_id, *, severities=None, statuses=None, limit=50, offset=0):
    """Defects linked to the project's cases or results."""
    errors = {}
    _check_values(errors, "severities", severities, SEVERITIES)
    _check_values(errors, "statuses", statuses, DEFECT_STATUSES)
    raise_if(errors, "Invalid filter")
    get_project(tenant_id, project_id)

    stmt = select(Defect).where(
        Defect.tenant_id == tenant_id, defect_service.linked_to_projects(tenant_id, [project_id]),
    )
    if severities:
        stmt = stmt.where(Defect.severity.in_(severities))
    if statuses:
        stmt = stmt.where(Defect.status.in_(statuses))
    return list_scoped(stmt.order_by(Defect.title, Defect.id), limit=limit, offset=offset)
