"""
Audit Recorder — appends AuditLog rows for configured mutating actions.

Recording never blocks or rolls back the triggering operation:
  - the business changes are flushed first, so their own errors still
    propagate to the caller
  - the audit row is written inside a SAVEPOINT; if that fails only the
    savepoint is rolled back
  - the failure is logged with full context and raised on the
    ``qahub.alerts`` channel, which operators route to paging/alerting

Usage:
    record_audit(
        tenant_id=tid, user_id=uid, action=audit_action("TestCase", "Created"),
        entity_type="TestCase", entity_id=case.id, project_id=pid,
        details={"title": case.title},
    )
"""

import logging

from flask import current_app, has_app_context
from sqlalchemy import select

from qahub.models import db
from qahub.middleware.logging_config import alert
from qahub.models.audit import AuditLog
from qahub.services.helpers.scoped_queries import list_scoped

logger = logging.getLogger(__name__)


def audit_action(entity_type, verb):
    """``("TestCase", "Created")`` -> ``"TestCaseCreated"``."""
    return f"{entity_type}{verb}"


def diff_fields(before: dict, after: dict) -> dict:
    """Return ``{field: {"old": .., "new": ..}}`` for keys whose value changed."""
    return {
        key: {"old": before.get(key), "new": after.get(key)}
        for key in after
        if before.get(key) != after.get(key)
    }


def _is_audited(entity_type):
    if not has_app_context():
        return True
    cfg = current_app.config
    if not cfg.get("AUDIT_ENABLED", True):
        return False
    audited = cfg.get("AUDITED_ENTITY_TYPES")
    return audited is None or entity_type in audited


def _build_entry(**fields):
    return AuditLog(**fields)


def record_audit(
    *,
    tenant_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str | None = None,
    project_id: str | None = None,
    details: dict | None = None,
):
    """Append one audit row. Returns the AuditLog, or None if skipped or failed."""
    if not _is_audited(entity_type):
        return None

    db.session.flush()
    try:
        with db.session.begin_nested():
            entry = _build_entry(
                tenant_id=tenant_id,
                project_id=project_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                details=details or {},
            )
            db.session.add(entry)
        return entry
    except Exception:  # noqa: BLE001 - audit failure must not fail the business write
        logger.exception(
            "Audit write failed: %s %s id=%s", action, entity_type, entity_id,
            extra={"tenant_id": tenant_id, "project_id": project_id},
        )
        alert(
            "audit_write_failed", "AUDIT-001",
            "AUDIT WRITE FAILED action=%s entity=%s/%s: business change kept without audit row",
            action, entity_type, entity_id,
            level=logging.ERROR, tenant_id=tenant_id, project_id=project_id,
        )
        return None


def list_audit_logs(tenant_id, *, project_id=None, entity_type=None, entity_id=None,
                    action=None, limit=100, offset=0):
    """Newest-first audit rows for a tenant, optionally narrowed."""
    stmt = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
    if project_id is not None:
        stmt = stmt.where(AuditLog.project_id == project_id)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == str(entity_id))
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id)
    return list_scoped(stmt, limit=limit, offset=offset)
