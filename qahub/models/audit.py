"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for mutating actions.
"""

from qahub.models import db
from qahub.models.base import TenantModel, iso


class AuditLog(TenantModel):
    """
    One row per audited action.

    ``action`` is "<EntityType><Verb>", e.g. ``TestCaseCreated`` or
    ``DefectReopen``. ``details`` carries an old/new field diff or other
    structured context.
    """

    __tablename__ = "audit_logs"
    __append_only__ = True
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_tenant_project", "tenant_id", "project_id"),
        db.Index("idx_audit_created", "created_at"),
    )

    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=True, index=True,
    )
    user_id = db.Column(db.String(36), nullable=True, comment="Acting user, NULL for system")
    action = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)
    details = db.Column(db.JSON, default=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details or {},
            "created_at": iso(self.created_at),
        }
