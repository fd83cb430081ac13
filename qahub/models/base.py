"""
TenantModel — abstract base class for tenant-scoped models.

Every table except ``tenants`` inherits from TenantModel. This adds:
  - ``id`` string UUID primary key
  - ``tenant_id`` FK to the string tenant code, indexed
  - creation / modification stamps (filled by the session hooks)
  - the soft-delete columns from ``SoftDeleteMixin``
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from qahub.models import db
from qahub.models.soft_delete import SoftDeleteMixin


def _uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


def has_expired(moment):
    """True once ``moment`` lies in the past. SQLite hands back naive UTC values."""
    now = utcnow()
    if moment.tzinfo is None:
        now = now.replace(tzinfo=None)
    return moment < now


def iso(value):
    return value.isoformat() if value else None


class StampMixin:
    """Created/modified at/by columns. Values are set in ``before_flush``."""

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_by = db.Column(db.String(36), nullable=True, comment="User id, NULL for system")
    modified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    modified_by = db.Column(db.String(36), nullable=True)

    def stamps_dict(self):
        return {
            "created_at": iso(self.created_at),
            "created_by": self.created_by,
            "modified_at": iso(self.modified_at),
            "modified_by": self.modified_by,
        }


class TenantModel(StampMixin, SoftDeleteMixin, db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    id = db.Column(db.String(36), primary_key=True, default=_uuid)

    @declared_attr
    def tenant_id(cls):
        return db.Column(
            db.String(50),
            db.ForeignKey("tenants.id"),
            nullable=False,
            index=True,
        )
