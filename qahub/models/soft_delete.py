"""
Soft Delete — first-class ``is_deleted`` flag plus a session-wide filter.

Models that include ``SoftDeleteMixin`` are never physically removed by
normal operations. Every ORM SELECT issued through a Session gets a loader
criterion that hides deleted rows, so individual call sites do not filter.

Usage:
    class MyModel(SoftDeleteMixin, db.Model):
        ...

    # Default: deleted rows are invisible
    db.session.execute(select(MyModel)).scalars().all()

    # Explicitly include deleted rows
    db.session.execute(
        select(MyModel).execution_options(include_deleted=True)
    ).scalars().all()
"""

from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.orm import Session, with_loader_criteria

from qahub.models import db

INCLUDE_DELETED = "include_deleted"


class SoftDeleteMixin:
    """Adds ``is_deleted`` / ``deleted_at`` columns and mark helpers."""

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)

    def mark_deleted(self, at=None):
        """Flag this row as deleted. Returns False if it already was."""
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = at or datetime.now(timezone.utc)
        return True

    def mark_restored(self):
        """Clear the deleted flag. Returns False if the row was live."""
        if not self.is_deleted:
            return False
        self.is_deleted = False
        self.deleted_at = None
        return True


def live_unique_index(name, *columns):
    """Unique index that only covers live rows (deleted rows never collide)."""
    where = db.text("NOT is_deleted")
    return db.Index(name, *columns, unique=True, sqlite_where=where, postgresql_where=where)


def _hide_deleted_rows(execute_state):
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get(INCLUDE_DELETED, False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                SoftDeleteMixin,
                lambda cls: cls.is_deleted.is_(False),
                include_aliases=True,
            )
        )


def register_soft_delete_filter():
    """Attach the global soft-delete filter to every Session (idempotent)."""
    if not event.contains(Session, "do_orm_execute", _hide_deleted_rows):
        event.listen(Session, "do_orm_execute", _hide_deleted_rows)
