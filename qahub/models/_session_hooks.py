"""Session-level write rules applied on every flush.

The guard chain publishes the verified tenant and the acting user on the
database session (``bind_request_context``). On flush:

  - new rows get created_at / created_by, changed rows get
    modified_at / modified_by
  - created_at / created_by never change after insert
  - append-only tables (``__append_only__ = True``) reject update and delete
  - any new or changed tenant-scoped row must carry the verified tenant

Outside a request (CLI, direct service calls in tests) no tenant is bound
and only the stamping and append-only rules apply.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from qahub.core.exceptions import Forbidden, ValidationError
from qahub.models.auth import Tenant
from qahub.models.base import StampMixin, TenantModel, utcnow

logger = logging.getLogger(__name__)

TENANT_KEY = "qahub.tenant_id"
ACTOR_KEY = "qahub.actor_id"

_IMMUTABLE_STAMPS = ("created_at", "created_by")


def bind_request_context(session, tenant_id, actor_id):
    session.info[TENANT_KEY] = tenant_id
    session.info[ACTOR_KEY] = actor_id


def clear_request_context(session):
    session.info.pop(TENANT_KEY, None)
    session.info.pop(ACTOR_KEY, None)


@contextmanager
def acting_as(session, tenant_id, actor_id):
    """Bind tenant/actor for the duration of a block (CLI and tests)."""
    bind_request_context(session, tenant_id, actor_id)
    try:
        yield session
    finally:
        clear_request_context(session)


def _owner_of(obj):
    if isinstance(obj, TenantModel):
        return obj.tenant_id
    if isinstance(obj, Tenant):
        return obj.id
    return None


def _check_tenant(obj, tenant_id):
    if tenant_id is None:
        return
    owner = _owner_of(obj)
    if owner is not None and owner != tenant_id:
        logger.warning(
            "Rejected write of %s id=%s owned by tenant %s",
            type(obj).__name__, getattr(obj, "id", None), owner,
            extra={"tenant_id": tenant_id, "event_type": "tenant_ownership_violation"},
        )
        raise Forbidden(f"{type(obj).__name__} belongs to a different tenant")


def _append_only(obj):
    return getattr(type(obj), "__append_only__", False)


def _before_flush(session, flush_context, instances):
    tenant_id = session.info.get(TENANT_KEY)
    actor_id = session.info.get(ACTOR_KEY)
    now = utcnow()

    for obj in session.new:
        if isinstance(obj, StampMixin):
            if obj.created_at is None:
                obj.created_at = now
            if obj.created_by is None:
                obj.created_by = actor_id
        _check_tenant(obj, tenant_id)

    for obj in session.dirty:
        if not session.is_modified(obj, include_collections=False):
            continue
        if _append_only(obj):
            raise ValidationError(f"{type(obj).__name__} records are immutable")
        if isinstance(obj, StampMixin):
            state = inspect(obj)
            changed = [a for a in _IMMUTABLE_STAMPS if state.attrs[a].history.has_changes()]
            if changed:
                raise ValidationError(
                    "Creation stamps cannot be modified",
                    details={a: "is immutable" for a in changed},
                )
            obj.modified_at = now
            obj.modified_by = actor_id
        _check_tenant(obj, tenant_id)

    for obj in session.deleted:
        if _append_only(obj):
            raise ValidationError(f"{type(obj).__name__} records are immutable")


def register_session_hooks():
    """Attach the flush rules to every Session (idempotent)."""
    if not event.contains(Session, "before_flush", _before_flush):
        event.listen(Session, "before_flush", _before_flush)
