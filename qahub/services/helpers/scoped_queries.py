"""
Tenant-scoped query helpers.

Every get-by-id in the service layer goes through these helpers instead of
``db.session.get(Model, pk)``. A bare ``get`` bypasses tenant isolation and
may also return a soft-deleted row straight from the identity map; a
``select`` always passes through the session-wide soft-delete filter.

Usage:
    project = get_scoped(Project, project_id, tenant_id=tenant_id)
    suite = get_scoped(TestSuite, suite_id, tenant_id=tenant_id, project_id=project_id)
    folder = get_scoped_or_none(TestFolder, folder_id, tenant_id=tenant_id)
    suite = get_scoped(TestSuite, suite_id, tenant_id=tenant_id, include_deleted=True)
"""

import logging

from sqlalchemy import func, select

from qahub.core.exceptions import NotFoundError
from qahub.models import db
from qahub.models.soft_delete import INCLUDE_DELETED

logger = logging.getLogger(__name__)


def get_scoped(model, pk, *, tenant_id, project_id=None, include_deleted=False):
    """Fetch a single entity by PK within a tenant (and optionally a project).

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError -> HTTP 404.

    Raises:
        ValueError: If tenant_id is empty, or project_id is given for a
                    model without a project_id column.
        NotFoundError: If the entity does not exist in scope.
    """
    if not tenant_id:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant scope. "
            "Unscoped lookups are forbidden."
        )
    if pk is None:
        raise NotFoundError(resource=model.__name__)

    stmt = select(model).where(model.id == pk, model.tenant_id == tenant_id)
    if project_id is not None:
        if not hasattr(model, "project_id"):
            raise ValueError(f"{model.__name__} has no project_id column to scope by")
        stmt = stmt.where(model.project_id == project_id)
    if include_deleted:
        stmt = stmt.execution_options(**{INCLUDE_DELETED: True})

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in tenant=%s project=%s",
            model.__name__, pk, tenant_id, project_id,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk, *, tenant_id, project_id=None, include_deleted=False):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    if pk is None:
        return None
    try:
        return get_scoped(
            model, pk, tenant_id=tenant_id, project_id=project_id, include_deleted=include_deleted,
        )
    except NotFoundError:
        return None


def list_scoped(stmt, *, limit=None, offset=0):
    """Execute a SELECT with optional paging; returns (items, total)."""
    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    if limit is not None:
        stmt = stmt.limit(limit).offset(offset)
    return db.session.execute(stmt).scalars().all(), total
