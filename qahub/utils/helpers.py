"""Shared request/DB helpers for blueprints.

db_commit_or_error:  commit with IntegrityError -> 409 mapping
pagination_args:     limit/offset query parameters
json_body:           request JSON as a dict, ValidationError otherwise
request_scope:       verified tenant and acting user of the request
uploaded_text:       text of a multipart file, JSON field or raw body
"""
import logging

from flask import g, request
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from qahub.core.exceptions import ValidationError
from qahub.models import db
from qahub.utils.errors import api_error

logger = logging.getLogger(__name__)


def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure, ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError -> 409 (duplicate / constraint violation)
    OperationalError -> 500 (connection / lock issues)
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error("Conflict", "Duplicate or constraint violation", status=409)
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error("InternalServerError", "Database error", status=500)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error("InternalServerError", "Database error", status=500)


def pagination_args(default_limit: int = 100) -> tuple[int, int]:
    """Parse limit/offset pagination query parameters from the current request."""
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), 500)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def json_body() -> dict:
    """Return the JSON object body of the current request."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "must be an object"})
    return data


def request_scope() -> tuple[str, str]:
    """``(tenant_id, actor_id)`` verified by the guard chain for this request."""
    return g.tenant_id, g.jwt_user_id


def uploaded_text(json_field: str = "csv_content") -> str | None:
    """Uploaded text: multipart ``file``, a JSON ``json_field`` or the raw body."""
    upload = request.files.get("file")
    if upload:
        return upload.read().decode("utf-8-sig")
    data = request.get_json(silent=True)
    if isinstance(data, dict) and json_field in data:
        return data[json_field]
    if request.data:
        return request.data.decode("utf-8-sig")
    return None
