"""Standardised API response envelopes.

Usage
-----
    from qahub.utils.errors import api_error, api_ok

    return api_error("NotFound", "Project not found", status=404)
    return api_ok(project.to_dict(), status=201)

Error body::

    {"error": {"code": "TenantIdMissing", "message": "..."}}

Validation errors add ``details`` inside the error object, one entry per
offending field.
"""

from __future__ import annotations

from flask import jsonify


def api_error(
    code: str,
    message: str,
    *,
    status: int = 400,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Stable machine-readable error code (``AppError.code``).
    message : str
        Human-readable explanation.
    status : int
        HTTP status.
    details : dict, optional
        Field-level breakdown for validation failures.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    error: dict = {"code": code, "message": message}
    if details:
        error["details"] = details
    return jsonify({"error": error}), status


def api_ok(data, *, status: int = 200, meta: dict | None = None):
    """Return a standard JSON success response with the ``data`` slot."""
    body: dict = {"data": data}
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def api_page(items, total: int, limit: int, offset: int):
    """List response: serialised ``items`` plus paging ``meta``."""
    return api_ok(
        [item.to_dict() if hasattr(item, "to_dict") else item for item in items],
        meta={"total": total, "limit": limit, "offset": offset},
    )
