"""
Platform-wide exception hierarchy.

Services raise these; the app factory registers one handler for
``AppError`` and renders every subclass through the same JSON envelope:

    {"error": {"code": "<code>", "message": "<message>"}}

Usage:
    from qahub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="TestCase", resource_id=case_id)
    raise ValidationError("Invalid test case", details={"title": "is required"})
"""


class AppError(Exception):
    """Base class for errors that map onto a stable code and HTTP status."""

    code = "InternalServerError"
    status = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None, details: dict | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


# ── Tenant verification ──────────────────────────────────────────────────────


class TenantIdMissing(AppError):
    """Cookie or token claim tenant value is absent or empty."""

    code = "TenantIdMissing"
    status = 401
    default_message = "TenantId is missing in cookie or JWT."


class TenantIdMismatch(AppError):
    """Cookie and token claim carry different tenant values."""

    code = "TenantIdMismatch"
    status = 403
    default_message = "TenantId in cookie does not match JWT."


class InvalidTenant(AppError):
    """The agreed tenant value does not resolve to a live Tenant row."""

    code = "InvalidTenant"
    status = 403
    default_message = "The specified TenantId does not exist."


# ── Authorization ────────────────────────────────────────────────────────────


class Forbidden(AppError):
    """Raised by the authorization evaluator on denial.

    Also raised when a write would put a row under a tenant other than
    the verified request tenant.
    """

    code = "Forbidden"
    status = 403
    default_message = "You do not have permission to perform this operation."


class Unauthorized(AppError):
    """Caller identity could not be established (bad credentials)."""

    code = "Unauthorized"
    status = 401
    default_message = "Invalid credentials."


# ── Domain ───────────────────────────────────────────────────────────────────


class NotFoundError(AppError):
    """Raised when a requested resource does not exist within the given scope.

    Security note: used for BOTH genuinely missing records AND cross-tenant
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Project", "TestCase").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    code = "NotFound"
    status = 404

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(AppError):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown. Keys are field names; values are
                 error descriptions. Every offending field is reported.
    """

    code = "ValidationError"
    status = 422
    default_message = "Validation failed."


class InvalidStateTransition(AppError):
    """A defect or test-result status change outside the allowed workflow."""

    code = "InvalidStateTransition"
    status = 422

    def __init__(self, entity: str, old_status: str, new_status: str, allowed=None) -> None:
        self.entity = entity
        self.old_status = old_status
        self.new_status = new_status
        self.allowed = sorted(allowed or [])
        super().__init__(
            f"Invalid {entity} status transition: {old_status} -> {new_status}",
            details={"status": f"allowed from {old_status}: {', '.join(self.allowed) or 'none'}"},
        )


class ConflictError(AppError):
    """Raised when an operation would duplicate a live unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    code = "Conflict"
    status = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class InternalServerError(AppError):
    """Catch-all for unexpected failures at the outermost boundary."""
