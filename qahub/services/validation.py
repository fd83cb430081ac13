"""
Field validation helpers that collect every error before raising.

Usage:
    errors = {}
    title = check_str(errors, data, "title", max_len=200, required=True)
    priority = check_choice(errors, data, "priority", PRIORITIES, default="Medium")
    raise_if(errors, "Invalid test case")
"""

from email_validator import EmailNotValidError, validate_email

from qahub.core.exceptions import ValidationError

_MISSING = object()


def raise_if(errors: dict, message: str):
    if errors:
        raise ValidationError(message, details=errors)


def check_str(errors, data, field, *, max_len=None, required=False, default=None):
    """Return the stripped string value of ``field`` or record an error."""
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        if required:
            errors[field] = "is required"
        return default
    if not isinstance(value, str):
        errors[field] = "must be a string"
        return default
    value = value.strip()
    if required and not value:
        errors[field] = "must not be empty"
        return default
    if max_len is not None and len(value) > max_len:
        errors[field] = f"must be at most {max_len} characters"
        return default
    return value


def check_choice(errors, data, field, choices, *, default=None, required=False):
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        if required:
            errors[field] = "is required"
        return default
    if value not in choices:
        errors[field] = f"must be one of {', '.join(choices)}"
        return default
    return value


def check_tags(errors, data, field="tags", *, max_len=50):
    """Tags are a list of non-empty strings, each at most ``max_len`` chars."""
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        return []
    if not isinstance(value, list):
        errors[field] = "must be a list of strings"
        return []
    bad = [
        i for i, tag in enumerate(value)
        if not isinstance(tag, str) or not tag.strip() or len(tag.strip()) > max_len
    ]
    if bad:
        errors[field] = f"each tag must be a non-empty string of at most {max_len} characters (index {', '.join(map(str, bad))})"
        return []
    return [tag.strip() for tag in value]


def check_json(errors, data, field, *, kind=list, default=None):
    """Structured content (steps, attachments, preferences) of a given JSON kind."""
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        return default
    if not isinstance(value, kind):
        errors[field] = f"must be a JSON {'array' if kind is list else 'object'}"
        return default
    return value


def check_int(errors, data, field, *, minimum=None, maximum=None, default=None):
    value = data.get(field, _MISSING)
    if value is _MISSING or value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        errors[field] = "must be an integer"
        return default
    if minimum is not None and value < minimum:
        errors[field] = f"must be >= {minimum}"
        return default
    if maximum is not None and value > maximum:
        errors[field] = f"must be <= {maximum}"
        return default
    return value


def check_email(errors, data, field, *, required=False):
    """Validate and normalise an email address (lower-cased)."""
    value = check_str(errors, data, field, max_len=255, required=required)
    if not value:
        return value
    try:
        return validate_email(value, check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        errors[field] = f"invalid email: {exc}"
        return None


def present(data, field):
    """True when the caller sent ``field`` (possibly as null)."""
    return field in data
