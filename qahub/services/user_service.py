"""
User Service — authentication, user CRUD and email confirmation.

Email addresses are unique across all tenants (among live users), so a
login by email alone resolves the tenant.

Every new user gets a confirmation token valid for
``EMAIL_CONFIRMATION_TTL_HOURS``. Issuing a new token retires the pending
ones; a token confirms only the user it was issued for, once.
"""

import logging
from datetime import timedelta

from flask import current_app, has_app_context
from sqlalchemy import select

from qahub.core.exceptions import ConflictError, Unauthorized, ValidationError
from qahub.models import db
from qahub.models.auth import ROLE_TYPES, Tenant, User, UserEmailConfirmation
from qahub.models.base import has_expired, utcnow
from qahub.services import lifecycle, role_service
from qahub.services.audit_service import audit_action, diff_fields, record_audit
from qahub.services.helpers.scoped_queries import get_scoped, list_scoped
from qahub.services.validation import check_choice, check_email, check_str, raise_if
from qahub.utils.crypto import generate_confirmation_token, hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
_USER_FIELDS = ("email", "first_name", "last_name", "oauth_provider", "oauth_id")


def _hash(password):
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12) if has_app_context() else 12
    return hash_password(password, rounds=rounds)


def confirmation_ttl():
    hours = current_app.config.get("EMAIL_CONFIRMATION_TTL_HOURS", 24) if has_app_context() else 24
    return timedelta(hours=hours)


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate(email, password):
    """Return the live user for valid credentials, raise Unauthorized otherwise.

    The owning tenant must be live as well.
    """
    if not email or not password:
        raise Unauthorized("Email and password are required")
    user = db.session.execute(
        select(User)
        .join(Tenant, Tenant.id == User.tenant_id)
        .where(User.email == email.strip().lower())
    ).scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email, extra={"event_type": "login_failed"})
        raise Unauthorized("Invalid email or password")

    user.last_login_at = utcnow()
    db.session.flush()
    logger.info("User %s logged in", user.id, extra={"tenant_id": user.tenant_id})
    return user


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def _assert_email_free(email, *, exclude_id=None):
    stmt = select(User.id).where(User.email == email)
    if exclude_id:
        stmt = stmt.where(User.id != exclude_id)
    if db.session.execute(stmt).first():
        raise ConflictError("User", "email", email)


def create_user(tenant_id, actor_id, data):
    """Create a user in ``tenant_id``; optionally grant a role right away.

    ``data`` keys: email, password, first_name, last_name, oauth_provider,
    oauth_id, role_type, project_id.
    """
    errors = {}
    email = check_email(errors, data, "email", required=True)
    first_name = check_str(errors, data, "first_name", max_len=100)
    last_name = check_str(errors, data, "last_name", max_len=100)
    oauth_provider = check_str(errors, data, "oauth_provider", max_len=50)
    oauth_id = check_str(errors, data, "oauth_id", max_len=255)
    password = data.get("password")
    if password is not None and (not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH):
        errors["password"] = f"must be at least {MIN_PASSWORD_LENGTH} characters"
    if password is None and not oauth_provider:
        errors["password"] = "is required unless an external identity provider is set"
    role_type = check_choice(errors, data, "role_type", ROLE_TYPES)
    raise_if(errors, "Invalid user")

    _assert_email_free(email)
    user = User(
        tenant_id=tenant_id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        oauth_provider=oauth_provider,
        oauth_id=oauth_id,
        password_hash=_hash(password) if password else None,
    )
    db.session.add(user)
    db.session.flush()

    if role_type:
        role_service.create_role(
            tenant_id, actor_id, user_id=user.id, role_type=role_type,
            project_id=data.get("project_id"),
        )
    issue_email_confirmation(tenant_id, user.id)

    record_audit(
        tenant_id=tenant_id, user_id=actor_id, action=audit_action("User", "Created"),
        entity_type="User", entity_id=user.id, details={"email": email},
    )
    return user


def list_users(tenant_id, *, limit=100, offset=0):
    stmt = select(User).where(User.tenant_id == tenant_id).order_by(User.email)
    return list_scoped(stmt, limit=limit, offset=offset)


def get_user(tenant_id, user_id):
    return get_scoped(User, user_id, tenant_id=tenant_id)


def update_user(tenant_id, actor_id, user_id, data):
    user = get_user(tenant_id, user_id)
    errors = {}
    values = {}
    if "email" in data:
        values["email"] = check_email(errors, data, "email", required=True)
    for field, max_len in (("first_name", 100), ("last_name", 100), ("oauth_provider", 50), ("oauth_id", 255)):
        if field in data:
            values[field] = check_str(errors, data, field, max_len=max_len)
    if "password" in data:
        password = data.get("password")
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            errors["password"] = f"must be at least {MIN_PASSWORD_LENGTH} characters"
    raise_if(errors, "Invalid user")

    if values.get("email") and values["email"] != user.email:
        _assert_email_free(values["email"], exclude_id=user.id)

    before = {f: getattr(user, f) for f in _USER_FIELDS}
    for field, value in values.items():
        setattr(user, field, value)
    if "password" in data:
        user.password_hash = _hash(data["password"])
    db.session.flush()

    changes = diff_fields(before, {f: getattr(user, f) for f in _USER_FIELDS})
    if "password" in data:
        changes["password"] = {"old": "***", "new": "***"}
    if changes:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("User", "Updated"),
            entity_type="User", entity_id=user.id, details={"changes": changes},
        )
    return user


def delete_user(tenant_id, actor_id, user_id):
    """Soft-delete a user with their roles and memberships.

    Returns True if this call changed anything (False when already deleted).
    """
    user = get_scoped(User, user_id, tenant_id=tenant_id, include_deleted=True)
    if user.id == actor_id:
        raise ValidationError("You cannot delete your own account", details={"user_id": "is the caller"})
    rows = lifecycle.soft_delete(user)
    if rows:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("User", "Deleted"),
            entity_type="User", entity_id=user.id,
            details={"email": user.email, "cascade": lifecycle.cascade_summary(rows)},
        )
    return bool(rows)


# ═══════════════════════════════════════════════════════════════
# Email confirmation
# ═══════════════════════════════════════════════════════════════
def _pending_confirmations(tenant_id, user_id):
    return db.session.execute(
        select(UserEmailConfirmation).where(
            UserEmailConfirmation.tenant_id == tenant_id,
            UserEmailConfirmation.user_id == user_id,
            UserEmailConfirmation.confirmed_at.is_(None),
        )
    ).scalars().all()


def issue_email_confirmation(tenant_id, user_id):
    """New confirmation token for a user whose email is not confirmed yet."""
    user = get_user(tenant_id, user_id)
    if user.is_email_confirmed:
        raise ValidationError("Email already confirmed", details={"user_id": "is already confirmed"})
    for stale in _pending_confirmations(tenant_id, user.id):
        lifecycle.soft_delete(stale)

    confirmation = UserEmailConfirmation(
        tenant_id=tenant_id,
        user_id=user.id,
        token=generate_confirmation_token(),
        expires_at=utcnow() + confirmation_ttl(),
    )
    db.session.add(confirmation)
    db.session.flush()
    logger.info("Issued email confirmation for user %s", user.id, extra={"tenant_id": tenant_id})
    return confirmation


def confirm_user_email(tenant_id, user_id, token):
    """Mark the user's email confirmed if ``token`` is theirs, unused and unexpired."""
    user = get_user(tenant_id, user_id)
    confirmation = next(
        (c for c in _pending_confirmations(tenant_id, user.id) if c.token == token), None,
    )
    if confirmation is None:
        raise ValidationError("Invalid confirmation token", details={"token": "is unknown or already used"})
    if has_expired(confirmation.expires_at):
        raise ValidationError("Confirmation token expired", details={"token": "has expired"})

    confirmation.confirmed_at = utcnow()
    user.is_email_confirmed = True
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=user.id, action=audit_action("User", "EmailConfirmed"),
        entity_type="User", entity_id=user.id,
    )
    return user
