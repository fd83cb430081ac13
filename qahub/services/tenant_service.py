"""
Tenant Service — registration, email confirmation, profile and address.

Registration creates, in one transaction:
  tenant row -> permission catalog -> admin user -> tenant-wide Admin role
  (with every catalog permission) -> tenant and admin email confirmation
  tokens

Transaction policy: flush, caller commits.
"""

import logging
import re

from flask import current_app, has_app_context
from sqlalchemy import select

from qahub.core.exceptions import ConflictError, NotFoundError, ValidationError
from qahub.models import db
from qahub.models.auth import Address, Tenant, TenantEmailConfirmation, User
from qahub.models.base import has_expired, utcnow
from qahub.models.soft_delete import INCLUDE_DELETED
from qahub.services import role_service, user_service
from qahub.services.audit_service import audit_action, diff_fields, record_audit
from qahub.services.validation import check_email, check_str, raise_if
from qahub.utils.crypto import generate_confirmation_token, hash_password

logger = logging.getLogger(__name__)

TENANT_CODE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,49}$")
MIN_PASSWORD_LENGTH = 8

_TENANT_FIELDS = ("name", "contact_person", "email", "phone", "description", "billing_contact_email")
_ADDRESS_FIELDS = (
    "address_line1", "address_line2", "address_line3", "city", "state",
    "country_code", "pincode", "billing_contact_email",
)


def _bcrypt_rounds():
    return current_app.config.get("BCRYPT_LOG_ROUNDS", 12) if has_app_context() else 12


def get_tenant(tenant_id):
    """Live tenant by code, NotFoundError otherwise."""
    tenant = db.session.execute(
        select(Tenant).where(Tenant.id == tenant_id)
    ).scalar_one_or_none()
    if tenant is None:
        raise NotFoundError("Tenant", tenant_id)
    return tenant


def tenant_exists(tenant_id) -> bool:
    """True when a live (non-deleted) tenant with this code exists."""
    return db.session.execute(
        select(Tenant.id).where(Tenant.id == tenant_id)
    ).first() is not None


# ═══════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════

def _validate_tenant_fields(errors, data, *, partial=False):
    values = {
        "name": check_str(errors, data, "name", max_len=100, required=not partial),
        "contact_person": check_str(errors, data, "contact_person", max_len=100),
        "email": check_email(errors, data, "email"),
        "phone": check_str(errors, data, "phone", max_len=20),
        "description": check_str(errors, data, "description"),
        "billing_contact_email": check_email(errors, data, "billing_contact_email"),
    }
    if partial:
        values = {k: v for k, v in values.items() if k in data}
    return values


def register_tenant(data):
    """Create a tenant with its first admin user.

    Args:
        data: ``{"id", "name", ...tenant fields, "admin": {"email", "password",
              "first_name", "last_name"}}``

    Returns:
        ``(tenant, admin_user, confirmation)``
    """
    errors = {}
    code = check_str(errors, data, "id", max_len=50, required=True)
    if code and not TENANT_CODE_RE.match(code):
        errors["id"] = "may contain letters, digits, '.', '_' and '-' only"
    fields = _validate_tenant_fields(errors, data)

    admin = data.get("admin") or {}
    admin_errors = {}
    admin_email = check_email(admin_errors, admin, "email", required=True)
    password = admin.get("password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        admin_errors["password"] = f"must be at least {MIN_PASSWORD_LENGTH} characters"
    first_name = check_str(admin_errors, admin, "first_name", max_len=100)
    last_name = check_str(admin_errors, admin, "last_name", max_len=100)
    errors.update({f"admin.{k}": v for k, v in admin_errors.items()})
    raise_if(errors, "Invalid tenant registration")

    # Tenant codes are primary keys: a deleted tenant still holds its code
    taken = db.session.execute(
        select(Tenant.id).where(Tenant.id == code).execution_options(**{INCLUDE_DELETED: True})
    ).first()
    if taken:
        raise ConflictError("Tenant", "id", code)
    if db.session.execute(select(User.id).where(User.email == admin_email)).first():
        raise ConflictError("User", "email", admin_email)

    tenant = Tenant(id=code, **fields)
    db.session.add(tenant)
    db.session.flush()

    role_service.seed_permission_catalog(code)

    user = User(
        tenant_id=code,
        email=admin_email,
        first_name=first_name,
        last_name=last_name,
        password_hash=hash_password(password, rounds=_bcrypt_rounds()),
    )
    db.session.add(user)
    db.session.flush()
    role_service.create_role(code, None, user_id=user.id, role_type="Admin")
    user_service.issue_email_confirmation(code, user.id)

    confirmation = TenantEmailConfirmation(
        tenant_id=code,
        token=generate_confirmation_token(),
        expires_at=utcnow() + user_service.confirmation_ttl(),
    )
    db.session.add(confirmation)
    db.session.flush()

    record_audit(
        tenant_id=code, user_id=None, action=audit_action("Tenant", "Created"),
        entity_type="Tenant", entity_id=code, details={"name": tenant.name, "admin": admin_email},
    )
    logger.info("Registered tenant %s with admin %s", code, admin_email, extra={"tenant_id": code})
    return tenant, user, confirmation


def confirm_tenant_email(tenant_id, token):
    """Mark the tenant email confirmed if ``token`` is live and unexpired."""
    tenant = get_tenant(tenant_id)
    confirmation = db.session.execute(
        select(TenantEmailConfirmation).where(
            TenantEmailConfirmation.tenant_id == tenant_id,
            TenantEmailConfirmation.token == token,
            TenantEmailConfirmation.confirmed_at.is_(None),
        )
    ).scalar_one_or_none()
    if confirmation is None:
        raise ValidationError("Invalid confirmation token", details={"token": "is unknown or already used"})

    if has_expired(confirmation.expires_at):
        raise ValidationError("Confirmation token expired", details={"token": "has expired"})

    confirmation.confirmed_at = utcnow()
    tenant.is_email_confirmed = True
    db.session.flush()
    record_audit(
        tenant_id=tenant_id, user_id=None, action=audit_action("Tenant", "EmailConfirmed"),
        entity_type="Tenant", entity_id=tenant_id,
    )
    return tenant


# ═══════════════════════════════════════════════════════════════
# Profile & address
# ═══════════════════════════════════════════════════════════════

def update_tenant(tenant_id, actor_id, data):
    tenant = get_tenant(tenant_id)
    errors = {}
    values = _validate_tenant_fields(errors, data, partial=True)
    raise_if(errors, "Invalid tenant")

    before = {f: getattr(tenant, f) for f in _TENANT_FIELDS}
    for field, value in values.items():
        setattr(tenant, field, value)
    db.session.flush()

    changes = diff_fields(before, {f: getattr(tenant, f) for f in _TENANT_FIELDS})
    if changes:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Tenant", "Updated"),
            entity_type="Tenant", entity_id=tenant_id, details={"changes": changes},
        )
    return tenant


def get_address(tenant_id):
    return db.session.execute(
        select(Address).where(Address.tenant_id == tenant_id)
    ).scalar_one_or_none()


def upsert_address(tenant_id, actor_id, data):
    """Create the tenant's single live address or update it in place."""
    get_tenant(tenant_id)
    address = get_address(tenant_id)

    errors = {}
    values = {
        "address_line1": check_str(errors, data, "address_line1", max_len=50, required=address is None),
        "address_line2": check_str(errors, data, "address_line2", max_len=200),
        "address_line3": check_str(errors, data, "address_line3", max_len=200),
        "city": check_str(errors, data, "city", max_len=100),
        "state": check_str(errors, data, "state", max_len=100),
        "country_code": check_str(errors, data, "country_code", max_len=3),
        "pincode": check_str(errors, data, "pincode", max_len=20),
        "billing_contact_email": check_email(errors, data, "billing_contact_email"),
    }
    raise_if(errors, "Invalid address")

    if address is None:
        address = Address(tenant_id=tenant_id, **values)
        db.session.add(address)
        db.session.flush()
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Address", "Created"),
            entity_type="Address", entity_id=address.id,
        )
        return address

    before = {f: getattr(address, f) for f in _ADDRESS_FIELDS}
    for field, value in values.items():
        if field in data:
            setattr(address, field, value)
    db.session.flush()
    changes = diff_fields(before, {f: getattr(address, f) for f in _ADDRESS_FIELDS})
    if changes:
        record_audit(
            tenant_id=tenant_id, user_id=actor_id, action=audit_action("Address", "Updated"),
            entity_type="Address", entity_id=address.id, details={"changes": changes},
        )
    return address
