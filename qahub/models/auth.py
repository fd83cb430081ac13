"""
Auth Models — tenants, addresses, email confirmations, users, roles,
permissions and the role/permission join.

Tenant is the only table not derived from TenantModel: its primary key is
the tenant code itself, which every other table uses as ``tenant_id``.
"""

from dataclasses import dataclass

from qahub.models import db
from qahub.models.base import StampMixin, TenantModel, iso
from qahub.models.soft_delete import SoftDeleteMixin, live_unique_index


ROLE_TYPES = ("Admin", "Tester")

# Permission catalog seeded for every tenant: codename -> description
PERMISSION_CATALOG = {
    "tenant.manage": "Update tenant profile and address",
    "users.view": "List and view users",
    "users.manage": "Invite, update and delete users",
    "roles.manage": "Manage roles, permissions and grants",
    "projects.view": "View projects",
    "projects.manage": "Create, update and delete projects",
    "members.manage": "Manage project memberships",
    "testsuites.view": "View test suites and folders",
    "testsuites.manage": "Manage test suites and folders",
    "testcases.view": "View test cases",
    "testcases.manage": "Create, update, copy, move and delete test cases",
    "testruns.view": "View test runs and results",
    "testruns.manage": "Create, update and delete test runs",
    "testruns.execute": "Record and update test run results",
    "defects.view": "View defects and defect history",
    "defects.manage": "Create, update, transition and delete defects",
    "requirements.view": "View requirements",
    "requirements.manage": "Manage requirements and traceability links",
    "auditlogs.view": "View audit logs",
}

DEFAULT_ROLE_GRANTS = {
    "Admin": tuple(PERMISSION_CATALOG),
    "Tester": tuple(
        [p for p in PERMISSION_CATALOG if p.endswith(".view") and p != "auditlogs.view"]
        + ["testruns.execute", "defects.manage"]
    ),
}


# ═══════════════════════════════════════════════════════════════
# ROLE SCOPE
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class TenantWide:
    """Role applies to every project of its tenant."""

    def covers(self, project_id):
        return True


@dataclass(frozen=True)
class ProjectScope:
    """Role applies to exactly one project."""

    project_id: str

    def covers(self, project_id):
        return project_id is not None and project_id == self.project_id


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(StampMixin, SoftDeleteMixin, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.String(50), primary_key=True, comment="Tenant code, not generated")
    name = db.Column(db.String(100), nullable=False)
    contact_person = db.Column(db.String(100))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(20))
    description = db.Column(db.Text)
    billing_contact_email = db.Column(db.String(255))
    is_email_confirmed = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "description": self.description,
            "billing_contact_email": self.billing_contact_email,
            "is_email_confirmed": self.is_email_confirmed,
            **self.stamps_dict(),
        }


class Address(TenantModel):
    __tablename__ = "addresses"
    __table_args__ = (
        live_unique_index("uq_addresses_tenant_live", "tenant_id"),
    )

    address_line1 = db.Column(db.String(50), nullable=False)
    address_line2 = db.Column(db.String(200))
    address_line3 = db.Column(db.String(200))
    city = db.Column(db.String(100))
    state = db.Column(db.String(100))
    country_code = db.Column(db.String(3), comment="ISO 3166 alpha-2/3")
    pincode = db.Column(db.String(20))
    billing_contact_email = db.Column(db.String(255))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "address_line3": self.address_line3,
            "city": self.city,
            "state": self.state,
            "country_code": self.country_code,
            "pincode": self.pincode,
            "billing_contact_email": self.billing_contact_email,
        }


class TenantEmailConfirmation(TenantModel):
    __tablename__ = "tenant_email_confirmations"

    token = db.Column(db.String(128), nullable=False, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True))


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(TenantModel):
    __tablename__ = "users"
    # Email is unique across all tenants, but only among live rows
    __table_args__ = (
        live_unique_index("uq_users_email_live", "email"),
    )

    email = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    password_hash = db.Column(db.String(256))  # NULL for external identity users
    oauth_provider = db.Column(db.String(50))
    oauth_id = db.Column(db.String(255))
    is_email_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    last_login_at = db.Column(db.DateTime(timezone=True))

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "oauth_provider": self.oauth_provider,
            "is_email_confirmed": self.is_email_confirmed,
            "last_login_at": iso(self.last_login_at),
            **self.stamps_dict(),
        }


class UserEmailConfirmation(TenantModel):
    __tablename__ = "user_email_confirmations"

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    token = db.Column(db.String(128), nullable=False, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True))


# ═══════════════════════════════════════════════════════════════
# 3. ROLES & PERMISSIONS
# ═══════════════════════════════════════════════════════════════
class Role(TenantModel):
    __tablename__ = "roles"
    __table_args__ = (
        db.Index("ix_roles_tenant_user", "tenant_id", "user_id"),
    )

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    role_type = db.Column(db.String(20), nullable=False, comment="Admin | Tester")
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id"), nullable=True, index=True,
        comment="NULL = tenant-wide",
    )

    @property
    def scope(self):
        if self.project_id is None:
            return TenantWide()
        return ProjectScope(self.project_id)

    @scope.setter
    def scope(self, value):
        self.project_id = value.project_id if isinstance(value, ProjectScope) else None

    def to_dict(self, permissions=None):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "role_type": self.role_type,
            "project_id": self.project_id,
            "scope": "project" if self.project_id else "tenant",
            **self.stamps_dict(),
        }
        if permissions is not None:
            d["permissions"] = permissions
        return d


class Permission(TenantModel):
    __tablename__ = "permissions"
    __table_args__ = (
        live_unique_index("uq_permissions_tenant_name_live", "tenant_id", "name"),
    )

    name = db.Column(db.String(100), nullable=False, comment="Dotted codename, e.g. testcases.manage")
    description = db.Column(db.String(255))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }


class RolePermission(TenantModel):
    __tablename__ = "role_permissions"
    __table_args__ = (
        live_unique_index("uq_role_permissions_live", "role_id", "permission_id"),
    )

    role_id = db.Column(db.String(36), db.ForeignKey("roles.id"), nullable=False, index=True)
    permission_id = db.Column(
        db.String(36), db.ForeignKey("permissions.id"), nullable=False, index=True,
    )
