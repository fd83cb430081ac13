"""
Shared pytest fixtures for the QA Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + schema reset (autouse)
    - client: Flask test client (function-scoped)
    - acme / beta: two registered tenants, each with a tenant-wide admin
    - make_user: create a user (optionally with a role) in a tenant
    - login_as: put a user's TenantId cookie and bearer token on the client
    - make_token: sign an access token for any user/tenant/claim set
    - acme_tree / make_tree: project -> suite -> case -> run -> result ids
"""

import pytest

from qahub import create_app
from qahub.models import db as _db
from qahub.models._session_hooks import clear_request_context
from qahub.services import tenant_service, user_service
from qahub.services.jwt_service import generate_access_token

PASSWORD = "Passw0rd!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield _db.session
        _db.session.rollback()
        clear_request_context(_db.session)
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Tenants & users ──────────────────────────────────────────────────────


def register(code, domain):
    """Register a tenant with admin ``admin@<domain>``; returns plain ids."""
    tenant, admin, confirmation = tenant_service.register_tenant({
        "id": code,
        "name": f"{code} Corp",
        "email": f"contact@{domain}",
        "admin": {"email": f"admin@{domain}", "password": PASSWORD, "first_name": "Ada"},
    })
    _db.session.commit()
    return {
        "tenant_id": tenant.id,
        "admin_id": admin.id,
        "admin_email": admin.email,
        "confirmation_token": confirmation.token,
    }


@pytest.fixture()
def acme():
    return register("ACME", "acme.com")


@pytest.fixture()
def beta():
    return register("BETA", "beta.com")


@pytest.fixture()
def make_user():
    """Factory: ``make_user(tenant_id, email, role_type=None, project_id=None) -> user_id``."""
    def _make(tenant_id, email, role_type=None, project_id=None):
        data = {"email": email, "password": PASSWORD}
        if role_type:
            data["role_type"] = role_type
            data["project_id"] = project_id
        user = user_service.create_user(tenant_id, None, data)
        _db.session.commit()
        return user.id
    return _make


def token_for(user_id, tenant_id, roles=("Admin",), email="user@acme.com", expires_in=None):
    return generate_access_token(user_id, email, tenant_id, list(roles), expires_in=expires_in)


@pytest.fixture()
def login_as(client):
    """Factory: authenticate ``client`` as a user; returns the headers to send.

    ``cookie_tenant`` overrides the TenantId cookie (None removes it).
    """
    _missing = object()

    def _login(user_id, tenant_id, cookie_tenant=_missing, **token_kwargs):
        cookie_value = tenant_id if cookie_tenant is _missing else cookie_tenant
        client.delete_cookie("TenantId")
        if cookie_value is not None:
            client.set_cookie("TenantId", cookie_value)
        return {"Authorization": f"Bearer {token_for(user_id, tenant_id, **token_kwargs)}"}
    return _login


@pytest.fixture()
def admin_headers(acme, login_as):
    """ACME admin logged in on the client."""
    return login_as(acme["admin_id"], acme["tenant_id"])


@pytest.fixture()
def create():
    """Factory: ``create(client, headers, url, payload)`` POSTs and returns the 201 ``data``."""
    def _create(client, headers, url, payload):
        res = client.post(url, json=payload, headers=headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["data"]
    return _create


# ── Project tree ─────────────────────────────────────────────────────────


def seed_tree(tenant_id, actor_id, name="Alpha"):
    """Project with one suite, one case, one run and a NotRun result.

    Returns a dict of ids.
    """
    from qahub.models._session_hooks import acting_as
    from qahub.services import (
        project_service,
        test_case_service,
        test_run_result_service,
        test_run_service,
        test_suite_service,
    )

    with acting_as(_db.session, tenant_id, actor_id):
        project = project_service.create_project(tenant_id, actor_id, {"name": name})
        suite = test_suite_service.create_suite(tenant_id, actor_id, project.id, {"name": f"{name} suite"})
        case = test_case_service.create_test_case(tenant_id, actor_id, suite.id, {"title": f"{name} login works"})
        run = test_run_service.create_run(tenant_id, actor_id, project.id, {"name": f"{name} run 1"})
        result = test_run_result_service.record_result(tenant_id, actor_id, run.id, {"test_case_id": case.id})
        _db.session.commit()
    return {
        "tenant_id": tenant_id,
        "project_id": project.id,
        "suite_id": suite.id,
        "case_id": case.id,
        "run_id": run.id,
        "result_id": result.id,
    }


@pytest.fixture()
def acme_tree(acme):
    return seed_tree(acme["tenant_id"], acme["admin_id"])


@pytest.fixture()
def make_token():
    """Factory: ``make_token(user_id, tenant_id, **kwargs) -> str``."""
    return token_for


@pytest.fixture()
def make_tree():
    """Factory: ``make_tree(tenant_id, actor_id, name="Alpha") -> ids``."""
    return seed_tree
