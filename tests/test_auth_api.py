"""
Auth API tests — login cookies, profile, logout and token claims.
"""

import jwt
import pytest

from qahub.models import db as _db
from qahub.services import user_service
from qahub.services.jwt_service import decode_access_token

LOGIN = "/api/auth/login"


def _login(client, email="admin@acme.com", password="Passw0rd!"):
    return client.post(LOGIN, json={"email": email, "password": password})


class TestLogin:

    def test_login_returns_token_and_profile(self, client, acme):
        res = _login(client)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["token_type"] == "Bearer"
        assert data["tenant_id"] == "ACME"
        assert data["user"]["email"] == "admin@acme.com"
        assert data["roles"] == [{"role_type": "Admin", "project_id": None, "tenant_wide": True}]

    def test_token_carries_tenant_claim(self, client, acme):
        token = _login(client).get_json()["data"]["access_token"]
        payload = decode_access_token(token)
        assert payload["TenantId"] == "ACME"
        assert payload["sub"] == acme["admin_id"]
        assert payload["role"] == ["Admin"]

    def test_login_sets_strict_httponly_cookies(self, client, acme):
        res = _login(client)
        cookies = res.headers.getlist("Set-Cookie")
        by_name = {c.split("=", 1)[0]: c for c in cookies}
        assert by_name["TenantId"].startswith("TenantId=ACME")
        assert "access_token" in by_name
        for cookie in by_name.values():
            assert "HttpOnly" in cookie
            assert "SameSite=Strict" in cookie

    def test_email_is_case_insensitive(self, client, acme):
        assert _login(client, email="Admin@ACME.com").status_code == 200

    @pytest.mark.parametrize("email,password", [
        ("admin@acme.com", "wrong-password"),
        ("nobody@acme.com", "Passw0rd!"),
        ("", ""),
    ])
    def test_bad_credentials_are_401(self, client, acme, email, password):
        res = _login(client, email, password)
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "Unauthorized"
        assert "Set-Cookie" not in res.headers

    def test_deleted_user_cannot_log_in(self, client, acme, make_user):
        uid = make_user("ACME", "gone@acme.com", "Tester")
        user_service.delete_user("ACME", acme["admin_id"], uid)
        _db.session.commit()
        assert _login(client, "gone@acme.com").status_code == 401

    def test_login_records_last_login(self, client, acme):
        _login(client)
        user = user_service.get_user("ACME", acme["admin_id"])
        assert user.last_login_at is not None


class TestSessionCookies:

    def test_cookies_alone_authenticate_follow_up_requests(self, client, acme):
        _login(client)
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["user"]["id"] == acme["admin_id"]
        assert data["tenant"]["id"] == "ACME"
        assert data["claims"]["TenantId"] == "ACME"
        assert "exp" not in data["claims"]

    def test_logout_clears_cookies(self, client, acme):
        _login(client)
        res = client.post("/api/v1/auth/logout")
        assert res.status_code == 200
        assert res.get_json()["data"] == {"logged_out": True}

        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "TenantIdMissing"

    def test_logout_needs_verified_tenant(self, client):
        assert client.post("/api/v1/auth/logout").status_code == 401


class TestTokenService:

    def test_expired_token_raises(self, app, make_token):
        token = make_token("u-1", "ACME", expires_in=-1)
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_tenant_claim_omitted_when_none(self, app, make_token):
        payload = decode_access_token(make_token("u-1", None))
        assert "TenantId" not in payload
