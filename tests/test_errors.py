"""
Error envelope tests — every failure renders {"error": {"code", "message"}}.
"""

from qahub.services import project_service


class TestHttpErrors:

    def test_unknown_route_outside_api(self, client):
        res = client.get("/nope")
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "NotFound"

    def test_wrong_method(self, client):
        res = client.post("/health")
        assert res.status_code == 405
        assert res.get_json()["error"]["code"] == "MethodNotAllowed"

    def test_unknown_api_route_after_guard(self, client, admin_headers):
        res = client.get("/api/v1/nothing-here", headers=admin_headers)
        assert res.status_code == 404
        assert set(res.get_json()["error"]) == {"code", "message"}


class TestDomainErrors:

    def test_validation_reports_every_field(self, client, admin_headers):
        res = client.post("/api/v1/users", json={"email": "not-an-email", "password": "short"},
                          headers=admin_headers)
        assert res.status_code == 422
        error = res.get_json()["error"]
        assert error["code"] == "ValidationError"
        assert set(error["details"]) == {"email", "password"}

    def test_non_object_body(self, client, admin_headers):
        res = client.post("/api/v1/projects", json=["a", "b"], headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["error"]["details"] == {"body": "must be an object"}

    def test_empty_body_is_missing_fields(self, client, admin_headers):
        res = client.post("/api/v1/projects", headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["error"]["details"] == {"name": "is required"}

    def test_conflict(self, client, admin_headers, beta):
        res = client.post("/api/v1/users", json={"email": "admin@beta.com", "password": "Passw0rd!"},
                          headers=admin_headers)
        assert res.status_code == 409
        assert res.get_json()["error"]["code"] == "Conflict"

    def test_not_found_message_names_the_resource(self, client, admin_headers):
        res = client.get("/api/v1/users/missing-id", headers=admin_headers)
        assert res.status_code == 404
        assert res.get_json()["error"] == {"code": "NotFound", "message": "User id=missing-id not found"}


class TestUnexpectedErrors:

    def _boom(self, *args, **kwargs):
        raise RuntimeError("database password is hunter2")

    def test_internal_detail_is_hidden(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(project_service, "list_projects", self._boom)
        res = client.get("/api/v1/projects", headers=admin_headers)
        assert res.status_code == 500
        assert res.get_json() == {
            "error": {"code": "InternalServerError", "message": "An unexpected error occurred."},
        }

    def test_internal_detail_exposed_when_enabled(self, app, client, admin_headers, monkeypatch):
        monkeypatch.setattr(project_service, "list_projects", self._boom)
        monkeypatch.setitem(app.config, "EXPOSE_INTERNAL_ERRORS", True)
        res = client.get("/api/v1/projects", headers=admin_headers)
        assert res.status_code == 500
        assert res.get_json()["error"]["message"] == "database password is hunter2"
