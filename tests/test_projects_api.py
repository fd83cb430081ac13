"""
Projects API — CRUD, memberships and the suite hierarchy view.
"""

import pytest


class TestProjectCrud:

    def test_create_list_get(self, client, admin_headers, create):
        project = create(client, admin_headers, "/api/v1/projects", {"name": "Payments", "description": "PSP"})
        assert project["tenant_id"] == "ACME"

        res = client.get("/api/v1/projects", headers=admin_headers)
        body = res.get_json()
        assert body["meta"] == {"total": 1, "limit": 100, "offset": 0}
        assert body["data"][0]["id"] == project["id"]

        res = client.get(f"/api/v1/projects/{project['id']}", headers=admin_headers)
        assert res.get_json()["data"]["description"] == "PSP"

    def test_paging(self, client, admin_headers, create):
        for name in ("A", "B", "C"):
            create(client, admin_headers, "/api/v1/projects", {"name": name})
        res = client.get("/api/v1/projects?limit=2&offset=1", headers=admin_headers)
        body = res.get_json()
        assert [p["name"] for p in body["data"]] == ["B", "C"]
        assert body["meta"]["total"] == 3

    def test_name_length(self, client, admin_headers):
        res = client.post("/api/v1/projects", json={"name": "x" * 101}, headers=admin_headers)
        assert res.status_code == 422

    def test_update(self, client, admin_headers, acme_tree):
        res = client.put(f"/api/v1/projects/{acme_tree['project_id']}", json={"description": "new"},
                         headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["name"] == "Alpha"

    def test_project_member_sees_only_their_project(self, client, acme, make_tree, make_user, login_as):
        p1 = make_tree("ACME", acme["admin_id"], name="P1")
        make_tree("ACME", acme["admin_id"], name="P2")
        tester = make_user("ACME", "tess@acme.com", "Tester", project_id=p1["project_id"])
        headers = login_as(tester, "ACME", roles=("Tester",))

        assert client.get(f"/api/v1/projects/{p1['project_id']}", headers=headers).status_code == 200
        res = client.get("/api/v1/projects", headers=headers)
        assert [p["id"] for p in res.get_json()["data"]] == [p1["project_id"]]


class TestMembers:

    @pytest.fixture()
    def member(self, acme, make_user):
        return make_user("ACME", "dev@acme.com")

    def test_add_list_update_remove(self, client, admin_headers, acme_tree, member, create):
        url = f"/api/v1/projects/{acme_tree['project_id']}/members"
        created = create(client, admin_headers, url, {"user_id": member, "preferences": {"theme": "dark"}})
        assert created["preferences"] == {"theme": "dark"}

        res = client.get(url, headers=admin_headers)
        assert [m["user_id"] for m in res.get_json()["data"]] == [member]

        res = client.put(f"{url}/{member}", json={"preferences": {"theme": "light"}}, headers=admin_headers)
        assert res.get_json()["data"]["preferences"] == {"theme": "light"}

        res = client.delete(f"{url}/{member}", headers=admin_headers)
        assert res.get_json()["data"]["removed"] is True
        assert client.get(url, headers=admin_headers).get_json()["data"] == []

    def test_duplicate_membership(self, client, admin_headers, acme_tree, member, create):
        url = f"/api/v1/projects/{acme_tree['project_id']}/members"
        create(client, admin_headers, url, {"user_id": member})
        res = client.post(url, json={"user_id": member}, headers=admin_headers)
        assert res.status_code == 409

    def test_preferences_must_be_object(self, client, admin_headers, acme_tree, member):
        url = f"/api/v1/projects/{acme_tree['project_id']}/members"
        res = client.post(url, json={"user_id": member, "preferences": ["dark"]}, headers=admin_headers)
        assert res.status_code == 422

    def test_user_of_other_tenant_is_not_found(self, client, admin_headers, acme_tree, beta):
        url = f"/api/v1/projects/{acme_tree['project_id']}/members"
        res = client.post(url, json={"user_id": beta["admin_id"]}, headers=admin_headers)
        assert res.status_code == 404

    def test_remove_unknown_member(self, client, admin_headers, acme_tree, member):
        res = client.delete(f"/api/v1/projects/{acme_tree['project_id']}/members/{member}", headers=admin_headers)
        assert res.status_code == 404


class TestHierarchy:

    def test_tree_with_counts_and_folders(self, client, admin_headers, acme_tree, create):
        pid = acme_tree["project_id"]
        child = create(client, admin_headers, f"/api/v1/projects/{pid}/testsuites", {
            "name": "Checkout", "parent_suite_id": acme_tree["suite_id"],
        })
        for title in ("Pay by card", "Pay by invoice"):
            create(client, admin_headers, f"/api/v1/testsuites/{child['id']}/testcases", {"title": title})
        create(client, admin_headers, f"/api/v1/projects/{pid}/testfolders", {"name": "Smoke"})

        res = client.get(f"/api/v1/projects/{pid}/hierarchy", headers=admin_headers)
        assert res.status_code == 200
        tree = res.get_json()["data"]
        root = tree["suites"][0]
        assert (root["name"], root["test_case_count"]) == ("Alpha suite", 1)
        assert root["children"][0]["test_case_count"] == 2
        assert [f["name"] for f in tree["folders"]] == ["Smoke"]

    def test_deleted_cases_are_not_counted(self, client, admin_headers, acme_tree):
        client.delete(f"/api/v1/testcases/{acme_tree['case_id']}", headers=admin_headers)
        res = client.get(f"/api/v1/projects/{acme_tree['project_id']}/hierarchy", headers=admin_headers)
        assert res.get_json()["data"]["suites"][0]["test_case_count"] == 0
