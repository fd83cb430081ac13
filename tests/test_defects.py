"""
Defect workflow tests — state machine, history trail, links and API.

Workflow:
    Open -> InProgress (Start) -> Resolved (Resolve) -> Closed (Close)
    Resolved | Closed -> Open (Reopen)
"""

import pytest
from sqlalchemy import select

from qahub.core.exceptions import (
    ConflictError,
    Forbidden,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from qahub.models import db as _db
from qahub.models.audit import AuditLog
from qahub.models.testing import DefectHistory, defect_transition_name
from qahub.services import defect_service, test_case_service, test_run_result_service


def _actions(defect_id):
    return [h.action for h in defect_service.list_history("ACME", defect_id)]


@pytest.fixture()
def defect(acme, acme_tree):
    d = defect_service.create_defect("ACME", acme["admin_id"], {
        "title": "Login button dead", "test_case_id": acme_tree["case_id"], "severity": "High",
    })
    _db.session.commit()
    return d


# ═════════════════════════════════════════════════════════════════════════════
# Block 1: Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:

    @pytest.mark.parametrize("old,new,name", [
        ("Open", "InProgress", "Start"),
        ("InProgress", "Resolved", "Resolve"),
        ("Resolved", "Closed", "Close"),
        ("Resolved", "Open", "Reopen"),
        ("Closed", "Open", "Reopen"),
    ])
    def test_allowed(self, old, new, name):
        assert defect_transition_name(old, new) == name

    @pytest.mark.parametrize("old,new", [
        ("Open", "Resolved"), ("Open", "Closed"), ("InProgress", "Open"),
        ("InProgress", "Closed"), ("Closed", "InProgress"), ("Open", "Open"),
    ])
    def test_rejected(self, old, new):
        assert defect_transition_name(old, new) is None


# ═════════════════════════════════════════════════════════════════════════════
# Block 2: Service
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateDefect:

    def test_new_defect_is_open_with_one_history_row(self, defect):
        assert defect.status == "Open"
        assert _actions(defect.id) == ["Created"]

    def test_explicit_non_open_status_is_rejected(self, acme):
        with pytest.raises(ValidationError) as exc:
            defect_service.create_defect("ACME", acme["admin_id"], {"title": "X", "status": "Closed"})
        assert "status" in exc.value.details

    def test_all_field_errors_reported_together(self, acme):
        with pytest.raises(ValidationError) as exc:
            defect_service.create_defect("ACME", acme["admin_id"], {"severity": "Urgent", "attachments": "x"})
        assert {"title", "severity", "attachments"} <= set(exc.value.details)

    def test_result_link_fills_in_test_case(self, acme, acme_tree):
        d = defect_service.create_defect("ACME", acme["admin_id"], {
            "title": "Flaky", "test_run_result_id": acme_tree["result_id"],
        })
        assert d.test_case_id == acme_tree["case_id"]

    def test_result_case_mismatch_is_rejected(self, acme, acme_tree):
        other = test_case_service.create_test_case("ACME", acme["admin_id"], acme_tree["suite_id"], {"title": "Other"})
        with pytest.raises(ValidationError):
            defect_service.create_defect("ACME", acme["admin_id"], {
                "title": "X", "test_run_result_id": acme_tree["result_id"], "test_case_id": other.id,
            })

    def test_one_live_defect_per_result(self, acme, acme_tree):
        data = {"title": "First", "test_run_result_id": acme_tree["result_id"]}
        first = defect_service.create_defect("ACME", acme["admin_id"], data)
        with pytest.raises(ConflictError):
            defect_service.create_defect("ACME", acme["admin_id"], {**data, "title": "Second"})

        defect_service.delete_defect("ACME", acme["admin_id"], first.id)
        again = defect_service.create_defect("ACME", acme["admin_id"], {**data, "title": "Again"})
        assert again.test_run_result_id == acme_tree["result_id"]

    def test_links_are_resolved_inside_the_tenant(self, acme, beta, acme_tree):
        with pytest.raises(NotFoundError):
            defect_service.create_defect("BETA", beta["admin_id"], {
                "title": "X", "test_case_id": acme_tree["case_id"],
            })
        with pytest.raises(NotFoundError):
            defect_service.create_defect("ACME", acme["admin_id"], {
                "title": "X", "assigned_user_id": beta["admin_id"],
            })

    def test_project_of_defect(self, defect, acme_tree):
        assert defect_service.project_id_of("ACME", defect) == acme_tree["project_id"]


class TestTransitions:

    def test_full_lifecycle_writes_one_row_per_transition(self, acme, defect):
        for status in ("InProgress", "Resolved", "Closed", "Open"):
            defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {"status": status})
        assert _actions(defect.id) == ["Created", "Start", "Resolve", "Close", "Reopen"]
        assert defect.status == "Open"

    def test_history_details_carry_from_and_to(self, acme, defect):
        defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {"status": "InProgress"})
        row = defect_service.list_history("ACME", defect.id)[-1]
        assert row.details == {"from": "Open", "to": "InProgress"}
        assert row.user_id == acme["admin_id"]

    def test_resolution_notes_recorded(self, acme, defect):
        defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {"status": "InProgress"})
        defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {
            "status": "Resolved", "resolution_notes": "Fixed in build 42",
        })
        assert defect.resolution_notes == "Fixed in build 42"
        assert defect_service.list_history("ACME", defect.id)[-1].details["resolution_notes"] == "Fixed in build 42"

    @pytest.mark.parametrize("target", ["Resolved", "Closed", "Open"])
    def test_invalid_transition_changes_nothing(self, acme, defect, target):
        with pytest.raises(InvalidStateTransition) as exc:
            defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {"status": target})
        assert exc.value.status == 422
        assert defect.status == "Open"
        assert _actions(defect.id) == ["Created"]

    def test_unknown_status_is_validation_error(self, acme, defect):
        with pytest.raises(ValidationError):
            defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {"status": "Done"})

    def test_each_transition_is_audited(self, acme, defect):
        defect_service.transition_defect("ACME", acme["admin_id"], defect.id, {"status": "InProgress"})
        actions = _db.session.execute(
            select(AuditLog.action).where(AuditLog.entity_id == defect.id)
        ).scalars().all()
        assert "DefectCreated" in actions
        assert "DefectStart" in actions


class TestUpdateDefect:

    def test_field_change_writes_updated_row(self, acme, defect):
        defect_service.update_defect("ACME", acme["admin_id"], defect.id, {"title": "Login button unresponsive"})
        row = defect_service.list_history("ACME", defect.id)[-1]
        assert row.action == "Updated"
        assert row.details["changes"]["title"] == {
            "old": "Login button dead", "new": "Login button unresponsive",
        }

    def test_noop_update_writes_nothing(self, acme, defect):
        defect_service.update_defect("ACME", acme["admin_id"], defect.id, {"title": "Login button dead"})
        assert _actions(defect.id) == ["Created"]

    def test_fields_and_status_together(self, acme, defect):
        defect_service.update_defect("ACME", acme["admin_id"], defect.id, {
            "severity": "Low", "status": "InProgress",
        })
        assert _actions(defect.id) == ["Created", "Updated", "Start"]

    def test_invalid_status_rejects_whole_update(self, acme, defect):
        with pytest.raises(InvalidStateTransition):
            defect_service.update_defect("ACME", acme["admin_id"], defect.id, {
                "title": "New title", "status": "Closed",
            })
        _db.session.rollback()
        fresh = defect_service.get_defect("ACME", defect.id)
        assert fresh.title == "Login button dead"
        assert _actions(defect.id) == ["Created"]

    def test_relinking_to_a_result_takes_its_case(self, acme, acme_tree, defect):
        defect_service.update_defect("ACME", acme["admin_id"], defect.id, {
            "test_run_result_id": acme_tree["result_id"],
        })
        assert defect.test_case_id == acme_tree["case_id"]
        assert defect.test_run_result_id == acme_tree["result_id"]

    def test_reassigning_after_linked_result_was_deleted(self, acme, acme_tree, make_user):
        d = defect_service.create_defect("ACME", acme["admin_id"], {
            "title": "Timeout", "test_run_result_id": acme_tree["result_id"],
        })
        test_case_service.delete_test_case("ACME", acme["admin_id"], acme_tree["case_id"])
        _db.session.commit()
        dev = make_user("ACME", "dev@acme.com")

        defect_service.update_defect("ACME", acme["admin_id"], d.id, {
            "assigned_user_id": dev, "test_run_result_id": acme_tree["result_id"],
        })
        assert d.assigned_user_id == dev
        assert d.test_run_result_id == acme_tree["result_id"]
        assert defect_service.project_id_of("ACME", d) == acme_tree["project_id"]

    def test_case_must_match_the_kept_result(self, acme, acme_tree, make_tree):
        d = defect_service.create_defect("ACME", acme["admin_id"], {
            "title": "Timeout", "test_run_result_id": acme_tree["result_id"],
        })
        other = make_tree("ACME", acme["admin_id"], name="Other")
        with pytest.raises(ValidationError) as exc:
            defect_service.update_defect("ACME", acme["admin_id"], d.id, {"test_case_id": other["case_id"]})
        assert "test_case_id" in exc.value.details

    def test_moving_to_another_project_needs_rights_there(self, acme, acme_tree, defect, make_tree, make_user):
        other = make_tree("ACME", acme["admin_id"], name="Other")
        tester = make_user("ACME", "tester@acme.com", "Tester", acme_tree["project_id"])
        with pytest.raises(Forbidden):
            defect_service.update_defect("ACME", tester, defect.id, {"test_case_id": other["case_id"]})
        _db.session.rollback()
        assert defect_service.get_defect("ACME", defect.id).test_case_id == acme_tree["case_id"]

        defect_service.update_defect("ACME", acme["admin_id"], defect.id, {"test_case_id": other["case_id"]})
        assert defect_service.project_id_of("ACME", defect) == other["project_id"]



class TestDeleteAndHistory:

    def test_delete_appends_history_and_hides_defect(self, acme, defect):
        assert defect_service.delete_defect("ACME", acme["admin_id"], defect.id) is True
        with pytest.raises(NotFoundError):
            defect_service.get_defect("ACME", defect.id)
        assert _actions(defect.id) == ["Created", "Deleted"]

    def test_delete_twice_is_noop(self, acme, defect):
        defect_service.delete_defect("ACME", acme["admin_id"], defect.id)
        assert defect_service.delete_defect("ACME", acme["admin_id"], defect.id) is False
        assert _actions(defect.id) == ["Created", "Deleted"]

    def test_history_rows_are_immutable(self, acme, defect):
        row = _db.session.execute(select(DefectHistory).where(DefectHistory.defect_id == defect.id)).scalar_one()
        row.action = "Tampered"
        with pytest.raises(ValidationError):
            _db.session.flush()
        _db.session.rollback()

    def test_history_rows_cannot_be_deleted(self, acme, defect):
        row = _db.session.execute(select(DefectHistory).where(DefectHistory.defect_id == defect.id)).scalar_one()
        _db.session.delete(row)
        with pytest.raises(ValidationError):
            _db.session.flush()
        _db.session.rollback()

    def test_deleting_test_case_keeps_defect(self, acme, acme_tree, defect):
        test_case_service.delete_test_case("ACME", acme["admin_id"], acme_tree["case_id"])
        assert defect_service.get_defect("ACME", defect.id).test_case_id == acme_tree["case_id"]


# ═════════════════════════════════════════════════════════════════════════════
# Block 3: API
# ═════════════════════════════════════════════════════════════════════════════


class TestDefectApi:

    def test_create_transition_and_history(self, client, admin_headers, acme_tree):
        res = client.post("/api/v1/defects", json={
            "title": "Crash on save", "test_case_id": acme_tree["case_id"],
        }, headers=admin_headers)
        assert res.status_code == 201
        defect_id = res.get_json()["data"]["id"]

        res = client.post(f"/api/v1/defects/{defect_id}/transition", json={"status": "InProgress"},
                          headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "InProgress"

        res = client.post(f"/api/v1/defects/{defect_id}/transition", json={"status": "Closed"},
                          headers=admin_headers)
        assert res.status_code == 422
        assert res.get_json()["error"]["code"] == "InvalidStateTransition"

        res = client.get(f"/api/v1/defects/{defect_id}/history", headers=admin_headers)
        assert [h["action"] for h in res.get_json()["data"]] == ["Created", "Start"]

    def test_list_filters_by_status(self, client, admin_headers, acme, defect):
        other = defect_service.create_defect("ACME", acme["admin_id"], {"title": "Other"})
        defect_service.transition_defect("ACME", acme["admin_id"], other.id, {"status": "InProgress"})
        _db.session.commit()

        res = client.get("/api/v1/defects?status=Open", headers=admin_headers)
        assert [d["id"] for d in res.get_json()["data"]] == [defect.id]

    def test_tester_scope_follows_linked_case(self, client, acme, make_user, make_tree, login_as, acme_tree):
        other = make_tree("ACME", acme["admin_id"], name="Other")
        uid = make_user("ACME", "tester@acme.com", "Tester", acme_tree["project_id"])
        headers = login_as(uid, "ACME", roles=["Tester"])

        ok = client.post("/api/v1/defects", json={"title": "Mine", "test_case_id": acme_tree["case_id"]},
                         headers=headers)
        assert ok.status_code == 201
        denied = client.post("/api/v1/defects", json={"title": "Theirs", "test_case_id": other["case_id"]},
                             headers=headers)
        assert denied.status_code == 403
        # Unlinked defects are tenant-level
        unlinked = client.post("/api/v1/defects", json={"title": "Loose"}, headers=headers)
        assert unlinked.status_code == 403

    def test_other_tenant_sees_404(self, client, beta, login_as, defect):
        headers = login_as(beta["admin_id"], "BETA")
        assert client.get(f"/api/v1/defects/{defect.id}", headers=headers).status_code == 404

    def test_tester_cannot_move_defect_out_of_their_project(self, client, acme, make_user, make_tree,
                                                           login_as, acme_tree, defect):
        other = make_tree("ACME", acme["admin_id"], name="Other")
        uid = make_user("ACME", "tester@acme.com", "Tester", acme_tree["project_id"])
        headers = login_as(uid, "ACME", roles=["Tester"])
        assert client.get(f"/api/v1/testcases/{other['case_id']}", headers=headers).status_code == 403

        res = client.put(f"/api/v1/defects/{defect.id}", json={"test_case_id": other["case_id"]}, headers=headers)
        assert res.status_code == 403
        res = client.put(f"/api/v1/defects/{defect.id}", json={"severity": "Low"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["data"]["test_case_id"] == acme_tree["case_id"]

    def test_defect_stays_visible_after_its_case_is_deleted(self, client, acme, make_user, login_as,
                                                            acme_tree, defect):
        uid = make_user("ACME", "tester@acme.com", "Tester", acme_tree["project_id"])
        headers = login_as(uid, "ACME", roles=["Tester"])
        test_case_service.delete_test_case("ACME", acme["admin_id"], acme_tree["case_id"])
        _db.session.commit()

        assert client.get(f"/api/v1/defects/{defect.id}", headers=headers).status_code == 200
        res = client.get("/api/v1/defects", headers=headers)
        assert [d["id"] for d in res.get_json()["data"]] == [defect.id]

    def test_project_scoped_list_keeps_to_own_projects(self, client, acme, make_user, make_tree, login_as,
                                                       acme_tree, defect):
        other = make_tree("ACME", acme["admin_id"], name="Other")
        defect_service.create_defect("ACME", acme["admin_id"], {"title": "Theirs", "test_case_id": other["case_id"]})
        defect_service.create_defect("ACME", acme["admin_id"], {"title": "Loose"})
        _db.session.commit()
        uid = make_user("ACME", "tester@acme.com", "Tester", acme_tree["project_id"])
        headers = login_as(uid, "ACME", roles=["Tester"])

        res = client.get("/api/v1/defects", headers=headers)
        assert res.status_code == 200
        assert [d["id"] for d in res.get_json()["data"]] == [defect.id]
        assert res.get_json()["meta"]["total"] == 1

        admin = login_as(acme["admin_id"], "ACME")
        assert client.get("/api/v1/defects", headers=admin).get_json()["meta"]["total"] == 3
