"""
Parent-link tree tests — cycle detection for suites and requirements.
"""

import pytest

from qahub.core.exceptions import NotFoundError, ValidationError
from qahub.services import project_service, requirement_service, test_suite_service
from qahub.services.hierarchy import assert_no_cycle, build_tree, descendants, iter_ancestors


ARENA = {"a": None, "b": "a", "c": "b", "d": "a"}


class TestArena:

    def test_ancestors_nearest_first(self):
        assert list(iter_ancestors(ARENA, "c")) == ["b", "a"]

    def test_stored_loop_is_reported(self):
        with pytest.raises(ValidationError):
            list(iter_ancestors({"x": "y", "y": "x"}, "x"))

    def test_moving_under_a_descendant_is_a_cycle(self):
        with pytest.raises(ValidationError) as exc:
            assert_no_cycle(ARENA, "a", "c", field="parent_suite_id")
        assert exc.value.details == {"parent_suite_id": "is a descendant of this entity"}

    def test_self_parent_rejected(self):
        with pytest.raises(ValidationError):
            assert_no_cycle(ARENA, "b", "b")

    def test_parent_outside_arena_rejected(self):
        with pytest.raises(ValidationError):
            assert_no_cycle(ARENA, "b", "zzz")

    def test_sibling_move_and_root_are_fine(self):
        assert_no_cycle(ARENA, "c", "d")
        assert_no_cycle(ARENA, "c", None)

    def test_descendants(self):
        assert sorted(descendants(ARENA, "a")) == ["b", "c", "d"]
        assert descendants(ARENA, "c") == []

    def test_build_tree(self):
        nodes = [{"id": k, "parent": v} for k, v in ARENA.items()]
        roots = build_tree(nodes, "parent")
        assert [r["id"] for r in roots] == ["a"]
        assert sorted(c["id"] for c in roots[0]["children"]) == ["b", "d"]


class TestSuiteTree:

    @pytest.fixture()
    def chain(self, acme, acme_tree):
        pid = acme_tree["project_id"]
        b = test_suite_service.create_suite("ACME", acme["admin_id"], pid, {"name": "B", "parent_suite_id": acme_tree["suite_id"]})
        c = test_suite_service.create_suite("ACME", acme["admin_id"], pid, {"name": "C", "parent_suite_id": b.id})
        return acme_tree["suite_id"], b.id, c.id

    def test_reparent_under_grandchild_rejected(self, acme, chain):
        a, _, c = chain
        with pytest.raises(ValidationError) as exc:
            test_suite_service.update_suite("ACME", acme["admin_id"], a, {"parent_suite_id": c})
        assert "parent_suite_id" in exc.value.details
        assert test_suite_service.get_suite("ACME", a).parent_suite_id is None

    def test_reparent_to_root(self, acme, chain):
        _, _, c = chain
        suite = test_suite_service.update_suite("ACME", acme["admin_id"], c, {"parent_suite_id": None})
        assert suite.parent_suite_id is None

    def test_parent_from_other_project_rejected(self, acme, chain, make_tree):
        other = make_tree("ACME", acme["admin_id"], name="Other")
        _, b, _ = chain
        with pytest.raises(ValidationError):
            test_suite_service.update_suite("ACME", acme["admin_id"], b, {"parent_suite_id": other["suite_id"]})
        with pytest.raises(NotFoundError):
            test_suite_service.create_suite("ACME", acme["admin_id"], other["project_id"], {
                "name": "X", "parent_suite_id": b,
            })

    def test_hierarchy_view(self, acme, chain, acme_tree):
        tree = project_service.get_hierarchy("ACME", acme_tree["project_id"])
        root = tree["suites"][0]
        assert root["id"] == chain[0]
        assert root["test_case_count"] == 1
        assert root["children"][0]["children"][0]["id"] == chain[2]


class TestRequirementTree:

    def test_cycle_rejected(self, acme, acme_tree):
        pid = acme_tree["project_id"]
        top = requirement_service.create_requirement("ACME", acme["admin_id"], pid, {"title": "Top"})
        mid = requirement_service.create_requirement("ACME", acme["admin_id"], pid, {
            "title": "Mid", "parent_requirement_id": top.id,
        })
        low = requirement_service.create_requirement("ACME", acme["admin_id"], pid, {
            "title": "Low", "parent_requirement_id": mid.id,
        })
        with pytest.raises(ValidationError) as exc:
            requirement_service.update_requirement("ACME", acme["admin_id"], top.id, {
                "parent_requirement_id": low.id,
            })
        assert "parent_requirement_id" in exc.value.details

        with pytest.raises(ValidationError):
            requirement_service.update_requirement("ACME", acme["admin_id"], mid.id, {
                "parent_requirement_id": mid.id,
            })
