"""
Parent-link trees (TestSuite, Requirement) as id -> parent_id arenas.

Reparenting never walks ORM object graphs. The service loads every live
node of the project into a flat ``{id: parent_id}`` arena and walks the
chain from the proposed parent upwards. If the chain reaches the node
being moved, the reparent would create a cycle.
"""

import logging

from sqlalchemy import select

from qahub.core.exceptions import ValidationError
from qahub.models import db

logger = logging.getLogger(__name__)


def load_arena(model, parent_attr, *, tenant_id, project_id):
    """Return ``{id: parent_id}`` for every live row of ``model`` in a project."""
    parent_col = getattr(model, parent_attr)
    rows = db.session.execute(
        select(model.id, parent_col).where(
            model.tenant_id == tenant_id,
            model.project_id == project_id,
        )
    ).all()
    return {row[0]: row[1] for row in rows}


def iter_ancestors(arena, node_id):
    """Yield the parent chain of node_id, nearest first.

    Raises ValidationError if the stored chain already loops.
    """
    seen = {node_id}
    current = arena.get(node_id)
    while current is not None:
        if current in seen:
            raise ValidationError(
                "Stored hierarchy contains a cycle",
                details={"parent": f"cycle detected at {current}"},
            )
        seen.add(current)
        yield current
        current = arena.get(current)


def assert_no_cycle(arena, node_id, new_parent_id, *, field="parent_id"):
    """Reject making node_id a descendant of itself.

    Checks the full chain above ``new_parent_id``, not only the immediate
    parent.
    """
    if new_parent_id is None:
        return
    if new_parent_id == node_id:
        raise ValidationError(
            "An entity cannot be its own parent",
            details={field: "cannot reference itself"},
        )
    if new_parent_id not in arena:
        raise ValidationError(
            "Parent must be a live entity of the same project",
            details={field: "not found in project"},
        )
    for ancestor in iter_ancestors(arena, new_parent_id):
        if ancestor == node_id:
            logger.info("Rejected reparent of %s under descendant %s", node_id, new_parent_id)
            raise ValidationError(
                "Reparenting would create a cycle",
                details={field: "is a descendant of this entity"},
            )


def descendants(arena, node_id):
    """Return every id below node_id (breadth first)."""
    children = {}
    for child, parent in arena.items():
        children.setdefault(parent, []).append(child)
    found, queue = [], list(children.get(node_id, []))
    while queue:
        current = queue.pop(0)
        if current in found:
            continue
        found.append(current)
        queue.extend(children.get(current, []))
    return found


def build_tree(nodes, parent_attr):
    """Nest serialised nodes under their parents.

    ``nodes`` is a list of dicts with ``id`` and ``parent_attr`` keys; a
    ``children`` list is added to each. Nodes whose parent is not in the
    list become roots.
    """
    by_id = {n["id"]: dict(n, children=[]) for n in nodes}
    roots = []
    for node in by_id.values():
        parent = by_id.get(node.get(parent_attr))
        if parent is None:
            roots.append(node)
        else:
            parent["children"].append(node)
    return roots
