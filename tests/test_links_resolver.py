from datetime import datetime, timezone

import pytest

from delivery_baseline.core.errors import NotFoundError
from delivery_baseline.core.links.resolver import CrossLinkResolver


AT = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_resolve_milestone_link(store):
    r = CrossLinkResolver(store, store)
    link = r.resolve_link("P-M1")
    assert link.kind == "milestone"
    assert link.entity_id == "M-1"
    assert link.owner_milestone_id == "M-1"


def test_resolve_deliverable_link_follows_owner(store):
    r = CrossLinkResolver(store, store)
    link = r.resolve_link("P-D1")
    assert link.kind == "deliverable"
    assert link.entity_id == "D-1"
    assert link.owner_milestone_id == "M-1"


def test_resolve_unlinked_node(store):
    link = CrossLinkResolver(store, store).resolve_link("P-T")
    assert link.kind == "none"
    assert link.entity_id is None
    assert link.owner_milestone_id is None


def test_deleted_owner_milestone_fails_open(store):
    store.soft_delete_milestone("M-1", actor_id="u", at=AT)
    r = CrossLinkResolver(store, store)
    assert r.resolve_link("P-D1").owner_milestone_id is None
    assert r.resolve_link("P-M1").owner_milestone_id is None


def test_missing_plan_node_is_not_found(store):
    with pytest.raises(NotFoundError) as ei:
        CrossLinkResolver(store, store).resolve_link("P-404")
    assert ei.value.code == "E_NOT_FOUND"


def test_find_linked_plan_nodes_skips_deleted(store):
    r = CrossLinkResolver(store, store)
    assert r.find_linked_plan_nodes("milestone", "M-1") == ["P-M1", "P-M1b"]

    store.soft_delete_plan_nodes(["P-M1b"], actor_id="u", at=AT)
    assert r.find_linked_plan_nodes("milestone", "M-1") == ["P-M1"]
    assert r.find_linked_plan_nodes("deliverable", "D-1") == ["P-D1"]
    assert r.find_linked_plan_nodes("deliverable", "D-404") == []
