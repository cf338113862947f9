import pytest

from conftest import FIXED_NOW, fixed_now, lock, seed
from delivery_baseline.core.errors import BaselineLockedError, NotFoundError
from delivery_baseline.core.service import BaselineService
from delivery_baseline.core.store.memory_store import InMemoryStore


class FlakyPlanStore(InMemoryStore):
    """Fails the next N bulk plan-node deletes."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def soft_delete_plan_nodes(self, node_ids, *, actor_id, at):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("planner store unavailable")
        return super().soft_delete_plan_nodes(node_ids, actor_id=actor_id, at=at)


class FlakyTrackedStore(InMemoryStore):
    """Fails the next N milestone or deliverable soft-deletes."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def _maybe_fail(self):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("tracker store unavailable")

    def soft_delete_milestone(self, milestone_id, *, actor_id, at):
        self._maybe_fail()
        return super().soft_delete_milestone(milestone_id, actor_id=actor_id, at=at)

    def soft_delete_deliverable(self, deliverable_id, *, actor_id, at):
        self._maybe_fail()
        return super().soft_delete_deliverable(deliverable_id, actor_id=actor_id, at=at)


def test_delete_plan_node_of_locked_milestone_is_blocked(service, store):
    lock(service)

    result = service.delete_plan_node("P-M1", "u-1")
    assert result.allowed is False
    assert result.synced is False
    assert 'baselined milestone "Discovery sign-off"' in result.reason
    assert result.error.code == "E_BASELINE_LOCKED"
    assert store.get_plan_node("P-M1").is_deleted is False
    assert store.get_milestone("M-1").is_deleted is False

    with pytest.raises(BaselineLockedError):
        result.raise_for_block()


def test_delete_plan_node_linked_to_deliverable_of_locked_milestone_is_blocked(service, store):
    lock(service)
    result = service.delete_plan_node("P-D1", "u-1")
    assert result.allowed is False
    assert store.get_deliverable("D-1").is_deleted is False


def test_tracker_side_deletes_blocked_by_lock(service, store):
    lock(service)

    m = service.delete_milestone("M-1", "u-1")
    assert m.allowed is False
    assert "locked baseline" in m.reason

    d = service.delete_deliverable("D-1", "u-1")
    assert d.allowed is False
    assert "deliverable belongs to baselined milestone" in d.reason

    assert store.get_milestone("M-1").is_deleted is False
    assert store.get_deliverable("D-1").is_deleted is False
    assert all(not n.is_deleted for n in store.list_plan_nodes("PRJ"))


def test_reset_then_delete_cascades_to_milestone(service, store):
    lock(service)
    service.reset_baseline("M-1")

    result = service.delete_plan_node("P-M1", "u-1")
    assert result.allowed is True
    assert result.synced is True
    assert result.count is None

    m = store.get_milestone("M-1")
    assert m.is_deleted is True
    assert m.deleted_by == "u-1"
    # direction A touches only the linked entity
    assert store.get_plan_node("P-M1b").is_deleted is False
    assert store.get_plan_node("P-D1").is_deleted is False


def test_delete_unlinked_plan_node(service, store):
    result = service.delete_plan_node("P-T", "u-1")
    assert result.allowed is True
    assert result.synced is False
    assert store.get_plan_node("P-T").is_deleted is True


def test_delete_plan_node_cascades_to_deliverable(service, store):
    result = service.delete_plan_node("P-D2", "u-1")
    assert result.synced is True
    assert store.get_deliverable("D-2").is_deleted is True
    assert store.get_milestone("M-2").is_deleted is False


def test_delete_milestone_cascades_to_every_linked_plan_node(service, store):
    result = service.delete_milestone("M-1", "u-1")
    assert result.allowed is True
    assert result.synced is True
    assert result.count == 2
    assert store.get_plan_node("P-M1").is_deleted is True
    assert store.get_plan_node("P-M1b").is_deleted is True
    assert store.get_plan_node("P-D1").is_deleted is False


def test_delete_deliverable_cascades(service, store):
    result = service.delete_deliverable("D-1", "u-1")
    assert result.synced is True
    assert result.count == 1
    assert store.get_plan_node("P-D1").is_deleted is True


def test_delete_milestone_without_links(service, store):
    service.delete_plan_node("P-M2", "u-1")
    # the cascade already removed M-2; a second delete is a no-op
    result = service.delete_milestone("M-2", "u-1")
    assert result.allowed is True
    assert result.synced is False
    assert result.count == 0


def test_repeated_delete_is_idempotent(service, store):
    service.delete_milestone("M-1", "u-1")
    first = store.get_milestone("M-1")

    result = service.delete_milestone("M-1", "u-2")
    assert result.allowed is True
    assert store.get_milestone("M-1") == first
    assert store.get_plan_node("P-M1").deleted_by == "u-1"


def test_unknown_ids_are_not_found(service):
    with pytest.raises(NotFoundError):
        service.delete_plan_node("P-404", "u-1")
    with pytest.raises(NotFoundError):
        service.delete_milestone("M-404", "u-1")
    with pytest.raises(NotFoundError):
        service.delete_deliverable("D-404", "u-1")


def test_partial_cascade_is_reported_and_retry_completes():
    store = FlakyPlanStore(failures=1)
    seed(store)
    service = BaselineService(store, now=fixed_now, atomic_cascades=False)

    result = service.delete_milestone("M-1", "u-1")
    assert result.allowed is True
    assert result.synced is False
    assert result.error.code == "E_CASCADE_PARTIAL"
    assert store.get_milestone("M-1").is_deleted is True
    assert store.get_plan_node("P-M1").is_deleted is False

    retry = service.delete_milestone("M-1", "u-1")
    assert retry.synced is True
    assert retry.error is None
    assert store.get_plan_node("P-M1").is_deleted is True
    assert store.get_plan_node("P-M1b").is_deleted is True


def test_atomic_cascade_rolls_back_primary_delete():
    store = FlakyPlanStore(failures=1)
    seed(store)
    service = BaselineService(store, now=fixed_now, atomic_cascades=True)

    with pytest.raises(RuntimeError):
        service.delete_milestone("M-1", "u-1")

    assert store.get_milestone("M-1").is_deleted is False
    assert store.get_plan_node("P-M1").is_deleted is False


def test_restore_and_list_deleted(service, store):
    service.delete_deliverable("D-1", "u-1")

    deleted = service.list_deleted("PRJ")
    assert [d.id for d in deleted.deliverables] == ["D-1"]
    assert [n.id for n in deleted.plan_nodes] == ["P-D1"]
    assert deleted.milestones == []

    d = service.restore_deliverable("D-1")
    assert d.is_deleted is False
    assert d.deleted_at is None
    n = service.restore_plan_node("P-D1")
    assert n.is_deleted is False

    deleted = service.list_deleted("PRJ")
    assert deleted.deliverables == []
    assert deleted.plan_nodes == []


def test_restore_unknown_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.restore_milestone("M-404")


def test_cascaded_entity_shares_the_node_deletion_stamp(service, store):
    service.delete_plan_node("P-D2", "u-7")

    node = store.get_plan_node("P-D2")
    deliverable = store.get_deliverable("D-2")
    assert deliverable.deleted_at == node.deleted_at == FIXED_NOW
    assert deliverable.deleted_by == node.deleted_by == "u-7"


def test_plan_node_partial_cascade_is_reported_and_retry_completes():
    store = FlakyTrackedStore(failures=1)
    seed(store)
    service = BaselineService(store, now=fixed_now, atomic_cascades=False)

    result = service.delete_plan_node("P-M2", "u-1")
    assert result.allowed is True
    assert result.synced is False
    assert result.error.code == "E_CASCADE_PARTIAL"
    assert "milestone M-2" in result.error.message
    assert store.get_plan_node("P-M2").is_deleted is True
    assert store.get_milestone("M-2").is_deleted is False

    # the node is already deleted; repeating the delete finishes the cascade
    retry = service.delete_plan_node("P-M2", "u-1")
    assert retry.allowed is True
    assert retry.synced is True
    assert retry.error is None
    m = store.get_milestone("M-2")
    assert m.is_deleted is True
    assert m.deleted_by == "u-1"
    assert m.deleted_at == store.get_plan_node("P-M2").deleted_at


def test_plan_node_partial_cascade_to_deliverable():
    store = FlakyTrackedStore(failures=1)
    seed(store)
    service = BaselineService(store, now=fixed_now, atomic_cascades=False)

    result = service.delete_plan_node("P-D2", "u-1")
    assert result.synced is False
    assert result.error.code == "E_CASCADE_PARTIAL"
    assert store.get_deliverable("D-2").is_deleted is False

    assert service.delete_plan_node("P-D2", "u-1").synced is True
    assert store.get_deliverable("D-2").is_deleted is True


def test_plan_node_atomic_cascade_rolls_back_node_delete():
    store = FlakyTrackedStore(failures=1)
    seed(store)
    service = BaselineService(store, now=fixed_now, atomic_cascades=True)

    with pytest.raises(RuntimeError):
        service.delete_plan_node("P-M2", "u-1")

    assert store.get_plan_node("P-M2").is_deleted is False
    assert store.get_milestone("M-2").is_deleted is False
