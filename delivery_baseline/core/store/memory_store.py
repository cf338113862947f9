from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional, TypeVar

from delivery_baseline.core.errors import DuplicateBaselineVersion, not_found
from delivery_baseline.core.model import (
    BaselineVersion,
    Deliverable,
    DeliverableLink,
    EntityType,
    Milestone,
    MilestoneLink,
    PlanNode,
)


R = TypeVar("R", Milestone, Deliverable, PlanNode)


class InMemoryStore:
    """Process-local store implementing both repositories.

    Every call holds one re-entrant lock, which gives per-row atomic updates and
    makes the (milestone_id, version) key a real uniqueness constraint.
    atomic() snapshots all tables and restores them if the block raises.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.plan_nodes: dict[str, PlanNode] = {}
        self.milestones: dict[str, Milestone] = {}
        self.deliverables: dict[str, Deliverable] = {}
        self.baseline_versions: dict[tuple[str, int], BaselineVersion] = {}

    def load_snapshot(
        self,
        *,
        milestones: Iterable[Milestone],
        deliverables: Iterable[Deliverable],
        plan_nodes: Iterable[PlanNode],
    ) -> dict[str, int]:
        # Insert-only: signatures, breach and deletion state already stored must survive.
        with self._lock:
            return {
                "milestones": _insert_new(self.milestones, milestones),
                "deliverables": _insert_new(self.deliverables, deliverables),
                "plan_nodes": _insert_new(self.plan_nodes, plan_nodes),
            }

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            saved = (
                dict(self.plan_nodes),
                dict(self.milestones),
                dict(self.deliverables),
                dict(self.baseline_versions),
            )
            try:
                yield
            except BaseException:
                self.plan_nodes, self.milestones, self.deliverables, self.baseline_versions = saved
                raise

    # plan nodes

    def get_plan_node(self, node_id: str) -> Optional[PlanNode]:
        with self._lock:
            return self.plan_nodes.get(node_id)

    def soft_delete_plan_nodes(
        self, node_ids: Iterable[str], *, actor_id: Optional[str], at: datetime
    ) -> int:
        changed = 0
        with self._lock:
            for nid in node_ids:
                node = self.plan_nodes.get(nid)
                if node is None or node.is_deleted:
                    continue
                self.plan_nodes[nid] = replace(
                    node, is_deleted=True, deleted_at=at, deleted_by=actor_id
                )
                changed += 1
        return changed

    def restore_plan_node(self, node_id: str) -> Optional[PlanNode]:
        with self._lock:
            node = self.plan_nodes.get(node_id)
            if node is None:
                return None
            node = replace(node, is_deleted=False, deleted_at=None, deleted_by=None)
            self.plan_nodes[node_id] = node
            return node

    def list_plan_nodes_by_link(self, entity_type: EntityType, entity_id: str) -> list[PlanNode]:
        with self._lock:
            out: list[PlanNode] = []
            for n in self.plan_nodes.values():
                if n.is_deleted:
                    continue
                if entity_type == "milestone" and n.link == MilestoneLink(entity_id):
                    out.append(n)
                elif entity_type == "deliverable" and n.link == DeliverableLink(entity_id):
                    out.append(n)
            return sorted(out, key=lambda n: (n.sort_order, n.id))

    def list_plan_nodes(self, project_id: str, *, include_deleted: bool = False) -> list[PlanNode]:
        with self._lock:
            out = [
                n
                for n in self.plan_nodes.values()
                if n.project_id == project_id and (include_deleted or not n.is_deleted)
            ]
        return sorted(out, key=lambda n: (n.sort_order, n.id))

    # milestones

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        with self._lock:
            return self.milestones.get(milestone_id)

    def update_milestone(self, milestone_id: str, **changes: Any) -> Milestone:
        with self._lock:
            m = self.milestones.get(milestone_id)
            if m is None:
                raise not_found("milestone", milestone_id)
            m = replace(m, **changes)
            self.milestones[milestone_id] = m
            return m

    def soft_delete_milestone(
        self, milestone_id: str, *, actor_id: Optional[str], at: datetime
    ) -> Milestone:
        with self._lock:
            m = self.milestones.get(milestone_id)
            if m is None:
                raise not_found("milestone", milestone_id)
            if not m.is_deleted:
                m = replace(m, is_deleted=True, deleted_at=at, deleted_by=actor_id)
                self.milestones[milestone_id] = m
            return m

    def restore_milestone(self, milestone_id: str) -> Optional[Milestone]:
        with self._lock:
            m = self.milestones.get(milestone_id)
            if m is None:
                return None
            m = replace(m, is_deleted=False, deleted_at=None, deleted_by=None)
            self.milestones[milestone_id] = m
            return m

    def list_milestones(self, project_id: str, *, include_deleted: bool = False) -> list[Milestone]:
        with self._lock:
            out = [
                m
                for m in self.milestones.values()
                if m.project_id == project_id and (include_deleted or not m.is_deleted)
            ]
        return sorted(out, key=lambda m: m.id)

    # deliverables

    def get_deliverable(self, deliverable_id: str) -> Optional[Deliverable]:
        with self._lock:
            return self.deliverables.get(deliverable_id)

    def update_deliverable(self, deliverable_id: str, **changes: Any) -> Deliverable:
        with self._lock:
            d = self.deliverables.get(deliverable_id)
            if d is None:
                raise not_found("deliverable", deliverable_id)
            d = replace(d, **changes)
            self.deliverables[deliverable_id] = d
            return d

    def soft_delete_deliverable(
        self, deliverable_id: str, *, actor_id: Optional[str], at: datetime
    ) -> Deliverable:
        with self._lock:
            d = self.deliverables.get(deliverable_id)
            if d is None:
                raise not_found("deliverable", deliverable_id)
            if not d.is_deleted:
                d = replace(d, is_deleted=True, deleted_at=at, deleted_by=actor_id)
                self.deliverables[deliverable_id] = d
            return d

    def restore_deliverable(self, deliverable_id: str) -> Optional[Deliverable]:
        with self._lock:
            d = self.deliverables.get(deliverable_id)
            if d is None:
                return None
            d = replace(d, is_deleted=False, deleted_at=None, deleted_by=None)
            self.deliverables[deliverable_id] = d
            return d

    def list_deliverables(self, project_id: str, *, include_deleted: bool = False) -> list[Deliverable]:
        with self._lock:
            out = [
                d
                for d in self.deliverables.values()
                if d.project_id == project_id and (include_deleted or not d.is_deleted)
            ]
        return sorted(out, key=lambda d: d.id)

    def list_deliverables_by_milestone(self, milestone_id: str) -> list[Deliverable]:
        with self._lock:
            out = [
                d
                for d in self.deliverables.values()
                if d.milestone_id == milestone_id and not d.is_deleted
            ]
        return sorted(out, key=lambda d: d.id)

    # baseline versions

    def insert_baseline_version(self, version: BaselineVersion) -> BaselineVersion:
        key = (version.milestone_id, version.version)
        with self._lock:
            if key in self.baseline_versions:
                raise DuplicateBaselineVersion(version.milestone_id, version.version)
            self.baseline_versions[key] = version
            return version

    def list_baseline_versions(self, milestone_id: str) -> list[BaselineVersion]:
        with self._lock:
            out = [v for (mid, _), v in self.baseline_versions.items() if mid == milestone_id]
        return sorted(out, key=lambda v: v.version)


def _insert_new(table: dict[str, R], records: Iterable[R]) -> int:
    inserted = 0
    for r in records:
        if r.id in table:
            continue
        table[r.id] = r
        inserted += 1
    return inserted
