from __future__ import annotations

from datetime import datetime
from typing import Any, ContextManager, Iterable, Optional, Protocol

from delivery_baseline.core.model import (
    BaselineVersion,
    Deliverable,
    EntityType,
    Milestone,
    PlanNode,
)


class PlanNodeStore(Protocol):
    """Planning-tree repository.

    Reads return None for unknown ids (soft-deleted rows are still returned);
    list_plan_nodes_by_link only returns non-deleted nodes.
    """

    def get_plan_node(self, node_id: str) -> Optional[PlanNode]: ...

    def soft_delete_plan_nodes(
        self, node_ids: Iterable[str], *, actor_id: Optional[str], at: datetime
    ) -> int: ...

    def restore_plan_node(self, node_id: str) -> Optional[PlanNode]: ...

    def list_plan_nodes_by_link(self, entity_type: EntityType, entity_id: str) -> list[PlanNode]: ...

    def list_plan_nodes(self, project_id: str, *, include_deleted: bool = False) -> list[PlanNode]: ...


class TrackedEntityStore(Protocol):
    """Milestone/deliverable repository plus the append-only baseline version table.

    update_* applies all changes to one row atomically and returns the row as written.
    insert_baseline_version raises DuplicateBaselineVersion on (milestone_id, version).
    """

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]: ...

    def update_milestone(self, milestone_id: str, **changes: Any) -> Milestone: ...

    def soft_delete_milestone(
        self, milestone_id: str, *, actor_id: Optional[str], at: datetime
    ) -> Milestone: ...

    def restore_milestone(self, milestone_id: str) -> Optional[Milestone]: ...

    def list_milestones(self, project_id: str, *, include_deleted: bool = False) -> list[Milestone]: ...

    def get_deliverable(self, deliverable_id: str) -> Optional[Deliverable]: ...

    def update_deliverable(self, deliverable_id: str, **changes: Any) -> Deliverable: ...

    def soft_delete_deliverable(
        self, deliverable_id: str, *, actor_id: Optional[str], at: datetime
    ) -> Deliverable: ...

    def restore_deliverable(self, deliverable_id: str) -> Optional[Deliverable]: ...

    def list_deliverables(self, project_id: str, *, include_deleted: bool = False) -> list[Deliverable]: ...

    def list_deliverables_by_milestone(self, milestone_id: str) -> list[Deliverable]: ...

    def insert_baseline_version(self, version: BaselineVersion) -> BaselineVersion: ...

    def list_baseline_versions(self, milestone_id: str) -> list[BaselineVersion]: ...


class Store(PlanNodeStore, TrackedEntityStore, Protocol):
    """Both repositories behind one backend, with multi-row transactions."""

    def atomic(self) -> ContextManager[None]: ...

    def load_snapshot(
        self,
        *,
        milestones: Iterable[Milestone],
        deliverables: Iterable[Deliverable],
        plan_nodes: Iterable[PlanNode],
    ) -> dict[str, int]:
        """Insert records whose id is not stored yet; existing rows are left untouched.

        Returns the number of rows inserted per table.
        """
        ...
