from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from delivery_baseline.core.errors import not_found
from delivery_baseline.core.model import EntityType, LinkKind, link_target
from delivery_baseline.core.store.repository import PlanNodeStore, TrackedEntityStore


@dataclass(frozen=True)
class ResolvedLink:
    kind: LinkKind
    entity_id: Optional[str] = None
    # Lock and breach are milestone-scoped; None when no live milestone governs the link.
    owner_milestone_id: Optional[str] = None


class CrossLinkResolver:
    """Read-only lookups between plan nodes and the tracked entities they publish to."""

    def __init__(self, plan_store: PlanNodeStore, tracked_store: TrackedEntityStore) -> None:
        self.plan_store = plan_store
        self.tracked_store = tracked_store

    def resolve_link(self, plan_node_id: str) -> ResolvedLink:
        node = self.plan_store.get_plan_node(plan_node_id)
        if node is None:
            raise not_found("plan_node", plan_node_id)

        kind, entity_id = link_target(node.link)
        if kind == "none" or entity_id is None:
            return ResolvedLink(kind="none")

        return ResolvedLink(
            kind=kind,
            entity_id=entity_id,
            owner_milestone_id=self.governing_milestone_id(kind, entity_id),
        )

    def governing_milestone_id(self, entity_type: EntityType, entity_id: str) -> Optional[str]:
        """Milestone whose lock governs the entity. Fails open on missing/deleted milestones."""
        if entity_type == "deliverable":
            deliverable = self.tracked_store.get_deliverable(entity_id)
            if deliverable is None:
                return None
            milestone_id = deliverable.milestone_id
        else:
            milestone_id = entity_id

        milestone = self.tracked_store.get_milestone(milestone_id)
        if milestone is None or milestone.is_deleted:
            return None
        return milestone.id

    def find_linked_plan_nodes(self, entity_type: EntityType, entity_id: str) -> list[str]:
        return [n.id for n in self.plan_store.list_plan_nodes_by_link(entity_type, entity_id)]
