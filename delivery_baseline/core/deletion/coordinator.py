from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ContextManager, Optional

from delivery_baseline.core.baseline.lock_manager import BaselineLockManager
from delivery_baseline.core.clock import Clock, utc_now
from delivery_baseline.core.errors import (
    BaselineError,
    BaselineLockedError,
    CascadePartialFailure,
    not_found,
)
from delivery_baseline.core.links.resolver import CrossLinkResolver, ResolvedLink
from delivery_baseline.core.model import Deliverable, EntityType, Milestone, PlanNode
from delivery_baseline.core.store.repository import PlanNodeStore, TrackedEntityStore


logger = logging.getLogger(__name__)

AtomicFn = Callable[[], ContextManager[None]]


@dataclass(frozen=True)
class DeletionResult:
    allowed: bool
    synced: bool = False
    # Linked plan nodes found when deleting from the tracker side; None for plan-node deletes.
    count: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[BaselineError] = None

    def raise_for_block(self) -> None:
        """Raise the BaselineLockedError when the delete was refused."""
        if not self.allowed and self.error is not None:
            raise self.error


@dataclass(frozen=True)
class DeletedItems:
    plan_nodes: list[PlanNode]
    milestones: list[Milestone]
    deliverables: list[Deliverable]


class DeletionCoordinator:
    """The only code path that deletes plan nodes, milestones or deliverables.

    A locked baseline, and everything published to it, cannot be deleted from
    either side until the baseline is reset. Every delete is a soft-delete and
    repeating one is safe: an already-deleted primary still re-runs its cascade,
    which is how a partial cascade gets finished.
    """

    def __init__(
        self,
        plan_store: PlanNodeStore,
        tracked_store: TrackedEntityStore,
        resolver: CrossLinkResolver,
        lock_manager: BaselineLockManager,
        *,
        now: Clock = utc_now,
        atomic: Optional[AtomicFn] = None,
    ) -> None:
        self.plan_store = plan_store
        self.tracked_store = tracked_store
        self.resolver = resolver
        self.lock_manager = lock_manager
        self.now = now
        # When set, primary delete + cascade share one transaction.
        self.atomic = atomic

    # Planner -> tracker

    def delete_plan_node(self, node_id: str, actor_id: Optional[str]) -> DeletionResult:
        link = self.resolver.resolve_link(node_id)

        blocked = self._check_lock(
            link.owner_milestone_id,
            lambda name: f'cannot delete: linked to baselined milestone "{name}"; reset the baseline first',
            entity="plan_node",
            entity_id=node_id,
        )
        if blocked is not None:
            return blocked

        at = self.now()
        with self._unit():
            self.plan_store.soft_delete_plan_nodes([node_id], actor_id=actor_id, at=at)
            if link.kind == "none" or link.entity_id is None:
                return DeletionResult(allowed=True, synced=False)

            synced, error = self._cascade(
                lambda: self._delete_linked_entity(link, actor_id, at),
                entity="plan_node",
                entity_id=node_id,
                target=f"{link.kind} {link.entity_id}",
            )

        if synced:
            logger.info("soft-deleted %s %s (synced from plan node %s)", link.kind, link.entity_id, node_id)
        return DeletionResult(allowed=True, synced=synced, error=error)

    # Tracker -> planner

    def delete_milestone(self, milestone_id: str, actor_id: Optional[str]) -> DeletionResult:
        if self.tracked_store.get_milestone(milestone_id) is None:
            raise not_found("milestone", milestone_id)

        blocked = self._check_lock(
            self.resolver.governing_milestone_id("milestone", milestone_id),
            lambda name: f'cannot delete: milestone "{name}" has a locked baseline; reset the baseline first',
            entity="milestone",
            entity_id=milestone_id,
        )
        if blocked is not None:
            return blocked

        at = self.now()
        with self._unit():
            self.tracked_store.soft_delete_milestone(milestone_id, actor_id=actor_id, at=at)
            return self._cascade_to_plan("milestone", milestone_id, actor_id, at)

    def delete_deliverable(self, deliverable_id: str, actor_id: Optional[str]) -> DeletionResult:
        if self.tracked_store.get_deliverable(deliverable_id) is None:
            raise not_found("deliverable", deliverable_id)

        # Deliverables follow their owning milestone's lock.
        blocked = self._check_lock(
            self.resolver.governing_milestone_id("deliverable", deliverable_id),
            lambda name: (
                f'cannot delete: deliverable belongs to baselined milestone "{name}"; '
                "reset the baseline first"
            ),
            entity="deliverable",
            entity_id=deliverable_id,
        )
        if blocked is not None:
            return blocked

        at = self.now()
        with self._unit():
            self.tracked_store.soft_delete_deliverable(deliverable_id, actor_id=actor_id, at=at)
            return self._cascade_to_plan("deliverable", deliverable_id, actor_id, at)

    # Restore

    def restore_plan_node(self, node_id: str) -> PlanNode:
        node = self.plan_store.restore_plan_node(node_id)
        if node is None:
            raise not_found("plan_node", node_id)
        return node

    def restore_milestone(self, milestone_id: str) -> Milestone:
        milestone = self.tracked_store.restore_milestone(milestone_id)
        if milestone is None:
            raise not_found("milestone", milestone_id)
        return milestone

    def restore_deliverable(self, deliverable_id: str) -> Deliverable:
        deliverable = self.tracked_store.restore_deliverable(deliverable_id)
        if deliverable is None:
            raise not_found("deliverable", deliverable_id)
        return deliverable

    def list_deleted(self, project_id: str) -> DeletedItems:
        return DeletedItems(
            plan_nodes=[
                n
                for n in self.plan_store.list_plan_nodes(project_id, include_deleted=True)
                if n.is_deleted
            ],
            milestones=[
                m
                for m in self.tracked_store.list_milestones(project_id, include_deleted=True)
                if m.is_deleted
            ],
            deliverables=[
                d
                for d in self.tracked_store.list_deliverables(project_id, include_deleted=True)
                if d.is_deleted
            ],
        )

    # internals

    def _check_lock(
        self,
        milestone_id: Optional[str],
        reason: Callable[[str], str],
        *,
        entity: str,
        entity_id: str,
    ) -> Optional[DeletionResult]:
        if milestone_id is None or not self.lock_manager.is_locked(milestone_id):
            return None

        milestone = self.tracked_store.get_milestone(milestone_id)
        name = milestone.name if milestone is not None else milestone_id
        error = BaselineLockedError(
            code="E_BASELINE_LOCKED",
            message=reason(name),
            entity=entity,
            entity_id=entity_id,
        )
        logger.warning("%s", error)
        return DeletionResult(allowed=False, reason=error.message, error=error)

    def _unit(self) -> ContextManager[None]:
        return self.atomic() if self.atomic is not None else nullcontext()

    def _cascade(
        self,
        step: Callable[[], bool],
        *,
        entity: str,
        entity_id: str,
        target: str,
    ) -> tuple[bool, Optional[CascadePartialFailure]]:
        if self.atomic is not None:
            # Inside a transaction a failure rolls the primary back too, so it propagates.
            return step(), None

        try:
            return step(), None
        except Exception as e:
            failure = CascadePartialFailure(
                code="E_CASCADE_PARTIAL",
                message=f"deleted, but propagation to {target} failed ({e}); retry the delete",
                entity=entity,
                entity_id=entity_id,
            )
            logger.error("%s", failure)
            return False, failure

    def _delete_linked_entity(
        self, link: ResolvedLink, actor_id: Optional[str], at: datetime
    ) -> bool:
        assert link.entity_id is not None
        if link.kind == "milestone":
            if self.tracked_store.get_milestone(link.entity_id) is None:
                logger.warning("plan node links to missing milestone %s", link.entity_id)
                return False
            self.tracked_store.soft_delete_milestone(link.entity_id, actor_id=actor_id, at=at)
            return True

        if self.tracked_store.get_deliverable(link.entity_id) is None:
            logger.warning("plan node links to missing deliverable %s", link.entity_id)
            return False
        self.tracked_store.soft_delete_deliverable(link.entity_id, actor_id=actor_id, at=at)
        return True

    def _cascade_to_plan(
        self, entity_type: EntityType, entity_id: str, actor_id: Optional[str], at: datetime
    ) -> DeletionResult:
        node_ids = self.resolver.find_linked_plan_nodes(entity_type, entity_id)
        if not node_ids:
            return DeletionResult(allowed=True, synced=False, count=0)

        synced, error = self._cascade(
            lambda: self._delete_plan_nodes(node_ids, actor_id, at),
            entity=entity_type,
            entity_id=entity_id,
            target=f"{len(node_ids)} plan nodes",
        )
        if synced:
            logger.info(
                "soft-deleted %d plan nodes (synced from %s %s)", len(node_ids), entity_type, entity_id
            )
        return DeletionResult(allowed=True, synced=synced, count=len(node_ids), error=error)

    def _delete_plan_nodes(self, node_ids: list[str], actor_id: Optional[str], at: datetime) -> bool:
        self.plan_store.soft_delete_plan_nodes(node_ids, actor_id=actor_id, at=at)
        return True
