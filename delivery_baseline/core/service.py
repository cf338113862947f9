from __future__ import annotations

from datetime import date
from typing import Optional

from delivery_baseline.core.baseline.lock_manager import (
    BaselineLockManager,
    baseline_status_label,
)
from delivery_baseline.core.breach.monitor import BreachCheck, BreachMonitor, DateCommitResult
from delivery_baseline.core.clock import Clock, utc_now
from delivery_baseline.core.deletion.coordinator import (
    DeletedItems,
    DeletionCoordinator,
    DeletionResult,
)
from delivery_baseline.core.errors import not_found
from delivery_baseline.core.links.resolver import CrossLinkResolver
from delivery_baseline.core.model import BaselineVersion, Deliverable, Milestone, PlanNode
from delivery_baseline.core.store.repository import Store


class BaselineService:
    """Operations exposed to the surrounding application, wired over one store."""

    def __init__(self, store: Store, *, now: Clock = utc_now, atomic_cascades: bool = True) -> None:
        self.store = store
        self.resolver = CrossLinkResolver(store, store)
        self.locks = BaselineLockManager(store, now=now)
        self.breaches = BreachMonitor(store, now=now)
        self.deletions = DeletionCoordinator(
            store,
            store,
            self.resolver,
            self.locks,
            now=now,
            atomic=store.atomic if atomic_cascades else None,
        )

    # baseline

    def sign_baseline(self, milestone_id: str, role: str, signer_id: str, signer_name: str) -> Milestone:
        return self.locks.sign(milestone_id, role, signer_id, signer_name)

    def reset_baseline(self, milestone_id: str) -> Milestone:
        return self.locks.reset_baseline(milestone_id)

    def baseline_history(self, milestone_id: str) -> list[BaselineVersion]:
        return self.locks.baseline_history(milestone_id)

    def baseline_status(self, milestone_id: str) -> str:
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise not_found("milestone", milestone_id)
        return baseline_status_label(milestone)

    # deletion

    def delete_plan_node(self, node_id: str, actor_id: Optional[str]) -> DeletionResult:
        return self.deletions.delete_plan_node(node_id, actor_id)

    def delete_milestone(self, milestone_id: str, actor_id: Optional[str]) -> DeletionResult:
        return self.deletions.delete_milestone(milestone_id, actor_id)

    def delete_deliverable(self, deliverable_id: str, actor_id: Optional[str]) -> DeletionResult:
        return self.deletions.delete_deliverable(deliverable_id, actor_id)

    def restore_plan_node(self, node_id: str) -> PlanNode:
        return self.deletions.restore_plan_node(node_id)

    def restore_milestone(self, milestone_id: str) -> Milestone:
        return self.deletions.restore_milestone(milestone_id)

    def restore_deliverable(self, deliverable_id: str) -> Deliverable:
        return self.deletions.restore_deliverable(deliverable_id)

    def list_deleted(self, project_id: str) -> DeletedItems:
        return self.deletions.list_deleted(project_id)

    # breach

    def check_date_against_baseline(self, milestone_id: str, proposed_date: Optional[date]) -> BreachCheck:
        return self.breaches.check_against_baseline(milestone_id, proposed_date)

    def record_breach(self, milestone_id: str, reason: Optional[str], actor_id: Optional[str]) -> Milestone:
        return self.breaches.record_breach(milestone_id, reason, actor_id)

    def clear_breach(self, milestone_id: str) -> Milestone:
        return self.breaches.clear_breach(milestone_id)

    def reconcile(self, milestone_id: str) -> bool:
        return self.breaches.reconcile(milestone_id)

    def commit_deliverable_date(
        self,
        deliverable_id: str,
        new_date: Optional[date],
        actor_id: Optional[str],
        reason: Optional[str] = None,
    ) -> DateCommitResult:
        return self.breaches.commit_deliverable_date(deliverable_id, new_date, actor_id, reason)
