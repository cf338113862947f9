from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional

from delivery_baseline.core.baseline.lock_manager import lock_state
from delivery_baseline.core.clock import Clock, utc_now
from delivery_baseline.core.errors import not_found
from delivery_baseline.core.model import Deliverable, Milestone
from delivery_baseline.core.store.repository import TrackedEntityStore


logger = logging.getLogger(__name__)

MilestoneHealth = Literal["normal", "breached"]


@dataclass(frozen=True)
class BreachCheck:
    would_breach: bool
    is_baselined: bool
    milestone_end_date: Optional[date]
    proposed_date: Optional[date]


@dataclass(frozen=True)
class DateCommitResult:
    deliverable: Deliverable
    check: BreachCheck
    breach_recorded: bool
    breach_cleared: bool


def milestone_end_date(milestone: Milestone) -> Optional[date]:
    """forecast end, then baseline end, then planned end."""
    return milestone.forecast_end_date or milestone.baseline_end_date or milestone.end_date


def milestone_health(milestone: Milestone) -> MilestoneHealth:
    return "breached" if milestone.breached else "normal"


def _exceeds(proposed: Optional[date], end: Optional[date]) -> bool:
    if proposed is None or end is None:
        return False
    return proposed > end


class BreachMonitor:
    def __init__(self, store: TrackedEntityStore, *, now: Clock = utc_now) -> None:
        self.store = store
        self.now = now

    def check_against_baseline(self, milestone_id: str, proposed_date: Optional[date]) -> BreachCheck:
        """Would committing proposed_date break the milestone window? Never mutates."""
        milestone = self._require_live(milestone_id)
        end = milestone_end_date(milestone)
        return BreachCheck(
            would_breach=_exceeds(proposed_date, end),
            is_baselined=lock_state(milestone) == "locked",
            milestone_end_date=end,
            proposed_date=proposed_date,
        )

    def record_breach(self, milestone_id: str, reason: Optional[str], actor_id: Optional[str]) -> Milestone:
        self._require_live(milestone_id)
        updated = self.store.update_milestone(
            milestone_id,
            breached=True,
            breach_reason=reason,
            breached_at=self.now(),
            breached_by=actor_id,
        )
        logger.info("baseline breach recorded for milestone %s: %s", milestone_id, reason)
        return updated

    def clear_breach(self, milestone_id: str) -> Milestone:
        milestone = self._require_live(milestone_id)
        if not milestone.breached:
            return milestone
        updated = self.store.update_milestone(
            milestone_id,
            breached=False,
            breach_reason=None,
            breached_at=None,
            breached_by=None,
        )
        logger.info("baseline breach cleared for milestone %s", milestone_id)
        return updated

    def reconcile(self, milestone_id: str) -> bool:
        """Clear a breach once no live deliverable exceeds the window.

        Only ever clears. Setting a breach needs the reason and actor of the
        violating write, which only the caller has.
        """
        milestone = self._require_live(milestone_id)
        if not milestone.breached:
            return False

        end = milestone_end_date(milestone)
        offending = [
            d.id
            for d in self.store.list_deliverables_by_milestone(milestone_id)
            if _exceeds(d.target_date, end)
        ]
        if offending:
            logger.debug(
                "milestone %s still breached by deliverables %s", milestone_id, ", ".join(offending)
            )
            return False

        self.clear_breach(milestone_id)
        return True

    def commit_deliverable_date(
        self,
        deliverable_id: str,
        new_date: Optional[date],
        actor_id: Optional[str],
        reason: Optional[str] = None,
    ) -> DateCommitResult:
        deliverable = self.store.get_deliverable(deliverable_id)
        if deliverable is None or deliverable.is_deleted:
            raise not_found("deliverable", deliverable_id)

        check = self.check_against_baseline(deliverable.milestone_id, new_date)
        updated = self.store.update_deliverable(deliverable_id, target_date=new_date)

        if check.would_breach:
            self.record_breach(
                deliverable.milestone_id,
                reason
                or (
                    f'deliverable "{deliverable.name}" target {new_date} is after '
                    f"milestone end {check.milestone_end_date}"
                ),
                actor_id,
            )
            return DateCommitResult(
                deliverable=updated, check=check, breach_recorded=True, breach_cleared=False
            )

        cleared = self.reconcile(deliverable.milestone_id)
        return DateCommitResult(
            deliverable=updated, check=check, breach_recorded=False, breach_cleared=cleared
        )

    def _require_live(self, milestone_id: str) -> Milestone:
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None or milestone.is_deleted:
            raise not_found("milestone", milestone_id)
        return milestone
