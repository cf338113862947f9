from datetime import date, datetime, timezone

import pytest

from delivery_baseline.core.model import (
    Deliverable,
    DeliverableLink,
    Milestone,
    MilestoneLink,
    PlanNode,
)
from delivery_baseline.core.service import BaselineService
from delivery_baseline.core.store.memory_store import InMemoryStore


FIXED_NOW = datetime(2026, 1, 20, 9, 30, tzinfo=timezone.utc)


def fixed_now() -> datetime:
    return FIXED_NOW


def seed(store) -> None:
    """Two milestones; M-1 has two plan nodes linked directly, one via its deliverable."""
    store.load_snapshot(
        milestones=[
            Milestone(
                id="M-1",
                project_id="PRJ",
                name="Discovery sign-off",
                end_date=date(2026, 3, 31),
                baseline_start_date=date(2026, 1, 5),
                baseline_end_date=date(2026, 3, 31),
                baseline_billable=25000.0,
            ),
            Milestone(id="M-2", project_id="PRJ", name="Pilot go-live", end_date=date(2026, 1, 15)),
        ],
        deliverables=[
            Deliverable(
                id="D-1",
                project_id="PRJ",
                milestone_id="M-1",
                name="Assessment",
                target_date=date(2026, 3, 15),
            ),
            Deliverable(
                id="D-2",
                project_id="PRJ",
                milestone_id="M-2",
                name="Runbook",
                target_date=date(2026, 1, 10),
            ),
        ],
        plan_nodes=[
            PlanNode(id="P-M1", project_id="PRJ", item_type="milestone", name="Discovery", link=MilestoneLink("M-1")),
            PlanNode(id="P-M1b", project_id="PRJ", item_type="milestone", name="Discovery (copy)", link=MilestoneLink("M-1"), sort_order=1),
            PlanNode(id="P-D1", project_id="PRJ", item_type="deliverable", name="Assessment", parent_id="P-M1", link=DeliverableLink("D-1"), sort_order=2),
            PlanNode(id="P-T", project_id="PRJ", item_type="task", name="Interviews", parent_id="P-D1", sort_order=3),
            PlanNode(id="P-M2", project_id="PRJ", item_type="milestone", name="Pilot", link=MilestoneLink("M-2"), sort_order=4),
            PlanNode(id="P-D2", project_id="PRJ", item_type="deliverable", name="Runbook", parent_id="P-M2", link=DeliverableLink("D-2"), sort_order=5),
        ],
    )


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    seed(s)
    return s


@pytest.fixture
def service(store) -> BaselineService:
    return BaselineService(store, now=fixed_now)


def lock(service: BaselineService, milestone_id: str = "M-1") -> None:
    service.sign_baseline(milestone_id, "supplier", "u-sup", "Sam Supplier")
    service.sign_baseline(milestone_id, "customer", "u-cus", "Casey Customer")
