from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal, Optional, Union


ItemType = Literal["task", "milestone", "deliverable"]
EntityType = Literal["milestone", "deliverable"]
SignerRole = Literal["supplier", "customer"]
LinkKind = Literal["none", "milestone", "deliverable"]


@dataclass(frozen=True)
class NoLink:
    pass


@dataclass(frozen=True)
class MilestoneLink:
    milestone_id: str


@dataclass(frozen=True)
class DeliverableLink:
    deliverable_id: str


# A plan node publishes to at most one tracked entity.
Link = Union[NoLink, MilestoneLink, DeliverableLink]

NO_LINK = NoLink()


@dataclass(frozen=True)
class PlanNode:
    id: str
    project_id: str
    item_type: ItemType
    name: str

    parent_id: Optional[str] = None
    link: Link = NO_LINK
    sort_order: int = 0
    indent_level: int = 0

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


@dataclass(frozen=True)
class Signature:
    signer_id: str
    signer_name: str
    signed_at: datetime


@dataclass(frozen=True)
class Milestone:
    id: str
    project_id: str
    name: str

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    forecast_end_date: Optional[date] = None

    baseline_start_date: Optional[date] = None
    baseline_end_date: Optional[date] = None
    baseline_billable: float = 0.0

    supplier_signature: Optional[Signature] = None
    customer_signature: Optional[Signature] = None
    # Cached: true iff both signatures are present. The signatures are the truth.
    locked: bool = False

    breached: bool = False
    breach_reason: Optional[str] = None
    breached_at: Optional[datetime] = None
    breached_by: Optional[str] = None

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    @property
    def fully_signed(self) -> bool:
        return self.supplier_signature is not None and self.customer_signature is not None


@dataclass(frozen=True)
class Deliverable:
    id: str
    project_id: str
    milestone_id: str
    name: str

    target_date: Optional[date] = None

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


@dataclass(frozen=True)
class BaselineVersion:
    id: str
    milestone_id: str
    version: int

    baseline_start_date: Optional[date]
    baseline_end_date: Optional[date]
    baseline_billable: float

    supplier_signed_by: Optional[str]
    supplier_signed_name: Optional[str]
    supplier_signed_at: Optional[datetime]
    customer_signed_by: Optional[str]
    customer_signed_name: Optional[str]
    customer_signed_at: Optional[datetime]

    created_at: datetime
    variation_id: Optional[str] = None


@dataclass(frozen=True)
class ProjectSnapshot:
    schema_version: str
    milestones: list[Milestone]
    deliverables: list[Deliverable]
    plan_nodes: list[PlanNode]


def link_target(link: Link) -> tuple[LinkKind, Optional[str]]:
    if isinstance(link, MilestoneLink):
        return "milestone", link.milestone_id
    if isinstance(link, DeliverableLink):
        return "deliverable", link.deliverable_id
    return "none", None
