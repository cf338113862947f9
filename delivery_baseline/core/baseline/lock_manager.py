from __future__ import annotations

import logging
import uuid
from typing import Literal, Optional

from delivery_baseline.core.clock import Clock, utc_now
from delivery_baseline.core.errors import (
    AuditDuplicateGuarded,
    BaselineLockedError,
    DuplicateBaselineVersion,
    InvalidRoleError,
    not_found,
)
from delivery_baseline.core.model import BaselineVersion, Milestone, Signature
from delivery_baseline.core.store.repository import TrackedEntityStore


logger = logging.getLogger(__name__)

LockState = Literal["unsigned", "supplier_only", "customer_only", "locked"]

SIGNER_ROLES: tuple[str, ...] = ("supplier", "customer")

ORIGINAL_BASELINE_VERSION = 1

# Display labels used by the tracker screens.
BASELINE_STATUS_LABELS: dict[str, str] = {
    "unsigned": "Not Committed",
    "supplier_only": "Awaiting Customer",
    "customer_only": "Awaiting Supplier",
    "locked": "Locked",
}


def lock_state(milestone: Milestone) -> LockState:
    if milestone.locked or milestone.fully_signed:
        return "locked"
    if milestone.supplier_signature is not None:
        return "supplier_only"
    if milestone.customer_signature is not None:
        return "customer_only"
    return "unsigned"


def baseline_status_label(milestone: Milestone) -> str:
    return BASELINE_STATUS_LABELS[lock_state(milestone)]


class BaselineLockManager:
    """Dual-signature baseline lock.

    UNSIGNED -> SUPPLIER_ONLY | CUSTOMER_ONLY -> LOCKED. Only reset_baseline
    leaves LOCKED. The first transition into LOCKED writes the original
    baseline (version 1); the store's (milestone_id, version) key keeps it unique
    when two "second signature" calls race.
    """

    def __init__(self, store: TrackedEntityStore, *, now: Clock = utc_now) -> None:
        self.store = store
        self.now = now

    def sign(self, milestone_id: str, role: str, signer_id: str, signer_name: str) -> Milestone:
        if role not in SIGNER_ROLES:
            raise InvalidRoleError(
                code="E_INVALID_ROLE",
                message=f'invalid signer role "{role}" (must be one of: supplier, customer)',
                entity="milestone",
                entity_id=milestone_id,
            )

        milestone = self._require_live(milestone_id)
        if self._locked(milestone):
            raise BaselineLockedError(
                code="E_BASELINE_LOCKED",
                message=f'milestone "{milestone.name}" already has a locked baseline; reset it before re-signing',
                entity="milestone",
                entity_id=milestone_id,
            )

        signature = Signature(signer_id=signer_id, signer_name=signer_name, signed_at=self.now())
        field = "supplier_signature" if role == "supplier" else "customer_signature"
        # Decide on the row as written, not the row as read: two concurrent
        # signers that each read "other party missing" still lock the pair.
        updated = self.store.update_milestone(milestone_id, **{field: signature})

        if updated.fully_signed:
            if not updated.locked:
                updated = self.store.update_milestone(milestone_id, locked=True)
                logger.info("baseline locked for milestone %s (%s)", milestone_id, updated.name)
            self.materialize_original_baseline(milestone_id)

        return updated

    def sign_as_supplier(self, milestone_id: str, signer_id: str, signer_name: str) -> Milestone:
        return self.sign(milestone_id, "supplier", signer_id, signer_name)

    def sign_as_customer(self, milestone_id: str, signer_id: str, signer_name: str) -> Milestone:
        return self.sign(milestone_id, "customer", signer_id, signer_name)

    def materialize_original_baseline(self, milestone_id: str) -> Optional[BaselineVersion]:
        """Insert the version-1 audit row. Returns None when it already exists."""
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise not_found("milestone", milestone_id)
        sup = milestone.supplier_signature
        cus = milestone.customer_signature
        if sup is None or cus is None:
            logger.debug("milestone %s is not fully signed; no original baseline written", milestone_id)
            return None

        record = BaselineVersion(
            id=str(uuid.uuid4()),
            milestone_id=milestone_id,
            version=ORIGINAL_BASELINE_VERSION,
            baseline_start_date=milestone.baseline_start_date,
            baseline_end_date=milestone.baseline_end_date,
            baseline_billable=milestone.baseline_billable,
            supplier_signed_by=sup.signer_id,
            supplier_signed_name=sup.signer_name,
            supplier_signed_at=sup.signed_at,
            customer_signed_by=cus.signer_id,
            customer_signed_name=cus.signer_name,
            customer_signed_at=cus.signed_at,
            created_at=self.now(),
        )
        try:
            inserted = self.store.insert_baseline_version(record)
        except DuplicateBaselineVersion:
            guarded = AuditDuplicateGuarded(
                code="E_AUDIT_DUPLICATE",
                message="original baseline (v1) already exists; insert skipped",
                entity="milestone",
                entity_id=milestone_id,
            )
            logger.info("%s", guarded)
            return None

        logger.info("created original baseline (v1) for milestone %s", milestone_id)
        return inserted

    def reset_baseline(self, milestone_id: str) -> Milestone:
        """Administrative unlock. Existing baseline versions are kept."""
        milestone = self._require_live(milestone_id)
        if lock_state(milestone) == "unsigned":
            return milestone
        updated = self.store.update_milestone(
            milestone_id,
            supplier_signature=None,
            customer_signature=None,
            locked=False,
        )
        logger.info("baseline reset for milestone %s (%s)", milestone_id, updated.name)
        return updated

    def is_locked(self, milestone_id: str) -> bool:
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None or milestone.is_deleted:
            return False
        return self._locked(milestone)

    def baseline_history(self, milestone_id: str) -> list[BaselineVersion]:
        if self.store.get_milestone(milestone_id) is None:
            raise not_found("milestone", milestone_id)
        return self.store.list_baseline_versions(milestone_id)

    def _locked(self, milestone: Milestone) -> bool:
        return lock_state(milestone) == "locked"

    def _require_live(self, milestone_id: str) -> Milestone:
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None or milestone.is_deleted:
            raise not_found("milestone", milestone_id)
        return milestone
