from datetime import date

import pytest

from conftest import FIXED_NOW, lock
from delivery_baseline.core.breach.monitor import milestone_end_date, milestone_health
from delivery_baseline.core.errors import NotFoundError


def test_late_deliverable_on_locked_milestone_records_breach(service, store):
    lock(service)

    check = service.check_date_against_baseline("M-1", date(2026, 4, 15))
    assert check.would_breach is True
    assert check.is_baselined is True
    assert check.milestone_end_date == date(2026, 3, 31)
    assert store.get_milestone("M-1").breached is False

    service.record_breach("M-1", "Deliverable slipped", "u-pm")
    m = store.get_milestone("M-1")
    assert m.breached is True
    assert m.breach_reason == "Deliverable slipped"
    assert m.breached_by == "u-pm"
    assert m.breached_at == FIXED_NOW
    assert milestone_health(m) == "breached"


def test_check_within_window_and_on_end_date(service):
    assert service.check_date_against_baseline("M-1", date(2026, 3, 1)).would_breach is False
    assert service.check_date_against_baseline("M-1", date(2026, 3, 31)).would_breach is False
    assert service.check_date_against_baseline("M-1", None).would_breach is False
    assert service.check_date_against_baseline("M-1", date(2026, 3, 1)).is_baselined is False


def test_end_date_precedence(store):
    m = store.get_milestone("M-1")
    assert milestone_end_date(m) == date(2026, 3, 31)

    m = store.update_milestone("M-1", forecast_end_date=date(2026, 5, 1), end_date=date(2026, 2, 1))
    assert milestone_end_date(m) == date(2026, 5, 1)

    m = store.update_milestone("M-1", forecast_end_date=None, baseline_end_date=None)
    assert milestone_end_date(m) == date(2026, 2, 1)


def test_no_end_date_never_breaches(service, store):
    store.update_milestone("M-2", end_date=None)
    check = service.check_date_against_baseline("M-2", date(2030, 1, 1))
    assert check.would_breach is False
    assert check.milestone_end_date is None


def test_check_unknown_milestone(service):
    with pytest.raises(NotFoundError):
        service.check_date_against_baseline("M-404", date(2026, 1, 1))


def test_clear_breach_is_noop_when_not_breached(service, store):
    before = store.get_milestone("M-1")
    assert service.clear_breach("M-1") == before


def test_reconcile_keeps_flag_while_deliverable_still_late(service, store):
    store.update_deliverable("D-2", target_date=date(2026, 2, 1))
    service.record_breach("M-2", "late runbook", "u-pm")

    assert service.reconcile("M-2") is False
    assert store.get_milestone("M-2").breached is True

    store.update_deliverable("D-2", target_date=date(2026, 1, 12))
    assert service.reconcile("M-2") is True
    m = store.get_milestone("M-2")
    assert m.breached is False
    assert m.breach_reason is None
    assert m.breached_at is None


def test_reconcile_never_sets_breach(service, store):
    store.update_deliverable("D-2", target_date=date(2026, 2, 1))
    assert service.reconcile("M-2") is False
    assert store.get_milestone("M-2").breached is False


def test_commit_late_date_records_breach_with_default_reason(service, store):
    result = service.commit_deliverable_date("D-2", date(2026, 2, 1), "u-pm")

    assert result.breach_recorded is True
    assert result.deliverable.target_date == date(2026, 2, 1)
    m = store.get_milestone("M-2")
    assert m.breached is True
    assert "Runbook" in m.breach_reason
    assert "2026-01-15" in m.breach_reason


def test_commit_back_in_window_clears_breach(service, store):
    service.commit_deliverable_date("D-2", date(2026, 2, 1), "u-pm", reason="vendor delay")
    assert store.get_milestone("M-2").breach_reason == "vendor delay"

    result = service.commit_deliverable_date("D-2", date(2026, 1, 14), "u-pm")
    assert result.breach_recorded is False
    assert result.breach_cleared is True
    assert store.get_milestone("M-2").breached is False


def test_commit_deleted_deliverable_is_not_found(service):
    service.delete_deliverable("D-2", "u-1")
    with pytest.raises(NotFoundError):
        service.commit_deliverable_date("D-2", date(2026, 1, 1), "u-pm")
