"""
Tests for ReconciliationService: counter recount/repair and copy audit.

Drift is injected by writing rows directly, the way a crashed script or a
manual database edit would leave them.
"""

import pytest
from sqlalchemy import update

from lending_kernel.domain.dtos import CopyUpdate
from lending_kernel.models.copy import Copy
from lending_kernel.models.item import Item
from lending_kernel.services.reconciliation_service import ReconciliationService


@pytest.fixture
def reconciliation(session):
    return ReconciliationService(session)


def _corrupt_item(session, item_id, **values):
    session.execute(update(Item).where(Item.id == item_id).values(**values))
    session.expire_all()


def _corrupt_copy(session, copy_id, **values):
    session.execute(update(Copy).where(Copy.id == copy_id).values(**values))
    session.expire_all()


class TestRecountItems:
    def test_consistent_store_reports_nothing(self, reconciliation, coordinator,
                                              create_item, create_borrower):
        _, copies = create_item(copies=3)
        loan = coordinator.open_loan(borrower_id=create_borrower().id, copy_id=copies[0].id)
        coordinator.close_loan(loan.id)
        coordinator.update_copy(copies[1].id, CopyUpdate(available=False))

        assert reconciliation.recount_items() == []

    def test_detects_drift_without_repairing(self, session, reconciliation, create_item,
                                             item_counters):
        item, _ = create_item(copies=3)
        _corrupt_item(session, item.id, total_copies=5, available_copies=0)

        drifts = reconciliation.recount_items()

        assert len(drifts) == 1
        drift = drifts[0]
        assert (drift.cached_total, drift.counted_total) == (5, 3)
        assert (drift.cached_available, drift.counted_available) == (0, 3)
        assert drift.repaired is False
        assert item_counters(item.id) == (5, 0)

    def test_repair_rewrites_counters(self, session, reconciliation, create_item, item_counters):
        item, _ = create_item(copies=2)
        _corrupt_item(session, item.id, total_copies=0, available_copies=7)

        drifts = reconciliation.recount_items(repair=True)

        assert [d.repaired for d in drifts] == [True]
        assert item_counters(item.id) == (2, 2)
        assert reconciliation.recount_items() == []

    def test_lagging_serial_is_raised(self, session, reconciliation, coordinator, create_item):
        item, _ = create_item(copies=2)
        _corrupt_item(session, item.id, last_serial=1)

        drifts = reconciliation.recount_items(repair=True)
        assert drifts[0].max_serial == 2

        minted = coordinator.mint_copies(item.id, 1)
        assert minted[0].serial == 3

    def test_drift_is_logged(self, session, reconciliation, create_item, captured_logs):
        item, _ = create_item(copies=1)
        _corrupt_item(session, item.id, available_copies=0)
        reconciliation.recount_items(repair=True)

        messages = [r["message"] for r in captured_logs()]
        assert "counter_drift_detected" in messages
        assert "counter_drift_repaired" in messages


class TestAuditCopies:
    def test_clean_store(self, reconciliation, coordinator, create_item, create_borrower):
        _, copies = create_item(copies=2)
        coordinator.open_loan(borrower_id=create_borrower().id, copy_id=copies[0].id)
        assert reconciliation.audit_copies() == []

    def test_unavailable_without_loan(self, session, reconciliation, create_item):
        _, copies = create_item(copies=1)
        _corrupt_copy(session, copies[0].id, available=False)

        violations = reconciliation.audit_copies()
        assert [v.reason for v in violations] == ["unavailable without an active loan"]
        assert violations[0].code == copies[0].code

    def test_available_while_on_loan(self, session, reconciliation, coordinator,
                                     create_item, create_borrower):
        _, copies = create_item(copies=1)
        loan = coordinator.open_loan(borrower_id=create_borrower().id, copy_id=copies[0].id)
        _corrupt_copy(session, copies[0].id, available=True)

        violations = reconciliation.audit_copies()
        assert violations[0].reason == "available while on an active loan"
        assert violations[0].active_loan_ids == (loan.id,)

    def test_withdrawn_marked_available(self, session, reconciliation, create_item):
        _, copies = create_item(copies=1)
        _corrupt_copy(session, copies[0].id, withdrawn=True, available=True)
        assert reconciliation.audit_copies()[0].reason == "withdrawn copy marked available"
