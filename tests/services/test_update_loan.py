"""
Tests for InventoryCoordinator.update_loan / close_loan.

Covers the loan lifecycle (active -> returned, write-once), copy
substitution, accounting fields and the copy mirror updates that travel
with each change.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from lending_kernel.domain.dtos import LoanUpdate
from lending_kernel.exceptions import (
    CopyUnavailableError,
    EmptyUpdateError,
    InvalidConditionError,
    InvalidLoanTransitionError,
    InvalidQuantityError,
    LoanClosedError,
    LoanNotFoundError,
    SubstituteItemMismatchError,
    SubstitutionConflictError,
)
from lending_kernel.models.loan import LoanStatus
from lending_kernel.selectors.inventory_selector import InventorySelector


@pytest.fixture
def inventory(session):
    return InventorySelector(session)


@pytest.fixture
def lent(coordinator, create_item, create_borrower):
    """An item with three copies, the first of which is on loan."""
    item, copies = create_item(title="Atlas", course=None, copies=3)
    loan = coordinator.open_loan(
        borrower_id=create_borrower().id,
        copy_id=copies[0].id,
        handout_condition={"Cover": "Good"},
        handout_rating="Good",
    )
    return item, copies, loan


class TestCloseLoan:
    def test_close_returns_the_copy(self, coordinator, lent, inventory, item_counters):
        item, copies, loan = lent

        closed = coordinator.close_loan(
            loan.id,
            return_condition={"Cover": "Needs review", "Spine": "Good"},
            return_rating="Fair",
            return_notes="Water stain",
        )

        assert closed.status == LoanStatus.RETURNED
        assert closed.return_date == date(2024, 9, 9)
        assert dict(closed.return_condition) == {"Cover": "Needs review", "Spine": "Good"}
        copy = inventory.get_copy(copies[0].id)
        assert copy.available is True
        assert dict(copy.return_condition) == {"Cover": "Needs review", "Spine": "Good"}
        assert copy.return_rating == "Fair"
        assert copy.notes == "Water stain"
        assert item_counters(item.id) == (3, 3)

    def test_close_is_idempotent(self, coordinator, lent, inventory, item_counters):
        item, copies, loan = lent
        coordinator.close_loan(loan.id, return_date=date(2024, 9, 20))
        again = coordinator.close_loan(loan.id, return_date=date(2024, 9, 21))

        assert again.status == LoanStatus.RETURNED
        assert inventory.get_copy(copies[0].id).available is True
        assert item_counters(item.id) == (3, 3)

    def test_return_before_loan_date(self, coordinator, lent):
        _, _, loan = lent
        with pytest.raises(InvalidLoanTransitionError):
            coordinator.close_loan(loan.id, return_date=date(2024, 9, 1))

    def test_invalid_return_condition_leaves_loan_active(self, coordinator, lent, inventory):
        _, copies, loan = lent
        with pytest.raises(InvalidConditionError):
            coordinator.close_loan(loan.id, return_condition={"Cover": "Shiny"})
        assert coordinator.get_loan(loan.id).status == LoanStatus.ACTIVE
        assert inventory.get_copy(copies[0].id).available is False

    def test_unknown_loan(self, coordinator):
        with pytest.raises(LoanNotFoundError):
            coordinator.close_loan(uuid4())


class TestLifecycleTransitions:
    def test_returned_status_needs_a_date(self, coordinator, lent):
        _, _, loan = lent
        with pytest.raises(InvalidLoanTransitionError):
            coordinator.update_loan(loan.id, LoanUpdate(status=LoanStatus.RETURNED))

    def test_return_date_on_active_loan_is_rejected(self, coordinator, lent):
        _, _, loan = lent
        with pytest.raises(InvalidLoanTransitionError):
            coordinator.update_loan(loan.id, LoanUpdate(return_date=date(2024, 9, 12)))

    def test_status_accepts_text(self, coordinator, lent):
        _, _, loan = lent
        closed = coordinator.update_loan(
            loan.id, LoanUpdate(status="returned", return_date=date(2024, 9, 12))
        )
        assert closed.status == LoanStatus.RETURNED

    def test_unknown_status(self, coordinator, lent):
        _, _, loan = lent
        with pytest.raises(InvalidLoanTransitionError):
            coordinator.update_loan(loan.id, LoanUpdate(status="lost"))

    def test_returned_loan_cannot_be_reopened(self, coordinator, lent):
        _, _, loan = lent
        coordinator.close_loan(loan.id)
        with pytest.raises(LoanClosedError) as exc_info:
            coordinator.update_loan(loan.id, LoanUpdate(status=LoanStatus.ACTIVE))
        assert exc_info.value.operation == "reopen"

    def test_returned_loan_accepts_metadata_edits(self, coordinator, lent, item_counters):
        item, _, loan = lent
        coordinator.close_loan(loan.id)
        edited = coordinator.update_loan(loan.id, LoanUpdate(paid=True, amount_due="4.50"))
        assert edited.paid is True
        assert edited.amount_due == Decimal("4.50")
        assert item_counters(item.id) == (3, 3)

    def test_empty_update(self, coordinator, lent):
        _, _, loan = lent
        with pytest.raises(EmptyUpdateError):
            coordinator.update_loan(loan.id, LoanUpdate())


class TestAccountingFields:
    def test_amount_and_paid(self, coordinator, lent):
        _, _, loan = lent
        updated = coordinator.update_loan(
            loan.id, LoanUpdate(amount_due="12.5", paid=False, rules_accepted=True)
        )
        assert updated.amount_due == Decimal("12.50")
        assert updated.paid is False
        assert updated.rules_accepted is True
        assert updated.status == LoanStatus.ACTIVE

    @pytest.mark.parametrize("amount", ["-1", "abc", "NaN"])
    def test_invalid_amount(self, coordinator, lent, amount):
        _, _, loan = lent
        with pytest.raises(InvalidQuantityError):
            coordinator.update_loan(loan.id, LoanUpdate(amount_due=amount))

    def test_empty_text_clears_loan_field(self, coordinator, lent):
        _, _, loan = lent
        updated = coordinator.update_loan(loan.id, LoanUpdate(handout_rating=""))
        assert updated.handout_rating is None


class TestSubstitution:
    def test_substitute_becomes_live_copy(self, coordinator, lent, inventory, item_counters):
        item, copies, loan = lent

        updated = coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=copies[1].id))

        assert updated.copy_id == copies[1].id
        assert updated.replaced_by_id == copies[1].id
        assert updated.copy_code == "GEN-ATL-002"
        outgoing = inventory.get_copy(copies[0].id)
        assert outgoing.available is False and outgoing.withdrawn is True
        assert inventory.get_copy(copies[1].id).available is False
        assert item_counters(item.id) == (3, 1)

    def test_close_after_substitution_frees_the_substitute(self, coordinator, lent,
                                                           inventory, item_counters):
        item, copies, loan = lent
        coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=copies[1].id))
        coordinator.close_loan(loan.id)

        assert inventory.get_copy(copies[1].id).available is True
        assert inventory.get_copy(copies[0].id).withdrawn is True
        assert item_counters(item.id) == (3, 2)

    def test_second_substitution_conflicts(self, coordinator, lent, item_counters):
        item, copies, loan = lent
        coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=copies[1].id))
        with pytest.raises(SubstitutionConflictError):
            coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=copies[2].id))
        assert item_counters(item.id) == (3, 1)

    def test_substitute_from_another_item(self, coordinator, lent, create_item):
        _, _, loan = lent
        _, others = create_item(title="Biology", copies=1)
        with pytest.raises(SubstituteItemMismatchError):
            coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=others[0].id))

    def test_substitute_must_be_available(self, coordinator, lent, create_borrower, inventory):
        _, copies, loan = lent
        coordinator.open_loan(borrower_id=create_borrower().id, copy_id=copies[1].id)
        with pytest.raises(CopyUnavailableError):
            coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=copies[1].id))
        assert inventory.get_copy(copies[0].id).withdrawn is False

    def test_substitution_on_returned_loan(self, coordinator, lent):
        _, copies, loan = lent
        coordinator.close_loan(loan.id)
        with pytest.raises(LoanClosedError):
            coordinator.update_loan(loan.id, LoanUpdate(substitute_copy_id=copies[1].id))


class TestCopyMirror:
    def test_handout_fields_merge_onto_live_copy(self, coordinator, lent, inventory):
        _, copies, loan = lent
        coordinator.update_loan(
            loan.id, LoanUpdate(handout_condition={"Spine": "Excellent"}, handout_notes="")
        )
        copy = inventory.get_copy(copies[0].id)
        assert dict(copy.handout_condition) == {"Spine": "Excellent"}
        assert copy.handout_rating == "Good"

    def test_empty_text_does_not_clear_copy_mirror(self, coordinator, lent, inventory):
        _, copies, loan = lent
        coordinator.close_loan(loan.id, return_rating="Good")
        updated = coordinator.update_loan(loan.id, LoanUpdate(return_rating=""))

        assert updated.return_rating is None
        assert inventory.get_copy(copies[0].id).return_rating == "Good"

    def test_substitution_splits_handout_and_return_fields(self, coordinator, lent, inventory):
        """Hand-out fields follow the substitute, return fields stay on the outgoing copy."""
        _, copies, loan = lent
        coordinator.update_loan(
            loan.id,
            LoanUpdate(
                substitute_copy_id=copies[1].id,
                handout_rating="Fair",
                return_notes="Spine broken",
            ),
        )
        outgoing = inventory.get_copy(copies[0].id)
        substitute = inventory.get_copy(copies[1].id)
        assert substitute.handout_rating == "Fair"
        assert outgoing.notes == "Spine broken"
        assert substitute.notes != "Spine broken"
