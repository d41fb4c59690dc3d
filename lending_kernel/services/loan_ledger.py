"""
LoanLedger -- lifecycle of loan records.

Responsibility:
    Inserts loans, locks them for update, decides which lifecycle
    transition a partial update requests, and applies field-level changes
    to the loan row.  The copy-side consequences of a transition (flipping
    availability, counters, condition mirror) belong to the
    InventoryCoordinator, which calls the ledger and the registry inside
    one transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Never commits.

Invariants enforced:
    - ``active --close--> returned`` is the only status transition;
      ``returned`` is terminal.
    - A loan moves to ``returned`` only together with a return date, and an
      active loan never carries one, so the availability flip happens
      exactly once per loan.
    - ``replaced_by_id`` is write-once.

Failure modes:
    - LoanNotFoundError for an unknown loan id.
    - InvalidLoanTransitionError / InvalidQuantityError for malformed
      updates.
    - LoanClosedError for reopening or substituting a returned loan.
    - SubstitutionConflictError for a second substitution.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lending_kernel.db.types import money_from_value
from lending_kernel.domain.condition import ConditionSnapshot
from lending_kernel.domain.dtos import LoanUpdate
from lending_kernel.exceptions import (
    InvalidLoanTransitionError,
    InvalidQuantityError,
    LoanClosedError,
    LoanNotFoundError,
    SubstitutionConflictError,
)
from lending_kernel.logging_config import get_logger
from lending_kernel.models.copy import Copy
from lending_kernel.models.loan import Loan, LoanStatus
from lending_kernel.services.base import BaseService

logger = get_logger("services.loan_ledger")


@dataclass(frozen=True)
class LoanTransition:
    """What a partial update does to a loan's lifecycle."""

    new_status: LoanStatus
    returning_now: bool
    substituting: bool


def _text_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_status(loan_id: UUID, value: LoanStatus | str) -> LoanStatus:
    try:
        return LoanStatus(value)
    except ValueError:
        raise InvalidLoanTransitionError(str(loan_id), f"unknown status {value!r}")


class LoanLedger(BaseService[Loan]):
    """Loan records and their lifecycle rules."""

    def __init__(self, session: Session):
        super().__init__(session)

    def lock_loan(self, loan_id: UUID) -> Loan:
        """SELECT ... FOR UPDATE on the loan row, reread from the store."""
        loan = self.session.execute(
            select(Loan)
            .where(Loan.id == loan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def find_active_loan_id(self, copy_id: UUID) -> UUID | None:
        """Id of the active loan whose live copy is ``copy_id``, if any."""
        return self.session.scalars(
            select(Loan.id).where(
                Loan.copy_id == copy_id,
                Loan.status == LoanStatus.ACTIVE.value,
            )
        ).first()

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def record_open(
        self,
        *,
        borrower_id: UUID,
        copy: Copy,
        loan_date: date,
        due_date: date,
        handout_condition: ConditionSnapshot,
        handout_rating: str | None = None,
        handout_notes: str | None = None,
        rules_accepted: bool = False,
    ) -> Loan:
        """
        Insert an active loan bound to ``copy``.

        Preconditions:
            - ``copy`` is locked and available (checked by the caller).
        """
        loan = Loan(
            borrower_id=borrower_id,
            item_id=copy.item_id,
            copy_id=copy.id,
            loan_date=loan_date,
            due_date=due_date,
            return_date=None,
            status=LoanStatus.ACTIVE.value,
            handout_condition=handout_condition.to_dict(),
            return_condition={},
            handout_rating=_text_or_none(handout_rating),
            handout_notes=_text_or_none(handout_notes),
            rules_accepted=bool(rules_accepted),
            amount_due=Decimal("0.00"),
            paid=False,
        )
        self.session.add(loan)
        self.session.flush()
        return loan

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def plan_transition(self, loan: Loan, update: LoanUpdate) -> LoanTransition:
        """
        Validate the lifecycle part of ``update`` against the locked loan.

        Rules:
            active   + status=returned + return_date  -> return now
            active   + status=returned, no date       -> InvalidRequest
            active   + return_date, stays active      -> InvalidRequest
            returned + status=active                  -> Conflict
            returned + substitute                     -> Conflict
            returned + anything else                  -> metadata edit
        """
        current = LoanStatus(loan.status)
        new_status = (
            parse_status(loan.id, update.status) if update.status is not None else current
        )
        substituting = update.substitute_copy_id is not None

        if update.return_date is not None and update.return_date < loan.loan_date:
            raise InvalidLoanTransitionError(
                str(loan.id),
                f"return date {update.return_date} is before loan date {loan.loan_date}",
            )

        if current == LoanStatus.RETURNED:
            if new_status == LoanStatus.ACTIVE:
                raise LoanClosedError(str(loan.id), "reopen")
            if substituting:
                raise LoanClosedError(str(loan.id), "substitute the copy")
            return LoanTransition(new_status, returning_now=False, substituting=False)

        if substituting and loan.replaced_by_id is not None:
            raise SubstitutionConflictError(str(loan.id), str(loan.replaced_by_id))

        if new_status == LoanStatus.RETURNED:
            if update.return_date is None:
                raise InvalidLoanTransitionError(
                    str(loan.id), "closing a loan requires a return date"
                )
            return LoanTransition(new_status, returning_now=True, substituting=substituting)

        if update.return_date is not None:
            raise InvalidLoanTransitionError(
                str(loan.id), "a return date requires status 'returned'"
            )
        return LoanTransition(new_status, returning_now=False, substituting=substituting)

    def apply_update(
        self,
        loan: Loan,
        update: LoanUpdate,
        transition: LoanTransition,
        handout_condition: ConditionSnapshot | None = None,
        return_condition: ConditionSnapshot | None = None,
    ) -> None:
        """
        Write the field-level changes of ``update`` onto the loan row.

        None means "not supplied"; an empty string clears a text field;
        a supplied snapshot replaces the stored one as a whole.
        """
        if update.amount_due is not None:
            loan.amount_due = self._parse_amount(update.amount_due)
        if update.paid is not None:
            loan.paid = bool(update.paid)
        if update.rules_accepted is not None:
            loan.rules_accepted = bool(update.rules_accepted)

        if handout_condition is not None:
            loan.handout_condition = handout_condition.to_dict()
        if update.handout_rating is not None:
            loan.handout_rating = _text_or_none(update.handout_rating)
        if update.handout_notes is not None:
            loan.handout_notes = _text_or_none(update.handout_notes)

        if return_condition is not None:
            loan.return_condition = return_condition.to_dict()
        if update.return_rating is not None:
            loan.return_rating = _text_or_none(update.return_rating)
        if update.return_notes is not None:
            loan.return_notes = _text_or_none(update.return_notes)

        if update.return_date is not None:
            loan.return_date = update.return_date
        loan.status = transition.new_status.value
        self.session.flush()

        if transition.returning_now:
            logger.info(
                "loan_returned",
                extra={"loan_id": str(loan.id), "return_date": loan.return_date},
            )

    def record_substitution(self, loan: Loan, substitute: Copy) -> None:
        """Point the loan at its substitute copy (write-once)."""
        if loan.replaced_by_id is not None:
            raise SubstitutionConflictError(str(loan.id), str(loan.replaced_by_id))
        previous = loan.copy_id
        loan.copy_id = substitute.id
        loan.replaced_by_id = substitute.id
        self.session.flush()
        logger.info(
            "copy_substituted",
            extra={
                "loan_id": str(loan.id),
                "previous_copy_id": str(previous) if previous else None,
                "substitute_copy_id": str(substitute.id),
            },
        )

    @staticmethod
    def _parse_amount(value) -> Decimal:
        try:
            amount = money_from_value(value)
        except ValueError:
            raise InvalidQuantityError("amount_due", value)
        if amount < 0:
            raise InvalidQuantityError("amount_due", value)
        return amount
