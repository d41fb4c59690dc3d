"""
LoanSelector -- read-only loan listings.

Every listing joins the loan with its live copy's code so that callers can
show "who has copy 1ESO-MAT-004" without a second query.  Ordering is
creation time descending with the id as tie-breaker, so listings are stable
even when two loans share a timestamp.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Select, select

from lending_kernel.domain.dtos import LoanInfo
from lending_kernel.exceptions import LoanNotFoundError
from lending_kernel.models.copy import Copy
from lending_kernel.models.loan import Loan, LoanStatus
from lending_kernel.selectors.base import BaseSelector


def loan_to_info(loan: Loan, copy_code: str | None) -> LoanInfo:
    return LoanInfo(
        id=loan.id,
        borrower_id=loan.borrower_id,
        item_id=loan.item_id,
        copy_id=loan.copy_id,
        copy_code=copy_code,
        loan_date=loan.loan_date,
        due_date=loan.due_date,
        return_date=loan.return_date,
        status=LoanStatus(loan.status),
        handout_condition=dict(loan.handout_condition or {}),
        return_condition=dict(loan.return_condition or {}),
        handout_rating=loan.handout_rating,
        return_rating=loan.return_rating,
        handout_notes=loan.handout_notes,
        return_notes=loan.return_notes,
        rules_accepted=loan.rules_accepted,
        amount_due=loan.amount_due,
        paid=loan.paid,
        replaced_by_id=loan.replaced_by_id,
        created_at=loan.created_at,
    )


class LoanSelector(BaseSelector[Loan]):
    """Loan reads joined with the live copy code."""

    def _base_query(self) -> Select:
        return (
            select(Loan, Copy.code)
            .outerjoin(Copy, Copy.id == Loan.copy_id)
            .order_by(Loan.created_at.desc(), Loan.id.desc())
        )

    def _run(self, query: Select) -> list[LoanInfo]:
        return [loan_to_info(loan, code) for loan, code in self.session.execute(query)]

    def get_loan(self, loan_id: UUID) -> LoanInfo:
        row = self.session.execute(
            select(Loan, Copy.code)
            .outerjoin(Copy, Copy.id == Loan.copy_id)
            .where(Loan.id == loan_id)
        ).one_or_none()
        if row is None:
            raise LoanNotFoundError(str(loan_id))
        loan, code = row
        return loan_to_info(loan, code)

    def list_loans(self) -> list[LoanInfo]:
        """All loans, most recent first."""
        return self._run(self._base_query())

    def list_loans_for_borrower(self, borrower_id: UUID) -> list[LoanInfo]:
        return self._run(self._base_query().where(Loan.borrower_id == borrower_id))

    def list_active_loans(self) -> list[LoanInfo]:
        return self._run(
            self._base_query().where(Loan.status == LoanStatus.ACTIVE.value)
        )

    def list_overdue_loans(self, today: date) -> list[LoanInfo]:
        """Active loans whose due date is before ``today``."""
        return self._run(
            self._base_query().where(
                Loan.status == LoanStatus.ACTIVE.value,
                Loan.due_date < today,
            )
        )

    def find_active_loan_for_copy(self, copy_id: UUID) -> LoanInfo | None:
        loans = self._run(
            self._base_query().where(
                Loan.copy_id == copy_id,
                Loan.status == LoanStatus.ACTIVE.value,
            )
        )
        return loans[0] if loans else None
