"""
Module: lending_kernel.models.loan
Responsibility: ORM persistence for Loans binding one Borrower to one live
    Copy for a bounded period.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - At most one active loan per copy: partial unique index
      uq_loan_active_copy on copy_id WHERE status = 'active' (both
      PostgreSQL and SQLite support partial indexes).  The coordinator's
      copy row lock is the primary guard; the index is the final one.
    - replaced_by_id is write-once (enforced by the LoanLedger).
    - status is stored as 'active' or 'returned' only.  "Overdue" is derived
      on read from due_date and today's date, never stored.

Failure modes:
    - IntegrityError if a second active loan is inserted for the same copy.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lending_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from lending_kernel.models.copy import Copy
    from lending_kernel.models.reference import Borrower


class LoanStatus(str, Enum):
    """Stored loan status.

    Contract: ACTIVE -> RETURNED is the only transition.  RETURNED is
    terminal.
    """

    ACTIVE = "active"
    RETURNED = "returned"


# Computed on read, never stored
OVERDUE = "overdue"


class Loan(TrackedBase):
    """
    A record binding one Borrower to one Copy for a bounded period.

    Contract:
        copy_id always points at the live copy: the original, or the
        substitute once a substitution has happened (replaced_by_id then
        holds the same id).
    """

    __tablename__ = "loans"

    __table_args__ = (
        Index(
            "uq_loan_active_copy",
            "copy_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_loan_borrower", "borrower_id"),
        Index("idx_loan_item", "item_id"),
        Index("idx_loan_status_due", "status", "due_date"),
        Index("idx_loan_created", "created_at"),
    )

    borrower_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("borrowers.id"),
        nullable=False,
    )

    # Denormalized from the copy for listing convenience
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    # Nullable only for historical rows; always set on creation
    copy_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("copies.id"),
        nullable=True,
    )

    loan_date: Mapped[date] = mapped_column(Date, nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[LoanStatus] = mapped_column(
        String(20),
        nullable=False,
        default=LoanStatus.ACTIVE,
    )

    handout_condition: Mapped[dict[str, str]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    return_condition: Mapped[dict[str, str]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    handout_rating: Mapped[str | None] = mapped_column(String(100), nullable=True)

    return_rating: Mapped[str | None] = mapped_column(String(100), nullable=True)

    handout_notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    return_notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Borrower acknowledged the lending rules
    rules_accepted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    amount_due: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0.00"),
    )

    paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    replaced_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("copies.id"),
        nullable=True,
    )

    copy: Mapped["Copy | None"] = relationship(foreign_keys=[copy_id])

    borrower: Mapped["Borrower"] = relationship()

    @property
    def is_returned(self) -> bool:
        return self.status == LoanStatus.RETURNED

    def is_overdue(self, today: date) -> bool:
        """Overdue: not returned and the due date is in the past."""
        return not self.is_returned and self.due_date < today

    def __repr__(self) -> str:
        return f"<Loan {self.id} copy={self.copy_id} {self.status}>"
