"""
Module: lending_kernel.models.item
Responsibility: ORM persistence for Items (book titles) and their cached
    copy counters.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - total_copies equals the number of minted copies and available_copies
      equals the number of copies with available = true.  Both are running
      counters updated in the same transaction as the copy/loan mutation and
      are reconcilable by a full recount (ReconciliationService).
    - last_serial is the locked counter row for serial allocation: it only
      ever grows, so serials are never reused even after gaps.
    - Check constraints keep counters non-negative.

Failure modes:
    - IntegrityError if a counter would go negative (the services floor
      decrements at 0 before this can fire).
"""

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lending_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from lending_kernel.models.reference import Subject


class Item(TrackedBase):
    """
    A book title managed by the program (not a physical object).

    Contract:
        Created and edited by catalog management.  The counters and
        last_serial are owned by the InventoryCoordinator and must not be
        written by catalog edits.
    """

    __tablename__ = "items"

    __table_args__ = (
        CheckConstraint("total_copies >= 0", name="ck_item_total_nonneg"),
        CheckConstraint("available_copies >= 0", name="ck_item_available_nonneg"),
        CheckConstraint("last_serial >= 0", name="ck_item_serial_nonneg"),
        Index("idx_item_title", "title"),
    )

    title: Mapped[str] = mapped_column(String(300), nullable=False)

    author: Mapped[str | None] = mapped_column(String(200), nullable=True)

    isbn: Mapped[str | None] = mapped_column(String(20), nullable=True)

    publisher: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Grade level, first segment of copy codes
    course: Mapped[str | None] = mapped_column(String(50), nullable=True)

    subject_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("subjects.id"),
        nullable=True,
    )

    price: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0.00"),
    )

    total_copies: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    available_copies: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    last_serial: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    subject: Mapped["Subject | None"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<Item {self.title}: {self.available_copies}/{self.total_copies} available>"
        )
