"""
Module: lending_kernel.models.copy
Responsibility: ORM persistence for physical copies of an Item.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - (item_id, serial) is unique and serial is assigned from the item's
      locked counter, so it is monotonic per item and never reused.
    - code is globally unique (uq_copy_code is the final guard against
      prefix collisions between items).
    - available = false iff the copy is the live copy of exactly one active
      loan, or it is withdrawn.  Enforced by the InventoryCoordinator;
      audited by ReconciliationService.audit_copies().
    - Copies are never deleted: loan history references them.

Failure modes:
    - IntegrityError on duplicate code or (item_id, serial).
"""

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lending_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from lending_kernel.models.item import Item


class Copy(TrackedBase):
    """
    One physical, individually coded unit of an Item.

    The hand-out/return fields are a live mirror of the copy's most recent
    physical state.  Loans keep their own snapshot of the state at the time
    of that specific transaction.
    """

    __tablename__ = "copies"

    __table_args__ = (
        UniqueConstraint("code", name="uq_copy_code"),
        UniqueConstraint("item_id", "serial", name="uq_copy_item_serial"),
        Index("idx_copy_item", "item_id"),
        Index("idx_copy_available", "item_id", "available"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(64), nullable=False)

    serial: Mapped[int] = mapped_column(Integer, nullable=False)

    available: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    # Out of circulation (lost/damaged and swapped out, or retired by hand)
    withdrawn: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
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

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    item: Mapped["Item"] = relationship()

    def __repr__(self) -> str:
        state = "available" if self.available else "out"
        return f"<Copy {self.code} ({state})>"
