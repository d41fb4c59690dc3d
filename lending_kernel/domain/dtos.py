"""
Data Transfer Objects -- immutable values crossing the kernel boundary.

Responsibility:
    Frozen dataclasses returned by every public coordinator, service and
    selector method (never ORM rows), plus the partial-update requests
    accepted by ``update_loan`` and ``update_copy``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  DTOs never hold
    ORM rows; conversion from ORM rows lives in the selectors.

Partial updates:
    Every field of ``LoanUpdate`` / ``CopyUpdate`` defaults to None, which
    means "not supplied".  An empty string supplied for a text field means
    "clear it".
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from lending_kernel.models.loan import OVERDUE, LoanStatus


@dataclass(frozen=True)
class SubjectInfo:
    id: UUID
    name: str
    course: str | None
    is_optional: bool


@dataclass(frozen=True)
class ChecklistPartInfo:
    id: UUID
    name: str
    options: tuple[str, ...]


@dataclass(frozen=True)
class BorrowerInfo:
    id: UUID
    name: str
    nia: str | None
    course: str | None


@dataclass(frozen=True)
class ItemInfo:
    """Item with its cached counters."""

    id: UUID
    title: str
    author: str | None
    isbn: str | None
    publisher: str | None
    course: str | None
    subject_id: UUID | None
    price: Decimal
    total_copies: int
    available_copies: int
    last_serial: int


@dataclass(frozen=True)
class CopyInfo:
    """One physical copy and its live condition mirror."""

    id: UUID
    item_id: UUID
    code: str
    serial: int
    available: bool
    withdrawn: bool
    handout_condition: Mapping[str, str]
    return_condition: Mapping[str, str]
    handout_rating: str | None
    return_rating: str | None
    notes: str | None


@dataclass(frozen=True)
class LoanInfo:
    """
    A loan as seen by callers, joined with its live copy's code.

    ``status`` is the stored status; ``display_status(today)`` adds the
    computed overdue state.
    """

    id: UUID
    borrower_id: UUID
    item_id: UUID
    copy_id: UUID | None
    copy_code: str | None
    loan_date: date
    due_date: date
    return_date: date | None
    status: LoanStatus
    handout_condition: Mapping[str, str]
    return_condition: Mapping[str, str]
    handout_rating: str | None
    return_rating: str | None
    handout_notes: str | None
    return_notes: str | None
    rules_accepted: bool
    amount_due: Decimal
    paid: bool
    replaced_by_id: UUID | None
    created_at: datetime

    @property
    def is_returned(self) -> bool:
        return self.status == LoanStatus.RETURNED

    def is_overdue(self, today: date) -> bool:
        return not self.is_returned and self.due_date < today

    def display_status(self, today: date) -> str:
        if self.is_overdue(today):
            return OVERDUE
        return LoanStatus(self.status).value


# =============================================================================
# Partial updates
# =============================================================================


def _supplied(update: Any, names: tuple[str, ...]) -> bool:
    return any(getattr(update, name) is not None for name in names)


@dataclass(frozen=True)
class LoanUpdate:
    """
    Partial update for a loan.

    Hand-out side:  handout_condition, handout_rating, handout_notes
    Return side:    return_condition, return_rating, return_notes
    Lifecycle:      status, return_date, substitute_copy_id
    Accounting:     amount_due, paid, rules_accepted
    """

    return_date: date | None = None
    status: LoanStatus | str | None = None
    return_condition: Mapping[str, str] | None = None
    return_rating: str | None = None
    return_notes: str | None = None
    amount_due: Decimal | int | str | None = None
    paid: bool | None = None
    rules_accepted: bool | None = None
    handout_condition: Mapping[str, str] | None = None
    handout_rating: str | None = None
    handout_notes: str | None = None
    substitute_copy_id: UUID | None = None

    HANDOUT_FIELDS = ("handout_condition", "handout_rating", "handout_notes")
    RETURN_FIELDS = ("return_condition", "return_rating", "return_notes")

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) is not None for f in fields(self))

    @property
    def has_handout_fields(self) -> bool:
        return _supplied(self, self.HANDOUT_FIELDS)

    @property
    def has_return_fields(self) -> bool:
        return _supplied(self, self.RETURN_FIELDS)


@dataclass(frozen=True)
class CopyUpdate:
    """Partial update for a copy (manual inventory correction)."""

    available: bool | None = None
    handout_condition: Mapping[str, str] | None = None
    return_condition: Mapping[str, str] | None = None
    handout_rating: str | None = None
    return_rating: str | None = None
    notes: str | None = None

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) is not None for f in fields(self))


@dataclass(frozen=True)
class CounterDrift:
    """Difference between an item's cached counters and a full recount."""

    item_id: UUID
    title: str
    cached_total: int
    counted_total: int
    cached_available: int
    counted_available: int
    cached_last_serial: int
    max_serial: int
    repaired: bool = False

    @property
    def has_drift(self) -> bool:
        return (
            self.cached_total != self.counted_total
            or self.cached_available != self.counted_available
            or self.cached_last_serial < self.max_serial
        )


@dataclass(frozen=True)
class CopyViolation:
    """A copy whose availability disagrees with the loans referencing it."""

    copy_id: UUID
    code: str
    available: bool
    withdrawn: bool
    active_loan_ids: tuple[UUID, ...] = field(default_factory=tuple)
    reason: str = ""
