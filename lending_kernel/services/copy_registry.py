"""
CopyRegistry -- identity, availability and condition mirror of copies.

Responsibility:
    Mints individually coded copies of an item, takes row locks on copies
    and items, flips availability, and maintains each copy's live condition
    mirror (hand-out / return snapshots, ratings, notes).  Item counters are
    adjusted here as SQL-side deltas so that concurrent transactions on
    different copies of one item never lose updates.

Architecture position:
    Kernel > Services -- imperative shell.  Called only by the
    InventoryCoordinator (and ReconciliationService for locks); never
    commits.

Invariants enforced:
    - Serial allocation bumps ``Item.last_serial`` on the locked item row.
      The counter is first raised to the highest stored serial, so a lagging
      cache never replays taken serials, and it is never lowered, so a
      serial is never handed out twice even after a rolled-back mint.
    - Every copy code is unique; collisions across items sharing a code
      prefix are retried with the next serial inside a savepoint.
    - Counter decrements floor at 0 in SQL.

Failure modes:
    - ItemNotFoundError / CopyNotFoundError on unknown ids.
    - InvalidQuantityError on a non-integer or < 1 mint count.
    - CopyCodeConflictError after ``policy.max_code_attempts`` collisions.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lending_kernel.domain.codes import build_copy_code
from lending_kernel.domain.condition import ConditionSnapshot
from lending_kernel.domain.dtos import CopyUpdate
from lending_kernel.domain.policy import DEFAULT_POLICY, LendingPolicy
from lending_kernel.exceptions import (
    CopyCodeConflictError,
    CopyNotFoundError,
    InvalidQuantityError,
    ItemNotFoundError,
)
from lending_kernel.logging_config import get_logger
from lending_kernel.models.copy import Copy
from lending_kernel.models.item import Item
from lending_kernel.services.base import BaseService

logger = get_logger("services.copy_registry")


def validate_mint_count(count: Any) -> int:
    """Accept only real integers >= 1 (bools and floats are rejected)."""
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise InvalidQuantityError("count", count)
    return count


def _text_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class CopyRegistry(BaseService[Copy]):
    """
    Registry of physical copies.

    Contract:
        All mutators expect the caller to hold the relevant row lock
        (``lock_item`` / ``lock_copy``) for the duration of the
        transaction.
    """

    def __init__(self, session: Session, policy: LendingPolicy = DEFAULT_POLICY):
        super().__init__(session)
        self._policy = policy

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def lock_item(self, item_id: UUID) -> Item:
        """SELECT ... FOR UPDATE on the item row, reread from the store."""
        item = self.session.execute(
            select(Item)
            .where(Item.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    def lock_copy(self, copy_id: UUID) -> Copy:
        """SELECT ... FOR UPDATE on the copy row, reread from the store."""
        copy = self.session.execute(
            select(Copy)
            .where(Copy.id == copy_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if copy is None:
            raise CopyNotFoundError(str(copy_id))
        return copy

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def mint(self, item: Item, count: int) -> list[Copy]:
        """
        Create ``count`` new copies of a locked item.

        Preconditions:
            - ``item`` was obtained through ``lock_item`` in this transaction.

        Postconditions:
            - Returned copies are available, ordered by serial, and their
              serials are strictly increasing.
            - ``item.last_serial`` was first raised to at least the highest
              serial already stored for the item.
            - ``item.last_serial`` equals the highest serial handed out.
            - Counters are NOT touched; see ``adjust_counters``.
        """
        count = validate_mint_count(count)
        item.last_serial = max(item.last_serial, self._max_serial(item.id))
        course = item.course or (item.subject.course if item.subject else None)
        created = [self._mint_one(item, course) for _ in range(count)]

        logger.info(
            "copies_minted",
            extra={
                "item_id": str(item.id),
                "count": count,
                "first_code": created[0].code,
                "last_code": created[-1].code,
            },
        )
        return created

    def _max_serial(self, item_id: UUID) -> int:
        return self.session.execute(
            select(func.coalesce(func.max(Copy.serial), 0)).where(Copy.item_id == item_id)
        ).scalar_one()

    def _mint_one(self, item: Item, course: str | None) -> Copy:
        attempts = 0
        while True:
            serial = item.last_serial + 1
            item.last_serial = serial
            code = build_copy_code(
                course,
                item.title,
                serial,
                segment_width=self._policy.code_segment_width,
                serial_width=self._policy.serial_width,
            )
            # begin_nested() flushes the serial bump first, so a rolled-back
            # insert still consumes the serial.
            savepoint = self.session.begin_nested()
            try:
                copy = Copy(item_id=item.id, code=code, serial=serial, available=True)
                self.session.add(copy)
                self.session.flush()
                savepoint.commit()
                return copy
            except IntegrityError:
                savepoint.rollback()
                attempts += 1
                logger.warning(
                    "copy_code_collision",
                    extra={"item_id": str(item.id), "code": code, "attempt": attempts},
                )
                if attempts >= self._policy.max_code_attempts:
                    raise CopyCodeConflictError(str(item.id), code, attempts)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def adjust_counters(
        self,
        item_id: UUID,
        *,
        total_delta: int = 0,
        available_delta: int = 0,
    ) -> None:
        """Apply counter deltas in SQL, flooring both counters at 0."""
        if not total_delta and not available_delta:
            return
        values = {}
        if total_delta:
            values["total_copies"] = _floored(Item.total_copies, total_delta)
        if available_delta:
            values["available_copies"] = _floored(Item.available_copies, available_delta)
        self.session.execute(
            update(Item)
            .where(Item.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        cached = self.session.identity_map.get(self.session.identity_key(Item, item_id))
        if cached is not None:
            self.session.expire(cached, list(values))
        logger.debug(
            "item_counters_adjusted",
            extra={
                "item_id": str(item_id),
                "total_delta": total_delta,
                "available_delta": available_delta,
            },
        )

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def set_availability(self, copy: Copy, available: bool) -> None:
        copy.available = available
        if available:
            copy.withdrawn = False
        self.session.flush()

    def withdraw(self, copy: Copy) -> None:
        """Take a copy out of circulation (unavailable with no loan)."""
        copy.available = False
        copy.withdrawn = True
        self.session.flush()
        logger.info("copy_withdrawn", extra={"copy_id": str(copy.id), "code": copy.code})

    # ------------------------------------------------------------------
    # Condition mirror
    # ------------------------------------------------------------------

    def stamp_handout(
        self,
        copy: Copy,
        condition: ConditionSnapshot,
        rating: str | None,
        notes: str | None,
    ) -> None:
        """Replace the hand-out mirror with the state recorded on a new loan."""
        copy.handout_condition = condition.to_dict()
        copy.handout_rating = _text_or_none(rating)
        copy.notes = _text_or_none(notes)
        self.session.flush()

    def stamp_return(
        self,
        copy: Copy,
        condition: ConditionSnapshot,
        rating: str | None,
        notes: str | None,
    ) -> None:
        """Replace the return mirror with the state recorded at return."""
        copy.return_condition = condition.to_dict()
        copy.return_rating = _text_or_none(rating)
        copy.notes = _text_or_none(notes)
        self.session.flush()

    def merge_handout(
        self,
        copy: Copy,
        condition: ConditionSnapshot | None = None,
        rating: str | None = None,
        notes: str | None = None,
    ) -> None:
        """Overwrite only the hand-out fields that carry a value."""
        if condition is not None:
            copy.handout_condition = condition.to_dict()
        if _text_or_none(rating) is not None:
            copy.handout_rating = _text_or_none(rating)
        if _text_or_none(notes) is not None:
            copy.notes = _text_or_none(notes)
        self.session.flush()

    def merge_return(
        self,
        copy: Copy,
        condition: ConditionSnapshot | None = None,
        rating: str | None = None,
        notes: str | None = None,
    ) -> None:
        """Overwrite only the return fields that carry a value."""
        if condition is not None:
            copy.return_condition = condition.to_dict()
        if _text_or_none(rating) is not None:
            copy.return_rating = _text_or_none(rating)
        if _text_or_none(notes) is not None:
            copy.notes = _text_or_none(notes)
        self.session.flush()

    def update_condition(
        self,
        copy: Copy,
        update: CopyUpdate,
        handout_condition: ConditionSnapshot | None = None,
        return_condition: ConditionSnapshot | None = None,
    ) -> None:
        """
        Manual partial edit of the mirror.

        Omitted (None) fields are unchanged; an empty string clears a text
        field.  Availability is handled by the coordinator, not here.
        """
        if handout_condition is not None:
            copy.handout_condition = handout_condition.to_dict()
        if return_condition is not None:
            copy.return_condition = return_condition.to_dict()
        if update.handout_rating is not None:
            copy.handout_rating = _text_or_none(update.handout_rating)
        if update.return_rating is not None:
            copy.return_rating = _text_or_none(update.return_rating)
        if update.notes is not None:
            copy.notes = _text_or_none(update.notes)
        self.session.flush()


def _floored(column, delta: int):
    return case((column + delta < 0, 0), else_=column + delta)
