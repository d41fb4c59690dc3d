"""
InventorySelector -- read-only access to items and copies.

Also hosts the ORM -> DTO converters for Item, Copy and the reference rows,
which the services reuse so that every public method returns the same DTO
shape.
"""

from uuid import UUID

from sqlalchemy import case, func, select

from lending_kernel.domain.dtos import (
    BorrowerInfo,
    ChecklistPartInfo,
    CopyInfo,
    ItemInfo,
    SubjectInfo,
)
from lending_kernel.exceptions import CopyNotFoundError, ItemNotFoundError
from lending_kernel.models.copy import Copy
from lending_kernel.models.item import Item
from lending_kernel.models.reference import Borrower, ChecklistPart, Subject
from lending_kernel.selectors.base import BaseSelector


def item_to_info(item: Item) -> ItemInfo:
    return ItemInfo(
        id=item.id,
        title=item.title,
        author=item.author,
        isbn=item.isbn,
        publisher=item.publisher,
        course=item.course,
        subject_id=item.subject_id,
        price=item.price,
        total_copies=item.total_copies,
        available_copies=item.available_copies,
        last_serial=item.last_serial,
    )


def copy_to_info(copy: Copy) -> CopyInfo:
    return CopyInfo(
        id=copy.id,
        item_id=copy.item_id,
        code=copy.code,
        serial=copy.serial,
        available=copy.available,
        withdrawn=copy.withdrawn,
        handout_condition=dict(copy.handout_condition or {}),
        return_condition=dict(copy.return_condition or {}),
        handout_rating=copy.handout_rating,
        return_rating=copy.return_rating,
        notes=copy.notes,
    )


def subject_to_info(subject: Subject) -> SubjectInfo:
    return SubjectInfo(
        id=subject.id,
        name=subject.name,
        course=subject.course,
        is_optional=subject.is_optional,
    )


def part_to_info(part: ChecklistPart) -> ChecklistPartInfo:
    return ChecklistPartInfo(
        id=part.id,
        name=part.name,
        options=tuple(part.options or ()),
    )


def borrower_to_info(borrower: Borrower) -> BorrowerInfo:
    return BorrowerInfo(
        id=borrower.id,
        name=borrower.name,
        nia=borrower.nia,
        course=borrower.course,
    )


class InventorySelector(BaseSelector[Copy]):
    """Items, copies and their counters."""

    def get_item(self, item_id: UUID) -> ItemInfo:
        item = self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item_to_info(item)

    def list_items(self) -> list[ItemInfo]:
        rows = self.session.scalars(select(Item).order_by(Item.title, Item.id))
        return [item_to_info(item) for item in rows]

    def get_copy(self, copy_id: UUID) -> CopyInfo:
        copy = self.session.get(Copy, copy_id)
        if copy is None:
            raise CopyNotFoundError(str(copy_id))
        return copy_to_info(copy)

    def get_copy_by_code(self, code: str) -> CopyInfo | None:
        copy = self.session.scalars(
            select(Copy).where(Copy.code == code)
        ).one_or_none()
        return copy_to_info(copy) if copy is not None else None

    def get_copies_for_item(self, item_id: UUID) -> list[CopyInfo]:
        """
        All copies of an item ordered by serial.

        Raises:
            ItemNotFoundError: If the item does not exist.
        """
        if self.session.get(Item, item_id) is None:
            raise ItemNotFoundError(str(item_id))
        rows = self.session.scalars(
            select(Copy).where(Copy.item_id == item_id).order_by(Copy.serial)
        )
        return [copy_to_info(copy) for copy in rows]

    def get_available_copies(self, item_id: UUID) -> list[CopyInfo]:
        rows = self.session.scalars(
            select(Copy)
            .where(Copy.item_id == item_id, Copy.available.is_(True))
            .order_by(Copy.serial)
        )
        return [copy_to_info(copy) for copy in rows]

    def count_copies(self, item_id: UUID) -> tuple[int, int]:
        """Return (total, available) recounted from the copy rows."""
        total, available = self.session.execute(
            select(
                func.count(Copy.id),
                func.coalesce(
                    func.sum(case((Copy.available.is_(True), 1), else_=0)), 0
                ),
            ).where(Copy.item_id == item_id)
        ).one()
        return int(total), int(available)
