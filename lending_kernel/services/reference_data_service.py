"""
ReferenceDataService -- subjects, checklist parts, borrowers and items.

Responsibility:
    Small create/read/edit surface for the reference rows the core reads
    without locking.  Used by seed scripts, tests and the catalog management
    layer in front of the kernel.  Also builds the ``ConditionCatalog``
    that the coordinator validates snapshots against.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the caller
    commits.

Invariants enforced:
    - Item counters and ``last_serial`` are never written here.
    - An item with copies cannot be deleted (loan history references
      them).

Failure modes:
    - DuplicateReferenceError on a duplicate subject / part name or nia.
    - SubjectNotFoundError / ItemNotFoundError / BorrowerNotFoundError.
    - InvalidQuantityError on a negative or unreadable price.
    - MissingFieldError on blank required names.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lending_kernel.db.base import Base
from lending_kernel.db.types import money_from_value
from lending_kernel.domain.condition import ConditionCatalog
from lending_kernel.domain.dtos import (
    BorrowerInfo,
    ChecklistPartInfo,
    ItemInfo,
    SubjectInfo,
)
from lending_kernel.exceptions import (
    BorrowerNotFoundError,
    DuplicateReferenceError,
    InvalidQuantityError,
    ItemInUseError,
    ItemNotFoundError,
    MissingFieldError,
    SubjectNotFoundError,
)
from lending_kernel.logging_config import get_logger
from lending_kernel.models.copy import Copy
from lending_kernel.models.item import Item
from lending_kernel.models.reference import Borrower, ChecklistPart, Subject
from lending_kernel.selectors.inventory_selector import (
    borrower_to_info,
    item_to_info,
    part_to_info,
    subject_to_info,
)
from lending_kernel.services.base import BaseService

logger = get_logger("services.reference_data")

_UNSET = object()


def _required(field_name: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise MissingFieldError(field_name)
    return value.strip()


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _price(value) -> Decimal:
    try:
        price = money_from_value(value)
    except ValueError:
        raise InvalidQuantityError("price", value)
    if price < 0:
        raise InvalidQuantityError("price", value)
    return price


class ReferenceDataService(BaseService[Base]):
    """Reference data the coordinator reads without locking."""

    def __init__(self, session: Session):
        super().__init__(session)

    def _insert(self, row: Base, entity: str, value: str) -> None:
        savepoint = self.session.begin_nested()
        try:
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateReferenceError(entity, value)

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------

    def create_subject(
        self,
        name: str,
        course: str | None = None,
        is_optional: bool = False,
    ) -> SubjectInfo:
        subject = Subject(
            name=_required("name", name),
            course=_optional(course),
            is_optional=bool(is_optional),
        )
        self._insert(subject, "subject", subject.name)
        return subject_to_info(subject)

    def list_subjects(self) -> list[SubjectInfo]:
        rows = self.session.scalars(select(Subject).order_by(Subject.name))
        return [subject_to_info(s) for s in rows]

    # ------------------------------------------------------------------
    # Checklist catalog
    # ------------------------------------------------------------------

    def define_checklist_part(self, name: str, options: Sequence[str]) -> ChecklistPartInfo:
        cleaned = [o.strip() for o in options if o and o.strip()]
        if not cleaned:
            raise MissingFieldError("options")
        part = ChecklistPart(name=_required("name", name), options=cleaned)
        self._insert(part, "checklist part", part.name)
        return part_to_info(part)

    def list_checklist_parts(self) -> list[ChecklistPartInfo]:
        rows = self.session.scalars(
            select(ChecklistPart).order_by(ChecklistPart.created_at, ChecklistPart.name)
        )
        return [part_to_info(p) for p in rows]

    def seed_checklist(
        self, parts: Mapping[str, Sequence[str]] | Iterable[tuple[str, Sequence[str]]]
    ) -> list[ChecklistPartInfo]:
        """Create the parts that do not exist yet (idempotent)."""
        pairs = parts.items() if isinstance(parts, Mapping) else parts
        existing = set(self.session.scalars(select(ChecklistPart.name)))
        created = []
        for name, options in pairs:
            if name in existing:
                continue
            created.append(self.define_checklist_part(name, options))
        if created:
            logger.info(
                "checklist_seeded",
                extra={"parts": [p.name for p in created]},
            )
        return created

    def load_catalog(self, strict: bool = True) -> ConditionCatalog:
        """
        Build the validation catalog from the stored parts.

        With no parts defined there is nothing to validate against, so the
        catalog is lenient regardless of ``strict``.
        """
        parts = self.list_checklist_parts()
        return ConditionCatalog.from_pairs(
            [(p.name, p.options) for p in parts],
            strict=strict and bool(parts),
        )

    # ------------------------------------------------------------------
    # Borrowers
    # ------------------------------------------------------------------

    def create_borrower(
        self,
        name: str,
        nia: str | None = None,
        course: str | None = None,
    ) -> BorrowerInfo:
        borrower = Borrower(
            name=_required("name", name),
            nia=_optional(nia),
            course=_optional(course),
        )
        self._insert(borrower, "borrower", borrower.nia or borrower.name)
        return borrower_to_info(borrower)

    def get_borrower(self, borrower_id: UUID) -> BorrowerInfo:
        borrower = self.session.get(Borrower, borrower_id)
        if borrower is None:
            raise BorrowerNotFoundError(str(borrower_id))
        return borrower_to_info(borrower)

    def list_borrowers(self) -> list[BorrowerInfo]:
        rows = self.session.scalars(select(Borrower).order_by(Borrower.name))
        return [borrower_to_info(b) for b in rows]

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def create_item(
        self,
        title: str,
        author: str | None = None,
        isbn: str | None = None,
        publisher: str | None = None,
        course: str | None = None,
        subject_id: UUID | None = None,
        price=None,
    ) -> ItemInfo:
        """Create an item with no copies; copies come from mint_copies."""
        if subject_id is not None and self.session.get(Subject, subject_id) is None:
            raise SubjectNotFoundError(str(subject_id))
        item = Item(
            title=_required("title", title),
            author=_optional(author),
            isbn=_optional(isbn),
            publisher=_optional(publisher),
            course=_optional(course),
            subject_id=subject_id,
            price=_price(price),
            total_copies=0,
            available_copies=0,
            last_serial=0,
        )
        self.session.add(item)
        self.session.flush()
        logger.info("item_created", extra={"item_id": str(item.id), "title": item.title})
        return item_to_info(item)

    def update_item(
        self,
        item_id: UUID,
        *,
        title=_UNSET,
        author=_UNSET,
        isbn=_UNSET,
        publisher=_UNSET,
        course=_UNSET,
        subject_id=_UNSET,
        price=_UNSET,
    ) -> ItemInfo:
        """Edit descriptive fields.  Existing copy codes are not rewritten."""
        item = self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        if title is not _UNSET:
            item.title = _required("title", title)
        for name, value in (
            ("author", author),
            ("isbn", isbn),
            ("publisher", publisher),
            ("course", course),
        ):
            if value is not _UNSET:
                setattr(item, name, _optional(value))
        if subject_id is not _UNSET:
            if subject_id is not None and self.session.get(Subject, subject_id) is None:
                raise SubjectNotFoundError(str(subject_id))
            item.subject_id = subject_id
        if price is not _UNSET:
            item.price = _price(price)
        self.session.flush()
        return item_to_info(item)

    def delete_item(self, item_id: UUID) -> None:
        item = self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        copies = self.session.scalar(
            select(func.count(Copy.id)).where(Copy.item_id == item_id)
        )
        if copies:
            raise ItemInUseError(str(item_id), int(copies))
        self.session.delete(item)
        self.session.flush()
        logger.info("item_deleted", extra={"item_id": str(item_id)})
