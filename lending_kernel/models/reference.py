"""
Module: lending_kernel.models.reference
Responsibility: ORM persistence for reference data the core reads but never
    locks: subjects, checklist part definitions, and borrowers.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Subject and checklist part names are unique.
    - Borrower ``nia`` (student id number) is unique when present.

Failure modes:
    - IntegrityError on duplicate names / nia.
"""

from sqlalchemy import JSON, Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lending_kernel.db.base import TrackedBase


class Subject(TrackedBase):
    """
    Course subject (e.g. "Mathematics", optional "French").

    Items may reference a subject; its course is a fallback for the first
    segment of generated copy codes.
    """

    __tablename__ = "subjects"

    __table_args__ = (
        UniqueConstraint("name", name="uq_subject_name"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    course: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_optional: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    def __repr__(self) -> str:
        return f"<Subject {self.name}>"


class ChecklistPart(TrackedBase):
    """
    One part of the physical condition checklist (cover, spine, ...).

    Contract:
        ``options`` lists the only values a condition snapshot may record
        for this part.  Stored as JSON so the catalog can evolve without
        migrations.
    """

    __tablename__ = "checklist_parts"

    __table_args__ = (
        UniqueConstraint("name", name="uq_checklist_part_name"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    options: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    def __repr__(self) -> str:
        return f"<ChecklistPart {self.name}: {self.options}>"


class Borrower(TrackedBase):
    """A student who can hold loans."""

    __tablename__ = "borrowers"

    __table_args__ = (
        UniqueConstraint("nia", name="uq_borrower_nia"),
    )

    nia: Mapped[str | None] = mapped_column(String(50), nullable=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    course: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Borrower {self.name}>"
