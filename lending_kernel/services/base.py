"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for every
    service in the kernel layer.  Concrete services receive a SQLAlchemy
    ``Session`` and persist through ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back themselves.  The InventoryCoordinator (or
    a script / test harness) owns commit and rollback, which is what makes
    open / update / substitute / close atomic as a whole.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lending_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only listings -- those belong in
          ``lending_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
