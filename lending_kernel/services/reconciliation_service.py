"""
ReconciliationService -- recount and audit of cached inventory state.

Responsibility:
    Item counters are running deltas.  This service recomputes them from
    the copy rows, reports any drift, and optionally repairs it.  It also
    audits every copy's availability against the active loans that
    reference it.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the caller (the
    reconcile script or a test) commits.

Invariants enforced:
    - Repair takes the item row lock before rewriting counters, so it
      never races a concurrent open/close on the same item.
    - ``last_serial`` is only ever raised, never lowered.

Failure modes:
    - None specific; storage errors propagate to the caller.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from lending_kernel.domain.dtos import CopyViolation, CounterDrift
from lending_kernel.logging_config import get_logger
from lending_kernel.models.copy import Copy
from lending_kernel.models.item import Item
from lending_kernel.models.loan import Loan, LoanStatus
from lending_kernel.services.base import BaseService
from lending_kernel.services.copy_registry import CopyRegistry

logger = get_logger("services.reconciliation")


class ReconciliationService(BaseService[Item]):
    """Full-recount repair and copy availability audit."""

    def __init__(self, session: Session):
        super().__init__(session)
        self._registry = CopyRegistry(session)

    def _recount(self, item_id: UUID) -> tuple[int, int, int]:
        """(total, available, max serial) recounted from the copy rows."""
        total, available, max_serial = self.session.execute(
            select(
                func.count(Copy.id),
                func.coalesce(func.sum(case((Copy.available.is_(True), 1), else_=0)), 0),
                func.coalesce(func.max(Copy.serial), 0),
            ).where(Copy.item_id == item_id)
        ).one()
        return int(total), int(available), int(max_serial)

    def recount_items(self, repair: bool = False) -> list[CounterDrift]:
        """
        Compare every item's counters with a recount of its copies.

        Args:
            repair: Rewrite drifted counters (and raise a lagging
                ``last_serial``) under the item row lock.

        Returns:
            One CounterDrift per drifted item, ``repaired`` set when fixed.
        """
        item_ids = self.session.scalars(select(Item.id).order_by(Item.title, Item.id))
        drifts: list[CounterDrift] = []

        for item_id in list(item_ids):
            item = (
                self._registry.lock_item(item_id)
                if repair
                else self.session.get(Item, item_id, populate_existing=True)
            )
            total, available, max_serial = self._recount(item_id)
            drift = CounterDrift(
                item_id=item.id,
                title=item.title,
                cached_total=item.total_copies,
                counted_total=total,
                cached_available=item.available_copies,
                counted_available=available,
                cached_last_serial=item.last_serial,
                max_serial=max_serial,
            )
            if not drift.has_drift:
                continue

            logger.warning(
                "counter_drift_detected",
                extra={
                    "item_id": str(item.id),
                    "cached_total": drift.cached_total,
                    "counted_total": total,
                    "cached_available": drift.cached_available,
                    "counted_available": available,
                    "cached_last_serial": drift.cached_last_serial,
                    "max_serial": max_serial,
                },
            )
            if repair:
                item.total_copies = total
                item.available_copies = available
                item.last_serial = max(item.last_serial, max_serial)
                self.session.flush()
                drift = replace(drift, repaired=True)
                logger.info("counter_drift_repaired", extra={"item_id": str(item.id)})
            drifts.append(drift)

        return drifts

    def audit_copies(self) -> list[CopyViolation]:
        """
        Check every copy against the active loans whose live copy it is.

        A copy is consistent when it is unavailable iff it has exactly one
        active loan or is withdrawn, and a withdrawn copy has no active
        loan.
        """
        active: dict[UUID, list[UUID]] = defaultdict(list)
        for copy_id, loan_id in self.session.execute(
            select(Loan.copy_id, Loan.id).where(
                Loan.status == LoanStatus.ACTIVE.value,
                Loan.copy_id.is_not(None),
            )
        ):
            active[copy_id].append(loan_id)

        violations: list[CopyViolation] = []
        for copy in self.session.scalars(select(Copy).order_by(Copy.code)):
            loans = tuple(active.get(copy.id, ()))
            reason = _violation(copy, loans)
            if reason:
                violations.append(
                    CopyViolation(
                        copy_id=copy.id,
                        code=copy.code,
                        available=copy.available,
                        withdrawn=copy.withdrawn,
                        active_loan_ids=loans,
                        reason=reason,
                    )
                )

        if violations:
            logger.warning(
                "copy_audit_violations",
                extra={"count": len(violations), "codes": [v.code for v in violations]},
            )
        return violations


def _violation(copy: Copy, loans: tuple[UUID, ...]) -> str:
    if len(loans) > 1:
        return "multiple active loans"
    if copy.withdrawn and loans:
        return "withdrawn copy on an active loan"
    if copy.withdrawn and copy.available:
        return "withdrawn copy marked available"
    if copy.available and loans:
        return "available while on an active loan"
    if not copy.available and not copy.withdrawn and not loans:
        return "unavailable without an active loan"
    return ""
