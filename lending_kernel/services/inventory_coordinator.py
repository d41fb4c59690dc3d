"""
InventoryCoordinator -- the single write path for copies and loans.

Responsibility:
    Orchestrates CopyRegistry and LoanLedger mutations as one atomic unit
    of work per public operation: mint copies, open a loan, update / close a
    loan (with optional copy substitution), and correct a copy by hand.
    Also exposes the read operations a request layer needs, via selectors.

Architecture position:
    Kernel > Services -- imperative shell, transaction owner.  Request
    handlers construct one coordinator per request around a fresh session.

Invariants enforced:
    - Copy availability: a copy is unavailable iff it is the live copy of
      one active loan or it is withdrawn.
    - Counters: every availability flip is paired with a SQL-side delta on
      the item's counters in the same transaction.
    - Single active loan per copy: the copy row lock serializes competing
      opens; the loser rereads ``available = false`` and gets a conflict.
      The partial unique index is the final guard.
    - Atomicity: on any error the whole operation is rolled back before the
      typed error escapes; nothing is ever partially applied.

Failure modes:
    - InvalidRequestError / NotFoundError / ConflictError subclasses for
      rejected requests.
    - StorageFailureError (LockTimeoutError, DeadlockError) for transient
      store failures; retrying the whole operation is safe.

Transaction ownership:
    With ``auto_commit=True`` (default) each operation commits on success
    and rolls back on failure.  With ``auto_commit=False`` each operation
    runs inside a savepoint of the caller's transaction, released on
    success and rolled back on failure; the caller commits.
"""

from __future__ import annotations

import time
from datetime import date, timedelta
from typing import Any, Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from lending_kernel.db.engine import translate_storage_error
from lending_kernel.domain.clock import Clock, SystemClock
from lending_kernel.domain.condition import ConditionCatalog, ConditionSnapshot
from lending_kernel.domain.dtos import CopyInfo, CopyUpdate, LoanInfo, LoanUpdate
from lending_kernel.domain.policy import DEFAULT_POLICY, LendingPolicy
from lending_kernel.exceptions import (
    BorrowerNotFoundError,
    ConflictError,
    CopyOnLoanError,
    CopyUnavailableError,
    EmptyUpdateError,
    InvalidLoanTransitionError,
    ItemMismatchError,
    LendingKernelError,
    MissingFieldError,
    SubstituteItemMismatchError,
)
from lending_kernel.logging_config import LogContext, get_logger
from lending_kernel.models.copy import Copy
from lending_kernel.models.loan import Loan, LoanStatus
from lending_kernel.models.reference import Borrower
from lending_kernel.selectors.inventory_selector import InventorySelector, copy_to_info
from lending_kernel.selectors.loan_selector import LoanSelector, loan_to_info
from lending_kernel.services.copy_registry import CopyRegistry, validate_mint_count
from lending_kernel.services.loan_ledger import LoanLedger
from lending_kernel.services.reference_data_service import ReferenceDataService

logger = get_logger("services.inventory_coordinator")

T = TypeVar("T")


class InventoryCoordinator:
    """
    Atomic copy/loan operations over one session.

    Usage:
        with storage.session_scope() as session:   # or storage.session()
            coordinator = InventoryCoordinator(session, clock=SystemClock())
            loan = coordinator.open_loan(borrower_id=b.id, copy_id=c.id)

    Guarantees:
        - Every public method returns DTOs, never ORM rows.
        - Every public method binds a correlation id into the log context
          and logs ``<operation>_started`` / ``_completed`` / ``_failed``
          with its duration.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LendingPolicy | None = None,
        catalog: ConditionCatalog | None = None,
        auto_commit: bool = True,
    ):
        """
        Args:
            session: SQLAlchemy session owned by this request.
            clock: Source of "today" for default dates and overdue checks.
            policy: Lending rules; DEFAULT_POLICY when omitted.
            catalog: Checklist catalog; loaded from the store on first use
                when omitted.
            auto_commit: Commit / roll back per operation (see module doc).
        """
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY
        self._catalog = catalog
        self._auto_commit = auto_commit
        self._registry = CopyRegistry(session, self._policy)
        self._ledger = LoanLedger(session)
        self._reference = ReferenceDataService(session)
        self._inventory = InventorySelector(session)
        self._loans = LoanSelector(session)

    # ------------------------------------------------------------------
    # Transaction wrapper
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[], T],
        *,
        conflict: Callable[[], ConflictError] | None = None,
        read_only: bool = False,
        **context: Any,
    ) -> T:
        bound = {k: str(v) for k, v in context.items() if v is not None}
        level_log = logger.debug if read_only else logger.info
        with LogContext.bind(
            correlation_id=str(uuid4()),
            operation=operation,
            **bound,
        ):
            level_log(f"{operation}_started")
            t0 = time.monotonic()
            savepoint = None if self._auto_commit else self._session.begin_nested()
            try:
                result = work()
                if savepoint is not None:
                    savepoint.commit()
                else:
                    self._session.commit()
            except LendingKernelError as exc:
                self._abort(savepoint)
                logger.warning(
                    f"{operation}_rejected",
                    extra={"duration_ms": _elapsed(t0), "error_code": exc.code},
                )
                raise
            except IntegrityError as exc:
                self._abort(savepoint)
                error = conflict() if conflict else ConflictError(
                    f"{operation} collided with a concurrent change"
                )
                logger.warning(
                    f"{operation}_conflict",
                    extra={"duration_ms": _elapsed(t0), "error_code": error.code},
                    exc_info=True,
                )
                raise error from exc
            except DBAPIError as exc:
                self._abort(savepoint)
                error = translate_storage_error(exc, operation)
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": _elapsed(t0), "error_code": error.code},
                    exc_info=True,
                )
                raise error from exc
            except Exception:
                self._abort(savepoint)
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": _elapsed(t0)},
                    exc_info=True,
                )
                raise

            level_log(f"{operation}_completed", extra={"duration_ms": _elapsed(t0)})
            return result

    def _abort(self, savepoint) -> None:
        if savepoint is None:
            self._session.rollback()
        elif savepoint.is_active:
            savepoint.rollback()

    def _get_catalog(self) -> ConditionCatalog:
        if self._catalog is None:
            self._catalog = self._reference.load_catalog(
                strict=self._policy.strict_condition_catalog
            )
        return self._catalog

    def _validate(self, raw: Any) -> ConditionSnapshot | None:
        if raw is None:
            return None
        return self._get_catalog().validate(raw)

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def mint_copies(self, item_id: UUID, count: int) -> list[CopyInfo]:
        """
        Create ``count`` new copies of an item and raise both counters.

        Raises:
            InvalidQuantityError: count is not an integer >= 1.
            ItemNotFoundError: unknown item.
            CopyCodeConflictError: codes kept colliding.
        """

        def work() -> list[CopyInfo]:
            validate_mint_count(count)
            item = self._registry.lock_item(item_id)
            copies = self._registry.mint(item, count)
            self._registry.adjust_counters(
                item.id, total_delta=len(copies), available_delta=len(copies)
            )
            return [copy_to_info(c) for c in copies]

        return self._run("mint_copies", work, item_id=item_id)

    def get_copies_for_item(self, item_id: UUID) -> list[CopyInfo]:
        return self._run(
            "get_copies_for_item",
            lambda: self._inventory.get_copies_for_item(item_id),
            read_only=True,
            item_id=item_id,
        )

    def update_copy(self, copy_id: UUID, update: CopyUpdate) -> CopyInfo:
        """
        Manual correction of a copy's availability and condition mirror.

        Availability rules:
            - making the live copy of an active loan available -> Conflict
            - marking an idle copy unavailable withdraws it (counter - 1)
            - making a withdrawn idle copy available reinstates it
              (counter + 1)
        """

        def work() -> CopyInfo:
            copy = self._registry.lock_copy(copy_id)
            if update.is_empty:
                raise EmptyUpdateError("copy", str(copy_id))
            handout = self._validate(update.handout_condition)
            returned = self._validate(update.return_condition)

            if update.available is not None and update.available != copy.available:
                self._change_availability(copy, update.available)

            self._registry.update_condition(copy, update, handout, returned)
            return copy_to_info(copy)

        return self._run("update_copy", work, copy_id=copy_id)

    def _change_availability(self, copy: Copy, available: bool) -> None:
        active_loan_id = self._ledger.find_active_loan_id(copy.id)
        if available:
            if active_loan_id is not None:
                raise CopyOnLoanError(str(copy.id), str(active_loan_id))
            self._registry.set_availability(copy, True)
            self._registry.adjust_counters(copy.item_id, available_delta=1)
            logger.info("copy_reinstated", extra={"copy_id": str(copy.id)})
        elif active_loan_id is None:
            self._registry.withdraw(copy)
            self._registry.adjust_counters(copy.item_id, available_delta=-1)

    # ------------------------------------------------------------------
    # Loans: open
    # ------------------------------------------------------------------

    def open_loan(
        self,
        borrower_id: UUID | None,
        copy_id: UUID | None,
        item_id: UUID | None = None,
        loan_date: date | None = None,
        due_date: date | None = None,
        handout_condition: Any = None,
        handout_rating: str | None = None,
        handout_notes: str | None = None,
        rules_accepted: bool = False,
    ) -> LoanInfo:
        """
        Lend one available copy to a borrower.

        Steps (one transaction):
            1. lock the copy row and reread it
            2. check it exists and is available
            3. check the item hint, the borrower and the hand-out snapshot;
               default the dates
            4. insert the active loan
            5. flip the copy unavailable and stamp its hand-out mirror
            6. decrement the item's available counter (floor 0)

        Raises:
            MissingFieldError: borrower_id or copy_id missing.
            CopyNotFoundError / BorrowerNotFoundError: unknown ids.
            CopyUnavailableError: the copy is on loan or withdrawn.
            ItemMismatchError: item_id does not own the copy.
            InvalidConditionError: snapshot rejected by the catalog.
            InvalidLoanTransitionError: due date before loan date.
        """
        if borrower_id is None:
            raise MissingFieldError("borrower_id")
        if copy_id is None:
            raise MissingFieldError("copy_id")

        def work() -> LoanInfo:
            copy = self._registry.lock_copy(copy_id)
            if not copy.available:
                raise CopyUnavailableError(str(copy.id), copy.code)
            if item_id is not None and item_id != copy.item_id:
                raise ItemMismatchError(str(copy.id), str(copy.item_id), str(item_id))
            if self._session.get(Borrower, borrower_id) is None:
                raise BorrowerNotFoundError(str(borrower_id))

            snapshot = self._validate(handout_condition) or ConditionSnapshot()
            start = loan_date or self._clock.today()
            due = due_date or start + timedelta(days=self._policy.default_loan_days)
            if due < start:
                raise InvalidLoanTransitionError(
                    "<new>", f"due date {due} is before loan date {start}"
                )

            loan = self._ledger.record_open(
                borrower_id=borrower_id,
                copy=copy,
                loan_date=start,
                due_date=due,
                handout_condition=snapshot,
                handout_rating=handout_rating,
                handout_notes=handout_notes,
                rules_accepted=rules_accepted,
            )
            self._registry.set_availability(copy, False)
            self._registry.stamp_handout(copy, snapshot, handout_rating, handout_notes)
            self._registry.adjust_counters(copy.item_id, available_delta=-1)

            logger.info(
                "loan_opened",
                extra={
                    "loan_id": str(loan.id),
                    "copy_code": copy.code,
                    "due_date": due,
                },
            )
            return loan_to_info(loan, copy.code)

        return self._run(
            "open_loan",
            work,
            conflict=lambda: CopyUnavailableError(str(copy_id)),
            copy_id=copy_id,
            borrower_id=borrower_id,
        )

    # ------------------------------------------------------------------
    # Loans: update / substitute / close
    # ------------------------------------------------------------------

    def update_loan(self, loan_id: UUID, update: LoanUpdate) -> LoanInfo:
        """
        Apply a partial update to a loan.

        Steps (one transaction):
            1. lock the loan row
            2. validate the requested transition and snapshots
            3. substitution, when requested: the substitute becomes the live
               copy and unavailable, the outgoing copy is withdrawn, the
               available counter drops by one
            4. loan row field changes
            5. first return: the live copy becomes available, its return
               mirror is stamped, the available counter rises by one
            6. hand-out fields are merged onto the live copy
            7. return fields are merged onto the copy that was live when
               the update started

        Raises:
            LoanNotFoundError, EmptyUpdateError, InvalidLoanTransitionError,
            InvalidQuantityError, InvalidConditionError,
            SubstituteItemMismatchError, CopyNotFoundError,
            CopyUnavailableError, SubstitutionConflictError, LoanClosedError.
        """

        def work() -> LoanInfo:
            loan = self._ledger.lock_loan(loan_id)
            if update.is_empty:
                raise EmptyUpdateError("loan", str(loan_id))

            transition = self._ledger.plan_transition(loan, update)
            handout = self._validate(update.handout_condition)
            returned = self._validate(update.return_condition)
            original_copy_id = loan.copy_id

            if transition.substituting:
                self._substitute(loan, update.substitute_copy_id)

            self._ledger.apply_update(loan, update, transition, handout, returned)

            live = self._registry.lock_copy(loan.copy_id) if loan.copy_id else None
            if transition.returning_now and live is not None:
                if not live.available:
                    self._registry.set_availability(live, True)
                    self._registry.adjust_counters(loan.item_id, available_delta=1)
                self._registry.stamp_return(
                    live,
                    ConditionSnapshot.from_raw(loan.return_condition),
                    loan.return_rating,
                    loan.return_notes,
                )

            if update.has_handout_fields and live is not None:
                self._registry.merge_handout(
                    live, handout, update.handout_rating, update.handout_notes
                )

            if update.has_return_fields and original_copy_id is not None:
                original = (
                    live
                    if live is not None and live.id == original_copy_id
                    else self._registry.lock_copy(original_copy_id)
                )
                self._registry.merge_return(
                    original, returned, update.return_rating, update.return_notes
                )

            return loan_to_info(loan, live.code if live is not None else None)

        return self._run(
            "update_loan",
            work,
            conflict=(
                (lambda: CopyUnavailableError(str(update.substitute_copy_id)))
                if update.substitute_copy_id is not None
                else None
            ),
            loan_id=loan_id,
            copy_id=update.substitute_copy_id,
        )

    def _substitute(self, loan: Loan, substitute_id: UUID) -> None:
        substitute = self._registry.lock_copy(substitute_id)
        if substitute.item_id != loan.item_id:
            raise SubstituteItemMismatchError(str(loan.id), str(substitute.id))
        if not substitute.available:
            raise CopyUnavailableError(str(substitute.id), substitute.code)

        outgoing = self._registry.lock_copy(loan.copy_id) if loan.copy_id else None
        self._registry.set_availability(substitute, False)
        if outgoing is not None:
            self._registry.withdraw(outgoing)
        self._ledger.record_substitution(loan, substitute)
        self._registry.adjust_counters(loan.item_id, available_delta=-1)

    def close_loan(
        self,
        loan_id: UUID,
        return_date: date | None = None,
        return_condition: Any = None,
        return_rating: str | None = None,
        return_notes: str | None = None,
        amount_due=None,
        paid: bool | None = None,
    ) -> LoanInfo:
        """Return a loan; the return date defaults to today."""
        return self.update_loan(
            loan_id,
            LoanUpdate(
                status=LoanStatus.RETURNED,
                return_date=return_date or self._clock.today(),
                return_condition=return_condition,
                return_rating=return_rating,
                return_notes=return_notes,
                amount_due=amount_due,
                paid=paid,
            ),
        )

    # ------------------------------------------------------------------
    # Loans: reads
    # ------------------------------------------------------------------

    def get_loan(self, loan_id: UUID) -> LoanInfo:
        return self._run(
            "get_loan",
            lambda: self._loans.get_loan(loan_id),
            read_only=True,
            loan_id=loan_id,
        )

    def list_loans(self) -> list[LoanInfo]:
        """All loans with their live copy code, most recent first."""
        return self._run("list_loans", self._loans.list_loans, read_only=True)

    def list_overdue_loans(self, today: date | None = None) -> list[LoanInfo]:
        day = today or self._clock.today()
        return self._run(
            "list_overdue_loans",
            lambda: self._loans.list_overdue_loans(day),
            read_only=True,
        )


def _elapsed(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)
