"""
Kernel Invariants Contract.

These invariants hold at every commit boundary.  No LendingPolicy value or
configuration file may switch them off.

This module exists solely to declare these invariants explicitly.  The
enforcement is distributed across InventoryCoordinator, CopyRegistry,
LoanLedger and the partial unique index on active loans; the audit lives in
ReconciliationService.
"""

from enum import Enum, unique


@unique
class LendingInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    COPY_AVAILABILITY = "copy_availability"
    """A copy is unavailable iff it is the live copy of exactly one active
    loan or it is withdrawn.  Enforced by InventoryCoordinator; audited by
    ReconciliationService.audit_copies()."""

    COUNTER_CONSISTENCY = "counter_consistency"
    """Item.available_copies equals the number of its available copies and
    Item.total_copies the number of minted copies.  Maintained as SQL-side
    deltas; repaired by ReconciliationService.recount_items()."""

    SINGLE_ACTIVE_LOAN = "single_active_loan"
    """At most one active loan per copy.  Enforced by the copy row lock and
    the uq_loan_active_copy partial unique index."""

    SUBSTITUTION_WRITE_ONCE = "substitution_write_once"
    """Loan.replaced_by_id is set at most once.  Enforced by LoanLedger."""

    SERIAL_MONOTONICITY = "serial_monotonicity"
    """Copy serials per item only grow and are never reused.  Enforced by
    the Item.last_serial locked counter, which is raised to the stored
    maximum before each mint and never lowered."""


ALL_LENDING_INVARIANTS: frozenset[LendingInvariant] = frozenset(LendingInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "lending_config",
    "scripts",
)
