"""
Pure domain layer.

Code generation, condition validation, the clock, the lending policy and
the DTOs.  Nothing here opens a session or performs I/O.
"""

from lending_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from lending_kernel.domain.codes import build_copy_code, sanitize_segment
from lending_kernel.domain.condition import ConditionCatalog, ConditionSnapshot
from lending_kernel.domain.dtos import (
    BorrowerInfo,
    ChecklistPartInfo,
    CopyInfo,
    CopyUpdate,
    CopyViolation,
    CounterDrift,
    ItemInfo,
    LoanInfo,
    LoanUpdate,
    SubjectInfo,
)
from lending_kernel.domain.policy import DEFAULT_POLICY, LendingPolicy

__all__ = [
    "BorrowerInfo",
    "ChecklistPartInfo",
    "Clock",
    "ConditionCatalog",
    "ConditionSnapshot",
    "CopyInfo",
    "CopyUpdate",
    "CopyViolation",
    "CounterDrift",
    "DEFAULT_POLICY",
    "DeterministicClock",
    "ItemInfo",
    "LendingPolicy",
    "LoanInfo",
    "LoanUpdate",
    "SubjectInfo",
    "SystemClock",
    "build_copy_code",
    "sanitize_segment",
]
