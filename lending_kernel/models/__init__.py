"""Domain models for the lending kernel."""

from lending_kernel.models.copy import Copy
from lending_kernel.models.item import Item
from lending_kernel.models.loan import OVERDUE, Loan, LoanStatus
from lending_kernel.models.reference import Borrower, ChecklistPart, Subject

__all__ = [
    "Borrower",
    "ChecklistPart",
    "Copy",
    "Item",
    "Loan",
    "LoanStatus",
    "OVERDUE",
    "Subject",
]
