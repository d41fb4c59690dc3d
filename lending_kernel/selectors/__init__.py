"""Read-only selectors for the lending kernel."""

from lending_kernel.selectors.base import BaseSelector
from lending_kernel.selectors.inventory_selector import InventorySelector
from lending_kernel.selectors.loan_selector import LoanSelector

__all__ = [
    "BaseSelector",
    "InventorySelector",
    "LoanSelector",
]
