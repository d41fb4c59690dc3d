"""Kernel services: registry, ledger, coordinator, reconciliation, reference data."""

from lending_kernel.services.base import BaseService
from lending_kernel.services.copy_registry import CopyRegistry
from lending_kernel.services.inventory_coordinator import InventoryCoordinator
from lending_kernel.services.loan_ledger import LoanLedger, LoanTransition
from lending_kernel.services.reconciliation_service import ReconciliationService
from lending_kernel.services.reference_data_service import ReferenceDataService

__all__ = [
    "BaseService",
    "CopyRegistry",
    "InventoryCoordinator",
    "LoanLedger",
    "LoanTransition",
    "ReconciliationService",
    "ReferenceDataService",
]
