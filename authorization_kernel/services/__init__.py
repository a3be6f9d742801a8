"""Services for the authorization kernel (write side)."""

from authorization_kernel.services.authorization_service import AuthorizationService
from authorization_kernel.services.authorization_store import AuthorizationStore
from authorization_kernel.services.overlap_detector import OverlapDetector
from authorization_kernel.services.status_machine import AuthorizationStatusMachine
from authorization_kernel.services.utilization_ledger import UtilizationLedger
from authorization_kernel.services.validation_engine import ValidationEngine

__all__ = [
    "AuthorizationService",
    "AuthorizationStatusMachine",
    "AuthorizationStore",
    "OverlapDetector",
    "UtilizationLedger",
    "ValidationEngine",
]
