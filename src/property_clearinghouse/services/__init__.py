"""Application services — use case orchestration."""

from property_clearinghouse.services.fund_protection_service import (
    FundProtectionService,
    Initialization,
    StepCompletion,
)
from property_clearinghouse.services.kyc_service import DatabaseKycStatusReader
from property_clearinghouse.services.notification_service import NotificationService
from property_clearinghouse.services.step_generator import StepGenerator
from property_clearinghouse.services.transaction_service import TransactionService

__all__ = [
    "DatabaseKycStatusReader",
    "FundProtectionService",
    "Initialization",
    "NotificationService",
    "StepCompletion",
    "StepGenerator",
    "TransactionService",
]
