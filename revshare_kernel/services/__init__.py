"""Write-side services of the revenue-share kernel."""

from revshare_kernel.services.agreement_service import AgreementService
from revshare_kernel.services.payout_service import PayoutService
from revshare_kernel.services.settlement_service import SettlementService
from revshare_kernel.services.split_lifecycle_service import SplitLifecycleService
from revshare_kernel.services.split_recorder import SplitRecorder
from revshare_kernel.services.transaction_service import TransactionService

__all__ = [
    "AgreementService",
    "PayoutService",
    "SettlementService",
    "SplitLifecycleService",
    "SplitRecorder",
    "TransactionService",
]
