"""Domain models for the revenue-share kernel."""

from revshare_kernel.models.agreement import Agreement
from revshare_kernel.models.payout import Payout
from revshare_kernel.models.settlement import SettlementAdjustment, SettlementRun
from revshare_kernel.models.split_link import SplitLink
from revshare_kernel.models.transaction import Transaction

__all__ = [
    "Agreement",
    "Transaction",
    "SplitLink",
    "SettlementRun",
    "SettlementAdjustment",
    "Payout",
    "import_all_models",
]


def import_all_models() -> None:
    """Register every mapped table (kernel and ingestion) on Base.metadata."""
    import revshare_ingestion.models  # noqa: F401
