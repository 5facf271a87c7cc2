"""Read-only selectors: agreement matching and balance queries."""

from revshare_kernel.selectors.agreement_selector import AgreementSelector
from revshare_kernel.selectors.balance_selector import BalanceSelector

__all__ = ["AgreementSelector", "BalanceSelector"]
