"""
Domain enumerations shared by models, services and ingestion.

All enums are ``str`` subclasses so stored column values compare equal to
their members without conversion.
"""

from enum import Enum

from revshare_kernel.exceptions import UnknownAgreementTypeError


class AgreementType(str, Enum):
    """How a merchant splits revenue with a partner.

    Contract: All three types split per transaction by percentage.
    MINIMUM_GUARANTEE and HYBRID additionally carry a monthly floor that
    is enforced only at settlement.
    """

    PERCENTAGE = "PERCENTAGE"
    MINIMUM_GUARANTEE = "MINIMUM_GUARANTEE"
    HYBRID = "HYBRID"

    @classmethod
    def parse(cls, value: "AgreementType | str", agreement_id: str | None = None) -> "AgreementType":
        """Convert a stored value to a member.

        Raises:
            UnknownAgreementTypeError: value is not a known type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownAgreementTypeError(str(value), agreement_id) from None

    @property
    def has_guarantee_floor(self) -> bool:
        return self in (AgreementType.MINIMUM_GUARANTEE, AgreementType.HYBRID)


class TransactionKind(str, Enum):
    """Direction of money movement for a transaction."""

    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    CHARGEBACK = "CHARGEBACK"

    @property
    def is_reversal(self) -> bool:
        return self in (TransactionKind.REFUND, TransactionKind.CHARGEBACK)


class TransactionStatus(str, Enum):
    """Lifecycle status of a transaction.

    Contract: PENDING -> {COMPLETED, FAILED, CANCELLED}.  Only COMPLETED
    transactions carry split links.
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TransactionSource(str, Enum):
    """Where a transaction row came from."""

    MANUAL = "MANUAL"
    GATEWAY = "GATEWAY"


class PayoutStatus(str, Enum):
    """Lifecycle status of a payout.  Only COMPLETED reduces balances."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class SettlementStatus(str, Enum):
    """Outcome of settling one agreement-month.

    APPLIED        -- guarantee shortfall allocated across the month's links
    NO_ADJUSTMENT  -- no floor, or raw partner share already meets it
    UNALLOCATED    -- guarantee owed but zero raw revenue to allocate against
    REVERTED       -- adjustments removed; the month may be settled again
    PREVIEW        -- computed, never persisted (history/preview only)
    """

    APPLIED = "APPLIED"
    NO_ADJUSTMENT = "NO_ADJUSTMENT"
    UNALLOCATED = "UNALLOCATED"
    REVERTED = "REVERTED"
    PREVIEW = "PREVIEW"
