"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the kernel boundary:
    agreements handed to the split calculator, split results, settlement and
    balance results, and the per-item error records of batch operations.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods exist as boundary converters but are only
    invoked from the service and selector layers, never from domain logic.

Invariants enforced:
    - Services and selectors return DTOs, never ORM entities.
    - All money fields are int minor units.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from revshare_kernel.domain.enums import (
    AgreementType,
    PayoutStatus,
    SettlementStatus,
    TransactionKind,
    TransactionStatus,
)

if TYPE_CHECKING:
    from revshare_kernel.models.agreement import Agreement as AgreementModel
    from revshare_kernel.models.payout import Payout as PayoutModel
    from revshare_kernel.models.split_link import SplitLink as SplitLinkModel
    from revshare_kernel.models.transaction import Transaction as TransactionModel


@dataclass(frozen=True)
class AgreementInfo:
    """Snapshot of an agreement as seen by the matcher and calculator.

    ``agreement_type`` is kept as stored; the calculator parses it and
    rejects unknown values.
    """

    id: UUID
    merchant_id: UUID
    partner_id: UUID
    client_id: UUID | None
    agreement_type: AgreementType | str
    percentage_rate: Decimal | None
    minimum_guarantee: int | None
    currency: str
    priority: int
    is_active: bool
    start_date: date
    end_date: date | None
    created_at: datetime | None = None

    @property
    def is_client_specific(self) -> bool:
        return self.client_id is not None

    @classmethod
    def from_model(cls, model: AgreementModel) -> AgreementInfo:
        return cls(
            id=model.id,
            merchant_id=model.merchant_id,
            partner_id=model.partner_id,
            client_id=model.client_id,
            agreement_type=model.agreement_type,
            percentage_rate=model.percentage_rate,
            minimum_guarantee=model.minimum_guarantee,
            currency=model.currency,
            priority=model.priority,
            is_active=model.is_active,
            start_date=model.start_date,
            end_date=model.end_date,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class SplitComputation:
    """Output of the split calculator.  Both shares are non-negative."""

    partner_share: int
    merchant_share: int
    method: AgreementType

    @property
    def total(self) -> int:
        return self.partner_share + self.merchant_share


@dataclass(frozen=True)
class SplitResult:
    """A recorded split link for one transaction under one agreement."""

    transaction_id: UUID
    agreement_id: UUID
    partner_share: int
    merchant_share: int
    calculation_method: str

    @classmethod
    def from_model(cls, model: SplitLinkModel) -> SplitResult:
        return cls(
            transaction_id=model.transaction_id,
            agreement_id=model.agreement_id,
            partner_share=model.partner_share,
            merchant_share=model.merchant_share,
            calculation_method=model.calculation_method,
        )


@dataclass(frozen=True)
class TransactionInfo:
    """Snapshot of a transaction row."""

    id: UUID
    merchant_id: UUID
    client_id: UUID | None
    kind: TransactionKind | str
    status: TransactionStatus | str
    subtotal: int
    currency: str
    transaction_date: date
    external_id: str | None
    original_transaction_id: UUID | None

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionInfo:
        return cls(
            id=model.id,
            merchant_id=model.merchant_id,
            client_id=model.client_id,
            kind=model.kind,
            status=model.status,
            subtotal=model.subtotal,
            currency=model.currency,
            transaction_date=model.transaction_date,
            external_id=model.external_id,
            original_transaction_id=model.original_transaction_id,
        )


@dataclass(frozen=True)
class PayoutInfo:
    """Snapshot of a payout row."""

    id: UUID
    merchant_id: UUID
    partner_id: UUID | None
    amount: int
    currency: str
    status: PayoutStatus | str
    scheduled_date: date
    agreement_id: str | None

    @classmethod
    def from_model(cls, model: PayoutModel) -> PayoutInfo:
        metadata = model.payout_metadata or {}
        return cls(
            id=model.id,
            merchant_id=model.merchant_id,
            partner_id=model.partner_id,
            amount=model.amount,
            currency=model.currency,
            status=model.status,
            scheduled_date=model.scheduled_date,
            agreement_id=metadata.get("agreement_id"),
        )


@dataclass(frozen=True)
class AllocationLine:
    """Share of a settlement adjustment assigned to one split link."""

    split_link_id: UUID
    transaction_id: UUID
    raw_partner_share: int
    adjustment: int

    @property
    def final_partner_share(self) -> int:
        return self.raw_partner_share + self.adjustment


@dataclass(frozen=True)
class SettlementResult:
    """Settlement of one agreement for one calendar month.

    ``raw_*`` are the immutable per-transaction totals; ``adjustment`` is the
    guarantee true-up (0 when none applies); ``final_partner_share`` is what
    the partner is owed for the month.
    """

    agreement_id: UUID
    merchant_id: UUID
    partner_id: UUID
    year: int
    month: int
    raw_partner_share: int
    raw_merchant_share: int
    minimum_guarantee: int | None
    adjustment: int
    final_partner_share: int
    transaction_count: int
    status: SettlementStatus
    allocations: tuple[AllocationLine, ...] = ()
    settlement_id: UUID | None = None
    already_settled: bool = False

    @property
    def is_degenerate(self) -> bool:
        """Guarantee owed with no revenue to attribute it to."""
        return self.status == SettlementStatus.UNALLOCATED


@dataclass(frozen=True)
class ItemError:
    """One failed item inside a batch operation."""

    item_id: str
    code: str
    message: str


@dataclass(frozen=True)
class BatchSettlementResult:
    """Outcome of settling every eligible agreement for a month."""

    year: int
    month: int
    results: tuple[SettlementResult, ...] = ()
    errors: tuple[ItemError, ...] = ()


@dataclass(frozen=True)
class RecalculationResult:
    """Outcome of a bulk recalculation.  Partial failure still succeeds."""

    processed: int
    errors: tuple[ItemError, ...] = ()


@dataclass(frozen=True)
class MonthlyRevenueSummary:
    """Raw split totals of one agreement for one month."""

    agreement_id: UUID
    year: int
    month: int
    total_partner_share: int
    total_merchant_share: int
    transaction_count: int
    minimum_guarantee: int | None


@dataclass(frozen=True)
class BalanceResult:
    """Outstanding partner balance for one merchant/partner/month.

    ``outstanding_balance`` is signed: negative means the partner was
    overpaid.  Display layers may clamp; the kernel never does.
    """

    merchant_id: UUID
    partner_id: UUID
    agreement_id: UUID | None
    year: int
    month: int
    total_partner_share: int
    total_payouts: int
    outstanding_balance: int
    currency: str
