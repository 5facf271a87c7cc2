"""
RevenueShareKernel -- the single entry point for outer collaborators.

Responsibility:
    Wires selectors and services around one caller-owned session and exposes
    the operations that HTTP routes, ingestion adapters and operator
    scripts call.

Architecture position:
    Kernel > API.  Outer layers import this module; nothing in the kernel
    imports it.  Configuration is passed in, never read here.

Invariants enforced:
    - Every operation runs in the caller's transaction.  The kernel flushes
      and never commits.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.orm import Session

from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import (
    AgreementInfo,
    BalanceResult,
    BatchSettlementResult,
    MonthlyRevenueSummary,
    RecalculationResult,
    SettlementResult,
    SplitComputation,
    SplitResult,
)
from revshare_kernel.domain.enums import TransactionKind, TransactionStatus
from revshare_kernel.domain.split_calculator import calculate_split
from revshare_kernel.selectors.agreement_selector import AgreementSelector
from revshare_kernel.selectors.balance_selector import BalanceSelector
from revshare_kernel.services.settlement_service import SettlementService
from revshare_kernel.services.split_lifecycle_service import SplitLifecycleService
from revshare_kernel.services.split_recorder import SplitRecorder

if TYPE_CHECKING:
    from revshare_config import RevShareConfig


class RevenueShareKernel:
    """
    Facade over matcher, calculator, recorder, lifecycle, settlement and
    balance.

    Usage:
        with session_scope() as session:
            kernel = RevenueShareKernel(session, config=get_active_config())
            kernel.settle_month(agreement_id, 2024, 5)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: RevShareConfig | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self._history_months = 12
        default_currency = "USD"
        if config is not None:
            self._history_months = config.settlement.history_months
            default_currency = config.settlement.default_currency

        self.agreements = AgreementSelector(session)
        self.balances = BalanceSelector(session, self.clock, default_currency)
        self.recorder = SplitRecorder(session, self.clock)
        self.lifecycle = SplitLifecycleService(session, self.clock, self.recorder)
        self.settlements = SettlementService(session, self.clock)

    def match_agreement(
        self,
        merchant_id: UUID,
        on_date: date,
        client_id: UUID | None = None,
    ) -> AgreementInfo | None:
        return self.agreements.match_agreement(merchant_id, on_date, client_id)

    def calculate_split(
        self,
        agreement: AgreementInfo,
        subtotal: int,
        kind: TransactionKind | str = TransactionKind.PAYMENT,
    ) -> SplitComputation:
        return calculate_split(agreement, subtotal, kind)

    def record_split(
        self,
        transaction_id: UUID,
        merchant_id: UUID,
        subtotal: int,
        on_date: date,
        kind: TransactionKind | str = TransactionKind.PAYMENT,
        client_id: UUID | None = None,
    ) -> SplitResult | None:
        return self.recorder.record_split(
            transaction_id, merchant_id, subtotal, on_date, kind, client_id
        )

    def on_transaction_status_changed(
        self,
        transaction_id: UUID,
        new_status: TransactionStatus | str,
    ) -> SplitResult | None:
        return self.lifecycle.on_transaction_status_changed(transaction_id, new_status)

    def recalculate_transaction(self, transaction_id: UUID) -> SplitResult | None:
        return self.lifecycle.recalculate_transaction(transaction_id)

    def bulk_recalculate(
        self,
        merchant_id: UUID,
        start_date: date,
        end_date: date,
    ) -> RecalculationResult:
        return self.lifecycle.bulk_recalculate(merchant_id, start_date, end_date)

    def settle_month(self, agreement_id: UUID, year: int, month: int) -> SettlementResult:
        return self.settlements.settle_month(agreement_id, year, month)

    def preview_month(self, agreement_id: UUID, year: int, month: int) -> SettlementResult:
        return self.settlements.preview_month(agreement_id, year, month)

    def settle_all_agreements(self, year: int, month: int) -> BatchSettlementResult:
        return self.settlements.settle_all_agreements(year, month)

    def revert_settlement(self, agreement_id: UUID, year: int, month: int) -> SettlementResult:
        return self.settlements.revert_settlement(agreement_id, year, month)

    def settlement_history(
        self,
        agreement_id: UUID,
        months: int | None = None,
    ) -> list[SettlementResult]:
        return self.settlements.settlement_history(
            agreement_id, months or self._history_months
        )

    def outstanding_balance(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        year: int,
        month: int,
        agreement_id: UUID | None = None,
    ) -> BalanceResult:
        return self.balances.outstanding_balance(
            merchant_id, partner_id, year, month, agreement_id
        )

    def balance_history(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        months: int | None = None,
        agreement_id: UUID | None = None,
    ) -> list[BalanceResult]:
        return self.balances.balance_history(
            merchant_id, partner_id, months or self._history_months, agreement_id
        )

    def monthly_revenue_summary(
        self,
        agreement_id: UUID,
        year: int,
        month: int,
    ) -> MonthlyRevenueSummary:
        return self.balances.monthly_revenue_summary(agreement_id, year, month)
