"""
Module: revshare_kernel.selectors.balance_selector
Responsibility: Outstanding partner balance and monthly revenue summaries,
    derived on every call from split links, settlement adjustments and
    payouts.  There is no stored balance.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Earned share = raw partner shares of COMPLETED PAYMENT transactions
      dated in the month, plus the applied settlement adjustments of that
      month.  Absence of a split link counts as zero.
    - Only COMPLETED payouts scheduled in the month reduce the balance.
    - With an agreement filter, only payouts tagged with that agreement or
      untagged payouts count.
    - The result is signed.  A negative balance means the partner was
      overpaid; clamping is a display concern.
    - History is one independent balance call per month, oldest first.

Failure modes:
    - AgreementNotFoundError when an agreement filter names a missing row.
    - ValueError for a month outside 1..12.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import BalanceResult, MonthlyRevenueSummary, PayoutInfo
from revshare_kernel.domain.enums import (
    PayoutStatus,
    SettlementStatus,
    TransactionKind,
    TransactionStatus,
)
from revshare_kernel.domain.periods import month_bounds, trailing_months
from revshare_kernel.exceptions import AgreementNotFoundError
from revshare_kernel.models.agreement import Agreement
from revshare_kernel.models.payout import Payout
from revshare_kernel.models.settlement import SettlementAdjustment, SettlementRun
from revshare_kernel.models.split_link import SplitLink
from revshare_kernel.models.transaction import Transaction
from revshare_kernel.selectors.base import BaseSelector

DEFAULT_CURRENCY = "USD"
DEFAULT_HISTORY_MONTHS = 12


class BalanceSelector(BaseSelector[SplitLink]):
    """
    Read-only balance queries.

    Contract:
        Every figure is recomputed from current rows.  Two calls with no
        writes in between return equal results.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._default_currency = default_currency

    def _earned_partner_share(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        start: date,
        end: date,
        agreement_id: UUID | None,
    ) -> int:
        query = (
            select(func.coalesce(func.sum(SplitLink.partner_share), 0))
            .join(Transaction, Transaction.id == SplitLink.transaction_id)
            .join(Agreement, Agreement.id == SplitLink.agreement_id)
            .where(
                Agreement.merchant_id == merchant_id,
                Agreement.partner_id == partner_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.kind == TransactionKind.PAYMENT.value,
                Transaction.transaction_date >= start,
                Transaction.transaction_date <= end,
            )
        )
        if agreement_id is not None:
            query = query.where(SplitLink.agreement_id == agreement_id)
        return int(self.session.execute(query).scalar_one())

    def _applied_adjustments(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        year: int,
        month: int,
        agreement_id: UUID | None,
    ) -> int:
        query = (
            select(func.coalesce(func.sum(SettlementAdjustment.adjustment), 0))
            .join(SettlementRun, SettlementRun.id == SettlementAdjustment.settlement_run_id)
            .join(Agreement, Agreement.id == SettlementRun.agreement_id)
            .where(
                Agreement.merchant_id == merchant_id,
                Agreement.partner_id == partner_id,
                SettlementRun.year == year,
                SettlementRun.month == month,
                SettlementRun.status == SettlementStatus.APPLIED.value,
            )
        )
        if agreement_id is not None:
            query = query.where(SettlementRun.agreement_id == agreement_id)
        return int(self.session.execute(query).scalar_one())

    def _completed_payouts(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        start: date,
        end: date,
        agreement_id: UUID | None,
    ) -> list[PayoutInfo]:
        rows = self.session.execute(
            select(Payout)
            .where(
                Payout.merchant_id == merchant_id,
                Payout.partner_id == partner_id,
                Payout.status == PayoutStatus.COMPLETED.value,
                Payout.scheduled_date >= start,
                Payout.scheduled_date <= end,
            )
            .order_by(Payout.scheduled_date, Payout.id)
        ).scalars().all()

        payouts = [PayoutInfo.from_model(row) for row in rows]
        if agreement_id is None:
            return payouts
        # JSON tag filter applied here so it reads the same on every dialect
        return [
            p for p in payouts
            if p.agreement_id is None or p.agreement_id == str(agreement_id)
        ]

    def outstanding_balance(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        year: int,
        month: int,
        agreement_id: UUID | None = None,
    ) -> BalanceResult:
        """
        Partner share earned in the month minus completed payouts.

        Currency is the filtered agreement's, else the first payout's,
        else the configured default.
        """
        start, end = month_bounds(year, month)

        currency = None
        if agreement_id is not None:
            agreement = self.session.get(Agreement, agreement_id)
            if agreement is None:
                raise AgreementNotFoundError(str(agreement_id))
            currency = agreement.currency

        earned = self._earned_partner_share(
            merchant_id, partner_id, start, end, agreement_id
        ) + self._applied_adjustments(merchant_id, partner_id, year, month, agreement_id)

        payouts = self._completed_payouts(merchant_id, partner_id, start, end, agreement_id)
        paid = sum(p.amount for p in payouts)

        if currency is None:
            currency = payouts[0].currency if payouts else self._default_currency

        return BalanceResult(
            merchant_id=merchant_id,
            partner_id=partner_id,
            agreement_id=agreement_id,
            year=year,
            month=month,
            total_partner_share=earned,
            total_payouts=paid,
            outstanding_balance=earned - paid,
            currency=currency,
        )

    def balance_history(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        months: int = DEFAULT_HISTORY_MONTHS,
        agreement_id: UUID | None = None,
        as_of: date | None = None,
    ) -> list[BalanceResult]:
        """Balances for the trailing ``months`` months, oldest first."""
        as_of = as_of or self._clock.today()
        return [
            self.outstanding_balance(merchant_id, partner_id, year, month, agreement_id)
            for year, month in trailing_months(as_of, months)
        ]

    def current_outstanding_balance(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        agreement_id: UUID | None = None,
    ) -> BalanceResult:
        today = self._clock.today()
        return self.outstanding_balance(
            merchant_id, partner_id, today.year, today.month, agreement_id
        )

    def monthly_revenue_summary(
        self,
        agreement_id: UUID,
        year: int,
        month: int,
    ) -> MonthlyRevenueSummary:
        """Raw split totals of one agreement for one month (no adjustments)."""
        agreement = self.session.get(Agreement, agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))

        start, end = month_bounds(year, month)
        partner_total, merchant_total, count = self.session.execute(
            select(
                func.coalesce(func.sum(SplitLink.partner_share), 0),
                func.coalesce(func.sum(SplitLink.merchant_share), 0),
                func.count(SplitLink.id),
            )
            .join(Transaction, Transaction.id == SplitLink.transaction_id)
            .where(
                SplitLink.agreement_id == agreement_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.kind == TransactionKind.PAYMENT.value,
                Transaction.transaction_date >= start,
                Transaction.transaction_date <= end,
            )
        ).one()

        return MonthlyRevenueSummary(
            agreement_id=agreement_id,
            year=year,
            month=month,
            total_partner_share=int(partner_total),
            total_merchant_share=int(merchant_total),
            transaction_count=int(count),
            minimum_guarantee=agreement.minimum_guarantee,
        )
