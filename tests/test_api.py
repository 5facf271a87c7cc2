"""
End-to-end tests through the RevenueShareKernel facade.

One merchant, one guarantee agreement, a month of transactions, a payout:
match -> split -> settle -> balance.
"""

from dataclasses import replace
from datetime import date

import pytest

from revshare_config.schema import RevShareConfig, SettlementConfig
from revshare_kernel.api import RevenueShareKernel
from revshare_kernel.domain.enums import AgreementType, SettlementStatus, TransactionStatus


@pytest.fixture
def kernel(session, deterministic_clock) -> RevenueShareKernel:
    config = replace(
        RevShareConfig(), settlement=SettlementConfig(history_months=3, default_currency="EUR")
    )
    return RevenueShareKernel(session, deterministic_clock, config=config)


class TestRevenueShareKernel:

    def test_month_end_to_end(
        self, kernel, create_agreement, create_transaction, create_payout,
        merchant_id, partner_id,
    ):
        agreement = create_agreement(AgreementType.HYBRID, "0.20", 50000, currency="EUR")
        transactions = [
            create_transaction(subtotal=s, currency="EUR") for s in (50000, 75000, 25000)
        ]
        create_payout(20000, currency="EUR")

        matched = kernel.match_agreement(merchant_id, date(2024, 5, 31))
        assert matched.id == agreement.id

        settlement = kernel.settle_month(agreement.id, 2024, 5)
        assert settlement.status == SettlementStatus.APPLIED
        assert settlement.final_partner_share == 50000
        assert {a.transaction_id for a in settlement.allocations} == {t.id for t in transactions}

        balance = kernel.outstanding_balance(merchant_id, partner_id, 2024, 5, agreement.id)
        assert balance.total_partner_share == 50000
        assert balance.total_payouts == 20000
        assert balance.outstanding_balance == 30000
        assert balance.currency == "EUR"

        summary = kernel.monthly_revenue_summary(agreement.id, 2024, 5)
        assert summary.total_partner_share == 30000

    def test_calculate_split_is_pure(self, kernel, create_agreement):
        agreement = create_agreement(percentage_rate="0.20")
        split = kernel.calculate_split(agreement, 10000)
        assert (split.partner_share, split.merchant_share) == (2000, 8000)

    def test_record_and_lifecycle(
        self, kernel, create_agreement, create_transaction, merchant_id,
    ):
        create_agreement()
        tx = create_transaction(status=TransactionStatus.PENDING)

        recorded = kernel.record_split(tx.id, merchant_id, 10000, date(2024, 5, 10))
        assert recorded.partner_share == 2000

        assert kernel.on_transaction_status_changed(tx.id, "CANCELLED") is None
        assert kernel.recalculate_transaction(tx.id) is None

        result = kernel.bulk_recalculate(merchant_id, date(2024, 5, 1), date(2024, 5, 31))
        assert result.processed == 0

    def test_history_uses_configured_length(
        self, kernel, create_agreement, merchant_id, partner_id,
    ):
        agreement = create_agreement(AgreementType.MINIMUM_GUARANTEE, None, 1000)

        assert len(kernel.settlement_history(agreement.id)) == 3
        assert len(kernel.balance_history(merchant_id, partner_id)) == 3
        assert len(kernel.balance_history(merchant_id, partner_id, months=5)) == 5
        assert kernel.outstanding_balance(merchant_id, partner_id, 2024, 5).currency == "EUR"

    def test_preview_revert_and_batch(self, kernel, create_agreement, create_transaction):
        agreement = create_agreement(AgreementType.MINIMUM_GUARANTEE, "0.10", 5000)
        create_transaction(subtotal=10000)

        assert kernel.preview_month(agreement.id, 2024, 5).adjustment == 4000

        batch = kernel.settle_all_agreements(2024, 5)
        assert agreement.id in {r.agreement_id for r in batch.results}

        reverted = kernel.revert_settlement(agreement.id, 2024, 5)
        assert reverted.status == SettlementStatus.REVERTED
