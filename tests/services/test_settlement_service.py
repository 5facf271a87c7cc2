"""
Tests for monthly settlement.

Covers:
- Proportional guarantee true-up persisted per split link
- Split links never modified by settlement
- Idempotency: a settled month is returned, not re-applied
- Revert and re-settle, including the revert caused by removing a settled link
- Degenerate months (guarantee owed, no revenue)
- Batch settlement with per-agreement error isolation
- Preview and history
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from revshare_kernel.domain.enums import AgreementType, SettlementStatus, TransactionStatus
from revshare_kernel.exceptions import (
    AgreementNotFoundError,
    SettlementNotFoundError,
    UnknownAgreementTypeError,
)
from revshare_kernel.models.settlement import SettlementAdjustment, SettlementRun
from revshare_kernel.services.settlement_service import SettlementService


@pytest.fixture
def guarantee_month(create_agreement, create_transaction):
    """Guarantee 50000 at 20%: raw partner shares 10000 / 15000 / 5000."""
    agreement = create_agreement(AgreementType.MINIMUM_GUARANTEE, "0.20", 50000)
    transactions = [
        create_transaction(subtotal=50000, transaction_date=date(2024, 5, 3)),
        create_transaction(subtotal=75000, transaction_date=date(2024, 5, 12)),
        create_transaction(subtotal=25000, transaction_date=date(2024, 5, 28)),
    ]
    return agreement, transactions


def _adjustment_count(session, agreement_id) -> int:
    return session.execute(
        select(func.count(SettlementAdjustment.id))
        .join(SettlementRun, SettlementRun.id == SettlementAdjustment.settlement_run_id)
        .where(SettlementRun.agreement_id == agreement_id)
    ).scalar_one()


class TestSettleMonth:

    def test_true_up_allocated_proportionally(self, settlement_service, guarantee_month):
        agreement, transactions = guarantee_month

        result = settlement_service.settle_month(agreement.id, 2024, 5)

        assert result.status == SettlementStatus.APPLIED
        assert result.raw_partner_share == 30000
        assert result.raw_merchant_share == 120000
        assert result.adjustment == 20000
        assert result.final_partner_share == 50000
        assert result.transaction_count == 3
        assert not result.already_settled
        assert [a.transaction_id for a in result.allocations] == [t.id for t in transactions]
        assert [a.adjustment for a in result.allocations] == [6667, 10000, 3333]
        assert sum(a.final_partner_share for a in result.allocations) == 50000

    def test_split_links_untouched(self, settlement_service, split_recorder, guarantee_month):
        agreement, transactions = guarantee_month
        before = [split_recorder.get_splits(t.id) for t in transactions]

        settlement_service.settle_month(agreement.id, 2024, 5)

        assert [split_recorder.get_splits(t.id) for t in transactions] == before

    def test_settling_twice_returns_first_result(
        self, session, settlement_service, guarantee_month,
    ):
        agreement, _ = guarantee_month

        first = settlement_service.settle_month(agreement.id, 2024, 5)
        second = settlement_service.settle_month(agreement.id, 2024, 5)

        assert second.already_settled
        assert second.settlement_id == first.settlement_id
        assert second.adjustment == first.adjustment
        assert [a.adjustment for a in second.allocations] == [6667, 10000, 3333]
        assert _adjustment_count(session, agreement.id) == 3

    def test_guarantee_met_records_no_adjustment(
        self, session, settlement_service, create_agreement, create_transaction,
    ):
        agreement = create_agreement(AgreementType.HYBRID, "0.20", 1000)
        create_transaction(subtotal=10000)

        result = settlement_service.settle_month(agreement.id, 2024, 5)

        assert result.status == SettlementStatus.NO_ADJUSTMENT
        assert result.final_partner_share == 2000
        assert result.settlement_id is not None
        assert _adjustment_count(session, agreement.id) == 0

    def test_percentage_agreement_no_adjustment(
        self, settlement_service, create_agreement, create_transaction,
    ):
        agreement = create_agreement(AgreementType.PERCENTAGE, "0.20")
        create_transaction(subtotal=10000)

        result = settlement_service.settle_month(agreement.id, 2024, 5)
        assert result.status == SettlementStatus.NO_ADJUSTMENT
        assert result.adjustment == 0

    def test_no_revenue_is_unallocated(
        self, settlement_service, create_agreement, captured_logs,
    ):
        agreement = create_agreement(AgreementType.MINIMUM_GUARANTEE, None, 50000)

        result = settlement_service.settle_month(agreement.id, 2024, 5)

        assert result.status == SettlementStatus.UNALLOCATED
        assert result.is_degenerate
        assert result.adjustment == 50000
        assert result.final_partner_share == 0
        assert result.allocations == ()
        assert any(r["message"] == "settlement_guarantee_unallocated" for r in captured_logs())

    def test_only_completed_payments_in_month_count(
        self, settlement_service, create_agreement, create_transaction,
    ):
        agreement = create_agreement(AgreementType.MINIMUM_GUARANTEE, "0.20", 5000)
        create_transaction(subtotal=10000)
        create_transaction(subtotal=10000, status=TransactionStatus.PENDING)
        create_transaction(subtotal=10000, transaction_date=date(2024, 6, 1))

        result = settlement_service.settle_month(agreement.id, 2024, 5)
        assert result.raw_partner_share == 2000
        assert result.transaction_count == 1

    def test_unknown_agreement(self, settlement_service):
        with pytest.raises(AgreementNotFoundError):
            settlement_service.settle_month(uuid4(), 2024, 5)


class TestRevertSettlement:

    def test_revert_then_resettle(self, session, settlement_service, guarantee_month):
        agreement, _ = guarantee_month
        first = settlement_service.settle_month(agreement.id, 2024, 5)

        reverted = settlement_service.revert_settlement(agreement.id, 2024, 5)
        assert reverted.status == SettlementStatus.REVERTED
        assert reverted.allocations == ()
        assert _adjustment_count(session, agreement.id) == 0

        again = settlement_service.settle_month(agreement.id, 2024, 5)
        assert not again.already_settled
        assert again.status == SettlementStatus.APPLIED
        assert again.settlement_id == first.settlement_id
        assert _adjustment_count(session, agreement.id) == 3

    def test_resettle_picks_up_new_revenue(
        self, settlement_service, create_transaction, guarantee_month,
    ):
        agreement, _ = guarantee_month
        settlement_service.settle_month(agreement.id, 2024, 5)
        settlement_service.revert_settlement(agreement.id, 2024, 5)
        create_transaction(subtotal=50000, transaction_date=date(2024, 5, 30))

        result = settlement_service.settle_month(agreement.id, 2024, 5)
        assert result.raw_partner_share == 40000
        assert result.adjustment == 10000

    def test_revert_unsettled_month(self, settlement_service, create_agreement):
        agreement = create_agreement(AgreementType.MINIMUM_GUARANTEE, "0.20", 100)
        with pytest.raises(SettlementNotFoundError):
            settlement_service.revert_settlement(agreement.id, 2024, 5)

    def test_revert_twice(self, settlement_service, guarantee_month):
        agreement, _ = guarantee_month
        settlement_service.settle_month(agreement.id, 2024, 5)
        settlement_service.revert_settlement(agreement.id, 2024, 5)
        with pytest.raises(SettlementNotFoundError):
            settlement_service.revert_settlement(agreement.id, 2024, 5)

class TestSplitChangesAfterSettlement:
    """Removing a settled link reverts the month so it can be settled again."""

    def test_cancelled_transaction_reverts_run(
        self, session, settlement_service, transaction_service, guarantee_month,
    ):
        agreement, transactions = guarantee_month
        settled = settlement_service.settle_month(agreement.id, 2024, 5)

        transaction_service.change_status(transactions[0].id, TransactionStatus.CANCELLED)

        run = session.get(SettlementRun, settled.settlement_id)
        assert run.status == SettlementStatus.REVERTED
        assert run.reverted_at is not None
        assert _adjustment_count(session, agreement.id) == 0

        resettled = settlement_service.settle_month(agreement.id, 2024, 5)
        assert not resettled.already_settled
        assert resettled.settlement_id == settled.settlement_id
        assert resettled.raw_partner_share == 20000
        assert resettled.adjustment == 30000
        assert [a.adjustment for a in resettled.allocations] == [22500, 7500]

    def test_recalculate_keeps_guarantee_after_resettle(
        self, session, settlement_service, lifecycle_service, balance_selector,
        guarantee_month, merchant_id, partner_id, captured_logs,
    ):
        agreement, transactions = guarantee_month
        settled = settlement_service.settle_month(agreement.id, 2024, 5)
        assert balance_selector.outstanding_balance(
            merchant_id, partner_id, 2024, 5
        ).outstanding_balance == 50000

        lifecycle_service.recalculate_transaction(transactions[1].id)

        run = session.get(SettlementRun, settled.settlement_id)
        assert run.status == SettlementStatus.REVERTED
        assert _adjustment_count(session, agreement.id) == 0
        assert balance_selector.outstanding_balance(
            merchant_id, partner_id, 2024, 5
        ).outstanding_balance == 30000

        reverted = [
            r for r in captured_logs() if r["message"] == "settlement_reverted_by_split_change"
        ]
        assert len(reverted) == 1
        assert reverted[0]["settlement_id"] == str(settled.settlement_id)

        resettled = settlement_service.settle_month(agreement.id, 2024, 5)
        assert not resettled.already_settled
        assert resettled.status == SettlementStatus.APPLIED
        assert resettled.adjustment == 20000
        assert sum(a.adjustment for a in resettled.allocations) == 20000
        assert balance_selector.outstanding_balance(
            merchant_id, partner_id, 2024, 5
        ).outstanding_balance == 50000

    def test_bulk_recalculate_then_resettle(
        self, session, settlement_service, lifecycle_service, balance_selector,
        guarantee_month, merchant_id, partner_id,
    ):
        agreement, _ = guarantee_month
        settled = settlement_service.settle_month(agreement.id, 2024, 5)

        result = lifecycle_service.bulk_recalculate(
            merchant_id, date(2024, 5, 1), date(2024, 5, 31)
        )
        assert result.processed == 3
        assert session.get(SettlementRun, settled.settlement_id).status == SettlementStatus.REVERTED

        resettled = settlement_service.settle_month(agreement.id, 2024, 5)
        assert not resettled.already_settled
        assert resettled.adjustment == 20000
        assert len(resettled.allocations) == 3
        assert _adjustment_count(session, agreement.id) == 3
        assert balance_selector.outstanding_balance(
            merchant_id, partner_id, 2024, 5
        ).outstanding_balance == 50000

    def test_unsettled_month_untouched_by_recalculation(
        self, session, settlement_service, lifecycle_service, guarantee_month,
        create_transaction,
    ):
        agreement, _ = guarantee_month
        settled = settlement_service.settle_month(agreement.id, 2024, 5)
        june = create_transaction(subtotal=10000, transaction_date=date(2024, 6, 4))

        lifecycle_service.recalculate_transaction(june.id)

        assert session.get(SettlementRun, settled.settlement_id).status == SettlementStatus.APPLIED
        assert _adjustment_count(session, agreement.id) == 3


class TestPreviewAndHistory:

    def test_preview_writes_nothing(self, session, settlement_service, guarantee_month):
        agreement, _ = guarantee_month

        preview = settlement_service.preview_month(agreement.id, 2024, 5)

        assert preview.status == SettlementStatus.PREVIEW
        assert preview.adjustment == 20000
        assert preview.settlement_id is None
        assert session.execute(select(func.count(SettlementRun.id))).scalar_one() == 0

    def test_history_mixes_runs_and_previews(self, settlement_service, guarantee_month):
        agreement, _ = guarantee_month
        settlement_service.settle_month(agreement.id, 2024, 5)

        history = settlement_service.settlement_history(agreement.id, months=3)

        assert [(r.year, r.month) for r in history] == [(2024, 4), (2024, 5), (2024, 6)]
        assert [r.status for r in history] == [
            SettlementStatus.PREVIEW,
            SettlementStatus.APPLIED,
            SettlementStatus.PREVIEW,
        ]
        assert history[0].adjustment == 50000


class TestSettleAllAgreements:

    def test_settles_guarantee_agreements_only(
        self, settlement_service, create_agreement, guarantee_month,
    ):
        agreement, _ = guarantee_month
        percentage = create_agreement(AgreementType.PERCENTAGE, "0.20")

        batch = settlement_service.settle_all_agreements(2024, 5)

        settled = {r.agreement_id: r for r in batch.results}
        assert agreement.id in settled
        assert settled[agreement.id].status == SettlementStatus.APPLIED
        assert percentage.id not in settled
        assert batch.errors == ()

    def test_failure_isolated_per_agreement(
        self, session, monkeypatch, deterministic_clock, create_agreement, guarantee_month,
    ):
        good, _ = guarantee_month
        bad = create_agreement(AgreementType.HYBRID, "0.10", 1000)
        service = SettlementService(session, deterministic_clock)
        original = service.settle_month

        def failing_settle(agreement_id, year, month):
            if agreement_id == bad.id:
                raise UnknownAgreementTypeError("TIERED", str(agreement_id))
            return original(agreement_id, year, month)

        monkeypatch.setattr(service, "settle_month", failing_settle)

        batch = service.settle_all_agreements(2024, 5)

        assert good.id in {r.agreement_id for r in batch.results}
        assert [e.item_id for e in batch.errors] == [str(bad.id)]
        assert batch.errors[0].code == "UNKNOWN_AGREEMENT_TYPE"

    def test_rerun_reports_already_settled(self, settlement_service, guarantee_month):
        agreement, _ = guarantee_month
        settlement_service.settle_all_agreements(2024, 5)

        batch = settlement_service.settle_all_agreements(2024, 5)
        mine = [r for r in batch.results if r.agreement_id == agreement.id]
        assert mine[0].already_settled
