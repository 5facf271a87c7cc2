"""
Tests for polling sync and record upserts.

Covers:
- Paging until a short page
- Idempotent replay: a second sync writes nothing
- Status changes flowing into the split lifecycle
- Refunds and disputes as linked reversal rows
- Per-record and per-page failures reported, never raised
"""

from datetime import date
from uuid import uuid4

from sqlalchemy import func, select

from revshare_ingestion.adapters.stripe_normalizer import (
    normalize_charge,
    normalize_charge_reversals,
    normalize_payout,
)
from revshare_ingestion.domain.types import UpsertOutcome
from revshare_kernel.domain.enums import TransactionKind, TransactionSource, TransactionStatus
from revshare_kernel.models.payout import Payout
from revshare_kernel.models.transaction import Transaction

from tests.ingestion.conftest import make_charge, make_payout


def _transactions(session, merchant_id) -> list[Transaction]:
    return list(
        session.execute(
            select(Transaction)
            .where(Transaction.merchant_id == merchant_id)
            .order_by(Transaction.external_id)
        ).scalars()
    )


class TestSyncMerchant:

    def test_ingests_all_pages(self, session, sync_service, fake_source, merchant_id):
        fake_source.charges = [make_charge(f"ch_{i}") for i in range(5)]
        fake_source.payouts = [make_payout("po_1")]

        result = sync_service.sync_merchant(merchant_id, fake_source)

        assert result.success
        assert result.transactions_created == 5
        assert result.payouts_created == 1
        charge_calls = [c for c in fake_source.calls if c[0] == "charges"]
        assert [c[2] for c in charge_calls] == [None, "ch_1", "ch_3"]
        rows = _transactions(session, merchant_id)
        assert len(rows) == 5
        assert all(r.source == TransactionSource.GATEWAY for r in rows)

    def test_replay_is_unchanged(self, session, sync_service, fake_source, merchant_id):
        fake_source.charges = [make_charge("ch_1"), make_charge("ch_2", amount_refunded=500)]
        fake_source.payouts = [make_payout("po_1")]
        sync_service.sync_merchant(merchant_id, fake_source)

        replay = sync_service.sync_merchant(merchant_id, fake_source)

        assert replay.transactions_created == 0
        assert replay.transactions_updated == 0
        assert replay.payouts_created == 0
        assert replay.payouts_updated == 0
        assert replay.records_unchanged == 4
        assert len(_transactions(session, merchant_id)) == 3
        assert session.execute(
            select(func.count(Payout.id)).where(Payout.merchant_id == merchant_id)
        ).scalar_one() == 1

    def test_completed_charge_is_split(
        self, sync_service, split_recorder, fake_source, create_agreement, merchant_id, session,
    ):
        create_agreement(percentage_rate="0.20")
        fake_source.charges = [make_charge("ch_1", amount=10800, metadata={"tax_amount": "800"})]

        sync_service.sync_merchant(merchant_id, fake_source)

        [row] = _transactions(session, merchant_id)
        assert row.subtotal == 10000
        assert split_recorder.get_splits(row.id)[0].partner_share == 2000

    def test_pending_then_succeeded_creates_split(
        self, sync_service, split_recorder, fake_source, create_agreement, merchant_id, session,
    ):
        create_agreement()
        fake_source.charges = [make_charge("ch_1", status="pending")]
        sync_service.sync_merchant(merchant_id, fake_source)
        [row] = _transactions(session, merchant_id)
        assert not split_recorder.has_splits(row.id)

        fake_source.charges = [make_charge("ch_1", status="succeeded")]
        result = sync_service.sync_merchant(merchant_id, fake_source)

        assert result.transactions_updated == 1
        assert row.status == TransactionStatus.COMPLETED
        assert split_recorder.has_splits(row.id)

    def test_failed_charge_removes_split(
        self, sync_service, split_recorder, fake_source, create_agreement, merchant_id, session,
    ):
        create_agreement()
        fake_source.charges = [make_charge("ch_1")]
        sync_service.sync_merchant(merchant_id, fake_source)

        fake_source.charges = [make_charge("ch_1", status="failed")]
        sync_service.sync_merchant(merchant_id, fake_source)

        [row] = _transactions(session, merchant_id)
        assert not split_recorder.has_splits(row.id)

    def test_refund_row_linked_to_payment(
        self, sync_service, split_recorder, fake_source, create_agreement, merchant_id, session,
    ):
        create_agreement(percentage_rate="0.20")
        fake_source.charges = [make_charge("ch_1", amount=10000, amount_refunded=2500)]

        result = sync_service.sync_merchant(merchant_id, fake_source)

        assert result.transactions_created == 2
        payment, refund = _transactions(session, merchant_id)
        assert payment.kind == TransactionKind.PAYMENT
        assert payment.subtotal == 10000
        assert refund.external_id == "ch_1:refund"
        assert refund.kind == TransactionKind.REFUND
        assert refund.original_transaction_id == payment.id
        assert split_recorder.get_splits(refund.id)[0].partner_share == 500

    def test_amount_change_on_completed_row_recalculates(
        self, sync_service, split_recorder, fake_source, create_agreement, merchant_id, session,
    ):
        create_agreement(percentage_rate="0.20")
        fake_source.charges = [make_charge("ch_1", amount=10000)]
        sync_service.sync_merchant(merchant_id, fake_source)

        fake_source.charges = [make_charge("ch_1", amount=12000)]
        sync_service.sync_merchant(merchant_id, fake_source)

        [row] = _transactions(session, merchant_id)
        assert split_recorder.get_splits(row.id)[0].partner_share == 2400

    def test_bad_record_reported_others_ingested(
        self, session, sync_service, fake_source, merchant_id,
    ):
        broken = make_charge("ch_bad")
        del broken["amount"]
        fake_source.charges = [make_charge("ch_1"), broken, make_charge("ch_2")]

        result = sync_service.sync_merchant(merchant_id, fake_source)

        assert not result.success
        assert result.transactions_created == 2
        assert [(e.item_id, e.code) for e in result.errors] == [
            ("ch_bad", "INVALID_GATEWAY_PAYLOAD")
        ]
        assert len(_transactions(session, merchant_id)) == 2

    def test_page_fetch_failure_reported(self, sync_service, fake_source, merchant_id):
        fake_source.charges = [make_charge("ch_1")]
        fake_source.fail_on = {"payouts"}

        result = sync_service.sync_merchant(merchant_id, fake_source)

        assert result.transactions_created == 1
        assert [(e.item_id, e.code) for e in result.errors] == [("payouts", "SOURCE_ERROR")]

    def test_sync_logs_carry_run_id(self, sync_service, fake_source, merchant_id, captured_logs):
        result = sync_service.sync_merchant(merchant_id, fake_source)

        done = [r for r in captured_logs() if r["message"] == "gateway_sync_completed"]
        assert done[0]["sync_run_id"] == str(result.sync_run_id)
        assert done[0]["merchant_id"] == str(merchant_id)


class TestUpsertTransaction:

    def test_outcomes(self, sync_service, merchant_id):
        record = normalize_charge(make_charge("ch_1", status="pending"))

        first_id, first = sync_service.upsert_transaction(merchant_id, record)
        second_id, second = sync_service.upsert_transaction(merchant_id, record)
        third_id, third = sync_service.upsert_transaction(
            merchant_id, normalize_charge(make_charge("ch_1", status="succeeded"))
        )

        assert (first, second, third) == (
            UpsertOutcome.CREATED, UpsertOutcome.UNCHANGED, UpsertOutcome.UPDATED,
        )
        assert first_id == second_id == third_id

    def test_same_external_id_per_merchant(self, session, sync_service, merchant_id):
        record = normalize_charge(make_charge("ch_1"))
        sync_service.upsert_transaction(merchant_id, record)
        _, outcome = sync_service.upsert_transaction(uuid4(), record)

        assert outcome == UpsertOutcome.CREATED

    def test_refund_before_payment_has_no_link(self, session, sync_service, merchant_id):
        [refund] = normalize_charge_reversals(make_charge("ch_1", amount_refunded=100))

        txn_id, _ = sync_service.upsert_transaction(merchant_id, refund)

        assert session.get(Transaction, txn_id).original_transaction_id is None


class TestUpsertPayout:

    def test_status_update(self, session, sync_service, merchant_id):
        payout_id, created = sync_service.upsert_payout(
            merchant_id, normalize_payout(make_payout(status="in_transit"))
        )
        _, updated = sync_service.upsert_payout(
            merchant_id, normalize_payout(make_payout(status="paid"))
        )
        _, unchanged = sync_service.upsert_payout(
            merchant_id, normalize_payout(make_payout(status="paid"))
        )

        assert (created, updated, unchanged) == (
            UpsertOutcome.CREATED, UpsertOutcome.UPDATED, UpsertOutcome.UNCHANGED,
        )
        row = session.get(Payout, payout_id)
        assert row.status == "COMPLETED"
        assert row.scheduled_date == date(2024, 5, 20)
