"""
SplitRecorder -- persists computed splits as SplitLink rows.

Responsibility:
    Runs matcher -> calculator -> upsert for one transaction, and owns the
    idempotence of the transaction_agreement_links table.

Architecture position:
    Kernel > Services -- imperative shell.  Calls the pure split calculator
    and the agreement selector; never commits.

Invariants enforced:
    - Exactly one row per (transaction_id, agreement_id).  Writes use the
      dialect's INSERT .. ON CONFLICT DO UPDATE so two concurrent writers
      converge on one row and the last write wins.
    - After a successful record, the transaction has links to the matched
      agreement only.  Links to any other agreement are deleted in the
      same call.
    - No matching agreement is a no-op: nothing is written and None is
      returned.
    - Removing a link that carries a settlement adjustment reverts the
      settlement run owning it.  All of that run's adjustments are deleted
      and the run is marked REVERTED, so the next settle_month() recomputes
      the month instead of returning a run that no longer matches its rows.

Failure modes:
    - UnknownAgreementTypeError / InvalidSplitInputError from the
      calculator.  Nothing is written for the transaction.
    - TransactionNotFoundError from record_refund_split().
"""

from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import AgreementInfo, SplitComputation, SplitResult
from revshare_kernel.domain.enums import SettlementStatus, TransactionKind
from revshare_kernel.domain.split_calculator import calculate_split
from revshare_kernel.exceptions import AgreementNotFoundError, TransactionNotFoundError
from revshare_kernel.logging_config import get_logger
from revshare_kernel.models.agreement import Agreement
from revshare_kernel.models.settlement import SettlementAdjustment, SettlementRun
from revshare_kernel.models.split_link import SplitLink
from revshare_kernel.models.transaction import Transaction
from revshare_kernel.selectors.agreement_selector import AgreementSelector
from revshare_kernel.services.base import BaseService

logger = get_logger("services.split_recorder")


class SplitRecorder(BaseService[SplitLink]):
    """
    Records revenue splits for transactions.

    Contract:
        Every public method is safe to call repeatedly with the same inputs;
        the table ends in the same state.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._agreements = AgreementSelector(session)

    def record_split(
        self,
        transaction_id: UUID,
        merchant_id: UUID,
        subtotal: int,
        on_date: date,
        kind: TransactionKind | str = TransactionKind.PAYMENT,
        client_id: UUID | None = None,
    ) -> SplitResult | None:
        """
        Match, calculate and upsert the split of one transaction.

        Returns:
            The recorded split, or None when no agreement applies.
        """
        agreement = self._agreements.match_agreement(merchant_id, on_date, client_id)
        if agreement is None:
            logger.info(
                "split_skipped_no_agreement",
                extra={
                    "transaction_id": str(transaction_id),
                    "merchant_id": str(merchant_id),
                },
            )
            return None

        computation = calculate_split(agreement, subtotal, kind)
        return self._store(transaction_id, agreement, computation)

    def record_refund_split(
        self,
        refund_id: UUID,
        original_id: UUID,
    ) -> SplitResult | None:
        """
        Record a refund or chargeback under its original payment's agreement.

        The refund's own subtotal is split at the original agreement's rate,
        so a full refund reproduces the original shares exactly and a
        partial refund reverses a proportional part.  An original without a
        link means the refund carries no obligation either.
        """
        refund = self.session.get(Transaction, refund_id)
        if refund is None:
            raise TransactionNotFoundError(str(refund_id))
        if self.session.get(Transaction, original_id) is None:
            raise TransactionNotFoundError(str(original_id))

        original_link = self.session.execute(
            select(SplitLink)
            .where(SplitLink.transaction_id == original_id)
            .order_by(SplitLink.created_at, SplitLink.id)
            .limit(1)
        ).scalars().first()

        if original_link is None:
            logger.info(
                "refund_split_skipped_original_unlinked",
                extra={
                    "transaction_id": str(refund_id),
                    "original_transaction_id": str(original_id),
                },
            )
            return None

        agreement_row = self.session.get(Agreement, original_link.agreement_id)
        if agreement_row is None:
            raise AgreementNotFoundError(str(original_link.agreement_id))
        agreement = AgreementInfo.from_model(agreement_row)

        computation = calculate_split(agreement, refund.subtotal, refund.kind)
        return self._store(refund_id, agreement, computation)

    def remove_splits(self, transaction_id: UUID) -> int:
        """Delete every link of a transaction.  Returns the number removed."""
        link_ids = select(SplitLink.id).where(SplitLink.transaction_id == transaction_id)
        self._revert_settlements(transaction_id, link_ids)
        self.session.execute(
            delete(SettlementAdjustment).where(SettlementAdjustment.split_link_id.in_(link_ids))
        )
        result = self.session.execute(
            delete(SplitLink).where(SplitLink.transaction_id == transaction_id)
        )
        removed = result.rowcount or 0

        if removed:
            logger.info(
                "splits_removed",
                extra={"transaction_id": str(transaction_id), "removed": removed},
            )
        return removed

    def get_splits(self, transaction_id: UUID) -> list[SplitResult]:
        rows = self.session.execute(
            select(SplitLink)
            .where(SplitLink.transaction_id == transaction_id)
            .order_by(SplitLink.created_at, SplitLink.id)
        ).scalars().all()
        return [SplitResult.from_model(row) for row in rows]

    def has_splits(self, transaction_id: UUID) -> bool:
        return self.session.execute(
            select(SplitLink.id).where(SplitLink.transaction_id == transaction_id).limit(1)
        ).first() is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store(
        self,
        transaction_id: UUID,
        agreement: AgreementInfo,
        computation: SplitComputation,
    ) -> SplitResult:
        link = self._upsert_link(transaction_id, agreement.id, computation)
        self._remove_stale_links(transaction_id, agreement.id)

        logger.info(
            "split_recorded",
            extra={
                "transaction_id": str(transaction_id),
                "agreement_id": str(agreement.id),
                "partner_share": link.partner_share,
                "merchant_share": link.merchant_share,
                "calculation_method": link.calculation_method,
            },
        )
        return SplitResult.from_model(link)

    def _upsert_link(
        self,
        transaction_id: UUID,
        agreement_id: UUID,
        computation: SplitComputation,
    ) -> SplitLink:
        insert = pg_insert if self.dialect_name == "postgresql" else sqlite_insert
        now = self._clock.now()

        stmt = insert(SplitLink).values(
            id=uuid4(),
            transaction_id=transaction_id,
            agreement_id=agreement_id,
            partner_share=computation.partner_share,
            merchant_share=computation.merchant_share,
            calculation_method=computation.method.value,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["transaction_id", "agreement_id"],
            set_={
                "partner_share": stmt.excluded.partner_share,
                "merchant_share": stmt.excluded.merchant_share,
                "calculation_method": stmt.excluded.calculation_method,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.session.execute(stmt)

        return self.session.execute(
            select(SplitLink)
            .where(
                SplitLink.transaction_id == transaction_id,
                SplitLink.agreement_id == agreement_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _remove_stale_links(self, transaction_id: UUID, keep_agreement_id: UUID) -> None:
        stale_ids = select(SplitLink.id).where(
            SplitLink.transaction_id == transaction_id,
            SplitLink.agreement_id != keep_agreement_id,
        )
        self._revert_settlements(transaction_id, stale_ids)
        self.session.execute(
            delete(SettlementAdjustment).where(SettlementAdjustment.split_link_id.in_(stale_ids))
        )
        result = self.session.execute(
            delete(SplitLink).where(
                SplitLink.transaction_id == transaction_id,
                SplitLink.agreement_id != keep_agreement_id,
            )
        )
        if result.rowcount:
            logger.info(
                "stale_splits_removed",
                extra={
                    "transaction_id": str(transaction_id),
                    "removed": result.rowcount,
                },
            )

    def _revert_settlements(self, transaction_id: UUID, link_ids) -> None:
        """Revert every active settlement run holding an adjustment on link_ids."""
        run_ids = select(SettlementAdjustment.settlement_run_id).where(
            SettlementAdjustment.split_link_id.in_(link_ids)
        )
        runs = self.session.execute(
            select(SettlementRun).where(
                SettlementRun.id.in_(run_ids),
                SettlementRun.status != SettlementStatus.REVERTED.value,
            )
        ).scalars().all()
        if not runs:
            return

        now = self._clock.now()
        for run in runs:
            removed = self.session.execute(
                delete(SettlementAdjustment).where(
                    SettlementAdjustment.settlement_run_id == run.id
                )
            ).rowcount
            self.session.expire(run, ["adjustments"])
            run.status = SettlementStatus.REVERTED.value
            run.reverted_at = now
            run.updated_at = now

            logger.warning(
                "settlement_reverted_by_split_change",
                extra={
                    "transaction_id": str(transaction_id),
                    "agreement_id": str(run.agreement_id),
                    "settlement_id": str(run.id),
                    "year": run.year,
                    "month": run.month,
                    "adjustments_removed": removed,
                },
            )
        self.session.flush()
