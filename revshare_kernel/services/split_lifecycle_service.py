"""
SplitLifecycleService -- keeps split links in step with transaction status.

Responsibility:
    Applies the effect of a transaction status transition on its split
    links, recalculates a single transaction on demand, and recalculates
    every completed transaction of a merchant over a date range.

Architecture position:
    Kernel > Services -- imperative shell, called by TransactionService and
    by gateway ingestion.

Invariants enforced:
    - -> COMPLETED: the pipeline runs only when the transaction has no link
      yet.  Existing links are never recomputed by a status change.
    - -> FAILED / CANCELLED: every link of the transaction is deleted.
    - -> PENDING: links are left untouched.
    - Recalculation deletes existing links first, then reruns the pipeline
      for COMPLETED transactions.  Refunds and chargebacks that reference an
      original payment go through the refund path.
    - Removing a link that a settled month adjusted reverts that month's
      settlement run, leaving it to be settled again.
    - Bulk recalculation isolates each transaction in a SAVEPOINT.  A
      failure rolls back that transaction's work only and is reported in
      the result's error list.

Failure modes:
    - TransactionNotFoundError for an unknown transaction id.
    - Calculator errors propagate from single-transaction calls and are
      collected by bulk_recalculate().
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import ItemError, RecalculationResult, SplitResult
from revshare_kernel.domain.enums import TransactionKind, TransactionStatus
from revshare_kernel.exceptions import RevShareError, TransactionNotFoundError
from revshare_kernel.logging_config import LogContext, get_logger
from revshare_kernel.models.transaction import Transaction
from revshare_kernel.services.base import BaseService
from revshare_kernel.services.split_recorder import SplitRecorder

logger = get_logger("services.split_lifecycle")


class SplitLifecycleService(BaseService[Transaction]):
    """Status-driven creation and removal of split links."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        recorder: SplitRecorder | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._recorder = recorder or SplitRecorder(session, self._clock)

    def _get_transaction(self, transaction_id: UUID) -> Transaction:
        transaction = self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    def run_pipeline(self, transaction: Transaction) -> SplitResult | None:
        """Matcher -> calculator -> recorder for one transaction row."""
        kind = TransactionKind(transaction.kind)
        if kind.is_reversal and transaction.original_transaction_id is not None:
            return self._recorder.record_refund_split(
                transaction.id, transaction.original_transaction_id
            )
        return self._recorder.record_split(
            transaction_id=transaction.id,
            merchant_id=transaction.merchant_id,
            subtotal=transaction.subtotal,
            on_date=transaction.transaction_date,
            kind=kind,
            client_id=transaction.client_id,
        )

    def on_transaction_status_changed(
        self,
        transaction_id: UUID,
        new_status: TransactionStatus | str,
    ) -> SplitResult | None:
        """
        Apply the split effect of a status transition.

        Returns:
            The split recorded by a transition to COMPLETED, or the existing
            one if the transaction already had a link; None otherwise.
        """
        status = TransactionStatus(new_status)
        transaction = self._get_transaction(transaction_id)

        with LogContext.bind(transaction_id=transaction_id):
            if status == TransactionStatus.COMPLETED:
                existing = self._recorder.get_splits(transaction_id)
                if existing:
                    return existing[0]
                return self.run_pipeline(transaction)

            if status in (TransactionStatus.FAILED, TransactionStatus.CANCELLED):
                self._recorder.remove_splits(transaction_id)
                return None

            logger.debug("status_change_ignored", extra={"new_status": status.value})
            return None

    def recalculate_transaction(self, transaction_id: UUID) -> SplitResult | None:
        """Delete the transaction's links and, if COMPLETED, rebuild them."""
        transaction = self._get_transaction(transaction_id)
        self._recorder.remove_splits(transaction_id)

        if transaction.status != TransactionStatus.COMPLETED:
            return None
        return self.run_pipeline(transaction)

    def bulk_recalculate(
        self,
        merchant_id: UUID,
        start_date: date,
        end_date: date,
    ) -> RecalculationResult:
        """
        Recalculate every COMPLETED transaction of the merchant in range.

        Refunds without a recorded original are skipped and keep their
        links: there is nothing reliable to recalculate them against.
        Chargebacks without an original are not skipped.  They are matched
        against the merchant's agreements on their own date, like any
        other transaction.
        """
        transactions = self.session.execute(
            select(Transaction)
            .where(
                Transaction.merchant_id == merchant_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.transaction_date >= start_date,
                Transaction.transaction_date <= end_date,
            )
            .order_by(Transaction.transaction_date, Transaction.created_at, Transaction.id)
        ).scalars().all()

        processed = 0
        skipped = 0
        errors: list[ItemError] = []

        for transaction in transactions:
            if (
                transaction.kind == TransactionKind.REFUND
                and transaction.original_transaction_id is None
            ):
                skipped += 1
                continue

            transaction_id = transaction.id
            savepoint = self.session.begin_nested()
            try:
                self._recorder.remove_splits(transaction_id)
                self.run_pipeline(transaction)
                savepoint.commit()
                processed += 1
            except RevShareError as exc:
                savepoint.rollback()
                errors.append(ItemError(str(transaction_id), exc.code, str(exc)))
                logger.warning(
                    "recalculation_item_failed",
                    extra={"transaction_id": str(transaction_id), "error_code": exc.code},
                )
            except Exception as exc:
                savepoint.rollback()
                errors.append(ItemError(str(transaction_id), "UNHANDLED_EXCEPTION", str(exc)))
                logger.exception(
                    "recalculation_item_crashed",
                    extra={"transaction_id": str(transaction_id)},
                )

        logger.info(
            "bulk_recalculation_completed",
            extra={
                "merchant_id": str(merchant_id),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "processed": processed,
                "skipped": skipped,
                "error_count": len(errors),
            },
        )
        return RecalculationResult(processed=processed, errors=tuple(errors))
