"""
TransactionService -- manual transaction entry and status changes.

Responsibility:
    Persists transactions and drives the split lifecycle when a transaction
    is created COMPLETED or changes status.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - The transaction write never depends on the split.  Split work runs in
      a SAVEPOINT after the transaction row is flushed; if it fails, only
      the split is rolled back and the failure is logged.
    - subtotal is non-negative; the refund direction is carried by kind.
    - original_transaction_id, when given, must reference an existing
      transaction of the same merchant.

Failure modes:
    - InvalidSplitInputError for a negative subtotal.
    - InvalidCurrencyError for a non-ISO currency.
    - TransactionNotFoundError for an unknown transaction or original.
"""

from datetime import date
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from revshare_kernel.db.types import validate_currency
from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import TransactionInfo
from revshare_kernel.domain.enums import (
    TransactionKind,
    TransactionSource,
    TransactionStatus,
)
from revshare_kernel.exceptions import (
    InvalidSplitInputError,
    RevShareError,
    TransactionNotFoundError,
)
from revshare_kernel.logging_config import get_logger
from revshare_kernel.models.transaction import Transaction
from revshare_kernel.services.base import BaseService
from revshare_kernel.services.split_lifecycle_service import SplitLifecycleService

logger = get_logger("services.transaction")


class TransactionService(BaseService[Transaction]):
    """Write-side operations on transactions."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lifecycle: SplitLifecycleService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._lifecycle = lifecycle or SplitLifecycleService(session, self._clock)

    def create_transaction(
        self,
        merchant_id: UUID,
        subtotal: int,
        transaction_date: date,
        kind: TransactionKind | str = TransactionKind.PAYMENT,
        status: TransactionStatus | str = TransactionStatus.PENDING,
        client_id: UUID | None = None,
        sales_tax: int = 0,
        fees: int = 0,
        currency: str = "USD",
        external_id: str | None = None,
        source: TransactionSource | str = TransactionSource.MANUAL,
        original_transaction_id: UUID | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionInfo:
        """
        Persist a transaction and, when COMPLETED, record its split.

        Postconditions: the transaction row is flushed whether or not the
            split succeeds.
        """
        if subtotal < 0:
            raise InvalidSplitInputError("subtotal", str(subtotal))

        if original_transaction_id is not None:
            original = self.session.get(Transaction, original_transaction_id)
            if original is None or original.merchant_id != merchant_id:
                raise TransactionNotFoundError(str(original_transaction_id))

        now = self._clock.now()
        transaction = Transaction(
            merchant_id=merchant_id,
            client_id=client_id,
            kind=TransactionKind(kind).value,
            status=TransactionStatus(status).value,
            subtotal=subtotal,
            sales_tax=sales_tax,
            total=subtotal + sales_tax,
            fees=fees,
            currency=validate_currency(currency),
            transaction_date=transaction_date,
            external_id=external_id,
            source=TransactionSource(source).value,
            original_transaction_id=original_transaction_id,
            description=description,
            transaction_metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        self.session.add(transaction)
        self.session.flush()

        logger.info(
            "transaction_created",
            extra={
                "transaction_id": str(transaction.id),
                "merchant_id": str(merchant_id),
                "kind": transaction.kind,
                "status": transaction.status,
                "subtotal": subtotal,
            },
        )

        if transaction.status == TransactionStatus.COMPLETED:
            self.apply_split_safely(transaction.id, TransactionStatus.COMPLETED)

        return TransactionInfo.from_model(transaction)

    def change_status(
        self,
        transaction_id: UUID,
        status: TransactionStatus | str,
    ) -> TransactionInfo:
        """Persist a new status, then apply its split effect."""
        new_status = TransactionStatus(status)
        transaction = self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))

        previous = transaction.status
        transaction.status = new_status.value
        transaction.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "transaction_status_changed",
            extra={
                "transaction_id": str(transaction_id),
                "from_status": previous,
                "to_status": new_status.value,
            },
        )

        self.apply_split_safely(transaction_id, new_status)
        return TransactionInfo.from_model(transaction)

    def apply_split_safely(
        self,
        transaction_id: UUID,
        status: TransactionStatus,
    ) -> bool:
        """
        Run the status lifecycle hook inside a SAVEPOINT.

        Returns:
            True when the hook succeeded, False when it failed and was
            rolled back.  The failure is logged, never raised.
        """
        return self._run_split_safely(
            transaction_id,
            lambda: self._lifecycle.on_transaction_status_changed(transaction_id, status),
        )

    def recalculate_safely(self, transaction_id: UUID) -> bool:
        """Rebuild the transaction's split inside a SAVEPOINT."""
        return self._run_split_safely(
            transaction_id,
            lambda: self._lifecycle.recalculate_transaction(transaction_id),
        )

    def _run_split_safely(self, transaction_id: UUID, action: Callable[[], Any]) -> bool:
        savepoint = self.session.begin_nested()
        try:
            action()
            savepoint.commit()
            return True
        except RevShareError as exc:
            savepoint.rollback()
            logger.warning(
                "split_failed_transaction_kept",
                extra={"transaction_id": str(transaction_id), "error_code": exc.code},
                exc_info=True,
            )
        except Exception:
            savepoint.rollback()
            logger.exception(
                "split_crashed_transaction_kept",
                extra={"transaction_id": str(transaction_id)},
            )
        return False

    def get_transaction(self, transaction_id: UUID) -> TransactionInfo:
        transaction = self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return TransactionInfo.from_model(transaction)
