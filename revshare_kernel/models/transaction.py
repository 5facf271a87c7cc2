"""
Module: revshare_kernel.models.transaction
Responsibility: ORM persistence for merchant transactions, whether entered
    manually or ingested from a payment gateway.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (merchant_id, external_id) is unique: gateway ingestion upserts on it
      and a replayed event never creates a second row.
    - subtotal is non-negative minor units, tax excluded.  The direction of a
      refund or chargeback is carried by ``kind``, not by the sign.
    - original_transaction_id links a refund or chargeback to the payment it
      reverses.

Failure modes:
    - IntegrityError on a duplicate (merchant_id, external_id).
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from revshare_kernel.db.base import TrackedBase
from revshare_kernel.domain.enums import (
    TransactionKind,
    TransactionSource,
    TransactionStatus,
)


class Transaction(TrackedBase):
    """
    A payment, refund or chargeback belonging to one merchant.

    Contract:
        Status transitions drive the split lifecycle: COMPLETED creates a
        split link, FAILED and CANCELLED remove it, PENDING leaves it alone.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        UniqueConstraint("merchant_id", "external_id", name="uq_transaction_external"),
        Index("idx_transaction_merchant_date", "merchant_id", "transaction_date"),
        Index("idx_transaction_status", "status"),
        Index("idx_transaction_original", "original_transaction_id"),
    )

    merchant_id: Mapped[UUID] = mapped_column(nullable=False)
    client_id: Mapped[UUID | None] = mapped_column(nullable=True)

    kind: Mapped[TransactionKind] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionKind.PAYMENT,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    subtotal: Mapped[int] = mapped_column(nullable=False)
    sales_tax: Mapped[int] = mapped_column(nullable=False, default=0)
    total: Mapped[int] = mapped_column(nullable=False)
    fees: Mapped[int] = mapped_column(nullable=False, default=0)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Idempotency key for ingestion (gateway charge / payment intent id)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    source: Mapped[TransactionSource] = mapped_column(
        String(20),
        nullable=False,
        default=TransactionSource.MANUAL,
    )

    original_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    transaction_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.id} {self.kind} {self.status} "
            f"subtotal={self.subtotal}>"
        )
