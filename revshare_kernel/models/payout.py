"""
Module: revshare_kernel.models.payout
Responsibility: ORM persistence for payouts to partners (manual or gateway).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Only COMPLETED payouts reduce a partner's outstanding balance.
    - (merchant_id, external_id) is unique so gateway payouts upsert.
    - payout_metadata may carry ``agreement_id`` to tie a payout to one
      agreement; untagged payouts count against every agreement.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from revshare_kernel.db.base import TrackedBase
from revshare_kernel.domain.enums import PayoutStatus


class Payout(TrackedBase):
    """Money paid (or scheduled to be paid) to a partner."""

    __tablename__ = "payouts"

    __table_args__ = (
        UniqueConstraint("merchant_id", "external_id", name="uq_payout_external"),
        Index("idx_payout_merchant_partner", "merchant_id", "partner_id"),
        Index("idx_payout_scheduled", "scheduled_date"),
    )

    merchant_id: Mapped[UUID] = mapped_column(nullable=False)

    # NULL for gateway payouts not yet attributed to a partner
    partner_id: Mapped[UUID | None] = mapped_column(nullable=True)

    amount: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[PayoutStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PayoutStatus.PENDING,
    )

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    payout_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Payout {self.id} {self.status} amount={self.amount}>"
