"""
Module: revshare_kernel.models.split_link
Responsibility: ORM persistence for the computed partner/merchant split of
    one transaction under one agreement.  This table is the single source of
    truth read by settlement and balance calculations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (transaction_id, agreement_id) is unique.  The split recorder upserts
      on this key so concurrent writers converge on one row.
    - partner_share and merchant_share are non-negative raw shares and are
      never touched by settlement.  Guarantee true-ups live in
      settlement_adjustments and are added at read time.
    - Deleting a transaction deletes its links (ON DELETE CASCADE).

Failure modes:
    - IntegrityError on a plain INSERT of a duplicate pair.  Writers use
      INSERT .. ON CONFLICT DO UPDATE instead.
"""

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from revshare_kernel.db.base import TrackedBase


class SplitLink(TrackedBase):
    """Raw revenue split of one transaction under one agreement."""

    __tablename__ = "transaction_agreement_links"

    __table_args__ = (
        UniqueConstraint(
            "transaction_id",
            "agreement_id",
            name="uq_split_link_transaction_agreement",
        ),
        CheckConstraint("partner_share >= 0", name="ck_split_link_partner_nonneg"),
        CheckConstraint("merchant_share >= 0", name="ck_split_link_merchant_nonneg"),
        Index("idx_split_link_agreement", "agreement_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )

    agreement_id: Mapped[UUID] = mapped_column(
        ForeignKey("agreements.id", ondelete="CASCADE"),
        nullable=False,
    )

    partner_share: Mapped[int] = mapped_column(nullable=False)
    merchant_share: Mapped[int] = mapped_column(nullable=False)

    calculation_method: Mapped[str] = mapped_column(String(30), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SplitLink txn={self.transaction_id} agreement={self.agreement_id} "
            f"partner={self.partner_share} merchant={self.merchant_share}>"
        )
