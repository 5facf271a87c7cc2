"""
Module: revshare_kernel.models.settlement
Responsibility: ORM persistence for monthly settlement runs and the per-link
    adjustments a minimum-guarantee true-up distributes.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One SettlementRun per (agreement_id, year, month).  The row is the
      settlement marker: an APPLIED, NO_ADJUSTMENT or UNALLOCATED run means
      the month is settled and must not be re-applied.  A REVERTED run may
      be settled again, reusing the same row.
    - One SettlementAdjustment per (settlement_run_id, split_link_id).  The
      adjustments of an APPLIED run sum to the run's adjustment.
    - Final partner share of a link for the period = raw share + adjustment.

Failure modes:
    - IntegrityError on a concurrent second insert of the same run; the
      settlement service translates it to SettlementConflictError.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revshare_kernel.db.base import TrackedBase
from revshare_kernel.domain.enums import SettlementStatus


class SettlementRun(TrackedBase):
    """Settlement of one agreement for one calendar month."""

    __tablename__ = "settlement_runs"

    __table_args__ = (
        UniqueConstraint("agreement_id", "year", "month", name="uq_settlement_run_period"),
        Index("idx_settlement_run_period", "year", "month"),
    )

    agreement_id: Mapped[UUID] = mapped_column(
        ForeignKey("agreements.id", ondelete="CASCADE"),
        nullable=False,
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[SettlementStatus] = mapped_column(String(20), nullable=False)

    raw_partner_share: Mapped[int] = mapped_column(nullable=False)
    raw_merchant_share: Mapped[int] = mapped_column(nullable=False)
    minimum_guarantee: Mapped[int | None] = mapped_column(nullable=True)
    adjustment: Mapped[int] = mapped_column(nullable=False, default=0)
    final_partner_share: Mapped[int] = mapped_column(nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)

    settled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reverted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    adjustments: Mapped[list["SettlementAdjustment"]] = relationship(
        back_populates="settlement_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status != SettlementStatus.REVERTED

    def __repr__(self) -> str:
        return (
            f"<SettlementRun agreement={self.agreement_id} "
            f"{self.year}-{self.month:02d} {self.status}>"
        )


class SettlementAdjustment(TrackedBase):
    """Portion of a settlement adjustment assigned to one split link."""

    __tablename__ = "settlement_adjustments"

    __table_args__ = (
        UniqueConstraint(
            "settlement_run_id",
            "split_link_id",
            name="uq_settlement_adjustment_link",
        ),
        Index("idx_settlement_adjustment_link", "split_link_id"),
    )

    settlement_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("settlement_runs.id", ondelete="CASCADE"),
        nullable=False,
    )

    split_link_id: Mapped[UUID] = mapped_column(
        ForeignKey("transaction_agreement_links.id", ondelete="CASCADE"),
        nullable=False,
    )

    transaction_id: Mapped[UUID] = mapped_column(nullable=False)

    adjustment: Mapped[int] = mapped_column(nullable=False)

    settlement_run: Mapped[SettlementRun] = relationship(back_populates="adjustments")
