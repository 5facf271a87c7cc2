"""
Module: revshare_kernel.models.agreement
Responsibility: ORM persistence for revenue-share agreements between a
    merchant and a partner, optionally scoped to one of the merchant's
    clients.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - percentage_rate is a Decimal in [0, 1] (checked by the split
      calculator, stored as Numeric(9, 6)).
    - created_at is written from the injected clock by AgreementService so
      that the matcher's recency tie-break is deterministic.

Failure modes:
    - The stored agreement_type is a plain string.  An unknown value is
      loaded without complaint and rejected by the split calculator with
      UnknownAgreementTypeError.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from revshare_kernel.db.base import TrackedBase
from revshare_kernel.domain.enums import AgreementType


class Agreement(TrackedBase):
    """
    Contract defining how a merchant shares revenue with a partner.

    Contract:
        client_id NULL means the agreement applies to every client of the
        merchant (global).  end_date NULL means open-ended.  Between
        several applicable agreements, the matcher prefers client-specific,
        then higher priority, then most recently created.

    Non-goals:
        - No overlap validation.  Overlapping agreements are legal and are
          resolved by the matcher's ranking.
    """

    __tablename__ = "agreements"

    __table_args__ = (
        Index("idx_agreement_merchant_active", "merchant_id", "is_active"),
        Index("idx_agreement_partner", "partner_id"),
        Index("idx_agreement_client", "client_id"),
    )

    merchant_id: Mapped[UUID] = mapped_column(nullable=False)
    partner_id: Mapped[UUID] = mapped_column(nullable=False)

    # NULL = global agreement for all of the merchant's clients
    client_id: Mapped[UUID | None] = mapped_column(nullable=True)

    agreement_type: Mapped[AgreementType] = mapped_column(
        String(20),
        nullable=False,
    )

    percentage_rate: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)

    # Monthly floor for MINIMUM_GUARANTEE / HYBRID, in minor units
    minimum_guarantee: Mapped[int | None] = mapped_column(nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def is_effective_on(self, on: date) -> bool:
        if self.start_date > on:
            return False
        return self.end_date is None or self.end_date >= on

    @property
    def rate(self) -> Decimal:
        return self.percentage_rate if self.percentage_rate is not None else Decimal(0)

    def __repr__(self) -> str:
        return (
            f"<Agreement {self.id} {self.agreement_type} "
            f"merchant={self.merchant_id} partner={self.partner_id}>"
        )
