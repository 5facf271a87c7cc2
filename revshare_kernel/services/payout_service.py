"""
PayoutService -- manual payout entry and status updates.

Responsibility:
    Persists payouts to partners.  Only COMPLETED payouts count against the
    outstanding balance, so completing a payout is the write that matters.

Architecture position:
    Kernel > Services -- imperative shell.

Failure modes:
    - InvalidCurrencyError for a non-ISO currency.
    - ValueError for a non-positive amount.
    - PayoutNotFoundError from update_status().
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from revshare_kernel.db.types import validate_currency
from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import PayoutInfo
from revshare_kernel.domain.enums import PayoutStatus
from revshare_kernel.exceptions import PayoutNotFoundError
from revshare_kernel.logging_config import get_logger
from revshare_kernel.models.payout import Payout
from revshare_kernel.services.base import BaseService

logger = get_logger("services.payout")


class PayoutService(BaseService[Payout]):
    """Write-side operations on payouts."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_payout(
        self,
        merchant_id: UUID,
        partner_id: UUID | None,
        amount: int,
        scheduled_date: date,
        currency: str = "USD",
        status: PayoutStatus | str = PayoutStatus.PENDING,
        agreement_id: UUID | None = None,
        external_id: str | None = None,
        payout_method: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PayoutInfo:
        """
        Persist a payout.  ``agreement_id`` is stored in the metadata tag
        that the balance calculator filters on.
        """
        if amount <= 0:
            raise ValueError(f"Payout amount must be positive, got {amount}")

        payout_metadata = dict(metadata or {})
        if agreement_id is not None:
            payout_metadata["agreement_id"] = str(agreement_id)

        payout_status = PayoutStatus(status)
        now = self._clock.now()
        payout = Payout(
            merchant_id=merchant_id,
            partner_id=partner_id,
            amount=amount,
            currency=validate_currency(currency),
            status=payout_status.value,
            scheduled_date=scheduled_date,
            processed_at=now if payout_status == PayoutStatus.COMPLETED else None,
            external_id=external_id,
            payout_method=payout_method,
            payout_metadata=payout_metadata or None,
            created_at=now,
            updated_at=now,
        )
        self.session.add(payout)
        self.session.flush()

        logger.info(
            "payout_created",
            extra={
                "payout_id": str(payout.id),
                "merchant_id": str(merchant_id),
                "partner_id": str(partner_id) if partner_id else None,
                "amount": amount,
                "status": payout_status.value,
            },
        )
        return PayoutInfo.from_model(payout)

    def update_status(
        self,
        payout_id: UUID,
        status: PayoutStatus | str,
        processed_at: datetime | None = None,
    ) -> PayoutInfo:
        payout = self.session.get(Payout, payout_id)
        if payout is None:
            raise PayoutNotFoundError(str(payout_id))

        new_status = PayoutStatus(status)
        payout.status = new_status.value
        if new_status == PayoutStatus.COMPLETED:
            payout.processed_at = processed_at or payout.processed_at or self._clock.now()
        payout.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "payout_status_changed",
            extra={"payout_id": str(payout_id), "status": new_status.value},
        )
        return PayoutInfo.from_model(payout)
