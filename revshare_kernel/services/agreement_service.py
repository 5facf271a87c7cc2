"""
AgreementService -- creation and deactivation of revenue-share agreements.

Responsibility:
    Validates agreement fields and persists Agreement rows with creation
    timestamps taken from the injected clock.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - agreement_type is one of the known types; rate is a Decimal in
      [0, 1] stored at six decimal places; guarantee is non-negative.
    - created_at comes from the clock, so the matcher's recency tie-break
      is reproducible in tests and replays.

Failure modes:
    - UnknownAgreementTypeError, InvalidSplitInputError,
      InvalidAgreementError, InvalidCurrencyError on bad input.
    - AgreementNotFoundError from deactivate_agreement().
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from revshare_kernel.db.types import RATE_DECIMAL_PLACES, to_rate, validate_currency
from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import AgreementInfo
from revshare_kernel.domain.enums import AgreementType
from revshare_kernel.exceptions import (
    AgreementNotFoundError,
    InvalidAgreementError,
    InvalidSplitInputError,
)
from revshare_kernel.logging_config import get_logger
from revshare_kernel.models.agreement import Agreement
from revshare_kernel.services.base import BaseService

logger = get_logger("services.agreement")

_RATE_QUANTUM = Decimal(1).scaleb(-RATE_DECIMAL_PLACES)


class AgreementService(BaseService[Agreement]):
    """Write-side operations on agreements."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_agreement(
        self,
        merchant_id: UUID,
        partner_id: UUID,
        agreement_type: AgreementType | str,
        start_date: date,
        percentage_rate: Decimal | str | None = None,
        minimum_guarantee: int | None = None,
        currency: str = "USD",
        priority: int = 0,
        client_id: UUID | None = None,
        end_date: date | None = None,
        is_active: bool = True,
        description: str | None = None,
    ) -> AgreementInfo:
        """
        Validate and persist a new agreement.

        Postconditions: the row is flushed and its created_at equals
            ``clock.now()``.
        """
        parsed_type = AgreementType.parse(agreement_type)

        rate = None
        if percentage_rate is not None:
            rate = to_rate(percentage_rate)
            if rate < 0 or rate > 1:
                raise InvalidSplitInputError("percentage_rate", str(rate))
            rate = rate.quantize(_RATE_QUANTUM)

        if minimum_guarantee is not None and minimum_guarantee < 0:
            raise InvalidAgreementError("minimum_guarantee", "must not be negative")
        if end_date is not None and end_date < start_date:
            raise InvalidAgreementError("end_date", "precedes start_date")

        now = self._clock.now()
        agreement = Agreement(
            merchant_id=merchant_id,
            partner_id=partner_id,
            client_id=client_id,
            agreement_type=parsed_type.value,
            percentage_rate=rate,
            minimum_guarantee=minimum_guarantee,
            currency=validate_currency(currency),
            priority=priority,
            is_active=is_active,
            start_date=start_date,
            end_date=end_date,
            description=description,
            created_at=now,
            updated_at=now,
        )
        self.session.add(agreement)
        self.session.flush()

        logger.info(
            "agreement_created",
            extra={
                "agreement_id": str(agreement.id),
                "merchant_id": str(merchant_id),
                "partner_id": str(partner_id),
                "agreement_type": parsed_type.value,
                "client_scoped": client_id is not None,
                "priority": priority,
            },
        )
        return AgreementInfo.from_model(agreement)

    def deactivate_agreement(self, agreement_id: UUID) -> AgreementInfo:
        """Mark an agreement inactive.  Existing split links are kept."""
        agreement = self.session.get(Agreement, agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))

        agreement.is_active = False
        agreement.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "agreement_deactivated",
            extra={"agreement_id": str(agreement_id)},
        )
        return AgreementInfo.from_model(agreement)
