"""
Module: revshare_kernel.selectors.agreement_selector
Responsibility: The agreement matcher.  Resolves the single agreement that
    governs a transaction from the merchant, the transaction date and the
    optional client.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Candidates are the merchant's active agreements whose [start, end]
      window contains the date (end NULL = open-ended).
    - With a client id, the client's agreements and the global ones compete;
      without one, only global agreements are eligible.
    - Ranking is a total order: client-specific before global, then higher
      priority, then most recently created, then agreement id descending.
      Repeated calls over the same rows return the same agreement.
    - Finding nothing is not an error: match_agreement returns None.

Failure modes:
    - AgreementNotFoundError from get_agreement() for an unknown id.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import case, or_, select

from revshare_kernel.domain.dtos import AgreementInfo
from revshare_kernel.domain.enums import AgreementType
from revshare_kernel.exceptions import AgreementNotFoundError
from revshare_kernel.logging_config import get_logger
from revshare_kernel.models.agreement import Agreement
from revshare_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.agreement")


class AgreementSelector(BaseSelector[Agreement]):
    """
    Read-only agreement queries, including the matcher.

    Non-goals:
        - Does NOT validate agreement types; the split calculator does.
    """

    def _applicable_query(
        self,
        merchant_id: UUID,
        on_date: date,
        client_id: UUID | None,
    ):
        if client_id is not None:
            client_filter = or_(
                Agreement.client_id == client_id,
                Agreement.client_id.is_(None),
            )
        else:
            client_filter = Agreement.client_id.is_(None)

        # 0 sorts client-specific agreements ahead of global ones
        scope_rank = case((Agreement.client_id.is_(None), 1), else_=0)

        return (
            select(Agreement)
            .where(
                Agreement.merchant_id == merchant_id,
                Agreement.is_active.is_(True),
                Agreement.start_date <= on_date,
                or_(Agreement.end_date.is_(None), Agreement.end_date >= on_date),
                client_filter,
            )
            .order_by(
                scope_rank.asc(),
                Agreement.priority.desc(),
                Agreement.created_at.desc(),
                Agreement.id.desc(),
            )
        )

    def list_applicable(
        self,
        merchant_id: UUID,
        on_date: date,
        client_id: UUID | None = None,
    ) -> list[AgreementInfo]:
        """Every candidate for the date and client, best match first."""
        rows = self.session.execute(
            self._applicable_query(merchant_id, on_date, client_id)
        ).scalars().all()
        return [AgreementInfo.from_model(row) for row in rows]

    def match_agreement(
        self,
        merchant_id: UUID,
        on_date: date,
        client_id: UUID | None = None,
    ) -> AgreementInfo | None:
        """
        Return the single applicable agreement, or None.

        Preconditions: on_date is the transaction date (not the ingestion
            date).
        Postconditions: No rows are read beyond the top-ranked candidate.
        """
        agreement = self.session.execute(
            self._applicable_query(merchant_id, on_date, client_id).limit(1)
        ).scalars().first()

        if agreement is None:
            logger.debug(
                "agreement_not_matched",
                extra={
                    "merchant_id": str(merchant_id),
                    "on_date": on_date.isoformat(),
                    "client_id": str(client_id) if client_id else None,
                },
            )
            return None

        return AgreementInfo.from_model(agreement)

    def get_agreement(self, agreement_id: UUID) -> AgreementInfo:
        agreement = self.session.get(Agreement, agreement_id)
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return AgreementInfo.from_model(agreement)

    def list_settleable(self, on_date: date) -> list[AgreementInfo]:
        """
        Active agreements carrying a guarantee floor that are in effect on
        ``on_date``, in a stable order (merchant, created_at, id).
        """
        rows = self.session.execute(
            select(Agreement)
            .where(
                Agreement.is_active.is_(True),
                Agreement.agreement_type.in_(
                    [AgreementType.MINIMUM_GUARANTEE.value, AgreementType.HYBRID.value]
                ),
                Agreement.start_date <= on_date,
                or_(Agreement.end_date.is_(None), Agreement.end_date >= on_date),
            )
            .order_by(Agreement.merchant_id, Agreement.created_at, Agreement.id)
        ).scalars().all()
        return [AgreementInfo.from_model(row) for row in rows]

    def list_for_merchant(
        self,
        merchant_id: UUID,
        partner_id: UUID | None = None,
        active_only: bool = True,
    ) -> list[AgreementInfo]:
        query = select(Agreement).where(Agreement.merchant_id == merchant_id)
        if partner_id is not None:
            query = query.where(Agreement.partner_id == partner_id)
        if active_only:
            query = query.where(Agreement.is_active.is_(True))
        rows = self.session.execute(
            query.order_by(Agreement.created_at, Agreement.id)
        ).scalars().all()
        return [AgreementInfo.from_model(row) for row in rows]
