"""
SettlementService -- monthly minimum-guarantee settlement.

Responsibility:
    Aggregates one agreement's split links for a calendar month, applies the
    minimum-guarantee true-up, and records the result as a settlement run
    plus per-link adjustments.  Also reverts, previews and reports
    settlements, and settles every eligible agreement for a month.

Architecture position:
    Kernel > Services -- imperative shell around the pure proportional
    allocation in ``revshare_kernel.domain.allocation``.

Invariants enforced:
    - Raw totals cover links whose transaction is COMPLETED, kind PAYMENT and
      dated inside the month.
    - A true-up applies only to MINIMUM_GUARANTEE and HYBRID agreements with
      a positive guarantee above the raw partner total:
      adjustment = guarantee - raw, final = guarantee.
    - SplitLink rows are never modified.  The adjustment is stored per link
      in settlement_adjustments and the per-link amounts sum to the
      adjustment exactly.
    - A month is settled at most once.  An existing run that is not
      REVERTED is returned unchanged with ``already_settled=True``;
      re-settling requires revert_settlement() first, or a removal of one
      of its adjusted links, which reverts the run the same way.
    - The aggregate read and all writes happen in the caller's transaction.
      On PostgreSQL the agreement, the run and the month's links are
      locked with SELECT .. FOR UPDATE for the duration.
    - Batch settlement isolates each agreement in a SAVEPOINT; one failure
      is logged and reported, never fatal to the batch.

Failure modes:
    - AgreementNotFoundError for an unknown agreement.
    - UnknownAgreementTypeError for a misconfigured agreement.
    - SettlementNotFoundError from revert_settlement() when nothing is
      settled.
    - SettlementConflictError when a concurrent writer inserted the same
      run first.
    - A guarantee owed with no revenue in the month is not raised.  It is
      recorded with status UNALLOCATED and logged as a warning.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from revshare_kernel.domain.allocation import allocate_proportionally
from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import (
    AllocationLine,
    BatchSettlementResult,
    ItemError,
    SettlementResult,
)
from revshare_kernel.domain.enums import (
    AgreementType,
    SettlementStatus,
    TransactionKind,
    TransactionStatus,
)
from revshare_kernel.domain.periods import month_bounds, trailing_months
from revshare_kernel.exceptions import (
    AgreementNotFoundError,
    RevShareError,
    SettlementConflictError,
    SettlementNotFoundError,
)
from revshare_kernel.logging_config import LogContext, get_logger
from revshare_kernel.models.agreement import Agreement
from revshare_kernel.models.settlement import SettlementAdjustment, SettlementRun
from revshare_kernel.models.split_link import SplitLink
from revshare_kernel.models.transaction import Transaction
from revshare_kernel.selectors.agreement_selector import AgreementSelector
from revshare_kernel.services.base import BaseService

logger = get_logger("services.settlement")

DEFAULT_HISTORY_MONTHS = 12


@dataclass(frozen=True)
class _PeriodLink:
    split_link_id: UUID
    transaction_id: UUID
    partner_share: int
    merchant_share: int


@dataclass(frozen=True)
class _SettlementPlan:
    raw_partner_share: int
    raw_merchant_share: int
    transaction_count: int
    minimum_guarantee: int | None
    adjustment: int
    final_partner_share: int
    status: SettlementStatus
    allocations: tuple[AllocationLine, ...]


def plan_settlement(
    agreement_type: AgreementType,
    minimum_guarantee: int | None,
    links: list[_PeriodLink],
) -> _SettlementPlan:
    """
    Compute a month's settlement from its raw links (pure).

    The shortfall is allocated in proportion to each link's raw partner
    share.  When the partner earned nothing on the month's transactions (a
    guarantee-only agreement with no rate) the subtotal of each transaction
    is the weight instead.  With no revenue at all the run is UNALLOCATED.
    """
    raw_partner = sum(link.partner_share for link in links)
    raw_merchant = sum(link.merchant_share for link in links)

    owed = (
        agreement_type.has_guarantee_floor
        and minimum_guarantee is not None
        and minimum_guarantee > 0
        and raw_partner < minimum_guarantee
    )
    if not owed:
        return _SettlementPlan(
            raw_partner_share=raw_partner,
            raw_merchant_share=raw_merchant,
            transaction_count=len(links),
            minimum_guarantee=minimum_guarantee,
            adjustment=0,
            final_partner_share=raw_partner,
            status=SettlementStatus.NO_ADJUSTMENT,
            allocations=(),
        )

    adjustment = minimum_guarantee - raw_partner

    if raw_partner > 0:
        weights = [(link, link.partner_share) for link in links]
    else:
        weights = [(link, link.partner_share + link.merchant_share) for link in links]

    if sum(weight for _, weight in weights) == 0:
        return _SettlementPlan(
            raw_partner_share=raw_partner,
            raw_merchant_share=raw_merchant,
            transaction_count=len(links),
            minimum_guarantee=minimum_guarantee,
            adjustment=adjustment,
            final_partner_share=raw_partner,
            status=SettlementStatus.UNALLOCATED,
            allocations=(),
        )

    allocations = tuple(
        AllocationLine(
            split_link_id=link.split_link_id,
            transaction_id=link.transaction_id,
            raw_partner_share=link.partner_share,
            adjustment=portion,
        )
        for link, portion in allocate_proportionally(adjustment, weights)
    )
    return _SettlementPlan(
        raw_partner_share=raw_partner,
        raw_merchant_share=raw_merchant,
        transaction_count=len(links),
        minimum_guarantee=minimum_guarantee,
        adjustment=adjustment,
        final_partner_share=minimum_guarantee,
        status=SettlementStatus.APPLIED,
        allocations=allocations,
    )


class SettlementService(BaseService[SettlementRun]):
    """
    Monthly settlement of agreements with a guarantee floor.

    Contract:
        settle_month() is idempotent per (agreement, year, month): the
        second call returns the first call's result without writing.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._agreements = AgreementSelector(session)

    # ------------------------------------------------------------------
    # Queries with optional row locks
    # ------------------------------------------------------------------

    def _locking(self, query, **kwargs):
        if self.dialect_name == "postgresql":
            return query.with_for_update(**kwargs)
        return query

    def _load_agreement(self, agreement_id: UUID, lock: bool) -> Agreement:
        query = select(Agreement).where(Agreement.id == agreement_id)
        if lock:
            query = self._locking(query)
        agreement = self.session.execute(query).scalar_one_or_none()
        if agreement is None:
            raise AgreementNotFoundError(str(agreement_id))
        return agreement

    def _load_run(
        self, agreement_id: UUID, year: int, month: int, lock: bool = False
    ) -> SettlementRun | None:
        query = select(SettlementRun).where(
            SettlementRun.agreement_id == agreement_id,
            SettlementRun.year == year,
            SettlementRun.month == month,
        )
        if lock:
            query = self._locking(query)
        return self.session.execute(query).scalar_one_or_none()

    def _load_period_links(
        self, agreement_id: UUID, year: int, month: int, lock: bool
    ) -> list[_PeriodLink]:
        start, end = month_bounds(year, month)
        query = (
            select(SplitLink)
            .join(Transaction, Transaction.id == SplitLink.transaction_id)
            .where(
                SplitLink.agreement_id == agreement_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.kind == TransactionKind.PAYMENT.value,
                Transaction.transaction_date >= start,
                Transaction.transaction_date <= end,
            )
            .order_by(Transaction.transaction_date, Transaction.created_at, SplitLink.id)
        )
        if lock:
            query = self._locking(query, of=SplitLink)
        rows = self.session.execute(query).scalars().all()
        return [
            _PeriodLink(
                split_link_id=row.id,
                transaction_id=row.transaction_id,
                partner_share=row.partner_share,
                merchant_share=row.merchant_share,
            )
            for row in rows
        ]

    def _plan(self, agreement: Agreement, year: int, month: int, lock: bool) -> _SettlementPlan:
        agreement_type = AgreementType.parse(agreement.agreement_type, str(agreement.id))
        links = self._load_period_links(agreement.id, year, month, lock)
        return plan_settlement(agreement_type, agreement.minimum_guarantee, links)

    # ------------------------------------------------------------------
    # Result builders
    # ------------------------------------------------------------------

    def _result_from_plan(
        self,
        agreement: Agreement,
        year: int,
        month: int,
        plan: _SettlementPlan,
        status: SettlementStatus,
        settlement_id: UUID | None = None,
    ) -> SettlementResult:
        return SettlementResult(
            agreement_id=agreement.id,
            merchant_id=agreement.merchant_id,
            partner_id=agreement.partner_id,
            year=year,
            month=month,
            raw_partner_share=plan.raw_partner_share,
            raw_merchant_share=plan.raw_merchant_share,
            minimum_guarantee=plan.minimum_guarantee,
            adjustment=plan.adjustment,
            final_partner_share=plan.final_partner_share,
            transaction_count=plan.transaction_count,
            status=status,
            allocations=plan.allocations,
            settlement_id=settlement_id,
        )

    def _result_from_run(
        self,
        agreement: Agreement,
        run: SettlementRun,
        already_settled: bool = False,
    ) -> SettlementResult:
        rows = self.session.execute(
            select(SettlementAdjustment, SplitLink.partner_share)
            .join(SplitLink, SplitLink.id == SettlementAdjustment.split_link_id)
            .join(Transaction, Transaction.id == SplitLink.transaction_id)
            .where(SettlementAdjustment.settlement_run_id == run.id)
            .order_by(Transaction.transaction_date, Transaction.created_at, SplitLink.id)
        ).all()
        allocations = tuple(
            AllocationLine(
                split_link_id=adjustment.split_link_id,
                transaction_id=adjustment.transaction_id,
                raw_partner_share=partner_share,
                adjustment=adjustment.adjustment,
            )
            for adjustment, partner_share in rows
        )
        return SettlementResult(
            agreement_id=agreement.id,
            merchant_id=agreement.merchant_id,
            partner_id=agreement.partner_id,
            year=run.year,
            month=run.month,
            raw_partner_share=run.raw_partner_share,
            raw_merchant_share=run.raw_merchant_share,
            minimum_guarantee=run.minimum_guarantee,
            adjustment=run.adjustment,
            final_partner_share=run.final_partner_share,
            transaction_count=run.transaction_count,
            status=SettlementStatus(run.status),
            allocations=allocations,
            settlement_id=run.id,
            already_settled=already_settled,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def settle_month(self, agreement_id: UUID, year: int, month: int) -> SettlementResult:
        """
        Settle one agreement for one month.

        Postconditions:
            - A SettlementRun exists for the period with a status other
              than REVERTED.
            - For APPLIED runs, one SettlementAdjustment per link, summing
              to the run's adjustment.
        """
        with LogContext.bind(agreement_id=agreement_id):
            agreement = self._load_agreement(agreement_id, lock=True)

            run = self._load_run(agreement_id, year, month, lock=True)
            if run is not None and run.is_active:
                logger.info(
                    "settlement_already_applied",
                    extra={"year": year, "month": month, "status": run.status},
                )
                return self._result_from_run(agreement, run, already_settled=True)

            plan = self._plan(agreement, year, month, lock=True)
            run = self._persist(agreement, year, month, plan, run)

            extra = {
                "year": year,
                "month": month,
                "status": plan.status.value,
                "raw_partner_share": plan.raw_partner_share,
                "minimum_guarantee": plan.minimum_guarantee,
                "adjustment": plan.adjustment,
                "transaction_count": plan.transaction_count,
            }
            if plan.status == SettlementStatus.UNALLOCATED:
                logger.warning("settlement_guarantee_unallocated", extra=extra)
            else:
                logger.info("settlement_completed", extra=extra)

            return self._result_from_plan(
                agreement, year, month, plan, plan.status, settlement_id=run.id
            )

    def _persist(
        self,
        agreement: Agreement,
        year: int,
        month: int,
        plan: _SettlementPlan,
        reverted_run: SettlementRun | None,
    ) -> SettlementRun:
        now = self._clock.now()
        savepoint = self.session.begin_nested()
        try:
            if reverted_run is None:
                run = SettlementRun(
                    agreement_id=agreement.id,
                    year=year,
                    month=month,
                    created_at=now,
                )
                self.session.add(run)
            else:
                run = reverted_run
                run.reverted_at = None

            run.status = plan.status.value
            run.raw_partner_share = plan.raw_partner_share
            run.raw_merchant_share = plan.raw_merchant_share
            run.minimum_guarantee = plan.minimum_guarantee
            run.adjustment = plan.adjustment
            run.final_partner_share = plan.final_partner_share
            run.transaction_count = plan.transaction_count
            run.settled_at = now
            run.updated_at = now
            self.session.flush()

            for line in plan.allocations:
                run.adjustments.append(
                    SettlementAdjustment(
                        split_link_id=line.split_link_id,
                        transaction_id=line.transaction_id,
                        adjustment=line.adjustment,
                        created_at=now,
                        updated_at=now,
                    )
                )
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "settlement_concurrent_conflict",
                extra={"year": year, "month": month},
            )
            raise SettlementConflictError(str(agreement.id), year, month) from None
        except Exception:
            savepoint.rollback()
            raise
        return run

    def revert_settlement(self, agreement_id: UUID, year: int, month: int) -> SettlementResult:
        """
        Remove a month's adjustments and mark its run REVERTED so the month
        can be settled again.
        """
        with LogContext.bind(agreement_id=agreement_id):
            agreement = self._load_agreement(agreement_id, lock=True)
            run = self._load_run(agreement_id, year, month, lock=True)
            if run is None or not run.is_active:
                raise SettlementNotFoundError(str(agreement_id), year, month)

            removed = self.session.execute(
                delete(SettlementAdjustment).where(
                    SettlementAdjustment.settlement_run_id == run.id
                )
            ).rowcount
            self.session.expire(run, ["adjustments"])
            run.status = SettlementStatus.REVERTED.value
            run.reverted_at = self._clock.now()
            run.updated_at = run.reverted_at
            self.session.flush()

            logger.info(
                "settlement_reverted",
                extra={"year": year, "month": month, "adjustments_removed": removed},
            )
            return self._result_from_run(agreement, run)

    def preview_month(self, agreement_id: UUID, year: int, month: int) -> SettlementResult:
        """Compute what settle_month() would record, without writing."""
        agreement = self._load_agreement(agreement_id, lock=False)
        plan = self._plan(agreement, year, month, lock=False)
        return self._result_from_plan(agreement, year, month, plan, SettlementStatus.PREVIEW)

    def settlement_history(
        self,
        agreement_id: UUID,
        months: int = DEFAULT_HISTORY_MONTHS,
        as_of: date | None = None,
    ) -> list[SettlementResult]:
        """
        One result per trailing month, oldest first: the recorded run when
        the month is settled, a PREVIEW otherwise.
        """
        agreement = self._load_agreement(agreement_id, lock=False)
        results = []
        for year, month in trailing_months(as_of or self._clock.today(), months):
            run = self._load_run(agreement_id, year, month)
            if run is not None and run.is_active:
                results.append(self._result_from_run(agreement, run, already_settled=True))
            else:
                plan = self._plan(agreement, year, month, lock=False)
                results.append(
                    self._result_from_plan(agreement, year, month, plan, SettlementStatus.PREVIEW)
                )
        return results

    def settle_all_agreements(self, year: int, month: int) -> BatchSettlementResult:
        """
        Settle every active MINIMUM_GUARANTEE / HYBRID agreement in effect
        on the first day of the month.
        """
        first_day, _ = month_bounds(year, month)
        agreements = self._agreements.list_settleable(first_day)

        results: list[SettlementResult] = []
        errors: list[ItemError] = []

        for agreement in agreements:
            savepoint = self.session.begin_nested()
            try:
                results.append(self.settle_month(agreement.id, year, month))
                savepoint.commit()
            except RevShareError as exc:
                savepoint.rollback()
                errors.append(ItemError(str(agreement.id), exc.code, str(exc)))
                logger.warning(
                    "settlement_item_failed",
                    extra={"agreement_id": str(agreement.id), "error_code": exc.code},
                )
            except Exception as exc:
                savepoint.rollback()
                errors.append(ItemError(str(agreement.id), "UNHANDLED_EXCEPTION", str(exc)))
                logger.exception(
                    "settlement_item_crashed",
                    extra={"agreement_id": str(agreement.id)},
                )

        logger.info(
            "settlement_batch_completed",
            extra={
                "year": year,
                "month": month,
                "agreement_count": len(agreements),
                "settled": len(results),
                "error_count": len(errors),
            },
        )
        return BatchSettlementResult(
            year=year,
            month=month,
            results=tuple(results),
            errors=tuple(errors),
        )
