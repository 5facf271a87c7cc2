"""
Gateway sync service: polling sync and webhook delivery.

Responsibility:
    Pages through a merchant's gateway account (charges, then payouts),
    upserts each record by (merchant_id, external_id), and lets the split
    lifecycle react to new and changed transactions.  Webhook events take
    the same upsert path for a single object.

Invariants enforced:
    - Replay safety: an already-ingested record with the same content is
      UNCHANGED and triggers nothing.  A webhook event id seen before with
      the same payload hash is a DUPLICATE; with a different hash it is
      REJECTED.
    - Each polled record is ingested inside its own SAVEPOINT.  A bad record
      is reported in SyncResult.errors and never aborts the run.
    - The transaction write never depends on the split: split work runs
      through TransactionService's safe wrappers and a failure is logged.

Failure modes:
    - UnknownEndpointError for an unregistered or inactive webhook endpoint.
    - InvalidGatewayPayloadError for a webhook event without id, type or
      data.object.  Errors while processing a webhook propagate so the
      gateway retries the delivery.

Uses structured logging (LogContext, get_logger("ingestion.*")).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from revshare_kernel.db.types import validate_currency
from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.domain.dtos import ItemError
from revshare_kernel.domain.enums import TransactionSource, TransactionStatus
from revshare_kernel.exceptions import InvalidGatewayPayloadError, RevShareError
from revshare_kernel.logging_config import LogContext, get_logger
from revshare_kernel.models.payout import Payout
from revshare_kernel.models.transaction import Transaction
from revshare_kernel.services.transaction_service import TransactionService
from revshare_kernel.utils.hashing import hash_payload

from revshare_ingestion.adapters.base import GatewaySource
from revshare_ingestion.adapters.stripe_normalizer import (
    normalize_charge,
    normalize_charge_reversals,
    normalize_payment_intent,
    normalize_payout,
)
from revshare_ingestion.domain.types import (
    NormalizedPayout,
    NormalizedTransaction,
    SyncResult,
    UpsertOutcome,
    WebhookResult,
    WebhookStatus,
)
from revshare_ingestion.models.gateway import GatewayEventRecord
from revshare_ingestion.services.endpoint_service import GatewayEndpointService

logger = get_logger("ingestion.sync_service")

CHARGE_EVENTS = frozenset({"charge.succeeded", "charge.failed", "charge.refunded"})
PAYMENT_INTENT_EVENTS = frozenset({"payment_intent.succeeded", "payment_intent.payment_failed"})
PAYOUT_EVENTS = frozenset({"payout.paid", "payout.failed", "payout.canceled"})

# Changes to these fields alter the split of a COMPLETED transaction
_SPLIT_INPUTS = frozenset({"subtotal", "transaction_date", "client_id", "original_transaction_id"})

Upserted = tuple[UUID, UpsertOutcome]


def _differs(current: Any, wanted: Any) -> bool:
    # SQLite hands back naive datetimes for timezone-aware columns
    if isinstance(current, datetime) and isinstance(wanted, datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        if wanted.tzinfo is None:
            wanted = wanted.replace(tzinfo=timezone.utc)
    return current != wanted


class _Tally:
    """Mutable counters for one sync run."""

    def __init__(self) -> None:
        self.counts = {
            ("transaction", UpsertOutcome.CREATED): 0,
            ("transaction", UpsertOutcome.UPDATED): 0,
            ("payout", UpsertOutcome.CREATED): 0,
            ("payout", UpsertOutcome.UPDATED): 0,
        }
        self.unchanged = 0
        self.errors: list[ItemError] = []

    def add(self, entity: str, outcome: UpsertOutcome) -> None:
        if outcome == UpsertOutcome.UNCHANGED:
            self.unchanged += 1
        else:
            self.counts[(entity, outcome)] += 1


class GatewaySyncService:
    """Idempotent ingestion of gateway transactions and payouts."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        page_size: int = 100,
        lookback_days: int | None = None,
        transactions: TransactionService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._page_size = page_size
        self._lookback_days = lookback_days
        self._transactions = transactions or TransactionService(session, self._clock)
        self._endpoints = GatewayEndpointService(session, self._clock)

    # =========================================================================
    # Polling sync
    # =========================================================================

    def sync_merchant(
        self,
        merchant_id: UUID,
        source: GatewaySource,
        start: datetime | None = None,
        end: datetime | None = None,
        page_size: int | None = None,
    ) -> SyncResult:
        """
        Pull charges and payouts created in [start, end] and upsert them.

        Without ``start``, the service's lookback window (if any) applies.
        Pages are fetched sequentially until a page shorter than the page
        size comes back.
        """
        limit = page_size or self._page_size
        if start is None and self._lookback_days is not None:
            start = self._clock.now() - timedelta(days=self._lookback_days)

        sync_run_id = uuid4()
        tally = _Tally()

        with LogContext.bind(merchant_id=merchant_id, sync_run_id=sync_run_id):
            logger.info(
                "gateway_sync_started",
                extra={
                    "start": start.isoformat() if start else None,
                    "end": end.isoformat() if end else None,
                    "page_size": limit,
                },
            )

            self._sync_stream(
                "charges",
                source.list_charges,
                limit, start, end, tally,
                lambda charge: [
                    ("transaction", upserted)
                    for upserted in self.ingest_charge(merchant_id, charge)
                ],
            )
            self._sync_stream(
                "payouts",
                source.list_payouts,
                limit, start, end, tally,
                lambda payout: [
                    ("payout", self.upsert_payout(merchant_id, normalize_payout(payout)))
                ],
            )

            result = SyncResult(
                sync_run_id=sync_run_id,
                merchant_id=merchant_id,
                transactions_created=tally.counts[("transaction", UpsertOutcome.CREATED)],
                transactions_updated=tally.counts[("transaction", UpsertOutcome.UPDATED)],
                payouts_created=tally.counts[("payout", UpsertOutcome.CREATED)],
                payouts_updated=tally.counts[("payout", UpsertOutcome.UPDATED)],
                records_unchanged=tally.unchanged,
                errors=tuple(tally.errors),
            )
            logger.info(
                "gateway_sync_completed",
                extra={
                    "transactions_created": result.transactions_created,
                    "transactions_updated": result.transactions_updated,
                    "payouts_created": result.payouts_created,
                    "payouts_updated": result.payouts_updated,
                    "records_unchanged": result.records_unchanged,
                    "error_count": len(result.errors),
                },
            )
        return result

    def _paginate(
        self,
        fetch: Callable[..., list[dict[str, Any]]],
        limit: int,
        start: datetime | None,
        end: datetime | None,
    ) -> Iterator[dict[str, Any]]:
        starting_after: str | None = None
        while True:
            page = fetch(
                limit=limit,
                starting_after=starting_after,
                created_gte=start,
                created_lte=end,
            )
            yield from page
            if len(page) < limit:
                return
            starting_after = page[-1]["id"]

    def _sync_stream(
        self,
        stream: str,
        fetch: Callable[..., list[dict[str, Any]]],
        limit: int,
        start: datetime | None,
        end: datetime | None,
        tally: _Tally,
        ingest: Callable[[dict[str, Any]], list[tuple[str, Upserted]]],
    ) -> None:
        """Ingest every object of one stream, one SAVEPOINT per object."""
        try:
            for obj in self._paginate(fetch, limit, start, end):
                item_id = str(obj.get("id"))
                savepoint = self._session.begin_nested()
                try:
                    upserts = ingest(obj)
                    savepoint.commit()
                except RevShareError as exc:
                    savepoint.rollback()
                    tally.errors.append(ItemError(item_id, exc.code, str(exc)))
                    logger.warning(
                        "gateway_record_failed",
                        extra={"external_id": item_id, "stream": stream, "error_code": exc.code},
                    )
                    continue
                except Exception as exc:
                    savepoint.rollback()
                    tally.errors.append(ItemError(item_id, "UNHANDLED_EXCEPTION", str(exc)))
                    logger.exception(
                        "gateway_record_crashed",
                        extra={"external_id": item_id, "stream": stream},
                    )
                    continue
                for entity, (_, outcome) in upserts:
                    tally.add(entity, outcome)
        except Exception as exc:
            # Page fetch failed; records already ingested stay, the stream stops
            tally.errors.append(ItemError(stream, "SOURCE_ERROR", str(exc)))
            logger.exception("gateway_page_fetch_failed", extra={"stream": stream})

    # =========================================================================
    # Record upserts
    # =========================================================================

    def ingest_charge(self, merchant_id: UUID, charge: dict[str, Any]) -> list[Upserted]:
        """Upsert a charge and its refunds and dispute.  Payment first."""
        records = [normalize_charge(charge), *normalize_charge_reversals(charge)]
        return [self.upsert_transaction(merchant_id, record) for record in records]

    def _find_transaction(self, merchant_id: UUID, external_id: str) -> Transaction | None:
        return self._session.execute(
            select(Transaction).where(
                Transaction.merchant_id == merchant_id,
                Transaction.external_id == external_id,
            )
        ).scalars().first()

    def _resolve_original(self, merchant_id: UUID, record: NormalizedTransaction) -> UUID | None:
        if record.original_external_id is None:
            return None
        original = self._find_transaction(merchant_id, record.original_external_id)
        if original is None:
            logger.warning(
                "original_transaction_not_ingested",
                extra={
                    "external_id": record.external_id,
                    "original_external_id": record.original_external_id,
                },
            )
            return None
        return original.id

    def upsert_transaction(self, merchant_id: UUID, record: NormalizedTransaction) -> Upserted:
        """
        Insert or update one gateway transaction.

        Postconditions:
            - CREATED: the row is new; a COMPLETED row has had its split run.
            - UPDATED: a status change fired the lifecycle hook; a changed
              amount, date or client on a COMPLETED row recalculated it.
            - UNCHANGED: nothing was written.
        """
        original_id = self._resolve_original(merchant_id, record)
        existing = self._find_transaction(merchant_id, record.external_id)

        if existing is None:
            savepoint = self._session.begin_nested()
            try:
                info = self._transactions.create_transaction(
                    merchant_id=merchant_id,
                    subtotal=record.subtotal,
                    transaction_date=record.transaction_date,
                    kind=record.kind,
                    status=record.status,
                    client_id=record.client_id,
                    sales_tax=record.sales_tax,
                    fees=record.fees,
                    currency=record.currency,
                    external_id=record.external_id,
                    source=TransactionSource.GATEWAY,
                    original_transaction_id=original_id,
                    description=record.description,
                    metadata=record.metadata or None,
                )
            except IntegrityError:
                # Concurrent insert of the same external id; update the winner
                savepoint.rollback()
                logger.warning(
                    "concurrent_transaction_insert_conflict",
                    extra={"external_id": record.external_id},
                )
                existing = self._find_transaction(merchant_id, record.external_id)
                if existing is None:
                    raise
            except Exception:
                savepoint.rollback()
                raise
            else:
                savepoint.commit()
                return info.id, UpsertOutcome.CREATED

        return existing.id, self._update_transaction(existing, record, original_id)

    def _update_transaction(
        self,
        transaction: Transaction,
        record: NormalizedTransaction,
        original_id: UUID | None,
    ) -> UpsertOutcome:
        wanted: dict[str, Any] = {
            "status": record.status.value,
            "subtotal": record.subtotal,
            "sales_tax": record.sales_tax,
            "total": record.total,
            "fees": record.fees,
            "currency": validate_currency(record.currency),
            "transaction_date": record.transaction_date,
            "description": record.description,
            "transaction_metadata": record.metadata or None,
        }
        if record.client_id is not None:
            wanted["client_id"] = record.client_id
        if original_id is not None:
            wanted["original_transaction_id"] = original_id

        changed = {
            name: value
            for name, value in wanted.items()
            if _differs(getattr(transaction, name), value)
        }
        if not changed:
            return UpsertOutcome.UNCHANGED

        previous_status = transaction.status
        for name, value in changed.items():
            setattr(transaction, name, value)
        transaction.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "gateway_transaction_updated",
            extra={
                "transaction_id": str(transaction.id),
                "external_id": record.external_id,
                "changed_fields": sorted(changed),
                "from_status": previous_status,
                "to_status": transaction.status,
            },
        )

        if "status" in changed:
            self._transactions.apply_split_safely(transaction.id, record.status)
        elif record.status == TransactionStatus.COMPLETED and _SPLIT_INPUTS & changed.keys():
            self._transactions.recalculate_safely(transaction.id)
        return UpsertOutcome.UPDATED

    def _find_payout(self, merchant_id: UUID, external_id: str) -> Payout | None:
        return self._session.execute(
            select(Payout).where(
                Payout.merchant_id == merchant_id,
                Payout.external_id == external_id,
            )
        ).scalars().first()

    def upsert_payout(self, merchant_id: UUID, record: NormalizedPayout) -> Upserted:
        """Insert or update one gateway payout."""
        existing = self._find_payout(merchant_id, record.external_id)

        if existing is None:
            now = self._clock.now()
            payout = Payout(
                merchant_id=merchant_id,
                partner_id=record.partner_id,
                amount=record.amount,
                currency=validate_currency(record.currency),
                status=record.status.value,
                scheduled_date=record.scheduled_date,
                processed_at=record.processed_at,
                external_id=record.external_id,
                payout_method=record.payout_method,
                payout_metadata=record.metadata or None,
                created_at=now,
                updated_at=now,
            )
            savepoint = self._session.begin_nested()
            try:
                self._session.add(payout)
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    "concurrent_payout_insert_conflict",
                    extra={"external_id": record.external_id},
                )
                existing = self._find_payout(merchant_id, record.external_id)
                if existing is None:
                    raise
            except Exception:
                savepoint.rollback()
                raise
            else:
                logger.info(
                    "gateway_payout_created",
                    extra={
                        "payout_id": str(payout.id),
                        "external_id": record.external_id,
                        "status": payout.status,
                        "amount": payout.amount,
                    },
                )
                return payout.id, UpsertOutcome.CREATED

        wanted: dict[str, Any] = {
            "amount": record.amount,
            "currency": validate_currency(record.currency),
            "status": record.status.value,
            "scheduled_date": record.scheduled_date,
            "payout_method": record.payout_method,
            "payout_metadata": record.metadata or None,
        }
        if record.processed_at is not None:
            wanted["processed_at"] = record.processed_at
        if record.partner_id is not None:
            wanted["partner_id"] = record.partner_id

        changed = {
            name: value
            for name, value in wanted.items()
            if _differs(getattr(existing, name), value)
        }
        if not changed:
            return existing.id, UpsertOutcome.UNCHANGED

        for name, value in changed.items():
            setattr(existing, name, value)
        existing.updated_at = self._clock.now()
        self._session.flush()
        logger.info(
            "gateway_payout_updated",
            extra={
                "payout_id": str(existing.id),
                "external_id": record.external_id,
                "changed_fields": sorted(changed),
            },
        )
        return existing.id, UpsertOutcome.UPDATED

    # =========================================================================
    # Webhooks
    # =========================================================================

    def _find_event(self, merchant_id: UUID, event_id: str) -> GatewayEventRecord | None:
        return self._session.execute(
            select(GatewayEventRecord).where(
                GatewayEventRecord.merchant_id == merchant_id,
                GatewayEventRecord.event_id == event_id,
            )
        ).scalars().first()

    def handle_webhook_event(
        self,
        endpoint_key: str,
        event: dict[str, Any],
        source: GatewaySource | None = None,
    ) -> WebhookResult:
        """
        Handle one already-parsed (and signature-verified) webhook event.

        ``source``, when given, is used to re-fetch the charge so that the
        stored row reflects the gateway's current state rather than the
        event snapshot.
        """
        endpoint = self._endpoints.resolve_endpoint(endpoint_key)
        merchant_id = endpoint.merchant_id

        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id:
            raise InvalidGatewayPayloadError("event", "id")
        if not event_type:
            raise InvalidGatewayPayloadError("event", "type")

        payload_hash = hash_payload(event)

        with LogContext.bind(merchant_id=merchant_id, correlation_id=event_id):
            existing = self._find_event(merchant_id, event_id)
            if existing is not None:
                if existing.payload_hash != payload_hash:
                    logger.warning(
                        "webhook_rejected_hash_mismatch",
                        extra={"event_type": event_type},
                    )
                    return WebhookResult(
                        status=WebhookStatus.REJECTED,
                        event_id=event_id,
                        event_type=event_type,
                        merchant_id=merchant_id,
                        message="Payload hash mismatch for a known event id",
                    )
                logger.info("webhook_duplicate", extra={"event_type": event_type})
                return WebhookResult(
                    status=WebhookStatus.DUPLICATE,
                    event_id=event_id,
                    event_type=event_type,
                    merchant_id=merchant_id,
                    message="Event already handled",
                )

            transaction_ids, payout_ids, status = self._dispatch(
                merchant_id, event_type, event, source
            )

            if not self._record_event(merchant_id, event_id, event_type, payload_hash, status):
                status = WebhookStatus.DUPLICATE

            logger.info(
                "webhook_handled",
                extra={
                    "event_type": event_type,
                    "status": status.value,
                    "payload_hash": payload_hash,
                    "transaction_count": len(transaction_ids),
                    "payout_count": len(payout_ids),
                },
            )
            return WebhookResult(
                status=status,
                event_id=event_id,
                event_type=event_type,
                merchant_id=merchant_id,
                transaction_ids=transaction_ids,
                payout_ids=payout_ids,
            )

    def _dispatch(
        self,
        merchant_id: UUID,
        event_type: str,
        event: dict[str, Any],
        source: GatewaySource | None,
    ) -> tuple[tuple[UUID, ...], tuple[UUID, ...], WebhookStatus]:
        handled = CHARGE_EVENTS | PAYMENT_INTENT_EVENTS | PAYOUT_EVENTS
        if event_type not in handled:
            logger.debug("webhook_event_ignored", extra={"event_type": event_type})
            return (), (), WebhookStatus.IGNORED

        obj = (event.get("data") or {}).get("object")
        if not isinstance(obj, dict):
            raise InvalidGatewayPayloadError("event", "data.object")

        if event_type in PAYOUT_EVENTS:
            payout_id, _ = self.upsert_payout(merchant_id, normalize_payout(obj))
            return (), (payout_id,), WebhookStatus.PROCESSED

        if event_type in CHARGE_EVENTS:
            charge = source.retrieve_charge(obj["id"]) if source is not None else obj
            upserts = self.ingest_charge(merchant_id, charge)
        else:
            latest_charge = obj.get("latest_charge")
            if source is not None and isinstance(latest_charge, str):
                upserts = self.ingest_charge(merchant_id, source.retrieve_charge(latest_charge))
            else:
                upserts = [self.upsert_transaction(merchant_id, normalize_payment_intent(obj))]

        return tuple(txn_id for txn_id, _ in upserts), (), WebhookStatus.PROCESSED

    def _record_event(
        self,
        merchant_id: UUID,
        event_id: str,
        event_type: str,
        payload_hash: str,
        status: WebhookStatus,
    ) -> bool:
        """Remember the event.  False when a concurrent delivery won the insert."""
        now = self._clock.now()
        savepoint = self._session.begin_nested()
        try:
            self._session.add(GatewayEventRecord(
                merchant_id=merchant_id,
                event_id=event_id,
                event_type=event_type,
                payload_hash=payload_hash,
                outcome=status.value,
                processed_at=now,
                created_at=now,
                updated_at=now,
            ))
            self._session.flush()
            savepoint.commit()
            return True
        except IntegrityError:
            savepoint.rollback()
            logger.warning("concurrent_webhook_insert_conflict", extra={"event_type": event_type})
            return False
        except Exception:
            savepoint.rollback()
            raise
