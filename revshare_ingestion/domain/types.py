"""
revshare_ingestion.domain.types -- Pure frozen dataclasses for gateway ingestion.

ZERO I/O. Imports only from revshare_kernel/domain/.

A normalized record is the gateway-neutral shape the sync service upserts.
Amounts are minor units, currency is upper-case ISO 4217.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from revshare_kernel.domain.dtos import ItemError
from revshare_kernel.domain.enums import (
    PayoutStatus,
    TransactionKind,
    TransactionStatus,
)


# =============================================================================
# Status enums
# =============================================================================


class UpsertOutcome(str, Enum):
    """What an idempotent upsert did to its row."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"  # Replay of an already-ingested record


class WebhookStatus(str, Enum):
    """Outcome of handling one webhook delivery."""

    PROCESSED = "processed"  # Records upserted
    DUPLICATE = "duplicate"  # Same event id and payload seen before
    IGNORED = "ignored"  # Event type not handled
    REJECTED = "rejected"  # Known event id with a different payload


# =============================================================================
# Normalized gateway records
# =============================================================================


@dataclass(frozen=True)
class NormalizedTransaction:
    """A gateway charge, refund or dispute in kernel terms."""

    external_id: str
    kind: TransactionKind
    status: TransactionStatus
    subtotal: int
    sales_tax: int
    total: int
    fees: int
    currency: str
    transaction_date: date
    description: str | None = None
    client_id: UUID | None = None
    # External id of the payment a refund or chargeback reverses
    original_external_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def net(self) -> int:
        return self.total - self.fees


@dataclass(frozen=True)
class NormalizedPayout:
    """A gateway payout in kernel terms."""

    external_id: str
    amount: int
    currency: str
    status: PayoutStatus
    scheduled_date: date
    processed_at: datetime | None = None
    partner_id: UUID | None = None
    payout_method: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SyncResult:
    """Counts and per-record errors of one polling sync run."""

    sync_run_id: UUID
    merchant_id: UUID
    transactions_created: int = 0
    transactions_updated: int = 0
    payouts_created: int = 0
    payouts_updated: int = 0
    records_unchanged: int = 0
    errors: tuple[ItemError, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class WebhookResult:
    """Outcome of one webhook delivery."""

    status: WebhookStatus
    event_id: str
    event_type: str
    merchant_id: UUID
    transaction_ids: tuple[UUID, ...] = ()
    payout_ids: tuple[UUID, ...] = ()
    message: str | None = None
