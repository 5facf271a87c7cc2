"""Pure types for gateway ingestion."""

from revshare_ingestion.domain.types import (
    NormalizedPayout,
    NormalizedTransaction,
    SyncResult,
    UpsertOutcome,
    WebhookResult,
    WebhookStatus,
)

__all__ = [
    "NormalizedTransaction",
    "NormalizedPayout",
    "SyncResult",
    "UpsertOutcome",
    "WebhookResult",
    "WebhookStatus",
]
