"""
Gateway ORM models for webhook routing and replay detection.

Contract:
    GatewayEndpoint maps an opaque endpoint key (part of the webhook URL) to
    one merchant, so an incoming event is routed without trying each
    merchant's signing secret in turn.
    GatewayEventRecord remembers every handled event id per merchant with
    the canonical hash of its payload; a replay is a no-op.

Architecture: revshare_ingestion/models. Imports from revshare_kernel.db.base only.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from revshare_kernel.db.base import TrackedBase


class GatewayEndpoint(TrackedBase):
    """Webhook endpoint registered for one merchant's gateway account."""

    __tablename__ = "gateway_endpoints"

    __table_args__ = (
        Index("idx_gateway_endpoint_merchant", "merchant_id"),
    )

    endpoint_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    merchant_id: Mapped[UUID] = mapped_column(nullable=False)
    gateway: Mapped[str] = mapped_column(String(20), nullable=False, default="stripe")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<GatewayEndpoint {self.gateway} merchant={self.merchant_id}>"


class GatewayEventRecord(TrackedBase):
    """A webhook event already handled for a merchant."""

    __tablename__ = "gateway_events"

    __table_args__ = (
        UniqueConstraint("merchant_id", "event_id", name="uq_gateway_event"),
    )

    merchant_id: Mapped[UUID] = mapped_column(nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # WebhookStatus value of the first delivery
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<GatewayEventRecord {self.event_type} {self.event_id}>"
