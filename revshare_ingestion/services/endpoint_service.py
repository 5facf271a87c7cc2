"""
Endpoint service: register and retire webhook routing keys.

Each merchant's gateway account posts webhooks to a URL carrying an opaque
endpoint key.  The key alone identifies the merchant.
"""

from __future__ import annotations

import secrets
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from revshare_kernel.domain.clock import Clock, SystemClock
from revshare_kernel.exceptions import UnknownEndpointError
from revshare_kernel.logging_config import get_logger

from revshare_ingestion.models.gateway import GatewayEndpoint

logger = get_logger("ingestion.endpoint_service")


class GatewayEndpointService:
    """Manages GatewayEndpoint rows."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def register_endpoint(
        self,
        merchant_id: UUID,
        gateway: str = "stripe",
        endpoint_key: str | None = None,
    ) -> str:
        """Create an active endpoint for the merchant and return its key."""
        key = endpoint_key or secrets.token_urlsafe(24)
        now = self._clock.now()
        self._session.add(GatewayEndpoint(
            endpoint_key=key,
            merchant_id=merchant_id,
            gateway=gateway,
            is_active=True,
            created_at=now,
            updated_at=now,
        ))
        self._session.flush()
        logger.info(
            "gateway_endpoint_registered",
            extra={"merchant_id": str(merchant_id), "gateway": gateway},
        )
        return key

    def resolve_endpoint(self, endpoint_key: str) -> GatewayEndpoint:
        """Active endpoint for a key, or UnknownEndpointError."""
        endpoint = self._session.execute(
            select(GatewayEndpoint).where(
                GatewayEndpoint.endpoint_key == endpoint_key,
                GatewayEndpoint.is_active.is_(True),
            )
        ).scalars().first()
        if endpoint is None:
            raise UnknownEndpointError(endpoint_key)
        return endpoint

    def deactivate_endpoint(self, endpoint_key: str) -> None:
        endpoint = self.resolve_endpoint(endpoint_key)
        endpoint.is_active = False
        endpoint.updated_at = self._clock.now()
        self._session.flush()
        logger.info(
            "gateway_endpoint_deactivated",
            extra={"merchant_id": str(endpoint.merchant_id), "gateway": endpoint.gateway},
        )
