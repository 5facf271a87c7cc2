"""Gateway ingestion services."""

from revshare_ingestion.services.endpoint_service import GatewayEndpointService
from revshare_ingestion.services.sync_service import GatewaySyncService

__all__ = ["GatewayEndpointService", "GatewaySyncService"]
