"""Gateway ingestion ORM models (webhook endpoints and processed events)."""

from revshare_ingestion.models.gateway import GatewayEndpoint, GatewayEventRecord

__all__ = ["GatewayEndpoint", "GatewayEventRecord"]
