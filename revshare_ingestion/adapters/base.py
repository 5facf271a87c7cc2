"""
Gateway source protocol.

Contract:
    A GatewaySource returns raw gateway objects as plain dicts, newest first,
    in pages of at most ``limit`` items.  ``starting_after`` is the id of the
    last object of the previous page.  A page shorter than ``limit`` is the
    last one.

Architecture: revshare_ingestion/adapters. Network I/O only, no DB or kernel
imports.  Tests supply an in-memory implementation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class GatewaySource(Protocol):
    """Protocol for paging through a merchant's gateway account."""

    def list_charges(
        self,
        limit: int,
        starting_after: str | None = None,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """One page of charges, balance transactions expanded where possible."""
        ...

    def list_payouts(
        self,
        limit: int,
        starting_after: str | None = None,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """One page of payouts."""
        ...

    def retrieve_charge(self, charge_id: str) -> dict[str, Any]:
        """Fetch a single charge by id."""
        ...
