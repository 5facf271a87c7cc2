"""
Fixtures for gateway ingestion tests.

FakeGatewaySource serves raw Stripe-shaped dicts from memory with the same
paging contract as the real API.
"""

from datetime import datetime
from typing import Any

import pytest

from revshare_ingestion.services.endpoint_service import GatewayEndpointService
from revshare_ingestion.services.sync_service import GatewaySyncService

# 2024-05-10 12:00:00 UTC
MAY_10 = 1715342400
# 2024-05-20 00:00:00 UTC
MAY_20 = 1716163200


class FakeGatewaySource:
    """In-memory GatewaySource recording every page request."""

    def __init__(self, charges=None, payouts=None):
        self.charges: list[dict[str, Any]] = list(charges or [])
        self.payouts: list[dict[str, Any]] = list(payouts or [])
        self.calls: list[tuple[str, int, str | None]] = []
        self.fail_on: set[str] = set()

    def _page(self, name, items, limit, starting_after):
        self.calls.append((name, limit, starting_after))
        if name in self.fail_on:
            raise ConnectionError(f"{name} unavailable")
        start = 0
        if starting_after is not None:
            start = next(i for i, item in enumerate(items) if item["id"] == starting_after) + 1
        return items[start:start + limit]

    def list_charges(
        self,
        limit: int,
        starting_after: str | None = None,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[dict[str, Any]]:
        return self._page("charges", self.charges, limit, starting_after)

    def list_payouts(
        self,
        limit: int,
        starting_after: str | None = None,
        created_gte: datetime | None = None,
        created_lte: datetime | None = None,
    ) -> list[dict[str, Any]]:
        return self._page("payouts", self.payouts, limit, starting_after)

    def retrieve_charge(self, charge_id: str) -> dict[str, Any]:
        self.calls.append(("retrieve_charge", 1, charge_id))
        return next(c for c in self.charges if c["id"] == charge_id)


def make_charge(
    charge_id: str = "ch_1",
    amount: int = 10000,
    status: str = "succeeded",
    created: int = MAY_10,
    **overrides: Any,
) -> dict[str, Any]:
    charge = {
        "id": charge_id,
        "object": "charge",
        "amount": amount,
        "amount_refunded": 0,
        "currency": "usd",
        "created": created,
        "status": status,
        "payment_intent": f"pi_{charge_id}",
        "customer": "cus_1",
        "balance_transaction": {"id": f"txn_{charge_id}", "fee": 320},
        "metadata": {},
    }
    charge.update(overrides)
    return charge


def make_payout(
    payout_id: str = "po_1",
    amount: int = 1500,
    status: str = "paid",
    **overrides: Any,
) -> dict[str, Any]:
    payout = {
        "id": payout_id,
        "object": "payout",
        "amount": amount,
        "currency": "usd",
        "created": MAY_10,
        "arrival_date": MAY_20,
        "status": status,
        "metadata": {},
    }
    payout.update(overrides)
    return payout


@pytest.fixture
def fake_source() -> FakeGatewaySource:
    return FakeGatewaySource()


@pytest.fixture
def sync_service(session, deterministic_clock, transaction_service) -> GatewaySyncService:
    return GatewaySyncService(
        session, deterministic_clock, page_size=2, transactions=transaction_service
    )


@pytest.fixture
def endpoint_service(session, deterministic_clock) -> GatewayEndpointService:
    return GatewayEndpointService(session, deterministic_clock)


@pytest.fixture
def endpoint_key(endpoint_service, merchant_id) -> str:
    return endpoint_service.register_endpoint(merchant_id)
