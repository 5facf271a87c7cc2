"""Gateway source protocol and payload normalizers."""

from revshare_ingestion.adapters.base import GatewaySource
from revshare_ingestion.adapters.stripe_normalizer import (
    normalize_charge,
    normalize_charge_reversals,
    normalize_payment_intent,
    normalize_payout,
)

__all__ = [
    "GatewaySource",
    "normalize_charge",
    "normalize_charge_reversals",
    "normalize_payment_intent",
    "normalize_payout",
]
