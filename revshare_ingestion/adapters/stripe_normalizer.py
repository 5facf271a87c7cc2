"""
Stripe payload normalizer.

Contract:
    Pure functions from Stripe API objects (already-parsed dicts) to
    NormalizedTransaction / NormalizedPayout.  No I/O.

Rules:
    - Amounts are minor units; currency is upper-cased.
    - Sales tax comes from ``metadata.tax_amount``; subtotal = amount - tax.
    - Fees come from the expanded ``balance_transaction``; an unexpanded id
      means zero fees.
    - A charge is always a PAYMENT.  Its refunds and its dispute are
      separate REFUND / CHARGEBACK records pointing back at the charge id,
      so a partially refunded charge keeps its own split.
    - A payment intent with a known ``latest_charge`` is keyed by the charge
      id, so webhook and polling sync converge on one transaction row.

Failure modes:
    - InvalidGatewayPayloadError when a required field is missing or a tax
      amount is not an integer within the charge amount.
    - InvalidGatewayPayloadError for a payout with a non-positive amount.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from revshare_ingestion.domain.types import NormalizedPayout, NormalizedTransaction
from revshare_kernel.db.types import round_minor_units
from revshare_kernel.domain.enums import PayoutStatus, TransactionKind, TransactionStatus
from revshare_kernel.exceptions import InvalidGatewayPayloadError

PAYOUT_METHOD = "STRIPE"

_CHARGE_STATUS = {
    "succeeded": TransactionStatus.COMPLETED,
    "pending": TransactionStatus.PENDING,
    "failed": TransactionStatus.FAILED,
}

_REFUND_STATUS = {
    "succeeded": TransactionStatus.COMPLETED,
    "pending": TransactionStatus.PENDING,
    "requires_action": TransactionStatus.PENDING,
    "failed": TransactionStatus.FAILED,
    "canceled": TransactionStatus.CANCELLED,
}

# Funds leave the balance when a dispute opens and come back if it is won.
# Inquiries (warning_*) never move funds.
_DISPUTE_STATUS = {
    "won": TransactionStatus.CANCELLED,
    "warning_closed": TransactionStatus.CANCELLED,
    "warning_needs_response": TransactionStatus.PENDING,
    "warning_under_review": TransactionStatus.PENDING,
}

_PAYOUT_STATUS = {
    "paid": PayoutStatus.COMPLETED,
    "pending": PayoutStatus.PENDING,
    "in_transit": PayoutStatus.PROCESSING,
    "canceled": PayoutStatus.CANCELLED,
    "failed": PayoutStatus.FAILED,
}


# =============================================================================
# Field helpers
# =============================================================================


def _require(obj: dict[str, Any], key: str, object_type: str) -> Any:
    value = obj.get(key)
    if value is None:
        raise InvalidGatewayPayloadError(object_type, key)
    return value


def _amount(obj: dict[str, Any], key: str, object_type: str) -> int:
    value = _require(obj, key, object_type)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidGatewayPayloadError(object_type, key) from exc


def _epoch_to_datetime(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _epoch_to_date(value: int | float) -> date:
    return _epoch_to_datetime(value).date()


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return dict(obj.get("metadata") or {})


def _parse_uuid(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _object_id(value: Any) -> str | None:
    """Id of a Stripe reference that may be expanded or a bare id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _fee(charge: dict[str, Any]) -> int:
    balance_transaction = charge.get("balance_transaction")
    if isinstance(balance_transaction, dict):
        return int(balance_transaction.get("fee") or 0)
    return 0


def _tax(obj: dict[str, Any], total: int, object_type: str) -> int:
    raw = _metadata(obj).get("tax_amount")
    if raw in (None, ""):
        return 0
    try:
        tax = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidGatewayPayloadError(object_type, "metadata.tax_amount") from exc
    if tax < 0 or tax > total:
        raise InvalidGatewayPayloadError(object_type, "metadata.tax_amount")
    return tax


def _prorated_tax(amount: int, charge_tax: int, charge_total: int) -> int:
    """Tax share of a partial refund, rounded half up."""
    if charge_tax == 0 or charge_total == 0:
        return 0
    return round_minor_units(Decimal(amount * charge_tax) / Decimal(charge_total))


# =============================================================================
# Charges
# =============================================================================


def normalize_charge(charge: dict[str, Any]) -> NormalizedTransaction:
    """Normalize a Stripe charge into a PAYMENT."""
    charge_id = _require(charge, "id", "charge")
    total = _amount(charge, "amount", "charge")
    currency = str(_require(charge, "currency", "charge")).upper()
    created = _require(charge, "created", "charge")

    metadata = _metadata(charge)
    tax = _tax(charge, total, "charge")

    return NormalizedTransaction(
        external_id=charge_id,
        kind=TransactionKind.PAYMENT,
        status=_CHARGE_STATUS.get(charge.get("status"), TransactionStatus.PENDING),
        subtotal=total - tax,
        sales_tax=tax,
        total=total,
        fees=_fee(charge),
        currency=currency,
        transaction_date=_epoch_to_date(created),
        description=charge.get("description") or metadata.get("description"),
        client_id=_parse_uuid(metadata.get("client_id")),
        metadata=_compact({
            **metadata,
            "charge_id": charge_id,
            "payment_intent_id": _object_id(charge.get("payment_intent")),
            "customer_id": _object_id(charge.get("customer")),
        }),
    )


def normalize_charge_reversals(charge: dict[str, Any]) -> list[NormalizedTransaction]:
    """
    Refunds and the dispute of a charge, as REFUND / CHARGEBACK records.

    Refunds come from the expanded ``refunds.data`` list.  When the list is
    absent but ``amount_refunded`` is set, one cumulative refund keyed
    ``<charge id>:refund`` stands in for them.
    """
    payment = normalize_charge(charge)
    charge_id = payment.external_id
    reversals: list[NormalizedTransaction] = []

    def reversal(
        external_id: str,
        kind: TransactionKind,
        status: TransactionStatus,
        amount: int,
        created: int | float,
        extra: dict[str, Any],
    ) -> NormalizedTransaction:
        tax = _prorated_tax(amount, payment.sales_tax, payment.total)
        return NormalizedTransaction(
            external_id=external_id,
            kind=kind,
            status=status,
            subtotal=amount - tax,
            sales_tax=tax,
            total=amount,
            fees=0,
            currency=payment.currency,
            transaction_date=_epoch_to_date(created),
            description=payment.description,
            client_id=payment.client_id,
            original_external_id=charge_id,
            metadata={"charge_id": charge_id, **extra},
        )

    refunds = charge.get("refunds")
    refund_items = refunds.get("data") if isinstance(refunds, dict) else None
    if refund_items:
        for refund in refund_items:
            refund_id = _require(refund, "id", "refund")
            reversals.append(reversal(
                refund_id,
                TransactionKind.REFUND,
                _REFUND_STATUS.get(refund.get("status"), TransactionStatus.PENDING),
                _amount(refund, "amount", "refund"),
                refund.get("created") or charge["created"],
                {"refund_id": refund_id},
            ))
    elif charge.get("amount_refunded"):
        reversals.append(reversal(
            f"{charge_id}:refund",
            TransactionKind.REFUND,
            TransactionStatus.COMPLETED,
            _amount(charge, "amount_refunded", "charge"),
            charge["created"],
            {},
        ))

    dispute = charge.get("dispute")
    if isinstance(dispute, dict):
        dispute_id = _require(dispute, "id", "dispute")
        reversals.append(reversal(
            dispute_id,
            TransactionKind.CHARGEBACK,
            _DISPUTE_STATUS.get(dispute.get("status"), TransactionStatus.COMPLETED),
            int(dispute.get("amount") or payment.total),
            dispute.get("created") or charge["created"],
            {"dispute_id": dispute_id},
        ))
    elif dispute or charge.get("disputed"):
        dispute_id = dispute or f"{charge_id}:dispute"
        reversals.append(reversal(
            dispute_id,
            TransactionKind.CHARGEBACK,
            TransactionStatus.COMPLETED,
            payment.total,
            charge["created"],
            {"dispute_id": dispute_id},
        ))

    return reversals


# =============================================================================
# Payment intents
# =============================================================================


def _payment_intent_status(status: str | None) -> TransactionStatus:
    if status == "succeeded":
        return TransactionStatus.COMPLETED
    if status == "canceled":
        return TransactionStatus.CANCELLED
    if status == "processing" or (status or "").startswith("requires_"):
        return TransactionStatus.PENDING
    return TransactionStatus.FAILED


def _payment_intent_kind(value: Any) -> TransactionKind:
    try:
        return TransactionKind(str(value).upper())
    except ValueError:
        return TransactionKind.PAYMENT


def normalize_payment_intent(payment_intent: dict[str, Any]) -> NormalizedTransaction:
    """Normalize a Stripe payment intent.

    ``metadata.transaction_type`` selects the kind (PAYMENT by default);
    ``metadata.original_charge_id`` links a reversal to its payment.
    """
    intent_id = _require(payment_intent, "id", "payment_intent")
    total = _amount(payment_intent, "amount", "payment_intent")
    currency = str(_require(payment_intent, "currency", "payment_intent")).upper()
    created = _require(payment_intent, "created", "payment_intent")

    metadata = _metadata(payment_intent)
    tax = _tax(payment_intent, total, "payment_intent")
    latest_charge = payment_intent.get("latest_charge")
    charge_id = _object_id(latest_charge)

    return NormalizedTransaction(
        external_id=charge_id or intent_id,
        kind=_payment_intent_kind(metadata.get("transaction_type")),
        status=_payment_intent_status(payment_intent.get("status")),
        subtotal=total - tax,
        sales_tax=tax,
        total=total,
        fees=_fee(latest_charge) if isinstance(latest_charge, dict) else 0,
        currency=currency,
        transaction_date=_epoch_to_date(created),
        description=payment_intent.get("description") or metadata.get("description"),
        client_id=_parse_uuid(metadata.get("client_id")),
        original_external_id=metadata.get("original_charge_id"),
        metadata=_compact({
            **metadata,
            "charge_id": charge_id,
            "payment_intent_id": intent_id,
            "customer_id": _object_id(payment_intent.get("customer")),
        }),
    )


# =============================================================================
# Payouts
# =============================================================================


def normalize_payout(payout: dict[str, Any]) -> NormalizedPayout:
    """Normalize a Stripe payout.

    ``metadata.partner_id`` attributes the payout to a partner and
    ``metadata.agreement_id`` narrows it to one agreement.
    """
    payout_id = _require(payout, "id", "payout")
    amount = _amount(payout, "amount", "payout")
    if amount <= 0:
        raise InvalidGatewayPayloadError("payout", "amount")
    currency = str(_require(payout, "currency", "payout")).upper()
    created = _require(payout, "created", "payout")

    metadata = _metadata(payout)
    status = _PAYOUT_STATUS.get(payout.get("status"), PayoutStatus.PENDING)
    arrival = payout.get("arrival_date")

    return NormalizedPayout(
        external_id=payout_id,
        amount=amount,
        currency=currency,
        status=status,
        scheduled_date=_epoch_to_date(arrival or created),
        processed_at=(
            _epoch_to_datetime(arrival)
            if arrival and status == PayoutStatus.COMPLETED
            else None
        ),
        partner_id=_parse_uuid(metadata.get("partner_id")),
        payout_method=PAYOUT_METHOD,
        metadata={**metadata, "payout_id": payout_id},
    )
