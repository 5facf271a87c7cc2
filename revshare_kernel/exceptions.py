"""
Typed exception hierarchy for the revenue-share kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP routes, sync jobs, operator scripts) need to tell a missing
agreement from a misconfigured one without parsing message strings.  Every
exception therefore carries:
  1. a TYPED class (catch by type, not message)
  2. a CODE class attribute (machine-readable, API-safe)
  3. structured DATA attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RevShareError (base)
    |
    +-- ConfigurationError
    |   +-- UnknownAgreementTypeError
    |   +-- InvalidSplitInputError
    |   +-- InvalidAgreementError
    |
    +-- NotFoundError
    |   +-- AgreementNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- PayoutNotFoundError
    |   +-- SettlementNotFoundError
    |   +-- UnknownEndpointError
    |
    +-- SettlementError
    |   +-- SettlementConflictError
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |
    +-- IngestionError
        +-- InvalidGatewayPayloadError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------------
Configuration | UNKNOWN_AGREEMENT_TYPE      | Agreement type outside the known set
              | INVALID_SPLIT_INPUT         | Negative subtotal, rate outside [0, 1]
              | INVALID_AGREEMENT           | Agreement fields inconsistent on create
--------------|-----------------------------|-------------------------------------------
Not found     | AGREEMENT_NOT_FOUND         | Agreement id doesn't exist (or inactive)
              | TRANSACTION_NOT_FOUND       | Transaction id doesn't exist
              | PAYOUT_NOT_FOUND            | Payout id doesn't exist
              | SETTLEMENT_NOT_FOUND        | No settlement run for agreement/month
              | UNKNOWN_ENDPOINT            | Webhook endpoint key not registered
--------------|-----------------------------|-------------------------------------------
Settlement    | SETTLEMENT_CONFLICT         | Concurrent settlement of the same month
--------------|-----------------------------|-------------------------------------------
Currency      | INVALID_CURRENCY            | Not a valid ISO 4217 code
--------------|-----------------------------|-------------------------------------------
Ingestion     | INVALID_GATEWAY_PAYLOAD     | Gateway object field missing or invalid

A matcher finding no agreement is NOT an error: it returns None and the
transaction simply carries no revenue-share obligation.
"""


class RevShareError(Exception):
    """
    Base exception for all revenue-share kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "REVSHARE_ERROR"


# Configuration exceptions


class ConfigurationError(RevShareError):
    """Base exception for misconfigured agreements or inputs."""

    code: str = "CONFIGURATION_ERROR"


class UnknownAgreementTypeError(ConfigurationError):
    """
    Agreement carries a type the split calculator does not know.

    Fatal for the transaction being processed; never silently defaulted.
    """

    code: str = "UNKNOWN_AGREEMENT_TYPE"

    def __init__(self, agreement_type: str, agreement_id: str | None = None):
        self.agreement_type = agreement_type
        self.agreement_id = agreement_id
        super().__init__(
            f"Unknown agreement type: {agreement_type!r}"
            + (f" (agreement {agreement_id})" if agreement_id else "")
        )


class InvalidSplitInputError(ConfigurationError):
    """Split inputs out of range (negative subtotal, rate outside [0, 1])."""

    code: str = "INVALID_SPLIT_INPUT"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid split input {field}={value}")


class InvalidAgreementError(ConfigurationError):
    """Agreement fields are inconsistent (dates reversed, negative guarantee)."""

    code: str = "INVALID_AGREEMENT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid agreement {field}: {reason}")


# Not-found exceptions


class NotFoundError(RevShareError):
    """Base exception for missing referenced records."""

    code: str = "NOT_FOUND"


class AgreementNotFoundError(NotFoundError):
    """Agreement with given ID was not found."""

    code: str = "AGREEMENT_NOT_FOUND"

    def __init__(self, agreement_id: str, reason: str = "not found"):
        self.agreement_id = agreement_id
        self.reason = reason
        super().__init__(f"Agreement {agreement_id}: {reason}")


class TransactionNotFoundError(NotFoundError):
    """Transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class PayoutNotFoundError(NotFoundError):
    """Payout with given ID was not found."""

    code: str = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id: str):
        self.payout_id = payout_id
        super().__init__(f"Payout not found: {payout_id}")


class SettlementNotFoundError(NotFoundError):
    """No settlement run exists for the agreement and month."""

    code: str = "SETTLEMENT_NOT_FOUND"

    def __init__(self, agreement_id: str, year: int, month: int):
        self.agreement_id = agreement_id
        self.year = year
        self.month = month
        super().__init__(
            f"No settlement for agreement {agreement_id} in {year}-{month:02d}"
        )


class UnknownEndpointError(NotFoundError):
    """Webhook arrived on an endpoint key that is not registered or active."""

    code: str = "UNKNOWN_ENDPOINT"

    def __init__(self, endpoint_key: str):
        self.endpoint_key = endpoint_key
        super().__init__(f"Unknown or inactive gateway endpoint: {endpoint_key}")


# Settlement exceptions


class SettlementError(RevShareError):
    """Base exception for settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class SettlementConflictError(SettlementError):
    """
    Another worker settled the same agreement-month concurrently.

    The unique (agreement_id, year, month) key rejected the second write.
    """

    code: str = "SETTLEMENT_CONFLICT"

    def __init__(self, agreement_id: str, year: int, month: int):
        self.agreement_id = agreement_id
        self.year = year
        self.month = month
        super().__init__(
            f"Settlement for agreement {agreement_id} in {year}-{month:02d} "
            "was written concurrently"
        )


# Currency exceptions


class CurrencyError(RevShareError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError, ValueError):
    """Raised when an invalid ISO 4217 currency code is provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Ingestion exceptions


class IngestionError(RevShareError):
    """Base exception for gateway ingestion errors."""

    code: str = "INGESTION_ERROR"


class InvalidGatewayPayloadError(IngestionError):
    """A gateway object lacks a field the normalizer requires or carries an invalid value."""

    code: str = "INVALID_GATEWAY_PAYLOAD"

    def __init__(self, object_type: str, field: str):
        self.object_type = object_type
        self.field = field
        super().__init__(f"Gateway {object_type} has a missing or invalid field '{field}'")
