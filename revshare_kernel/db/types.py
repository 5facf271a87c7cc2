"""
Module: revshare_kernel.db.types
Responsibility: Helpers for minor-unit money, rates and currency codes.
    Centralizes minor-unit rounding and currency validation so that every
    model, domain function, and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Money is always an integer count of minor units (cents).  No floats.
    - round_minor_units() is the ONLY sanctioned rounding for shares and
      settlement allocations: ROUND_HALF_UP on the signed Decimal value, so
      halves round away from zero and a refund mirrors its payment exactly.
    - validate_currency() rejects anything that is not ISO 4217.
"""

from decimal import Decimal, ROUND_HALF_UP

from revshare_kernel.exceptions import InvalidCurrencyError


RATE_DECIMAL_PLACES = 6
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_minor_units(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> int:
    """
    Round a Decimal amount to a whole number of minor units.

    Preconditions: value is a Decimal (never a float).
    Postconditions: Returns an int; halves go away from zero under the
        default ROUND_HALF_UP mode (-2.5 -> -3, 2.5 -> 3).
    """
    return int(value.quantize(Decimal(1), rounding=rounding))


def to_rate(value: Decimal | str | int | None) -> Decimal:
    """
    Normalize a configured rate to a Decimal.

    None maps to zero (a minimum-guarantee agreement without a rate sends
    everything to the merchant until settlement).  Floats are rejected.
    """
    if value is None:
        return Decimal(0)
    if isinstance(value, float):
        raise TypeError("Rates must be Decimal or str, never float")
    return Decimal(value)


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: set[str] = {
    # Major currencies
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    # Other currencies (alphabetical)
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BOV", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CHE", "CHW", "CLF", "CLP", "CNY", "COP", "COU", "CRC", "CUC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HRK", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MXV", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SLL", "SOS", "SRD", "SSP", "STN", "SVC", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "USN", "UYI", "UYU", "UYW", "UZS",
    "VED", "VES", "VND", "VUV",
    "WST",
    "XAF", "XAG", "XAU", "XBA", "XBB", "XBC", "XBD", "XCD", "XDR", "XOF", "XPD", "XPF", "XPT", "XSU", "XTS", "XUA", "XXX",
    "YER",
    "ZAR", "ZMW", "ZWL",
}


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a valid ISO 4217 code.

    Postconditions: Returns the uppercase, trimmed currency code iff it is
        a member of ISO_4217_CURRENCIES.

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()

    if len(normalized) != 3 or normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)

    return normalized


def is_valid_currency(currency: str) -> bool:
    """Check if a currency code is a valid ISO 4217 code."""
    try:
        validate_currency(currency)
        return True
    except (InvalidCurrencyError, TypeError):
        return False
