"""
SplitCalculator -- Pure partner/merchant share computation.

Responsibility:
    Turns an agreement, a transaction subtotal and a transaction kind into a
    partner share and a merchant share.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - partner_share + merchant_share == subtotal, exactly.  The merchant
      share is derived by subtraction, never rounded on its own.
    - Reversals (REFUND, CHARGEBACK) are computed on the negated subtotal so
      that half-unit rounding mirrors the original payment, then stored as
      absolute values.
    - Minimum-guarantee floors are NOT applied here; they belong to monthly
      settlement.

Failure modes:
    - UnknownAgreementTypeError: agreement type outside the known set.
    - InvalidSplitInputError: negative subtotal or rate outside [0, 1].
"""

from decimal import Decimal

from revshare_kernel.db.types import round_minor_units, to_rate
from revshare_kernel.domain.dtos import AgreementInfo, SplitComputation
from revshare_kernel.domain.enums import AgreementType, TransactionKind
from revshare_kernel.exceptions import InvalidSplitInputError

_ZERO = Decimal(0)
_ONE = Decimal(1)


def effective_subtotal(subtotal: int, kind: TransactionKind | str) -> int:
    """Signed subtotal: negative for refunds and chargebacks."""
    if TransactionKind(kind).is_reversal:
        return -subtotal
    return subtotal


def calculate_split(
    agreement: AgreementInfo,
    subtotal: int,
    kind: TransactionKind | str,
) -> SplitComputation:
    """
    Compute the partner and merchant shares of one transaction.

    All three agreement types share the same transaction-level math:
    ``partner = round(effective * rate)`` with ``rate`` defaulting to zero
    for a minimum-guarantee agreement that carries no percentage.

    Preconditions: subtotal is non-negative minor units (tax excluded).
    Postconditions: both shares are non-negative and sum to ``subtotal``.
    """
    method = AgreementType.parse(
        agreement.agreement_type, str(agreement.id) if agreement.id else None
    )

    if subtotal < 0:
        raise InvalidSplitInputError("subtotal", str(subtotal))

    rate = to_rate(agreement.percentage_rate)
    if rate < _ZERO or rate > _ONE:
        raise InvalidSplitInputError("percentage_rate", str(rate))

    effective = effective_subtotal(subtotal, kind)
    partner = round_minor_units(Decimal(effective) * rate)
    merchant = effective - partner

    return SplitComputation(
        partner_share=abs(partner),
        merchant_share=abs(merchant),
        method=method,
    )
