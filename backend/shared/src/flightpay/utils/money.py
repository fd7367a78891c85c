"""Conversions between major currency units and provider minor units.

Bookings and ledger records hold Decimal amounts in major units. Providers
receive integer minor units. Conversion happens only at that boundary.
"""

from decimal import ROUND_HALF_UP, Decimal

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
)


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places used by a currency's minor unit."""
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Decimal | int | float | str, currency: str) -> int:
    """Convert a major-unit amount to integer minor units.

    Args:
        amount: Amount in major units (e.g. Decimal("1500.00")).
        currency: ISO currency code.

    Returns:
        Amount in minor units, rounded half-up (e.g. 150000).
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    scaled = value.scaleb(minor_unit_exponent(currency))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int, currency: str) -> Decimal:
    """Convert integer minor units back to a major-unit Decimal."""
    exponent = minor_unit_exponent(currency)
    return Decimal(amount_minor).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))


def amounts_match(
    left: Decimal | int | float | str,
    right: Decimal | int | float | str,
    currency: str,
) -> bool:
    """Check two major-unit amounts are equal to the minor unit."""
    return to_minor_units(left, currency) == to_minor_units(right, currency)
