"""
Precision constants and helpers for KeyRelay.

The native asset uses 8 decimal places:

    1 HBAR = 100,000,000 tinybars (smallest indivisible unit)

Token amounts are always raw integers in the token's own smallest unit.
Conversions go through ``Decimal`` so display values such as ``"0.1"``
scale exactly.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from keyrelay_core.errors import ValidationError

# Number of decimal places of the native asset.
NATIVE_DECIMALS: int = 8

# Smallest representable unit: 1 tinybar = 0.00000001 HBAR.
TINYBARS_PER_HBAR: int = 10 ** NATIVE_DECIMALS  # 100_000_000

# Symbol used for the native asset in payloads and display.
NATIVE_SYMBOL: str = "HBAR"


def to_decimal(value, name: str = "amount") -> Decimal:
    """Convert *value* to a finite Decimal, rejecting junk input."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not d.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    return d


def hbar_to_tinybars(value) -> int:
    """Scale a display amount to tinybars.

    >>> hbar_to_tinybars(10)
    1000000000
    >>> hbar_to_tinybars("0.00000001")
    1
    """
    scaled = to_decimal(value) * TINYBARS_PER_HBAR
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"amount has more than {NATIVE_DECIMALS} decimal places"
        )
    return int(scaled)


def tinybars_to_hbar(tinybars: int) -> Decimal:
    """Convert an integer tinybar count to a display Decimal."""
    return Decimal(tinybars) / TINYBARS_PER_HBAR


def format_amount(tinybars: int, currency: str = NATIVE_SYMBOL) -> str:
    """Return a human-readable string with 8 decimal places."""
    return f"{tinybars_to_hbar(tinybars):.{NATIVE_DECIMALS}f} {currency}"
