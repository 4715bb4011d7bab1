"""
Fixed-point money helpers.

Payment amounts are USD with cent precision; distribution amounts are settled in
USDC and keep the asset's 6 decimal places. Floats never enter a stored record.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, str, float]

CENT = Decimal("0.01")
ASSET_UNIT = Decimal("0.000001")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """Convert to Decimal, routing floats through str to avoid binary artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_money(value: Number) -> Decimal:
    """Quantize to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_asset_amount(value: Number) -> Decimal:
    """Quantize to asset precision, rounding down so a split never exceeds its total."""
    return to_decimal(value).quantize(ASSET_UNIT, rounding=ROUND_DOWN)


def share_of(total: Number, percentage: Number) -> Decimal:
    """Return ``total * percentage / 100`` at asset precision."""
    return to_asset_amount(to_decimal(total) * to_decimal(percentage) / HUNDRED)


def to_cents(value: Number) -> int:
    """Integer cents, as payment processors expect."""
    return int(to_money(value) * 100)


__all__ = [
    "CENT",
    "ASSET_UNIT",
    "to_decimal",
    "to_money",
    "to_asset_amount",
    "share_of",
    "to_cents",
]
