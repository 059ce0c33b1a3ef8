"""Monetary rounding helpers."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal, places: int = 2) -> Decimal:
    """Round half-up to ``places`` decimals."""
    exponent = CENT if places == 2 else Decimal(1).scaleb(-places)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def money_sum(values, places: int = 2) -> Decimal:
    return to_money(sum(values, Decimal("0")), places)
