"""Money helpers.

Prices are carried as floats at full precision through every recomputation.
Rounding to cents happens only when a figure is presented or sent over the wire.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENTS = Decimal("0.01")


def to_money(value: float) -> float:
    # repr() keeps the shortest round-tripping form, so 2.675 rounds to 2.68.
    return float(Decimal(repr(float(value))).quantize(_CENTS, rounding=ROUND_HALF_UP))


def non_negative(value: float) -> float:
    return max(0.0, float(value))


def clamp_percentage(value: float) -> float:
    return min(100.0, max(0.0, float(value)))
