# rebalancer/convert.py
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

# Enough digits for u64 supplies at any decimal precision without rounding.
_PRECISION = 80

Amount = Union[Decimal, int, str]


def _check_decimals(decimals: int):
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
        raise ValueError(f"decimals must be a non-negative integer, got {decimals!r}")


def to_minor_units(amount: Amount, decimals: int) -> int:
    """
    Converts a human-readable token amount to its integer minor units
    (e.g. SOL -> lamports). Truncates toward zero, never rounds up.

    Floats are refused: the result feeds straight into on-chain integer
    fields, so the caller must pass a Decimal, int or numeric string.
    """
    if isinstance(amount, float):
        raise TypeError("float amounts are not accepted, pass a Decimal or str")
    _check_decimals(decimals)

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(amount)
        if not value.is_finite():
            raise ValueError(f"amount must be finite, got {amount!r}")
        scaled = value.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def to_human_units(amount: int, decimals: int) -> Decimal:
    """Converts integer minor units back to a human-readable Decimal."""
    if isinstance(amount, float):
        raise TypeError("float amounts are not accepted")
    _check_decimals(decimals)

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(amount)).scaleb(-decimals)
