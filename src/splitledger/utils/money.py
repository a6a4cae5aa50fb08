from __future__ import annotations

import re
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
PERCENT_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")

Amount = Union[Decimal, int, str, float]

_AMOUNT_RE = re.compile(r"^[+-]?\d+(?:[.,]\d+)?$")


def quantum_for(decimals: int) -> Decimal:
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    return Decimal(1).scaleb(-decimals)


def to_decimal(value: Amount) -> Decimal:
    """Convert a money-like value to Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` and not
    its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not an amount")
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        return parse_amount(value)
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def quantize(value: Decimal, quantum: Decimal = CENT) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_EVEN)


def has_valid_precision(value: Decimal, quantum: Decimal = CENT) -> bool:
    if not value.is_finite():
        return False
    try:
        return value == value.quantize(quantum, rounding=ROUND_DOWN)
    except InvalidOperation:
        # more digits than the decimal context can hold
        return False


def is_close(a: Decimal, b: Decimal, quantum: Decimal = CENT) -> bool:
    # within epsilon: the difference is smaller than one currency unit
    return abs(a - b) < quantum


def is_zero(value: Decimal, quantum: Decimal = CENT) -> bool:
    return abs(value) < quantum


def derive_percentage(amount: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return Decimal(0).quantize(PERCENT_QUANTUM)
    return quantize(amount / total * HUNDRED, PERCENT_QUANTUM)


def parse_amount(text: str) -> Decimal:
    """Parse user-entered amounts such as ``"12.50"`` or ``"12,50"``."""
    cleaned = text.strip().replace(" ", "")
    if not _AMOUNT_RE.match(cleaned):
        raise ValueError(f"cannot parse amount: {text!r}")
    return Decimal(cleaned.replace(",", "."))
