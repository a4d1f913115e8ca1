from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Convert exchange payload numbers (str/float/int/None) to Decimal.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")`` and not
    its binary expansion. Non-finite or unparsable values map to ``default``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default
    return d if d.is_finite() else default


def safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return Decimal("0")
    return numerator / denominator


def instrument_for(asset: str, quote_currency: str) -> str:
    """'btc', 'USDT' -> 'BTC/USDT'"""
    return f"{str(asset).strip().upper()}/{str(quote_currency).strip().upper()}"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)
