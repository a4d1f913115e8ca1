"""Weighted-average cost basis and realized PnL arithmetic.

Everything here works on ``Decimal`` so repeated recomputation of the blended
cost over many buys does not drift. Any ratio with a zero denominator is 0.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from tradewatch.core.utils import safe_div


SECONDS_PER_DAY = Decimal("86400")
HUNDRED = Decimal("100")


def weighted_average_price(total_cost: Decimal, total_amount: Decimal) -> Decimal:
    return safe_div(total_cost, total_amount)


def average_sell_price(realized_value: Decimal, total_amount_sold: Decimal) -> Decimal:
    return safe_div(realized_value, total_amount_sold)


def realized_pnl(avg_sell_price: Decimal, avg_buy_price: Decimal, quantity: Decimal) -> Decimal:
    """PnL of a fully closed lot, against its whole lifetime bought quantity."""
    return (avg_sell_price - avg_buy_price) * quantity


def pnl_percent(pnl: Decimal, avg_buy_price: Decimal, quantity: Decimal) -> Decimal:
    return safe_div(pnl, avg_buy_price * quantity) * HUNDRED


def capital_percent(trade_value: Decimal, portfolio_value: Decimal) -> Decimal:
    """Share of the portfolio (in percent) committed by a trade."""
    return safe_div(trade_value, portfolio_value) * HUNDRED


def duration_days(opened: datetime, closed: datetime) -> Decimal:
    seconds = Decimal(str((closed - opened).total_seconds()))
    return seconds / SECONDS_PER_DAY
