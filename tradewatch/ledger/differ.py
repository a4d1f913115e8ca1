from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from tradewatch.core.types import BalanceSnapshot, PriceQuote
from tradewatch.core.utils import instrument_for


@dataclass(frozen=True)
class BalanceChange:
    asset: str
    delta: Decimal
    price: Decimal
    held: Decimal  # post-trade quantity as reported by the new snapshot

    @property
    def notional(self) -> Decimal:
        return abs(self.delta * self.price)


@dataclass
class DiffResult:
    changes: List[BalanceChange] = field(default_factory=list)
    # Assets whose quantity moved but had no usable quote this cycle
    unpriced: List[str] = field(default_factory=list)


def quote_price(quotes: Dict[str, PriceQuote], asset: str, quote_currency: str) -> Optional[Decimal]:
    quote = quotes.get(instrument_for(asset, quote_currency))
    if quote is None or quote.last_price <= 0:
        return None
    return quote.last_price


def diff_balances(
    previous: BalanceSnapshot,
    current: BalanceSnapshot,
    quotes: Dict[str, PriceQuote],
    *,
    quote_currency: str,
    dust_threshold: Decimal,
) -> DiffResult:
    """Compare two snapshots and keep the per-asset moves worth at least ``dust_threshold``.

    The quote currency itself is never reported: its balance moves are the
    other leg of every trade. Assets without a price this cycle are skipped and
    listed in ``unpriced`` so the caller can decide what to do with the
    baseline.
    """
    result = DiffResult()
    settlement = quote_currency.upper()
    assets = set(previous.quantities) | set(current.quantities)
    for asset in sorted(assets):
        if asset.upper() == settlement:
            continue
        held = current.quantity(asset)
        delta = held - previous.quantity(asset)
        if delta == 0:
            continue
        price = quote_price(quotes, asset, quote_currency)
        if price is None:
            result.unpriced.append(asset)
            continue
        if abs(delta * price) < dust_threshold:
            continue
        result.changes.append(BalanceChange(asset=asset, delta=delta, price=price, held=held))
    return result


def portfolio_value(
    snapshot: BalanceSnapshot,
    quotes: Dict[str, PriceQuote],
    *,
    quote_currency: str,
) -> Decimal:
    """Value of a snapshot in quote currency; unpriced assets count as zero."""
    total = Decimal("0")
    settlement = quote_currency.upper()
    for asset, qty in snapshot.quantities.items():
        if asset.upper() == settlement:
            total += qty
            continue
        price = quote_price(quotes, asset, quote_currency)
        if price is not None:
            total += qty * price
    return total
