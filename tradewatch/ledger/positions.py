from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, Optional

from tradewatch.core.logging import get_logger
from tradewatch.core.types import ClosedTradeRecord, Position, PriceQuote, TradeEvent
from tradewatch.ledger import accounting
from tradewatch.ledger.classifier import classify
from tradewatch.ledger.differ import BalanceChange, quote_price

log = get_logger("ledger")


class PositionLedger:
    """Open lots per asset, mutated only through :meth:`apply` and :meth:`mark_prices`.

    The ledger is not thread-safe on purpose: the reconciliation engine is its
    only writer and always holds its run-slot while touching it.
    """

    def __init__(self, positions: Optional[Dict[str, Position]] = None, dust_threshold: Decimal = Decimal("1")) -> None:
        self._positions: Dict[str, Position] = dict(positions or {})
        self.dust_threshold = dust_threshold

    def __contains__(self, asset: object) -> bool:
        return asset in self._positions

    def __iter__(self) -> Iterator[str]:
        return iter(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, asset: str) -> Optional[Position]:
        return self._positions.get(asset)

    def snapshot(self) -> Dict[str, Position]:
        return {asset: replace(pos) for asset, pos in self._positions.items()}

    def apply(self, change: BalanceChange, *, now: datetime, portfolio_value: Decimal) -> Optional[TradeEvent]:
        """Classify one significant balance change and mutate the lot accordingly.

        ``portfolio_value`` is the portfolio value before the trade and only
        matters when the change opens a new lot.
        """
        position = self._positions.get(change.asset)
        kind = classify(change, position, self.dust_threshold)
        if kind is None:
            log.warning(
                f"Sell of {abs(change.delta)} {change.asset} @ {change.price} with no tracked position; "
                "no cost basis to attribute, ignoring"
            )
            return None
        if kind == "buy":
            return self._buy(change, position, now=now, portfolio_value=portfolio_value)
        return self._sell(change, position, closing=(kind == "close"), now=now)  # type: ignore[arg-type]

    def mark_prices(self, quotes: Dict[str, PriceQuote], quote_currency: str) -> bool:
        """Move high/low watermarks of open lots to this cycle's prices. Returns True if any moved."""
        moved = False
        for asset, pos in self._positions.items():
            price = quote_price(quotes, asset, quote_currency)
            if price is None:
                continue
            if price > pos.highest_price:
                pos.highest_price = price
                moved = True
            if price < pos.lowest_price:
                pos.lowest_price = price
                moved = True
        return moved

    def _buy(self, change: BalanceChange, position: Optional[Position], *, now: datetime, portfolio_value: Decimal) -> TradeEvent:
        trade_value = change.delta * change.price
        if position is None:
            position = Position(
                asset=change.asset,
                total_amount_bought=change.delta,
                total_cost=trade_value,
                avg_buy_price=change.price,
                open_date=now,
                highest_price=change.price,
                lowest_price=change.price,
                entry_capital_percent=accounting.capital_percent(trade_value, portfolio_value),
            )
            self._positions[change.asset] = position
            log.info(f"New lot {change.asset}: {change.delta} @ {change.price}")
        else:
            position.total_amount_bought += change.delta
            position.total_cost += trade_value
            position.avg_buy_price = accounting.weighted_average_price(position.total_cost, position.total_amount_bought)
            if change.price > position.highest_price:
                position.highest_price = change.price
            if change.price < position.lowest_price:
                position.lowest_price = change.price
            log.info(f"Added to {change.asset}: +{change.delta} @ {change.price}, avg now {position.avg_buy_price}")
        return TradeEvent(
            kind="buy",
            asset=change.asset,
            delta_quantity=change.delta,
            price=change.price,
            trade_value=trade_value,
            position=replace(position),
        )

    def _sell(self, change: BalanceChange, position: Position, *, closing: bool, now: datetime) -> TradeEvent:
        sold = abs(change.delta)
        trade_value = sold * change.price
        position.realized_value += trade_value
        position.total_amount_sold += sold

        if not closing:
            log.info(f"Reduced {change.asset}: -{sold} @ {change.price}, {change.held} left")
            return TradeEvent(
                kind="partial_sell",
                asset=change.asset,
                delta_quantity=change.delta,
                price=change.price,
                trade_value=trade_value,
                position=replace(position),
            )

        record = self._close_record(position, now=now)
        del self._positions[change.asset]
        log.info(
            f"Closed {change.asset}: qty={record.quantity} avg_buy={record.avg_buy_price} "
            f"avg_sell={record.avg_sell_price} pnl={record.pnl} ({record.pnl_percent}%)"
        )
        return TradeEvent(
            kind="close",
            asset=change.asset,
            delta_quantity=change.delta,
            price=change.price,
            trade_value=trade_value,
            position=None,
            record=record,
        )

    @staticmethod
    def _close_record(position: Position, *, now: datetime) -> ClosedTradeRecord:
        avg_sell = accounting.average_sell_price(position.realized_value, position.total_amount_sold)
        quantity = position.total_amount_bought
        pnl = accounting.realized_pnl(avg_sell, position.avg_buy_price, quantity)
        return ClosedTradeRecord(
            asset=position.asset,
            avg_buy_price=position.avg_buy_price,
            avg_sell_price=avg_sell,
            quantity=quantity,
            pnl=pnl,
            pnl_percent=accounting.pnl_percent(pnl, position.avg_buy_price, quantity),
            duration_days=accounting.duration_days(position.open_date, now),
            highest_price=position.highest_price,
            lowest_price=position.lowest_price,
            closed_at=now,
            entry_capital_percent=position.entry_capital_percent,
        )
