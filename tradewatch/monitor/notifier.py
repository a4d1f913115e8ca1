from __future__ import annotations

from typing import Callable, List, Protocol

from tradewatch.core.logging import get_logger
from tradewatch.core.types import TradeEvent

log = get_logger("notifier")


class Notifier(Protocol):
    """Receives trade events for delivery. Wording and transport live behind this seam."""

    def notify(self, event: TradeEvent) -> None:  # pragma: no cover - protocol
        ...


class LogNotifier:
    """Default notifier: one structured log line per event."""

    def notify(self, event: TradeEvent) -> None:
        if event.kind == "close" and event.record is not None:
            r = event.record
            log.bind(event=event.kind, asset=event.asset).success(
                f"CLOSE {event.asset} pnl={r.pnl:.2f} ({r.pnl_percent:.2f}%) "
                f"avg_buy={r.avg_buy_price} avg_sell={r.avg_sell_price} held {r.duration_days:.1f}d"
            )
            return
        side = "BUY" if event.kind == "buy" else "PARTIAL SELL"
        log.bind(event=event.kind, asset=event.asset).info(
            f"{side} {abs(event.delta_quantity)} {event.asset} @ {event.price} (value {event.trade_value:.2f})"
        )


class CallbackNotifier:
    """Fan events out to plain callables, e.g. a chat bot's send function."""

    def __init__(self, *callbacks: Callable[[TradeEvent], None]) -> None:
        self.callbacks: List[Callable[[TradeEvent], None]] = list(callbacks)

    def subscribe(self, callback: Callable[[TradeEvent], None]) -> None:
        self.callbacks.append(callback)

    def notify(self, event: TradeEvent) -> None:
        # A failing subscriber must not starve the others; the last error is re-raised
        # so the engine logs the delivery failure.
        error: Exception | None = None
        for cb in self.callbacks:
            try:
                cb(event)
            except Exception as exc:
                log.warning(f"Notifier callback {getattr(cb, '__name__', cb)!r} failed: {exc}")
                error = exc
        if error is not None:
            raise error
