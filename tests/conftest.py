from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from tradewatch.core.types import BalanceSnapshot, FetchResult, PriceQuote, TradeEvent
from tradewatch.monitor.storage import StorageManager


T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def D(x) -> Decimal:
    return Decimal(str(x))


def snap(quantities: Dict[str, object], as_of: datetime = T0) -> BalanceSnapshot:
    return BalanceSnapshot(as_of=as_of, quantities={k: D(v) for k, v in quantities.items()})


def quotes(prices: Dict[str, object], quote: str = "USDT") -> Dict[str, PriceQuote]:
    return {
        f"{asset}/{quote}": PriceQuote(instrument=f"{asset}/{quote}", last_price=D(p))
        for asset, p in prices.items()
    }


class FakeSource:
    """Scripted snapshot source: each fetch pops the next balances/prices pair; the last one repeats."""

    def __init__(self) -> None:
        self.balances: List[FetchResult[BalanceSnapshot]] = []
        self.prices: List[FetchResult[Dict[str, PriceQuote]]] = []
        self.balance_calls = 0
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    def push(self, balances: Dict[str, object], prices: Dict[str, object], as_of: datetime = T0) -> None:
        self.balances.append(FetchResult.success(snap(balances, as_of=as_of)))
        self.prices.append(FetchResult.success(quotes(prices)))

    def push_error(self, error: str = "exchange down") -> None:
        # a failed balance fetch aborts before prices are asked for
        self.balances.append(FetchResult.failure(error))

    def push_price_error(self, balances: Dict[str, object], error: str = "tickers down") -> None:
        self.balances.append(FetchResult.success(snap(balances)))
        self.prices.append(FetchResult.failure(error))

    def fetch_balances(self) -> FetchResult[BalanceSnapshot]:
        self.balance_calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        return self.balances.pop(0) if len(self.balances) > 1 else self.balances[0]

    def fetch_price_quotes(self) -> FetchResult[Dict[str, PriceQuote]]:
        return self.prices.pop(0) if len(self.prices) > 1 else self.prices[0]


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events: List[TradeEvent] = []
        self.fail = fail

    def notify(self, event: TradeEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("delivery failed")


class StepClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def storage(tmp_path) -> StorageManager:
    sm = StorageManager(db_path=str(tmp_path / "ledger.db"))
    yield sm
    sm.close()


@pytest.fixture(autouse=True)
def _no_db_override(monkeypatch) -> None:
    monkeypatch.delenv("TRADEWATCH_LEDGER_DB", raising=False)
