from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


TradeKind = Literal["buy", "partial_sell", "close"]

T = TypeVar("T")


class BalanceSnapshot(BaseModel):
    """Point-in-time read of held quantities per asset."""

    model_config = ConfigDict(frozen=True)

    as_of: datetime
    quantities: Dict[str, Decimal] = Field(default_factory=dict)

    def quantity(self, asset: str) -> Decimal:
        return self.quantities.get(asset, Decimal("0"))


class PriceQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    instrument: str  # ccxt unified symbol, e.g. BTC/USDT
    last_price: Decimal
    open_24h: Decimal = Decimal("0")
    change_24h: Decimal = Decimal("0")  # fraction, not percent
    volume_24h: Decimal = Decimal("0")  # quote currency volume


@dataclass
class FetchResult(Generic[T]):
    """Outcome of a collaborator call: either a value or an error message."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def success(cls, value: T) -> "FetchResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "FetchResult[T]":
        return cls(error=error)


@dataclass
class Position:
    asset: str
    total_amount_bought: Decimal
    total_cost: Decimal
    avg_buy_price: Decimal
    open_date: datetime
    highest_price: Decimal
    lowest_price: Decimal
    entry_capital_percent: Decimal = Decimal("0")
    total_amount_sold: Decimal = Decimal("0")
    realized_value: Decimal = Decimal("0")


@dataclass
class ClosedTradeRecord:
    asset: str
    avg_buy_price: Decimal
    avg_sell_price: Decimal
    quantity: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    duration_days: Decimal
    highest_price: Decimal
    lowest_price: Decimal
    closed_at: datetime
    entry_capital_percent: Decimal = Decimal("0")
    id: Optional[int] = None


@dataclass
class TradeEvent:
    kind: TradeKind
    asset: str
    delta_quantity: Decimal
    price: Decimal
    trade_value: Decimal
    position: Optional[Position] = None
    record: Optional[ClosedTradeRecord] = None


@dataclass
class BaselineState:
    snapshot: BalanceSnapshot
    total_value: Decimal = Decimal("0")


@dataclass
class CycleReport:
    trigger: str
    started_at: datetime
    events: List[TradeEvent] = field(default_factory=list)
    cold_start: bool = False
    aborted: bool = False
    error: Optional[str] = None
    unpriced_assets: List[str] = field(default_factory=list)
    persisted: bool = False
