from __future__ import annotations

from dataclasses import asdict, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from tradewatch.core.types import ClosedTradeRecord
from tradewatch.core.utils import safe_div, to_decimal
from tradewatch.monitor.storage import StorageManager


_EMPTY = {
    "realized_pnl": Decimal("0"),
    "trade_count": 0,
    "winning_trades": 0,
    "losing_trades": 0,
    "avg_duration_days": Decimal("0"),
    "win_rate": Decimal("0"),
    "avg_pnl_percent": Decimal("0"),
    "best_pnl_percent": Decimal("0"),
    "worst_pnl_percent": Decimal("0"),
}


def trades_frame(records: Sequence[ClosedTradeRecord]) -> pd.DataFrame:
    """Closed trades as a DataFrame; Decimal columns stay Decimal (object dtype)."""
    if not records:
        return pd.DataFrame(columns=[f.name for f in fields(ClosedTradeRecord)])
    return pd.DataFrame([asdict(r) for r in records])


def _summarize(df: pd.DataFrame) -> Dict[str, Any]:
    if df.empty:
        return dict(_EMPTY)
    pnl = df["pnl"]
    roi = list(df["pnl_percent"])
    count = Decimal(len(df))
    total_duration = sum(df["duration_days"], Decimal("0"))
    winning = int((pnl > 0).sum())
    return {
        "realized_pnl": sum(pnl, Decimal("0")),
        "trade_count": int(len(df)),
        "winning_trades": winning,
        # Break-even closes count as losses
        "losing_trades": int((pnl <= 0).sum()),
        "avg_duration_days": safe_div(total_duration, count),
        "win_rate": safe_div(Decimal(winning), count) * 100,
        "avg_pnl_percent": safe_div(sum(roi, Decimal("0")), count),
        "best_pnl_percent": max(roi),
        "worst_pnl_percent": min(roi),
    }


def asset_performance(records: Sequence[ClosedTradeRecord], asset: str) -> Dict[str, Any]:
    """Lifetime realized results for one asset across all of its closed lots."""
    df = trades_frame(records)
    if not df.empty:
        df = df[df["asset"] == asset]
    return _summarize(df)


def performance_by_asset(records: Sequence[ClosedTradeRecord]) -> Dict[str, Dict[str, Any]]:
    df = trades_frame(records)
    if df.empty:
        return {}
    return {str(asset): _summarize(group) for asset, group in df.groupby("asset", sort=True)}


def weighted_return_percent(records: Sequence[ClosedTradeRecord]) -> Decimal:
    """Return per closed trade weighted by the share of capital each lot used at entry.

    Trades without an entry capital share carry no weight.
    """
    df = trades_frame(records)
    if df.empty:
        return Decimal("0")
    df = df[df["entry_capital_percent"] > 0]
    if df.empty:
        return Decimal("0")
    weighted = sum((p * w for p, w in zip(df["pnl_percent"], df["entry_capital_percent"])), Decimal("0"))
    total_weight = sum(df["entry_capital_percent"], Decimal("0"))
    return safe_div(weighted, total_weight)


def portfolio_stats(history: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Value-path statistics over portfolio history rows, in any order.

    Period changes are between consecutive stored valuations (hourly buckets).
    Volatility is the population standard deviation of those changes, in percent.
    Returns None with fewer than two rows.
    """
    if len(history) < 2:
        return None
    df = pd.DataFrame(list(history)).sort_values("timestamp", kind="stable").reset_index(drop=True)
    totals: List[Decimal] = list(df["total_value"])
    start, end = totals[0], totals[-1]
    pnl = end - start

    values = pd.Series([float(v) for v in totals])
    changes = values.pct_change().iloc[1:].replace([float("inf"), float("-inf")], float("nan")).dropna() * 100
    if changes.empty:
        best = worst = volatility = 0.0
    else:
        best, worst = float(changes.max()), float(changes.min())
        volatility = float(changes.std(ddof=0))
    return {
        "start_value": start,
        "end_value": end,
        "pnl": pnl,
        "pnl_percent": safe_div(pnl, start) * 100,
        "max_value": max(totals),
        "min_value": min(totals),
        "avg_value": safe_div(sum(totals, Decimal("0")), Decimal(len(totals))),
        "best_change_percent": to_decimal(best),
        "worst_change_percent": to_decimal(worst),
        "volatility_percent": to_decimal(volatility),
        "samples": len(totals),
    }


class PerformanceReport:
    """Read-side view over the closed-trade archive and valuation history."""

    def __init__(self, storage: StorageManager) -> None:
        self.storage = storage

    def asset(self, asset: str) -> Dict[str, Any]:
        return asset_performance(self.storage.closed_trades(asset=asset), asset)

    def by_asset(self, *, since: Optional[datetime] = None) -> Dict[str, Dict[str, Any]]:
        return performance_by_asset(self.storage.closed_trades(since=since))

    def window(self, since: datetime) -> Dict[str, Any]:
        records: List[ClosedTradeRecord] = self.storage.closed_trades(since=since)
        summary = _summarize(trades_frame(records))
        summary["weighted_return_percent"] = weighted_return_percent(records)
        return summary

    def portfolio(self, since: datetime) -> Optional[Dict[str, Any]]:
        return portfolio_stats(self.storage.portfolio_history(since=since.timestamp(), limit=100_000))
