from __future__ import annotations

import argparse
from datetime import timedelta

from tradewatch.core.config import AppConfig
from tradewatch.core.utils import utcnow
from tradewatch.monitor.display import (
    console,
    render_closed_trades,
    render_performance,
    render_portfolio_stats,
    render_positions,
)
from tradewatch.monitor.performance import PerformanceReport
from tradewatch.monitor.storage import StorageManager


def main() -> None:  # pragma: no cover - simple CLI glue
    parser = argparse.ArgumentParser(description="Tradewatch ledger report")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--db", type=str, default=None, help="Ledger DB path (overrides config)")
    parser.add_argument("--asset", type=str, default=None)
    parser.add_argument("--days", type=int, default=30, help="Window for closed trades and weighted return")
    parser.add_argument("--trades", type=int, default=20)
    args = parser.parse_args()

    cfg = AppConfig.load(args.config) if args.config else AppConfig()
    storage = StorageManager(args.db or cfg.storage.path)
    try:
        since = utcnow() - timedelta(days=int(args.days))
        positions = storage.load_positions()
        if args.asset:
            asset = args.asset.upper()
            positions = {k: v for k, v in positions.items() if k == asset}
        render_positions(positions)

        records = storage.closed_trades(asset=args.asset.upper() if args.asset else None, since=since, limit=int(args.trades))
        render_closed_trades(records, title=f"Closed Trades (last {args.days}d)")

        perf = PerformanceReport(storage)
        if args.asset:
            render_performance({args.asset.upper(): perf.asset(args.asset.upper())})
        else:
            render_performance(perf.by_asset(), perf.window(since))
        render_portfolio_stats(perf.portfolio(since), title=f"Portfolio Value (last {args.days}d)")

        baseline = storage.load_baseline()
        if baseline is not None:
            console.print(
                f"Baseline as of {baseline.snapshot.as_of:%Y-%m-%d %H:%M:%S} UTC, "
                f"value {baseline.total_value:,.2f} {cfg.exchange.quote_currency}"
            )
    finally:
        storage.close()


if __name__ == "__main__":
    main()
