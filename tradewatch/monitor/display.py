from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tradewatch.core.types import ClosedTradeRecord, Position


console = Console()


def _fmt_date(dt: Optional[datetime]) -> str:
    if dt is None:
        return "-"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def _signed(value: Decimal, suffix: str = "") -> str:
    text = f"{value:,.2f}{suffix}"
    return f"[green]+{text}[/green]" if value >= 0 else f"[red]{text}[/red]"


def render_positions(positions: Dict[str, Position]) -> None:
    if not positions:
        console.print(Panel("No open positions", title="Positions"))
        return
    table = Table(title="Open Positions")
    table.add_column("Asset")
    table.add_column("Held (net)", justify="right")
    table.add_column("Avg Buy", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("High", justify="right")
    table.add_column("Low", justify="right")
    table.add_column("Entry % cap", justify="right")
    table.add_column("Opened")
    for asset in sorted(positions):
        p = positions[asset]
        net = p.total_amount_bought - p.total_amount_sold
        table.add_row(
            asset,
            f"{net:.6f}",
            f"{p.avg_buy_price:.4f}",
            f"{p.total_cost:,.2f}",
            f"{p.highest_price:.4f}",
            f"{p.lowest_price:.4f}",
            f"{p.entry_capital_percent:.2f}%",
            _fmt_date(p.open_date),
        )
    console.print(table)


def render_closed_trades(records: List[ClosedTradeRecord], *, title: str = "Closed Trades") -> None:
    if not records:
        console.print(Panel("No closed trades", title=title))
        return
    table = Table(title=title)
    table.add_column("Closed")
    table.add_column("Asset")
    table.add_column("Qty", justify="right")
    table.add_column("Avg Buy", justify="right")
    table.add_column("Avg Sell", justify="right")
    table.add_column("PnL", justify="right")
    table.add_column("ROI", justify="right")
    table.add_column("Days", justify="right")
    for r in records:
        table.add_row(
            _fmt_date(r.closed_at),
            r.asset,
            f"{r.quantity:.6f}",
            f"{r.avg_buy_price:.4f}",
            f"{r.avg_sell_price:.4f}",
            _signed(r.pnl),
            _signed(r.pnl_percent, "%"),
            f"{r.duration_days:.1f}",
        )
    console.print(table)


def render_performance(by_asset: Dict[str, Dict[str, Any]], window: Optional[Dict[str, Any]] = None) -> None:
    table = Table(title="Realized Performance")
    table.add_column("Asset")
    table.add_column("Trades", justify="right")
    table.add_column("Won", justify="right")
    table.add_column("Lost", justify="right")
    table.add_column("Win %", justify="right")
    table.add_column("Realized PnL", justify="right")
    table.add_column("Avg ROI", justify="right")
    table.add_column("Best", justify="right")
    table.add_column("Worst", justify="right")
    table.add_column("Avg Days", justify="right")
    for asset, s in by_asset.items():
        table.add_row(
            asset,
            str(s["trade_count"]),
            str(s["winning_trades"]),
            str(s["losing_trades"]),
            f"{s['win_rate']:.1f}%",
            _signed(s["realized_pnl"]),
            _signed(s["avg_pnl_percent"], "%"),
            _signed(s["best_pnl_percent"], "%"),
            _signed(s["worst_pnl_percent"], "%"),
            f"{s['avg_duration_days']:.1f}",
        )
    if window is not None:
        table.add_section()
        table.add_row(
            "[bold]Window[/bold]",
            str(window["trade_count"]),
            str(window["winning_trades"]),
            str(window["losing_trades"]),
            f"{window['win_rate']:.1f}%",
            _signed(window["realized_pnl"]),
            _signed(window["avg_pnl_percent"], "%"),
            _signed(window["best_pnl_percent"], "%"),
            _signed(window["worst_pnl_percent"], "%"),
            f"{window['avg_duration_days']:.1f}",
        )
    console.print(table)
    if window is not None:
        console.print(f"[bold]Capital-weighted return:[/bold] {_signed(window['weighted_return_percent'], '%')}")


def render_portfolio_stats(stats: Optional[Dict[str, Any]], *, title: str = "Portfolio Value") -> None:
    if not stats:
        console.print(Panel("Not enough valuation history yet", title=title))
        return
    table = Table(title=f"{title} ({stats['samples']} samples)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Start", f"{stats['start_value']:,.2f}")
    table.add_row("End", f"{stats['end_value']:,.2f}")
    table.add_row("PnL", f"{_signed(stats['pnl'])} ({_signed(stats['pnl_percent'], '%')})")
    table.add_row("High", f"{stats['max_value']:,.2f}")
    table.add_row("Low", f"{stats['min_value']:,.2f}")
    table.add_row("Average", f"{stats['avg_value']:,.2f}")
    table.add_row("Best period", _signed(stats["best_change_percent"], "%"))
    table.add_row("Worst period", _signed(stats["worst_change_percent"], "%"))
    table.add_row("Volatility", f"{stats['volatility_percent']:.2f}%")
    console.print(table)
