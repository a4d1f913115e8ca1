from __future__ import annotations

import time
from datetime import timedelta

from conftest import D, T0, snap
from tradewatch.core.types import BaselineState, ClosedTradeRecord, Position
from tradewatch.monitor.storage import DEFAULT_DB_PATH, StorageManager


def _position(asset: str = "BTC") -> Position:
    return Position(
        asset=asset,
        total_amount_bought=D("0.2"),
        total_cost=D("13000"),
        avg_buy_price=D("65000"),
        open_date=T0,
        highest_price=D("70000"),
        lowest_price=D("60000"),
        entry_capital_percent=D("12.5"),
        total_amount_sold=D("0.05"),
        realized_value=D("3500.123456789"),
    )


def _record(asset: str, pnl: str, closed_at=T0) -> ClosedTradeRecord:
    return ClosedTradeRecord(
        asset=asset,
        avg_buy_price=D(100),
        avg_sell_price=D(110),
        quantity=D(1),
        pnl=D(pnl),
        pnl_percent=D(10),
        duration_days=D("1.5"),
        highest_price=D(120),
        lowest_price=D(90),
        closed_at=closed_at,
        entry_capital_percent=D(5),
    )


def test_positions_roundtrip_keeps_decimal_precision(storage: StorageManager) -> None:
    storage.save_positions({"BTC": _position()})
    loaded = storage.load_positions()
    assert loaded == {"BTC": _position()}


def test_save_positions_overwrites(storage: StorageManager) -> None:
    storage.save_positions({"BTC": _position("BTC"), "ETH": _position("ETH")})
    storage.save_positions({"ETH": _position("ETH")})
    assert set(storage.load_positions()) == {"ETH"}


def test_baseline_absent_then_overwritten(storage: StorageManager) -> None:
    assert storage.load_baseline() is None
    storage.save_baseline(BaselineState(snapshot=snap({"BTC": "0.5"}), total_value=D("30000")))
    storage.save_baseline(BaselineState(snapshot=snap({"BTC": "0.25", "USDT": "10"}, as_of=T0 + timedelta(minutes=1)), total_value=D("15010")))
    baseline = storage.load_baseline()
    assert baseline.snapshot.quantities == {"BTC": D("0.25"), "USDT": D("10")}
    assert baseline.snapshot.as_of == T0 + timedelta(minutes=1)
    assert baseline.total_value == D("15010")


def test_save_ledger_appends_records_and_rewrites_positions(storage: StorageManager) -> None:
    storage.save_positions({"BTC": _position("BTC")})
    record = _record("BTC", "10")
    storage.save_ledger({}, [record])
    assert storage.load_positions() == {}
    archived = storage.closed_trades()
    assert len(archived) == 1
    assert archived[0].id == record.id
    assert archived[0].pnl == D(10)
    assert archived[0].closed_at == T0


def test_closed_trades_filters(storage: StorageManager) -> None:
    storage.append_closed_trade(_record("BTC", "10", T0))
    storage.append_closed_trade(_record("ETH", "-5", T0 + timedelta(days=2)))
    storage.append_closed_trade(_record("BTC", "3", T0 + timedelta(days=5)))
    assert [r.pnl for r in storage.closed_trades(asset="BTC")] == [D(3), D(10)]
    assert {r.asset for r in storage.closed_trades(since=T0 + timedelta(days=1))} == {"ETH", "BTC"}
    assert len(storage.closed_trades(limit=1)) == 1


def test_portfolio_history_and_prune(storage: StorageManager) -> None:
    now = time.time()
    storage.record_portfolio_value(timestamp=now - 40 * 86400, total_value=D(1), cash_value=D(1), holdings={})
    storage.record_portfolio_value(timestamp=now, total_value=D("30100"), cash_value=D(100), holdings={"BTC": D("0.5")})
    assert storage.prune_portfolio_history(retention_days=30) == 1
    rows = storage.portfolio_history()
    assert len(rows) == 1
    assert rows[0]["total_value"] == D("30100")
    assert rows[0]["holdings"] == {"BTC": D("0.5")}


def test_env_override_replaces_default_path(tmp_path, monkeypatch) -> None:
    target = tmp_path / "override" / "ledger.db"
    monkeypatch.setenv("TRADEWATCH_LEDGER_DB", str(target))
    for sm in (StorageManager(), StorageManager(db_path=DEFAULT_DB_PATH)):
        try:
            assert sm.db_path == str(target)
            assert target.exists()
        finally:
            sm.close()


def test_explicit_path_wins_over_env(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("TRADEWATCH_LEDGER_DB", str(tmp_path / "env.db"))
    explicit = tmp_path / "explicit.db"
    sm = StorageManager(db_path=str(explicit))
    try:
        assert sm.db_path == str(explicit)
        assert not (tmp_path / "env.db").exists()
    finally:
        sm.close()


def test_portfolio_value_upserts_per_hour(storage: StorageManager) -> None:
    base = T0.timestamp()
    storage.record_portfolio_value(timestamp=base, total_value=D(100), cash_value=D(0), holdings={})
    storage.record_portfolio_value(timestamp=base + 1800, total_value=D(110), cash_value=D(0), holdings={})
    storage.record_portfolio_value(timestamp=base + 3600, total_value=D(120), cash_value=D(0), holdings={})
    rows = storage.portfolio_history()
    assert [r["total_value"] for r in rows] == [D(120), D(110)]
    assert rows[1]["timestamp"] == base + 1800


def test_prune_relative_to_given_time(storage: StorageManager) -> None:
    base = T0.timestamp()
    storage.record_portfolio_value(timestamp=base - 31 * 86400, total_value=D(1), cash_value=D(1), holdings={})
    storage.record_portfolio_value(timestamp=base - 29 * 86400, total_value=D(2), cash_value=D(2), holdings={})
    assert storage.prune_portfolio_history(retention_days=30, now=base) == 1
    assert [r["total_value"] for r in storage.portfolio_history()] == [D(2)]
