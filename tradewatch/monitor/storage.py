from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from dataclasses import asdict, fields
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from tradewatch.core.types import BalanceSnapshot, BaselineState, ClosedTradeRecord, Position
from tradewatch.core.utils import to_decimal


DEFAULT_DB_PATH = "~/.tradewatch/ledger.db"


def _hour_bucket(timestamp: float) -> str:
    return datetime.fromtimestamp(float(timestamp), tz=timezone.utc).strftime("%Y-%m-%dT%H")


def _expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


def _decode_dt(value: Any) -> datetime:
    dt = datetime.fromisoformat(str(value))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


_DATETIME_FIELDS = {"open_date", "closed_at"}


def position_to_dict(pos: Position) -> Dict[str, Any]:
    return {k: _encode(v) for k, v in asdict(pos).items()}


def position_from_dict(data: Dict[str, Any]) -> Position:
    kwargs: Dict[str, Any] = {}
    for f in fields(Position):
        if f.name not in data:
            continue
        raw = data[f.name]
        if f.name == "asset":
            kwargs[f.name] = str(raw)
        elif f.name in _DATETIME_FIELDS:
            kwargs[f.name] = _decode_dt(raw)
        else:
            kwargs[f.name] = to_decimal(raw)
    return Position(**kwargs)


class StorageManager:
    """SQLite-backed durable state for the ledger.

    Tables:
      - positions          (overwrite: the full open-lot map is rewritten each save)
      - baseline           (singleton row id=1, overwrite)
      - closed_trades      (append-only archive)
      - portfolio_history  (one valuation per UTC hour, last write wins; pruned by retention)
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        # TRADEWATCH_LEDGER_DB only replaces the default location; an explicit path always wins
        env_override = os.getenv("TRADEWATCH_LEDGER_DB")
        if env_override and (db_path is None or db_path == DEFAULT_DB_PATH):
            db_path = env_override
        self.db_path = _expand(db_path or DEFAULT_DB_PATH)
        Path(os.path.dirname(self.db_path) or ".").mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                    asset TEXT PRIMARY KEY,
                    data_json TEXT NOT NULL,
                    updated_at REAL
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS baseline (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    as_of TEXT NOT NULL,
                    quantities_json TEXT NOT NULL,
                    total_value TEXT NOT NULL,
                    updated_at REAL
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS closed_trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset TEXT NOT NULL,
                    avg_buy_price TEXT,
                    avg_sell_price TEXT,
                    quantity TEXT,
                    pnl TEXT,
                    pnl_percent TEXT,
                    duration_days TEXT,
                    highest_price TEXT,
                    lowest_price TEXT,
                    entry_capital_percent TEXT,
                    closed_at TEXT NOT NULL,
                    closed_ts REAL NOT NULL
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS portfolio_history (
                    timestamp REAL,
                    bucket TEXT,
                    total_value TEXT,
                    cash_value TEXT,
                    holdings_json TEXT
                );
                """
            )
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_closed_trades_asset ON closed_trades(asset)")
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_closed_trades_ts ON closed_trades(closed_ts)")
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_portfolio_history_ts ON portfolio_history(timestamp)")
            cols = {r[1] for r in self._conn.execute("PRAGMA table_info(portfolio_history)").fetchall()}
            if "bucket" not in cols:
                self._conn.execute("ALTER TABLE portfolio_history ADD COLUMN bucket TEXT")
            self._conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_portfolio_history_bucket ON portfolio_history(bucket)"
            )

    # --- Open positions (overwrite semantics) ---
    def load_positions(self) -> Dict[str, Position]:
        rows = self._conn.execute("SELECT asset, data_json FROM positions").fetchall()
        out: Dict[str, Position] = {}
        for asset, raw in rows:
            data = json.loads(raw or "{}")
            data.setdefault("asset", asset)
            out[str(asset)] = position_from_dict(data)
        return out

    def save_positions(self, positions: Dict[str, Position]) -> None:
        with self._lock, self._conn:
            self._write_positions(positions)

    def _write_positions(self, positions: Dict[str, Position]) -> None:
        now = time.time()
        self._conn.execute("DELETE FROM positions")
        self._conn.executemany(
            "INSERT INTO positions (asset, data_json, updated_at) VALUES (?, ?, ?)",
            [(asset, json.dumps(position_to_dict(pos)), now) for asset, pos in positions.items()],
        )

    # --- Closed trade archive (append-only) ---
    def append_closed_trade(self, record: ClosedTradeRecord) -> int:
        with self._lock, self._conn:
            return self._insert_closed_trade(record)

    def _insert_closed_trade(self, record: ClosedTradeRecord) -> int:
        closed_at = record.closed_at if record.closed_at.tzinfo else record.closed_at.replace(tzinfo=timezone.utc)
        cur = self._conn.execute(
            """
            INSERT INTO closed_trades (asset, avg_buy_price, avg_sell_price, quantity, pnl, pnl_percent,
                                       duration_days, highest_price, lowest_price, entry_capital_percent,
                                       closed_at, closed_ts)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.asset,
                str(record.avg_buy_price),
                str(record.avg_sell_price),
                str(record.quantity),
                str(record.pnl),
                str(record.pnl_percent),
                str(record.duration_days),
                str(record.highest_price),
                str(record.lowest_price),
                str(record.entry_capital_percent),
                closed_at.isoformat(),
                closed_at.timestamp(),
            ),
        )
        record.id = int(cur.lastrowid or 0)
        return record.id

    def save_ledger(self, positions: Dict[str, Position], closed: Iterable[ClosedTradeRecord] = ()) -> None:
        """Append close records and rewrite open positions in one transaction.

        A lot disappears from ``positions`` only together with its archive row.
        """
        with self._lock, self._conn:
            for record in closed:
                self._insert_closed_trade(record)
            self._write_positions(positions)

    def closed_trades(
        self,
        *,
        asset: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ClosedTradeRecord]:
        q = (
            "SELECT id, asset, avg_buy_price, avg_sell_price, quantity, pnl, pnl_percent, duration_days, "
            "highest_price, lowest_price, entry_capital_percent, closed_at FROM closed_trades"
        )
        conds: List[str] = []
        args: List[Any] = []
        if asset:
            conds.append("asset = ?")
            args.append(asset)
        if since is not None:
            conds.append("closed_ts >= ?")
            args.append((since if since.tzinfo else since.replace(tzinfo=timezone.utc)).timestamp())
        if conds:
            q += " WHERE " + " AND ".join(conds)
        q += " ORDER BY closed_ts DESC, id DESC"
        if limit is not None:
            q += " LIMIT ?"
            args.append(int(limit))
        rows = self._conn.execute(q, tuple(args)).fetchall()
        return [
            ClosedTradeRecord(
                id=int(r[0]),
                asset=str(r[1]),
                avg_buy_price=to_decimal(r[2]),
                avg_sell_price=to_decimal(r[3]),
                quantity=to_decimal(r[4]),
                pnl=to_decimal(r[5]),
                pnl_percent=to_decimal(r[6]),
                duration_days=to_decimal(r[7]),
                highest_price=to_decimal(r[8]),
                lowest_price=to_decimal(r[9]),
                entry_capital_percent=to_decimal(r[10]),
                closed_at=_decode_dt(r[11]),
            )
            for r in rows
        ]

    # --- Diff baseline (overwrite semantics) ---
    def load_baseline(self) -> Optional[BaselineState]:
        row = self._conn.execute("SELECT as_of, quantities_json, total_value FROM baseline WHERE id=1").fetchone()
        if not row:
            return None
        quantities = {str(k): to_decimal(v) for k, v in json.loads(row[1] or "{}").items()}
        snapshot = BalanceSnapshot(as_of=_decode_dt(row[0]), quantities=quantities)
        return BaselineState(snapshot=snapshot, total_value=to_decimal(row[2]))

    def save_baseline(self, baseline: BaselineState) -> None:
        snap = baseline.snapshot
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO baseline (id, as_of, quantities_json, total_value, updated_at)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    as_of=excluded.as_of,
                    quantities_json=excluded.quantities_json,
                    total_value=excluded.total_value,
                    updated_at=excluded.updated_at
                """,
                (
                    _encode(snap.as_of),
                    json.dumps({k: str(v) for k, v in snap.quantities.items()}),
                    str(baseline.total_value),
                    time.time(),
                ),
            )

    # --- Portfolio valuation history ---
    def record_portfolio_value(
        self,
        *,
        timestamp: float,
        total_value: Decimal,
        cash_value: Decimal,
        holdings: Dict[str, Decimal],
    ) -> None:
        """Upsert the valuation for the UTC hour containing ``timestamp``."""
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO portfolio_history (timestamp, bucket, total_value, cash_value, holdings_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(bucket) DO UPDATE SET
                    timestamp=excluded.timestamp,
                    total_value=excluded.total_value,
                    cash_value=excluded.cash_value,
                    holdings_json=excluded.holdings_json
                """,
                (
                    float(timestamp),
                    _hour_bucket(timestamp),
                    str(total_value),
                    str(cash_value),
                    json.dumps({k: str(v) for k, v in holdings.items()}),
                ),
            )

    def portfolio_history(self, *, since: float = 0.0, limit: int = 1000) -> List[Dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT timestamp, total_value, cash_value, holdings_json FROM portfolio_history "
            "WHERE timestamp >= ? ORDER BY timestamp DESC LIMIT ?",
            (float(since), int(limit)),
        ).fetchall()
        return [
            {
                "timestamp": float(r[0]),
                "total_value": to_decimal(r[1]),
                "cash_value": to_decimal(r[2]),
                "holdings": {k: to_decimal(v) for k, v in json.loads(r[3] or "{}").items()},
            }
            for r in rows
        ]

    def prune_portfolio_history(self, *, retention_days: int, now: Optional[float] = None) -> int:
        cutoff = (time.time() if now is None else float(now)) - int(retention_days) * 86400
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM portfolio_history WHERE timestamp < ?", (cutoff,))
            return int(cur.rowcount or 0)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
