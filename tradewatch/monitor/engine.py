from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from tradewatch.core.logging import get_logger
from tradewatch.core.types import (
    BalanceSnapshot,
    BaselineState,
    ClosedTradeRecord,
    CycleReport,
    PriceQuote,
)
from tradewatch.core.utils import utcnow
from tradewatch.data.exchange import SnapshotSource
from tradewatch.ledger.differ import diff_balances, portfolio_value
from tradewatch.ledger.positions import PositionLedger
from tradewatch.monitor.notifier import LogNotifier, Notifier
from tradewatch.monitor.storage import StorageManager

log = get_logger("engine")

PRUNE_EVERY = timedelta(days=1)


class ReconciliationEngine:
    """Owns the position ledger and the diff baseline; ``run_cycle`` is the only way in.

    Triggers (timer thread, balance pushes, manual calls) all go through
    ``run_cycle``. The run-slot is taken with a non-blocking acquire: a trigger
    that finds a cycle in flight is dropped, never queued. Everything the
    ledger and baseline see happens while the slot is held.
    """

    def __init__(
        self,
        *,
        source: SnapshotSource,
        storage: StorageManager,
        notifier: Optional[Notifier] = None,
        quote_currency: str = "USDT",
        dust_threshold: Decimal = Decimal("1"),
        interval_sec: float = 60.0,
        hold_baseline_on_missing_price: bool = False,
        track_price_extremes: bool = True,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.source = source
        self.storage = storage
        self.notifier: Notifier = notifier or LogNotifier()
        self.quote_currency = quote_currency.upper()
        self.dust_threshold = dust_threshold
        self.interval_sec = float(interval_sec)
        self.hold_baseline_on_missing_price = hold_baseline_on_missing_price
        self.track_price_extremes = track_price_extremes
        self.retention_days = retention_days
        self.clock = clock

        self.ledger = PositionLedger(storage.load_positions(), dust_threshold=dust_threshold)
        self.baseline: Optional[BaselineState] = storage.load_baseline()
        # Close records that exist in memory but not yet in the archive
        self._unflushed: List[ClosedTradeRecord] = []
        self._ledger_dirty = False

        self._slot = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.cycles_run = 0
        self.cycles_dropped = 0
        self._last_prune: Optional[datetime] = None
        self._closed = False
        log.info(
            f"Engine ready: {len(self.ledger)} open position(s), "
            f"baseline={'yes' if self.baseline else 'none (cold start pending)'}"
        )

    @property
    def busy(self) -> bool:
        return self._slot.locked()

    # --- Triggers ---
    def run_cycle(self, trigger: str = "manual") -> Optional[CycleReport]:
        """Run one reconciliation cycle, or return None at once if one is already running."""
        if not self._slot.acquire(blocking=False):
            self.cycles_dropped += 1
            log.debug(f"Cycle already in flight, dropping '{trigger}' trigger")
            return None
        try:
            if self._closed:
                log.debug(f"Engine closed, ignoring '{trigger}' trigger")
                return None
            self.cycles_run += 1
            return self._cycle(trigger)
        except Exception as e:
            log.exception(f"Reconciliation cycle ({trigger}) failed: {e}")
            return CycleReport(trigger=trigger, started_at=self.clock(), aborted=True, error=str(e))
        finally:
            self._slot.release()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="reconcile-timer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.interval_sec + 5.0)

    def close(self) -> None:
        """Stop the timer, wait out any cycle in flight, then close storage.

        Triggers that arrive afterwards (late balance pushes) are ignored.
        """
        self.stop()
        with self._slot:
            self._closed = True
            self.storage.close()

    def _run_loop(self) -> None:  # pragma: no cover - background thread
        while not self._stop.is_set():
            self.run_cycle("timer")
            self._stop.wait(self.interval_sec)

    # --- Cycle body (run-slot held) ---
    def _cycle(self, trigger: str) -> CycleReport:
        now = self.clock()
        report = CycleReport(trigger=trigger, started_at=now)
        self._maybe_prune(now)

        balances = self.source.fetch_balances()
        if not balances.ok:
            return self._abort(report, balances.error or "empty balance payload")
        quotes_res = self.source.fetch_price_quotes()
        if not quotes_res.ok:
            return self._abort(report, quotes_res.error or "empty price payload")
        current: BalanceSnapshot = balances.value  # type: ignore[assignment]
        quotes: Dict[str, PriceQuote] = quotes_res.value  # type: ignore[assignment]
        current_value = portfolio_value(current, quotes, quote_currency=self.quote_currency)

        if self.baseline is None:
            log.info(f"No baseline yet; storing current balances ({len(current.quantities)} assets) as baseline")
            report.cold_start = True
            self._persist_baseline(BaselineState(snapshot=current, total_value=current_value))
            self._record_valuation(current, current_value)
            return report

        previous = self.baseline.snapshot
        diff = diff_balances(
            previous,
            current,
            quotes,
            quote_currency=self.quote_currency,
            dust_threshold=self.dust_threshold,
        )
        report.unpriced_assets = list(diff.unpriced)
        if diff.unpriced:
            log.warning(f"No price this cycle for moved asset(s) {', '.join(diff.unpriced)}; skipped")

        value_before = portfolio_value(previous, quotes, quote_currency=self.quote_currency)
        if value_before <= 0:
            value_before = self.baseline.total_value

        for change in diff.changes:
            log.debug(f"Detected change for {change.asset}: {change.delta} @ {change.price}")
            event = self.ledger.apply(change, now=now, portfolio_value=value_before)
            if event is None:
                continue
            self._ledger_dirty = True
            if event.record is not None:
                self._unflushed.append(event.record)
            report.events.append(event)

        if self.track_price_extremes and self.ledger.mark_prices(quotes, self.quote_currency):
            self._ledger_dirty = True

        if self._ledger_dirty:
            report.persisted = self._persist_ledger()
        if not diff.changes:
            log.debug("No significant balance changes detected")

        self._persist_baseline(
            BaselineState(snapshot=self._next_baseline(previous, current, diff.unpriced), total_value=current_value)
        )
        self._record_valuation(current, current_value)
        self._dispatch(report)
        return report

    def _abort(self, report: CycleReport, error: str) -> CycleReport:
        log.warning(f"Cycle ({report.trigger}) aborted, ledger untouched: {error}")
        report.aborted = True
        report.error = error
        return report

    def _next_baseline(self, previous: BalanceSnapshot, current: BalanceSnapshot, unpriced: List[str]) -> BalanceSnapshot:
        if not self.hold_baseline_on_missing_price or not unpriced:
            return current
        quantities = dict(current.quantities)
        for asset in unpriced:
            prev_qty = previous.quantity(asset)
            if prev_qty > 0:
                quantities[asset] = prev_qty
            else:
                quantities.pop(asset, None)
        log.debug(f"Holding baseline for unpriced asset(s) {', '.join(unpriced)}")
        return BalanceSnapshot(as_of=current.as_of, quantities=quantities)

    # --- Persistence (failures logged, state stays in memory until the next good write) ---
    def _persist_ledger(self) -> bool:
        try:
            self.storage.save_ledger(self.ledger.snapshot(), self._unflushed)
        except sqlite3.Error as e:
            log.error(f"Failed to persist ledger ({len(self._unflushed)} close record(s) pending): {e}")
            return False
        self._unflushed = []
        self._ledger_dirty = False
        return True

    def _persist_baseline(self, baseline: BaselineState) -> None:
        self.baseline = baseline
        try:
            self.storage.save_baseline(baseline)
        except sqlite3.Error as e:
            log.error(f"Failed to persist baseline: {e}")

    def _record_valuation(self, snapshot: BalanceSnapshot, total_value: Decimal) -> None:
        try:
            self.storage.record_portfolio_value(
                timestamp=snapshot.as_of.timestamp(),
                total_value=total_value,
                cash_value=snapshot.quantity(self.quote_currency),
                holdings=dict(snapshot.quantities),
            )
        except sqlite3.Error as e:
            log.error(f"Failed to record portfolio value: {e}")

    def _maybe_prune(self, now: datetime) -> None:
        if not self.retention_days:
            return
        if self._last_prune is not None and now - self._last_prune < PRUNE_EVERY:
            return
        self._last_prune = now
        try:
            pruned = self.storage.prune_portfolio_history(retention_days=self.retention_days, now=now.timestamp())
        except sqlite3.Error as e:
            log.error(f"Failed to prune portfolio history: {e}")
            return
        if pruned:
            log.debug(f"Pruned {pruned} portfolio history rows older than {self.retention_days}d")

    def _dispatch(self, report: CycleReport) -> None:
        for event in report.events:
            try:
                self.notifier.notify(event)
            except Exception as e:
                log.exception(f"Notifier failed for {event.kind} {event.asset}: {e}")
