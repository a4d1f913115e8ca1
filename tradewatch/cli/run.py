from __future__ import annotations

import argparse
import signal
import threading
from typing import Callable, Sequence

from tradewatch.core.config import AppConfig
from tradewatch.core.env import load_local_environment
from tradewatch.core.logging import get_logger, setup_logging
from tradewatch.core.types import TradeEvent
from tradewatch.data.exchange import ExchangeSnapshotSource
from tradewatch.data.push import BalancePushListener
from tradewatch.monitor.engine import ReconciliationEngine
from tradewatch.monitor.notifier import CallbackNotifier, LogNotifier
from tradewatch.monitor.storage import StorageManager


def build_engine(cfg: AppConfig, callbacks: Sequence[Callable[[TradeEvent], None]] = ()) -> ReconciliationEngine:
    """Wire the engine from config. Extra ``callbacks`` receive every event next to the log line."""
    notifier = CallbackNotifier(LogNotifier().notify, *callbacks) if callbacks else LogNotifier()
    return ReconciliationEngine(
        source=ExchangeSnapshotSource(cfg.exchange),
        storage=StorageManager(cfg.storage.path),
        notifier=notifier,
        quote_currency=cfg.exchange.quote_currency,
        dust_threshold=cfg.engine.dust_threshold,
        interval_sec=cfg.engine.interval_sec,
        hold_baseline_on_missing_price=cfg.engine.hold_baseline_on_missing_price,
        track_price_extremes=cfg.engine.track_price_extremes,
        retention_days=cfg.storage.retention_days,
    )


def main() -> None:  # pragma: no cover - process entry point
    parser = argparse.ArgumentParser(description="Tradewatch balance reconciliation service")
    parser.add_argument("--config", type=str, required=True, help="Path to YAML config")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--no-push", action="store_true", help="Disable the balance push trigger")
    args = parser.parse_args()

    load_local_environment()
    cfg = AppConfig.load(args.config)
    setup_logging(log_dir=cfg.logging.log_dir, level=cfg.logging.level)
    log = get_logger("run")

    log.info("=" * 60)
    log.info("Tradewatch starting...")
    log.info(f"Config: {args.config}")
    log.info(f"Exchange: {cfg.exchange.exchange_id} (quote {cfg.exchange.quote_currency}, sandbox={cfg.exchange.sandbox})")
    log.info(f"Dust threshold: {cfg.engine.dust_threshold} | interval: {cfg.engine.interval_sec:.0f}s")
    log.info(f"Ledger DB: {cfg.storage.path}")
    if not cfg.exchange.api_key:
        log.warning("No exchange API key configured; balance fetches will fail")

    engine = build_engine(cfg)
    if args.once:
        report = engine.run_cycle("manual")
        if report is not None:
            log.info(f"Cycle done: {len(report.events)} event(s), aborted={report.aborted}, cold_start={report.cold_start}")
        engine.close()
        return

    push = None
    if cfg.engine.push_enabled and not args.no_push:
        push = BalancePushListener(cfg.exchange, on_update=lambda: engine.run_cycle("push"))

    shutdown = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        log.info(f"Signal {signum} received, shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    engine.start()
    if push is not None:
        push.start()
    log.info("Tradewatch is running")
    try:
        while not shutdown.wait(1.0):
            pass
    finally:
        if push is not None:
            push.stop()
        # waits for a push-triggered cycle still running on the listener's executor
        engine.close()
        log.info(f"Stopped after {engine.cycles_run} cycle(s), {engine.cycles_dropped} trigger(s) dropped")


if __name__ == "__main__":
    main()
