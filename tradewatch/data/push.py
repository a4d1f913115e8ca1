from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional

import ccxt
import ccxt.pro as ccxtpro

from tradewatch.core.config import ExchangeConfig
from tradewatch.core.logging import get_logger

log = get_logger("push")


class BalancePushListener:
    """Fires ``on_update`` whenever the exchange pushes an account balance update.

    Runs its own asyncio loop on a daemon thread. The callback is handed to the
    loop's executor without being awaited, so a slow reconciliation never holds
    up the websocket and a push that lands mid-cycle reaches the engine while
    its run-slot is taken (and is dropped there).
    """

    def __init__(
        self,
        cfg: ExchangeConfig,
        on_update: Callable[[], object],
        *,
        reconnect_delay_sec: float = 5.0,
    ) -> None:
        self.cfg = cfg
        self.on_update = on_update
        self.reconnect_delay_sec = reconnect_delay_sec
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._stop = threading.Event()

    def _build_client(self):
        ex_class = getattr(ccxtpro, self.cfg.exchange_id)
        ex = ex_class({
            "apiKey": self.cfg.api_key or "",
            "secret": self.cfg.api_secret or "",
            "password": self.cfg.password or "",
            "enableRateLimit": True,
            "options": {"defaultType": "spot"},
        })
        if self.cfg.sandbox:
            ex.set_sandbox_mode(True)
        return ex

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_thread, name="balance-push", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        loop, task = self._loop, self._task
        if loop is not None and task is not None and not loop.is_closed():
            loop.call_soon_threadsafe(task.cancel)
        if self._thread:
            self._thread.join(timeout=5.0)

    def _run_thread(self) -> None:  # pragma: no cover - background thread
        loop = asyncio.new_event_loop()
        self._loop = loop
        try:
            self._task = loop.create_task(self._watch())
            loop.run_until_complete(self._task)
        except asyncio.CancelledError:
            pass
        finally:
            loop.close()
            self._loop = None

    async def _watch(self) -> None:  # pragma: no cover - needs a live websocket
        loop = asyncio.get_running_loop()
        ex = self._build_client()
        log.info(f"Listening for balance pushes on {self.cfg.exchange_id}")
        try:
            while not self._stop.is_set():
                try:
                    await ex.watch_balance()
                except ccxt.AuthenticationError as e:
                    log.error(f"Balance push stream rejected credentials, push trigger disabled: {e}")
                    return
                except ccxt.BaseError as e:
                    log.warning(f"Balance push stream error: {e}; reconnecting in {self.reconnect_delay_sec:.0f}s")
                    await asyncio.sleep(self.reconnect_delay_sec)
                    continue
                log.debug("Balance push received")
                loop.run_in_executor(None, self.on_update)
        finally:
            await ex.close()
