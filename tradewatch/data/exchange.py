from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import ccxt
from pydantic import ValidationError

from tradewatch.core.config import ExchangeConfig
from tradewatch.core.logging import get_logger
from tradewatch.core.types import BalanceSnapshot, FetchResult, PriceQuote
from tradewatch.core.utils import safe_div, to_decimal, utcnow

log = get_logger("exchange")


class SnapshotSource(Protocol):
    def fetch_balances(self) -> FetchResult[BalanceSnapshot]:  # pragma: no cover - protocol
        ...

    def fetch_price_quotes(self) -> FetchResult[Dict[str, PriceQuote]]:  # pragma: no cover - protocol
        ...


def build_exchange(cfg: ExchangeConfig) -> ccxt.Exchange:
    ex_class = getattr(ccxt, cfg.exchange_id)
    ex = ex_class({
        "apiKey": cfg.api_key or "",
        "secret": cfg.api_secret or "",
        "password": cfg.password or "",
        "enableRateLimit": True,
        "timeout": int(cfg.timeout_ms),
        "options": {"defaultType": "spot"},
    })
    if cfg.sandbox:
        # Where supported, this toggles to testnet/demo endpoints
        ex.set_sandbox_mode(True)
    return ex


def parse_balance(payload: Dict[str, Any]) -> Dict[str, Decimal]:
    """ccxt fetch_balance() payload -> {asset: total quantity}, positive entries only."""
    totals = payload.get("total") or {}
    out: Dict[str, Decimal] = {}
    for currency, amount in totals.items():
        qty = to_decimal(amount)
        if qty > 0:
            out[str(currency).upper()] = qty
    return out


def parse_ticker(symbol: str, ticker: Dict[str, Any]) -> Optional[PriceQuote]:
    last = to_decimal(ticker.get("last"))
    if last <= 0:
        return None
    open_24h = to_decimal(ticker.get("open"))
    change = safe_div(last - open_24h, open_24h) if open_24h > 0 else Decimal("0")
    return PriceQuote(
        instrument=symbol,
        last_price=last,
        open_24h=open_24h,
        change_24h=change,
        volume_24h=to_decimal(ticker.get("quoteVolume")),
    )


class ExchangeSnapshotSource:
    """Reads account balances and spot tickers through ccxt.

    Every failure comes back as ``FetchResult.failure``; nothing raises into the
    reconciliation engine.
    """

    def __init__(self, cfg: ExchangeConfig, exchange: Optional[ccxt.Exchange] = None) -> None:
        self.cfg = cfg
        self.quote_currency = cfg.quote_currency.upper()
        self.ex = exchange if exchange is not None else build_exchange(cfg)
        self._markets_loaded = False

    def _ensure_markets(self) -> None:
        if not self._markets_loaded:
            self.ex.load_markets()
            self._markets_loaded = True
            log.info(f"Loaded {len(self.ex.markets or {})} markets from {self.cfg.exchange_id}")

    def fetch_balances(self) -> FetchResult[BalanceSnapshot]:
        try:
            payload = self.ex.fetch_balance()
        except ccxt.BaseError as e:
            return FetchResult.failure(f"fetch_balance failed on {self.cfg.exchange_id}: {e}")
        if not isinstance(payload, dict):
            return FetchResult.failure(f"unexpected balance payload type {type(payload).__name__}")
        try:
            snapshot = BalanceSnapshot(as_of=utcnow(), quantities=parse_balance(payload))
        except ValidationError as e:
            return FetchResult.failure(f"invalid balance payload: {e}")
        return FetchResult.success(snapshot)

    def fetch_price_quotes(self) -> FetchResult[Dict[str, PriceQuote]]:
        try:
            self._ensure_markets()
            tickers = self.ex.fetch_tickers()
        except ccxt.BaseError as e:
            return FetchResult.failure(f"fetch_tickers failed on {self.cfg.exchange_id}: {e}")
        suffix = f"/{self.quote_currency}"
        markets = self.ex.markets or {}
        quotes: Dict[str, PriceQuote] = {}
        for symbol, ticker in (tickers or {}).items():
            if not str(symbol).endswith(suffix) or not isinstance(ticker, dict):
                continue
            try:
                quote = parse_ticker(str(symbol), ticker)
            except ValidationError as e:
                log.debug(f"Skipping malformed ticker {symbol}: {e}")
                continue
            if quote is not None:
                # balances are keyed by the raw currency code, so use the market's base as-is
                base = (markets.get(symbol) or {}).get("base") or str(symbol)[: -len(suffix)]
                quotes[f"{str(base).upper()}{suffix}"] = quote
        if not quotes:
            return FetchResult.failure(f"no {self.quote_currency} spot tickers returned by {self.cfg.exchange_id}")
        return FetchResult.success(quotes)
