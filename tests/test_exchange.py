from __future__ import annotations

import ccxt

from conftest import D
from tradewatch.core.config import ExchangeConfig
from tradewatch.data.exchange import ExchangeSnapshotSource, parse_balance, parse_ticker
from tradewatch.ledger.differ import quote_price


class FakeExchange:
    def __init__(self, balance=None, tickers=None, error=None, markets=None) -> None:
        self.balance = balance or {}
        self.tickers = tickers or {}
        self.error = error
        self.markets = markets or {}
        self.load_calls = 0

    def load_markets(self):
        self.load_calls += 1
        return self.markets

    def fetch_balance(self):
        if self.error:
            raise self.error
        return self.balance

    def fetch_tickers(self):
        if self.error:
            raise self.error
        return self.tickers


def _source(**kw) -> ExchangeSnapshotSource:
    return ExchangeSnapshotSource(ExchangeConfig(api_key="", api_secret="", password=""), exchange=FakeExchange(**kw))


def test_parse_balance_keeps_positive_totals() -> None:
    payload = {"total": {"btc": 0.1, "USDT": "250.5", "ETH": 0, "XRP": None}, "free": {"btc": 0.05}}
    assert parse_balance(payload) == {"BTC": D("0.1"), "USDT": D("250.5")}
    assert parse_balance({}) == {}


def test_parse_ticker_fields() -> None:
    q = parse_ticker("BTC/USDT", {"last": 66000, "open": 60000, "quoteVolume": 123.4})
    assert q.last_price == D(66000)
    assert q.change_24h == D("0.1")
    assert q.volume_24h == D("123.4")
    assert parse_ticker("BTC/USDT", {"last": None}) is None


def test_fetch_balances_success() -> None:
    result = _source(balance={"total": {"BTC": 0.5}}).fetch_balances()
    assert result.ok
    assert result.value.quantities == {"BTC": D("0.5")}


def test_network_error_becomes_failure() -> None:
    source = _source(error=ccxt.NetworkError("timeout"))
    balances = source.fetch_balances()
    prices = source.fetch_price_quotes()
    assert not balances.ok and "timeout" in balances.error
    assert not prices.ok


def test_price_quotes_keep_quote_market_only() -> None:
    source = _source(
        tickers={
            "BTC/USDT": {"last": 60000},
            "ETH/BTC": {"last": 0.05},
            "SOL/USDT": {"last": 0},
            "DOGE/USDT:USDT": {"last": 0.1},
        }
    )
    result = source.fetch_price_quotes()
    assert result.ok
    assert set(result.value) == {"BTC/USDT"}
    source.fetch_price_quotes()
    assert source.ex.load_calls == 1


def test_empty_tickers_is_a_failure() -> None:
    assert not _source(tickers={}).fetch_price_quotes().ok


def test_quotes_keyed_like_balances_for_unusual_codes() -> None:
    source = _source(
        balance={"total": {"BTC-M": 2}},
        tickers={"BTC-M/USDT": {"last": 3}, "ETH/USDT": {"last": 3000}},
        markets={"BTC-M/USDT": {"base": "BTC-M", "quote": "USDT"}},
    )
    balances = source.fetch_balances().value
    quotes = source.fetch_price_quotes().value
    assert set(balances.quantities) == {"BTC-M"}
    assert set(quotes) == {"BTC-M/USDT", "ETH/USDT"}
    assert quote_price(quotes, "BTC-M", "USDT") == D(3)
