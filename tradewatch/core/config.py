from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, PositiveFloat, PositiveInt


class ExchangeConfig(BaseModel):
    exchange_id: str = "okx"  # any ccxt id exposing fetch_balance/fetch_tickers
    quote_currency: str = "USDT"  # settlement currency, never treated as a trade
    sandbox: bool = False
    # Credentials must come from env, never from the YAML file.
    api_key: str = Field(default_factory=lambda: os.getenv("OKX_API_KEY", ""))
    api_secret: str = Field(default_factory=lambda: os.getenv("OKX_API_SECRET_KEY", ""))
    password: str = Field(default_factory=lambda: os.getenv("OKX_API_PASSPHRASE", ""))
    timeout_ms: PositiveInt = 10000


class EngineConfig(BaseModel):
    dust_threshold_notional: PositiveFloat = 1.0  # in quote currency units
    cycle_interval_ms: PositiveInt = 60000
    push_enabled: bool = True
    # False: an unpriced asset's quantity move is absorbed into the new baseline.
    # True: its previous quantity is kept until a price shows up.
    hold_baseline_on_missing_price: bool = False
    track_price_extremes: bool = True

    @property
    def dust_threshold(self) -> Decimal:
        return Decimal(str(self.dust_threshold_notional))

    @property
    def interval_sec(self) -> float:
        return self.cycle_interval_ms / 1000.0


class StorageConfig(BaseModel):
    path: str = "~/.tradewatch/ledger.db"
    retention_days: PositiveInt = 30


class LoggingConfig(BaseModel):
    log_dir: str = "logs"
    level: str = "INFO"


class AppConfig(BaseModel):
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(path: str | Path) -> "AppConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return AppConfig(**(data or {}))
