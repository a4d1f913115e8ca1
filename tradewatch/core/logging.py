from __future__ import annotations

import os
from pathlib import Path

from loguru import logger as _logger


def setup_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    # Allow env override for log level (e.g., DEBUG to see per-cycle details)
    level = str(os.getenv("TRADEWATCH_LOG_LEVEL", level)).upper()

    _logger.remove()
    _logger.configure(extra={"component": "-"})
    # Console sink can be disabled when running under a process supervisor
    disable_console = str(os.getenv("TRADEWATCH_DISABLE_CONSOLE_LOG", "0")).lower() in {"1", "true", "yes"}
    if not disable_console:
        _logger.add(
            sink=lambda msg: print(msg, end=""),
            level=level,
            colorize=True,
            backtrace=False,
            diagnose=False,
        )
    _logger.add(
        Path(log_dir) / "tradewatch.log",
        rotation="10 MB",
        retention=10,
        level=level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[component]} | {message}",
    )


def get_logger(component: str | None = None) -> _logger.__class__:
    if component:
        return _logger.bind(component=component)
    return _logger
