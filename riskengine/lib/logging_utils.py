"""
Logging setup and structured trade/risk log lines.

Every line carries the record time in broker server time (UTC) with
millisecond precision, followed by any `extra` fields:

    2024-03-04 10:00:00.000 [INFO    ] riskengine.trading - ENTRY: LONG 2000u @ 1.10000 ... [label=...]

Example usage:
    from riskengine.lib.logging_utils import setup_logging, TradingLogger

    setup_logging(level="INFO", log_dir="./logs")
    TradingLogger().risk_event("DAILY_LIMIT", "no new trades today")
"""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from riskengine.lib.config import OutputConfig
from riskengine.lib.time_utils import get_utc_now


# Attributes every LogRecord carries; anything else came in through `extra`
_STANDARD_RECORD_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_COLOR_RESET = "\033[0m"


class TradingFormatter(logging.Formatter):
    """
    Formatter stamping records in UTC and appending structured extras.

    Args:
        use_colors: Color the line by level when writing to a terminal
        include_extras: Append `extra` fields as [key=value ...]
    """

    def __init__(self, use_colors: bool = False, include_extras: bool = True):
        super().__init__("%(asctime)s [%(levelname)-8s] %(name)s - %(message)s")
        self.use_colors = use_colors
        self.include_extras = include_extras

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return stamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)

        if self.include_extras:
            fields = [
                f"{key}={value}"
                for key, value in record.__dict__.items()
                if key not in _STANDARD_RECORD_FIELDS and not key.startswith("_")
            ]
            if fields:
                line = f"{line} [{' '.join(fields)}]"

        if self.use_colors and sys.stderr.isatty():
            return f"{_LEVEL_COLORS.get(record.levelno, '')}{line}{_COLOR_RESET}"
        return line


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    use_colors: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the root logger for the engine process.

    Replaces existing root handlers with a stderr handler and, when
    log_dir is given, a size-rotated file handler.

    Args:
        level: Log level name
        log_dir: Directory for log files (console only if None)
        log_file: File name (default: riskengine_YYYY-MM-DD.log)
        use_colors: Color console output
        max_bytes: Rotate the file after this many bytes
        backup_count: Rotated files to keep

    Returns:
        Root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(TradingFormatter(use_colors=use_colors))
    root.addHandler(console)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        name = log_file or f"riskengine_{get_utc_now():%Y-%m-%d}.log"
        file_handler = RotatingFileHandler(
            directory / name,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(TradingFormatter())
        root.addHandler(file_handler)

    for handler in root.handlers:
        handler.setLevel(log_level)

    return root


def setup_logging_from_config(output: OutputConfig, use_colors: bool = True) -> logging.Logger:
    """Configure logging from the `output` config section."""
    return setup_logging(level=output.log_level, log_dir=output.logs_dir, use_colors=use_colors)


class TradingLogger:
    """
    Structured log lines for orders, trades, position management and risk.

    Keyword arguments are attached to the record as `extra` fields.
    """

    def __init__(self, name: str = "riskengine.trading"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, text: str, **fields: Any) -> None:
        self._logger.log(level, text, extra=fields)

    def order(self, side: str, volume: float, label: str, **kwargs: Any) -> None:
        """Market order submission."""
        self._log(
            logging.INFO,
            f"ORDER: MARKET {side} {volume:.0f}u label={label}",
            side=side, volume=volume, label=label, **kwargs,
        )

    def trade_entry(
        self,
        direction: str,
        volume: float,
        entry_price: float,
        stop_price: float,
        target_price: float,
        **kwargs: Any,
    ) -> None:
        """Filled entry with its initial protection levels."""
        self._log(
            logging.INFO,
            f"ENTRY: {direction} {volume:.0f}u @ {entry_price:.5f} "
            f"stop={stop_price:.5f} target={target_price:.5f}",
            direction=direction, volume=volume, entry_price=entry_price,
            stop_price=stop_price, target_price=target_price, **kwargs,
        )

    def trade_exit(
        self,
        label: str,
        volume: float,
        pips: float,
        pnl: float,
        exit_reason: str,
        **kwargs: Any,
    ) -> None:
        """Broker-confirmed close with its result."""
        self._log(
            logging.INFO,
            f"EXIT: {label} {volume:.0f}u pips={pips:.1f} P&L={pnl:+.2f} reason={exit_reason}",
            label=label, volume=volume, pips=pips, pnl=pnl, exit_reason=exit_reason, **kwargs,
        )

    def position_event(self, event_type: str, details: str, **kwargs: Any) -> None:
        """Breakeven, partial take and other management actions."""
        self._log(logging.INFO, f"{event_type}: {details}", event_type=event_type, **kwargs)

    def risk_event(self, event_type: str, details: str, **kwargs: Any) -> None:
        """Risk gate breaches and daily limits, always at WARNING."""
        self._log(
            logging.WARNING,
            f"RISK: {event_type} - {details}",
            event_type=event_type, **kwargs,
        )
