"""
Tests for logging utilities.
"""

import logging

import pytest

from riskengine.lib.config import OutputConfig
from riskengine.lib.logging_utils import (
    TradingFormatter,
    TradingLogger,
    setup_logging,
    setup_logging_from_config,
)


@pytest.fixture
def restore_root_logger():
    """Put back the root handlers replaced by setup_logging()."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("riskengine.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestTradingFormatter:
    """Tests for TradingFormatter."""

    def test_includes_level_name_and_message(self):
        text = TradingFormatter().format(make_record())

        assert "[INFO    ]" in text
        assert "riskengine.test - hello" in text

    def test_appends_extras(self):
        text = TradingFormatter().format(make_record(label="HybridTrend_EURUSD", volume=2000))

        assert text.endswith("[label=HybridTrend_EURUSD volume=2000]")

    def test_extras_disabled(self):
        text = TradingFormatter(include_extras=False).format(make_record(label="X"))
        assert "label=X" not in text


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_writes_rotating_file(self, tmp_path, restore_root_logger):
        setup_logging(level="DEBUG", log_dir=str(tmp_path), log_file="engine.log", use_colors=False)

        logging.getLogger("riskengine.test").info("engine started")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "engine started" in (tmp_path / "engine.log").read_text()

    def test_level_applied(self, restore_root_logger):
        root = setup_logging(level="WARNING", use_colors=False)
        assert root.level == logging.WARNING

    def test_from_output_config(self, tmp_path, restore_root_logger):
        output = OutputConfig(logs_dir=str(tmp_path / "logs"), log_level="ERROR")

        root = setup_logging_from_config(output, use_colors=False)

        assert root.level == logging.ERROR
        assert len(root.handlers) == 2
        assert list((tmp_path / "logs").glob("riskengine_*.log"))


class TestTradingLogger:
    """Tests for TradingLogger structured methods."""

    def test_trade_entry(self, caplog):
        with caplog.at_level(logging.INFO):
            TradingLogger().trade_entry("LONG", 2000.0, 1.1, 1.098, 1.104)

        assert "ENTRY: LONG 2000u @ 1.10000 stop=1.09800 target=1.10400" in caplog.text
        assert caplog.records[-1].entry_price == 1.1

    def test_trade_exit_sign(self, caplog):
        with caplog.at_level(logging.INFO):
            TradingLogger().trade_exit("HybridTrend_EURUSD", 2000.0, -20.0, -40.0, "stop_loss")

        assert "P&L=-40.00" in caplog.text

    def test_risk_event_is_warning(self, caplog):
        with caplog.at_level(logging.INFO):
            TradingLogger().risk_event("DAILY_LIMIT", "no new trades")

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].event_type == "DAILY_LIMIT"
