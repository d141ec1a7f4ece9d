"""
Unit tests for entry filters and the default trend signal.
"""

import pytest

from riskengine.lib.config import SessionConfig, SignalConfig
from riskengine.trading.events import Direction
from riskengine.trading.signal_generator import EntryFilter, TrendSignal

from conftest import utc


@pytest.fixture
def entry_filter():
    return EntryFilter(SessionConfig(), SignalConfig())


@pytest.fixture
def signal():
    return TrendSignal(SignalConfig())


class TestEntryFilter:
    """Tests for EntryFilter.check()."""

    def test_passes_default_setup(self, entry_filter, make_update):
        assert entry_filter.check(make_update()).passed

    def test_session_is_half_open(self, entry_filter, make_update):
        assert entry_filter.check(make_update(timestamp=utc(hour=7))).passed
        assert entry_filter.check(make_update(timestamp=utc(hour=19, minute=59))).passed
        assert not entry_filter.check(make_update(timestamp=utc(hour=20))).passed

    def test_spread_limit(self, entry_filter, make_update):
        assert entry_filter.check(make_update(ask=1.1003)).passed

        result = entry_filter.check(make_update(ask=1.1004))
        assert not result.passed
        assert "spread" in result.reason

    def test_spread_filter_disabled(self, make_update):
        entry_filter = EntryFilter(SessionConfig(max_spread_pips=0.0), SignalConfig())
        assert entry_filter.check(make_update(ask=1.1050)).passed

    def test_volatility_ratio(self, entry_filter, make_update):
        result = entry_filter.check(make_update(stddev=0.0010))
        assert not result.passed
        assert "volatility ratio" in result.reason

    def test_missing_volatility_indicators(self, entry_filter, make_update):
        assert not entry_filter.check(make_update(stddev=None)).passed


class TestTrendSignal:
    """Tests for TrendSignal."""

    def test_long(self, signal, make_update):
        assert signal(make_update()) == Direction.LONG

    def test_short(self, signal, make_update):
        update = make_update(close=1.0950, ema_fast=1.0990, ema_slow=1.1000, rsi=45.0)
        assert signal(update) == Direction.SHORT

    def test_oversold_short_rejected(self, signal, make_update):
        update = make_update(close=1.0950, ema_fast=1.0990, ema_slow=1.1000, rsi=28.0)
        assert signal(update) is None

    def test_adx_required(self, signal, make_update):
        assert signal(make_update(adx=24.9)) is None
        assert signal(make_update(adx=25.0)) == Direction.LONG

    def test_no_trend(self, signal, make_update):
        assert signal(make_update(close=1.0970)) is None

    def test_indicators_not_ready(self, signal, make_update):
        assert signal(make_update(ema_slow=None)) is None
