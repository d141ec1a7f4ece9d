"""
Unit tests for the Daily Risk Counters.

Tests cover:
- Single reset per calendar day
- Trade and loss budgets (including disabled budgets)
- Stop-out exclusion from realized PnL
- Daily limit latch
"""

from datetime import date

import pytest

from riskengine.risk.daily_counters import DailyRiskCounters


@pytest.fixture
def counters():
    c = DailyRiskCounters()
    c.rollover_if_new_day(date(2024, 3, 4))
    return c


class TestRollover:
    """Tests for calendar-day rollover."""

    def test_first_rollover_starts_day(self):
        c = DailyRiskCounters()
        assert c.rollover_if_new_day(date(2024, 3, 4))
        assert c.trading_day == date(2024, 3, 4)

    def test_same_day_is_idempotent(self, counters):
        counters.record_trade_opened()
        counters.record_position_closed(-25.0, close_was_stop_out=False)

        for _ in range(3):
            assert not counters.rollover_if_new_day(date(2024, 3, 4))

        assert counters.trades_executed_today == 1
        assert counters.realized_pnl_today == -25.0

    def test_new_day_resets_exactly_once(self, counters):
        counters.record_trade_opened()
        counters.record_position_closed(-200.0, close_was_stop_out=False)
        counters.mark_limit_reached("daily max loss")

        assert counters.rollover_if_new_day(date(2024, 3, 5))
        assert not counters.rollover_if_new_day(date(2024, 3, 5))

        assert counters.trades_executed_today == 0
        assert counters.realized_pnl_today == 0.0
        assert not counters.daily_limit_reached


class TestBudgets:
    """Tests for trade count and realized loss budgets."""

    def test_trade_limit(self, counters):
        for _ in range(2):
            counters.record_trade_opened()
        assert not counters.trade_limit_hit(3)

        counters.record_trade_opened()
        assert counters.trade_limit_hit(3)

    def test_trade_limit_disabled(self, counters):
        for _ in range(10):
            counters.record_trade_opened()
        assert not counters.trade_limit_hit(0)

    def test_loss_limit_boundary(self, counters):
        """1.5% of 10000 is 150."""
        counters.record_position_closed(-149.0, close_was_stop_out=False)
        assert not counters.loss_limit_hit(10000.0, 0.015)

        counters.record_position_closed(-1.0, close_was_stop_out=False)
        assert counters.loss_limit_hit(10000.0, 0.015)

    def test_loss_limit_disabled(self, counters):
        counters.record_position_closed(-5000.0, close_was_stop_out=False)
        assert not counters.loss_limit_hit(10000.0, 0.0)

    def test_budget_exceeded_by_either_limit(self, counters):
        assert not counters.trading_budget_exceeded(10000.0, 0.015, 3)

        for _ in range(3):
            counters.record_trade_opened()
        assert counters.trading_budget_exceeded(10000.0, 0.015, 3)
        assert not counters.trading_budget_exceeded(10000.0, 0.015, 0)

    def test_profits_offset_losses(self, counters):
        counters.record_position_closed(-120.0, close_was_stop_out=False)
        counters.record_position_closed(80.0, close_was_stop_out=False)

        assert counters.realized_pnl_today == pytest.approx(-40.0)
        assert not counters.loss_limit_hit(10000.0, 0.015)


class TestStopOutExclusion:
    """Stop-out closes never count against the daily loss budget."""

    def test_stop_out_not_recorded(self, counters):
        counters.record_position_closed(-500.0, close_was_stop_out=True)

        assert counters.realized_pnl_today == 0.0
        assert not counters.loss_limit_hit(10000.0, 0.015)

    def test_regular_loss_recorded(self, counters):
        counters.record_position_closed(-500.0, close_was_stop_out=False)
        assert counters.realized_pnl_today == -500.0


class TestLimitLatch:
    """Tests for the daily limit flag."""

    def test_mark_limit_reached_once(self, counters):
        assert counters.mark_limit_reached("daily max loss")
        assert not counters.mark_limit_reached("daily max loss")
        assert counters.daily_limit_reached
        assert counters.snapshot().limit_reason == "daily max loss"

    def test_snapshot_is_a_copy(self, counters):
        snapshot = counters.snapshot()
        counters.record_trade_opened()

        assert snapshot.trades_executed_today == 0
        assert counters.trades_executed_today == 1
