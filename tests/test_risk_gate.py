"""
Unit tests for the session Risk Gate.

Tests cover:
- init / reset contract
- Session loss limit boundary (-1% of start equity)
- Drawdown limit boundary (-2% from peak)
- Peak ratchet and single breach per session
- Breach listeners
- State persistence and restore
"""

import json
import threading
import time
from datetime import datetime

import pytest

from riskengine.lib.config import RiskGateConfig
from riskengine.lib.constants import UTC_TIMEZONE
from riskengine.risk.risk_gate import AccountSnapshot, RiskBreachEvent, RiskGate


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def gate():
    """Gate with default limits, started at 10000."""
    g = RiskGate(RiskGateConfig())
    g.init(AccountSnapshot(balance=10000.0, equity=10000.0))
    return g


@pytest.fixture
def drawdown_gate():
    """Gate whose loss limit is loose enough to isolate the drawdown check."""
    g = RiskGate(RiskGateConfig(daily_loss_limit_fraction=-0.5))
    g.init(AccountSnapshot(balance=10000.0, equity=10000.0))
    return g


def snap(balance, equity=None):
    return AccountSnapshot(balance=balance, equity=balance if equity is None else equity)


# =============================================================================
# Init / Reset
# =============================================================================

class TestInit:
    """Tests for gate initialization."""

    def test_starts_closed(self):
        """A gate that was never initialized rejects trades."""
        g = RiskGate()
        assert not g.is_trading_allowed
        assert not g.pre_trade_check(0)

    def test_init_sets_start_and_peak_from_balance(self):
        """Start equity and peak both come from the balance."""
        g = RiskGate()
        g.init(AccountSnapshot(balance=10000.0, equity=10250.0))

        assert g.state.session_start_equity == 10000.0
        assert g.state.equity_peak == 10000.0
        assert g.is_trading_allowed

    def test_reinit_is_full_reset(self, gate):
        """Calling init again clears a breach."""
        gate.on_equity_update(snap(9800.0))
        assert not gate.is_trading_allowed

        gate.init(snap(9800.0))

        assert gate.is_trading_allowed
        assert gate.state.breach_reason is None
        assert gate.state.equity_peak == 9800.0

    def test_reset_for_new_session(self, gate):
        """New session reset re-enables trading from the new balance."""
        gate.on_equity_update(snap(9800.0))

        gate.reset_for_new_session(snap(9800.0))

        assert gate.is_trading_allowed
        assert gate.state.session_start_equity == 9800.0


# =============================================================================
# Pre-trade check
# =============================================================================

class TestPreTradeCheck:
    """Tests for the pre-trade check."""

    def test_allows_below_concurrency_limit(self, gate):
        assert gate.pre_trade_check(0)
        assert gate.pre_trade_check(2)

    def test_rejects_at_concurrency_limit(self, gate):
        assert not gate.pre_trade_check(3)
        assert not gate.pre_trade_check(4)

    def test_has_no_side_effects(self, gate):
        before = gate.get_metrics()
        for _ in range(5):
            gate.pre_trade_check(1)
        assert gate.get_metrics() == before

    def test_rejects_after_breach(self, gate):
        gate.on_equity_update(snap(9899.0))
        assert not gate.pre_trade_check(0)


# =============================================================================
# Session loss limit
# =============================================================================

class TestSessionLossLimit:
    """Tests for the -1% session loss limit."""

    def test_loss_of_99_does_not_breach(self, gate):
        """Realized + unrealized of -99 stays above -100."""
        breached = gate.on_equity_update(snap(9950.0, equity=9901.0))

        assert not breached
        assert gate.is_trading_allowed

    def test_loss_of_101_breaches(self, gate):
        """Realized + unrealized of -101 crosses -100."""
        breached = gate.on_equity_update(snap(9950.0, equity=9899.0))

        assert breached
        assert not gate.is_trading_allowed
        assert "loss limit" in gate.state.breach_reason

    def test_loss_exactly_at_limit_breaches(self, gate):
        assert gate.on_equity_update(snap(9900.0))

    def test_unrealized_loss_counts(self, gate):
        """Open losses alone can trip the limit."""
        assert gate.on_equity_update(snap(10000.0, equity=9890.0))


# =============================================================================
# Drawdown limit
# =============================================================================

class TestDrawdownLimit:
    """Tests for the -2% drawdown from peak."""

    def test_drawdown_below_limit_does_not_breach(self, drawdown_gate):
        """9801 is -1.99% from 10000."""
        assert not drawdown_gate.on_equity_update(snap(10000.0, equity=9801.0))
        assert drawdown_gate.is_trading_allowed

    def test_drawdown_beyond_limit_breaches(self, drawdown_gate):
        """9799 is -2.01% from 10000."""
        assert drawdown_gate.on_equity_update(snap(10000.0, equity=9799.0))
        assert "Drawdown" in drawdown_gate.state.breach_reason

    def test_drawdown_measured_from_new_peak(self, drawdown_gate):
        """After a run-up the drawdown is measured from the higher peak."""
        drawdown_gate.on_equity_update(snap(10000.0, equity=11000.0))

        # 10780 is exactly -2% from 11000
        assert drawdown_gate.on_equity_update(snap(10000.0, equity=10779.0))

    def test_drawdown_uses_peak_before_update(self, drawdown_gate):
        """A new high on this update cannot mask the comparison."""
        assert not drawdown_gate.on_equity_update(snap(10000.0, equity=10500.0))
        assert drawdown_gate.state.equity_peak == 10500.0

    def test_non_positive_peak_skips_drawdown(self):
        """A zero-balance session never divides by zero."""
        g = RiskGate(RiskGateConfig(daily_loss_limit_fraction=-0.5))
        g.init(snap(0.0))

        assert not g.on_equity_update(snap(100.0))
        assert g.state.equity_peak == 100.0

    def test_negative_equity_skips_drawdown(self):
        """Negative equity is reported by the loss check, not drawdown."""
        g = RiskGate(RiskGateConfig(daily_loss_limit_fraction=-2.0))
        g.init(snap(10000.0))

        assert not g.on_equity_update(snap(10000.0, equity=-50.0))


# =============================================================================
# Invariants
# =============================================================================

class TestInvariants:
    """Peak monotonicity and single breach per session."""

    def test_peak_never_decreases(self, drawdown_gate):
        equities = [10100.0, 10050.0, 10300.0, 9900.0, 10200.0]
        peaks = []
        for equity in equities:
            drawdown_gate.on_equity_update(snap(10000.0, equity=equity))
            peaks.append(drawdown_gate.state.equity_peak)

        assert peaks == sorted(peaks)
        assert peaks[-1] == 10300.0

    def test_peak_at_least_start_equity(self, gate):
        gate.on_equity_update(snap(10000.0, equity=9950.0))
        assert gate.state.equity_peak >= gate.state.session_start_equity

    def test_single_breach_per_session(self, gate):
        """Only the first crossing emits a breach."""
        events = []
        gate.add_breach_listener(events.append)

        assert gate.on_equity_update(snap(9800.0))
        assert not gate.on_equity_update(snap(9700.0))
        assert not gate.on_equity_update(snap(9600.0))

        assert len(events) == 1

    def test_breach_is_durable(self, gate):
        """Recovering equity does not re-enable trading."""
        gate.on_equity_update(snap(9800.0))
        gate.on_equity_update(snap(10500.0))

        assert not gate.is_trading_allowed


# =============================================================================
# Listeners
# =============================================================================

class TestBreachListeners:
    """Tests for breach event delivery."""

    def test_listener_receives_event(self, gate):
        events = []
        gate.add_breach_listener(events.append)
        ts = datetime(2024, 3, 4, 12, 0, tzinfo=UTC_TIMEZONE)

        gate.on_equity_update(snap(9800.0), timestamp=ts)

        assert len(events) == 1
        assert isinstance(events[0], RiskBreachEvent)
        assert events[0].timestamp == ts
        assert events[0].reason == gate.state.breach_reason

    def test_failing_listener_does_not_block_others(self, gate):
        def broken(event):
            raise RuntimeError("supervisor down")

        events = []
        gate.add_breach_listener(broken)
        gate.add_breach_listener(events.append)

        assert gate.on_equity_update(snap(9800.0))
        assert len(events) == 1
        assert not gate.is_trading_allowed


# =============================================================================
# Persistence
# =============================================================================

class TestPersistence:
    """Tests for state persistence and restore."""

    def test_breach_persists_state(self, tmp_path):
        state_file = tmp_path / "RiskState.json"
        g = RiskGate(RiskGateConfig(), state_file=state_file)
        g.init(snap(10000.0))

        g.on_equity_update(snap(9800.0))

        data = json.loads(state_file.read_text())
        assert data["trading_allowed"] is False
        assert data["session_start_equity"] == 10000.0
        assert data["daily_loss_limit_fraction"] == -0.01
        assert data["max_concurrent_positions"] == 3
        assert data["breach_reason"]

    def test_state_file_from_config(self, tmp_path):
        state_file = tmp_path / "state" / "gate.json"
        g = RiskGate(RiskGateConfig(state_file=str(state_file)))
        g.init(snap(10000.0))

        g.persist()

        assert state_file.exists()

    def test_restore_round_trip(self, tmp_path):
        state_file = tmp_path / "RiskState.json"
        g = RiskGate(RiskGateConfig(), state_file=state_file)
        g.init(snap(10000.0))
        g.on_equity_update(snap(9800.0))

        restored = RiskGate(RiskGateConfig(), state_file=state_file)
        assert restored.restore()

        assert not restored.is_trading_allowed
        assert restored.state.session_start_equity == 10000.0
        assert restored.state.breach_reason == g.state.breach_reason
        assert restored.state.breach_time == g.state.breach_time

    def test_restore_without_file(self, tmp_path):
        g = RiskGate(RiskGateConfig(), state_file=tmp_path / "missing.json")
        assert not g.restore()

    def test_restore_corrupt_file(self, tmp_path):
        state_file = tmp_path / "RiskState.json"
        state_file.write_text("{not json")
        g = RiskGate(RiskGateConfig(), state_file=state_file)

        assert not g.restore()
        assert not g.is_trading_allowed

    def test_default_config_persists_on_breach(self, isolated_cwd):
        g = RiskGate(RiskGateConfig())
        g.init(snap(10000.0))

        assert g.on_equity_update(snap(10000.0, equity=9800.0))

        data = json.loads((isolated_cwd / "RiskState.json").read_text())
        assert data["trading_allowed"] is False
        assert data["breach_reason"]

    def test_persistence_disabled(self, isolated_cwd):
        g = RiskGate(RiskGateConfig(state_file=None))
        g.init(snap(10000.0))

        assert g.on_equity_update(snap(9800.0))

        assert list(isolated_cwd.iterdir()) == []


# =============================================================================
# Thread safety
# =============================================================================

class TestThreadSafety:
    """Equity updates and pre-trade checks from several threads."""

    def test_concurrent_updates_breach_once(self, gate):
        events = []
        errors = []
        gate.add_breach_listener(events.append)

        def falling_equity_thread(offset):
            try:
                for step in range(20):
                    gate.on_equity_update(snap(10000.0, equity=10000.0 - offset - step * 10))
                    time.sleep(0.001)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=falling_equity_thread, args=(i * 5,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 0
        assert len(events) == 1
        assert not gate.is_trading_allowed

    def test_peak_ratchets_under_contention(self, drawdown_gate):
        def rising_equity_thread(start):
            for step in range(50):
                drawdown_gate.on_equity_update(snap(10000.0, equity=start + step))

        threads = [
            threading.Thread(target=rising_equity_thread, args=(10000.0 + i * 100,))
            for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert drawdown_gate.state.equity_peak == 10349.0
        assert drawdown_gate.is_trading_allowed

    def test_checks_during_updates(self, gate):
        results = []
        errors = []

        def update_thread():
            try:
                for step in range(100):
                    gate.on_equity_update(snap(10000.0, equity=10000.0 + step % 7))
            except Exception as e:
                errors.append(e)

        def check_thread():
            for _ in range(100):
                results.append(gate.pre_trade_check(0))

        threads = [threading.Thread(target=update_thread) for _ in range(2)]
        threads += [threading.Thread(target=check_thread) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 0
        assert len(results) == 300
        assert all(results)
