"""
Pytest fixtures for risk engine tests.

This module provides:
- FakeExecutionPort: scripted in-memory broker recording every call
- Symbol specification fixtures
- Market update factory with sensible defaults
"""

from datetime import datetime
from typing import Dict, List, Optional

import pytest

from riskengine.lib.config import EngineConfig
from riskengine.lib.constants import SymbolSpec, UTC_TIMEZONE
from riskengine.risk.daily_counters import DailyRiskCounters
from riskengine.risk.risk_gate import AccountSnapshot
from riskengine.trading.events import Direction, MarketUpdate
from riskengine.trading.execution import ExecutionPort, ExecutionResult, OrderResult


class FakeExecutionPort(ExecutionPort):
    """
    In-memory broker for tests.

    Every call is appended to `calls` as (operation, args...). Failures are
    injected per operation through `fail_next` (a count of calls to fail)
    or `raise_on` (operations that raise).
    """

    def __init__(self, fill_price: float = 1.1000):
        self.fill_price = fill_price
        self.calls: List[tuple] = []
        self.fail_next: Dict[str, int] = {}
        self.raise_on: set = set()
        self._next_id = 1

    def _should_fail(self, operation: str) -> bool:
        if operation in self.raise_on:
            raise RuntimeError(f"{operation} connection lost")
        remaining = self.fail_next.get(operation, 0)
        if remaining > 0:
            self.fail_next[operation] = remaining - 1
            return True
        return False

    def calls_of(self, operation: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == operation]

    def place_market_order(self, direction: Direction, volume: float, label: str) -> OrderResult:
        self.calls.append(("place_market_order", direction, volume, label))
        if self._should_fail("place_market_order"):
            return OrderResult.failed("not enough money")
        position_id = f"P{self._next_id}"
        self._next_id += 1
        return OrderResult.filled(position_id, self.fill_price, volume)

    def modify_stop_loss(self, position_id: str, price: float) -> ExecutionResult:
        self.calls.append(("modify_stop_loss", position_id, price))
        if self._should_fail("modify_stop_loss"):
            return ExecutionResult.failed("invalid stop")
        return ExecutionResult.ok()

    def modify_take_profit(self, position_id: str, price: float) -> ExecutionResult:
        self.calls.append(("modify_take_profit", position_id, price))
        if self._should_fail("modify_take_profit"):
            return ExecutionResult.failed("invalid target")
        return ExecutionResult.ok()

    def modify_volume(self, position_id: str, new_volume: float) -> ExecutionResult:
        self.calls.append(("modify_volume", position_id, new_volume))
        if self._should_fail("modify_volume"):
            return ExecutionResult.failed("market closed")
        return ExecutionResult.ok()

    def close_position(self, position_id: str) -> ExecutionResult:
        self.calls.append(("close_position", position_id))
        if self._should_fail("close_position"):
            return ExecutionResult.failed("trade context busy")
        return ExecutionResult.ok()


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run each test in its own directory so default state files stay local."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def broker():
    """Scripted broker filling at 1.1000."""
    return FakeExecutionPort()


@pytest.fixture
def eurusd():
    """
    EURUSD with $1 per pip per 1000 units and a 100 unit step.

    Fine quantization keeps the partial take-profit example exact.
    """
    return SymbolSpec(
        name="EURUSD",
        pip_size=0.0001,
        pip_value_per_unit=0.001,
        min_volume=100.0,
        max_volume=10_000_000.0,
        volume_step=100.0,
    )


@pytest.fixture
def counters():
    """Fresh daily counters."""
    return DailyRiskCounters()


@pytest.fixture
def engine_config():
    """
    Engine config sized for the reference trade.

    equity 10000 * 0.004 / (20 pips * 0.001) = 2000 units.
    """
    config = EngineConfig()
    config.sizing.risk_per_trade_fraction = 0.004
    config.management.exit_oscillator_long = 75.0
    config.management.exit_oscillator_short = 25.0
    return config


# ATR giving a 20 pip stop: 0.00095 * 2 / 0.0001 + 1 pad = 20
ATR_20_PIPS = 0.00095


def utc(year=2024, month=3, day=4, hour=10, minute=0) -> datetime:
    """Build a UTC timestamp (defaults to a Monday, 10:00)."""
    return datetime(year, month, day, hour, minute, tzinfo=UTC_TIMEZONE)


@pytest.fixture
def make_update(eurusd):
    """
    Factory for market updates.

    Defaults describe a quiet long setup inside the session: bid 1.1000,
    one pip spread, 20 pip ATR stop and a neutral RSI.
    """
    def _make(
        bid: float = 1.1000,
        ask: Optional[float] = None,
        timestamp: Optional[datetime] = None,
        balance: float = 10000.0,
        equity: Optional[float] = None,
        bar_index: int = 0,
        instrument: str = "EURUSD",
        **indicators,
    ) -> MarketUpdate:
        values = {
            "atr": ATR_20_PIPS,
            "stddev": 0.0005,
            "rsi": 55.0,
            "adx": 30.0,
            "close": 1.1000,
            "ema_fast": 1.0990,
            "ema_slow": 1.0950,
        }
        values.update(indicators)
        values = {k: v for k, v in values.items() if v is not None}
        return MarketUpdate(
            instrument=instrument,
            timestamp=timestamp or utc(),
            bid=bid,
            ask=ask if ask is not None else round(bid + 0.0001, 5),
            symbol=eurusd,
            account=AccountSnapshot(
                balance=balance,
                equity=equity if equity is not None else balance,
            ),
            indicators=values,
            bar_index=bar_index,
        )

    return _make
