"""
Trading module for the risk engine.

This module provides the per-update trading system:
- Market update, close and telemetry event types
- Abstract broker execution port
- Per-instrument position lifecycle state machine
- Entry filters and the default trend signal
- Trade engine orchestrating all of the above

Components:
- ExecutionPort: Broker interface (market order, SL/TP/volume modify, close)
- PositionLifecycle: Entry, breakeven, partial take-profit and exits
- EntryFilter / TrendSignal: Entry conditions
- TradeEngine: Main per-update orchestrator

Usage:
    from riskengine.trading import TradeEngine
    from riskengine.risk import AccountSnapshot

    engine = TradeEngine(execution=MyBroker())
    engine.start(AccountSnapshot(balance=10000.0, equity=10000.0))
    engine.on_market_update(update)
"""

# Events
from riskengine.trading.events import (
    CloseReason,
    Direction,
    EngineEvent,
    EngineEventType,
    MarketUpdate,
    PositionClosedEvent,
)

# Execution
from riskengine.trading.execution import (
    ExecutionPort,
    ExecutionResult,
    OrderResult,
)

# Lifecycle
from riskengine.trading.lifecycle import (
    LifecycleState,
    ManagedPosition,
    PositionLifecycle,
)

# Signals
from riskengine.trading.signal_generator import (
    EntryFilter,
    FilterResult,
    TrendSignal,
)

# Engine
from riskengine.trading.engine import (
    TradeEngine,
    make_label,
)

__all__ = [
    "CloseReason",
    "Direction",
    "EngineEvent",
    "EngineEventType",
    "MarketUpdate",
    "PositionClosedEvent",
    "ExecutionPort",
    "ExecutionResult",
    "OrderResult",
    "LifecycleState",
    "ManagedPosition",
    "PositionLifecycle",
    "EntryFilter",
    "FilterResult",
    "TrendSignal",
    "TradeEngine",
    "make_label",
]
