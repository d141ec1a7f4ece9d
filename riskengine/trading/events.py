"""
Engine Events and Market Data Types.

Inbound:
- MarketUpdate: price, indicator and account snapshot for one instrument
- PositionClosedEvent: broker confirmation that a position was closed

Outbound:
- RiskBreachEvent: emitted by the risk gate (re-exported here)
- EngineEvent: every trading decision, for telemetry sinks
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from riskengine.lib.constants import PIP_PRECISION, SymbolSpec
from riskengine.lib.time_utils import get_utc_now
from riskengine.risk.risk_gate import AccountSnapshot, RiskBreachEvent


class Direction(Enum):
    """Trade direction."""
    LONG = 1
    SHORT = -1

    @property
    def sign(self) -> int:
        """1 for long, -1 for short."""
        return self.value

    @property
    def side(self) -> str:
        """Order side label."""
        return "BUY" if self is Direction.LONG else "SELL"


class CloseReason(Enum):
    """Broker-reported reason a position was closed."""
    CLOSED = "closed"  # Closed by request
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    STOP_OUT = "stop_out"  # Forced liquidation by the broker


@dataclass(frozen=True)
class MarketUpdate:
    """
    One observation for an instrument.

    Attributes:
        instrument: Symbol name
        timestamp: Update time (broker server time, UTC)
        bid: Current bid
        ask: Current ask
        symbol: Pip and volume rules for the instrument
        account: Account balance/equity at this update
        indicators: Latest indicator values keyed by name (atr, rsi, ...)
        bar_index: Index of the current bar
        timeframe: Optional timeframe tag used in the position label
    """
    instrument: str
    timestamp: datetime
    bid: float
    ask: float
    symbol: SymbolSpec
    account: AccountSnapshot
    indicators: Mapping[str, float] = field(default_factory=dict)
    bar_index: int = 0
    timeframe: Optional[str] = None

    @property
    def spread(self) -> float:
        """Spread in price units."""
        return self.ask - self.bid

    @property
    def spread_pips(self) -> float:
        """Spread in pips."""
        if self.symbol.pip_size <= 0:
            return 0.0
        return round(self.spread / self.symbol.pip_size, PIP_PRECISION)

    def indicator(self, name: str) -> Optional[float]:
        """Get an indicator value, or None if it was not delivered."""
        return self.indicators.get(name)


@dataclass(frozen=True)
class PositionClosedEvent:
    """Broker notification that a position was closed."""
    position_id: str
    label: str
    net_profit: float
    close_reason: CloseReason = CloseReason.CLOSED
    pips: float = 0.0
    volume_closed: float = 0.0

    @property
    def was_stop_out(self) -> bool:
        return self.close_reason is CloseReason.STOP_OUT


class EngineEventType(Enum):
    """Kinds of decisions reported by the engine."""
    NEW_DAY = "new_day"
    ENTRY = "entry"
    ENTRY_REJECTED = "entry_rejected"
    SIZING_REJECTED = "sizing_rejected"
    BREAKEVEN = "breakeven"
    PARTIAL = "partial"
    CLOSE_REQUESTED = "close_requested"
    CLOSE_FAILED = "close_failed"
    MODIFY_FAILED = "modify_failed"
    POSITION_CLOSED = "position_closed"
    DAILY_LIMIT = "daily_limit"
    RISK_BREACH = "risk_breach"


@dataclass(frozen=True)
class EngineEvent:
    """Telemetry record of an engine decision."""
    kind: EngineEventType
    label: str
    reason: str = ""
    timestamp: datetime = field(default_factory=get_utc_now)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "kind": self.kind.value,
            "label": self.label,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }


__all__ = [
    "AccountSnapshot",
    "CloseReason",
    "Direction",
    "EngineEvent",
    "EngineEventType",
    "MarketUpdate",
    "PositionClosedEvent",
    "RiskBreachEvent",
]
