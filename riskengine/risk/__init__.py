"""
Risk management module for the risk engine.

Provides:
- RiskGate: Session loss and drawdown limits with durable halt
- DailyRiskCounters: Calendar-day trade count and realized loss budget
- PositionSizer / compute_volume: Fixed fractional volume sizing
- StopCalculator: Volatility stops, initial SL/TP and breakeven prices
"""

from riskengine.risk.risk_gate import (
    AccountSnapshot,
    RiskBreachEvent,
    RiskGate,
    RiskGateState,
)
from riskengine.risk.daily_counters import DailyCounters, DailyRiskCounters
from riskengine.risk.position_sizing import (
    PositionSizer,
    SizingFailure,
    SizingRequest,
    SizingResult,
    compute_volume,
)
from riskengine.risk.stops import (
    StopCalculator,
    StopLevels,
    is_more_favorable,
    normalize_price,
    profit_pips,
)

__all__ = [
    "AccountSnapshot",
    "RiskBreachEvent",
    "RiskGate",
    "RiskGateState",
    "DailyCounters",
    "DailyRiskCounters",
    "PositionSizer",
    "SizingFailure",
    "SizingRequest",
    "SizingResult",
    "compute_volume",
    "StopCalculator",
    "StopLevels",
    "is_more_favorable",
    "normalize_price",
    "profit_pips",
]
