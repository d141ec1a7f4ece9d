"""
Trading constants and symbol specifications.

This module defines all constants used throughout the risk engine:
- Symbol specifications (pip size, pip value, volume quantization)
- Default risk limits (session loss, drawdown, daily budget)
- Default position management parameters (breakeven, partial take-profit)
- Trading session hours (UTC)
- Indicator keys expected on market updates

Default values mirror the production parameters of the HybridTrend robot.
"""

from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo


# =============================================================================
# Timezone
# =============================================================================

UTC_TIMEZONE = ZoneInfo("UTC")


# =============================================================================
# Risk Gate Defaults (session level)
# =============================================================================

DEFAULT_DAILY_LOSS_LIMIT_FRACTION = -0.01  # -1% of session start equity
DEFAULT_DRAWDOWN_LIMIT_FRACTION = -0.02  # -2% from running equity peak
DEFAULT_MAX_CONCURRENT_POSITIONS = 3
DEFAULT_RISK_STATE_FILE = "RiskState.json"


# =============================================================================
# Daily Budget Defaults (calendar day)
# =============================================================================

DEFAULT_MAX_DAILY_LOSS_FRACTION = 0.015  # 1.5% of balance
DEFAULT_MAX_TRADES_PER_DAY = 3  # 0 = unlimited


# =============================================================================
# Sizing Defaults
# =============================================================================

DEFAULT_RISK_PER_TRADE_FRACTION = 0.01  # 1% of equity
DEFAULT_REWARD_RISK_RATIO = 2.0
DEFAULT_ATR_STOP_MULTIPLIER = 2.0  # Stop = 2x ATR + pad
DEFAULT_SL_PAD_PIPS = 1.0
DEFAULT_MIN_SL_PIPS = 10.0


# =============================================================================
# Management Defaults
# =============================================================================

DEFAULT_BREAKEVEN_MULTIPLIER = 0.8  # x initial stop distance
DEFAULT_PARTIAL_MULTIPLIER = 1.5  # x initial stop distance
DEFAULT_PARTIAL_CLOSE_PERCENT = 40
DEFAULT_EXIT_OSCILLATOR_LONG = 75.0
DEFAULT_EXIT_OSCILLATOR_SHORT = 25.0
DEFAULT_MAX_BARS_IN_TRADE = 0  # 0 = disabled
DEFAULT_SESSION_EXIT_CUTOFF_HOUR = 23


# =============================================================================
# Session / Entry Filter Defaults (UTC hours)
# =============================================================================

DEFAULT_SESSION_START_HOUR = 7
DEFAULT_SESSION_END_HOUR = 20
DEFAULT_MAX_SPREAD_PIPS = 3.0  # 0 = no spread filter
DEFAULT_MIN_VOLATILITY_RATIO = 1.2  # ATR / StdDev
DEFAULT_MIN_ADX = 25.0
DEFAULT_RSI_LONG_MAX = 70.0
DEFAULT_RSI_SHORT_MIN = 30.0


# =============================================================================
# Indicator Keys
# =============================================================================

# Latest indicator values are delivered as a flat mapping on each update.
INDICATOR_ATR = "atr"
INDICATOR_STDDEV = "stddev"
INDICATOR_RSI = "rsi"
INDICATOR_ADX = "adx"
INDICATOR_EMA_FAST = "ema_fast"
INDICATOR_EMA_SLOW = "ema_slow"
INDICATOR_CLOSE = "close"

# Pips are reported with one decimal place by the broker
PIP_PRECISION = 1


# =============================================================================
# Symbol Specification Dataclass
# =============================================================================

@dataclass(frozen=True)
class SymbolSpec:
    """
    Immutable symbol specification.

    Holds the broker's pricing and volume quantization rules for an
    instrument. Volumes are expressed in units (not lots).

    Attributes:
        name: Symbol name (e.g., "EURUSD")
        pip_size: Price increment of one pip (e.g., 0.0001)
        pip_value_per_unit: Account-currency value of one pip for one unit
        min_volume: Smallest tradable volume in units
        max_volume: Largest tradable volume in units
        volume_step: Volume increment in units
        lot_size: Units per standard lot (for display only)
    """
    name: str
    pip_size: float
    pip_value_per_unit: float
    min_volume: float
    max_volume: float
    volume_step: float
    lot_size: Optional[float] = 100000.0

    def units_to_lots(self, units: float) -> float:
        """Convert a volume in units to lots."""
        if not self.lot_size:
            return units
        return units / self.lot_size

    def normalize_volume_down(self, units: float) -> float:
        """Round a volume down to the broker's volume step."""
        if self.volume_step <= 0:
            return units
        # Tolerance keeps exact multiples from flooring one step short
        steps = int(units / self.volume_step + 1e-9)
        return steps * self.volume_step


# Reference symbol (1 pip on 1 unit = 0.0001 USD)
EURUSD_SPEC = SymbolSpec(
    name="EURUSD",
    pip_size=0.0001,
    pip_value_per_unit=0.0001,
    min_volume=1000.0,
    max_volume=10_000_000.0,
    volume_step=1000.0,
)

