"""
Stop Loss and Take Profit Calculations.

Provides the price math used by the position lifecycle:
1. Volatility stop - ATR * multiplier + pad, floored at a minimum distance
2. Initial levels - SL/TP from the actual fill price and reward:risk ratio
3. Breakeven stop - entry price plus a small pad in the favorable direction
4. Profit in pips - measured at the exit side of the spread

Directions are signed integers: 1 = long, -1 = short.
"""

from dataclasses import dataclass
from typing import Optional
import logging
import math

from riskengine.lib.config import SizingConfig
from riskengine.lib.constants import PIP_PRECISION

logger = logging.getLogger(__name__)


@dataclass
class StopLevels:
    """Initial protective levels for a new position."""
    stop_pips: float
    stop_distance: float  # Price units
    stop_loss: float
    take_profit: float


def price_digits(pip_size: float) -> int:
    """
    Get the number of price decimals quoted for a pip size.

    Brokers quote one digit beyond the pip (0.0001 -> 5 digits).
    """
    if pip_size <= 0:
        return 0
    return max(0, round(-math.log10(pip_size))) + PIP_PRECISION


def normalize_price(price: float, pip_size: float) -> float:
    """Round a price to the instrument's quoted precision."""
    return round(price, price_digits(pip_size))


def profit_pips(direction: int, entry_price: float, bid: float, ask: float, pip_size: float) -> float:
    """
    Calculate open profit in pips.

    Longs are valued at the bid and shorts at the ask.

    Args:
        direction: 1 for long, -1 for short
        entry_price: Position entry price
        bid: Current bid
        ask: Current ask
        pip_size: Price increment of one pip

    Returns:
        Profit in pips rounded to broker precision
    """
    if direction == 1:
        move = bid - entry_price
    else:
        move = entry_price - ask
    return round(move / pip_size, PIP_PRECISION)


def is_more_favorable(direction: int, new_stop: float, current_stop: Optional[float]) -> bool:
    """
    Check if a stop price tightens the current stop.

    A long stop improves when it moves up, a short stop when it moves down.
    Any stop improves on a missing one.
    """
    if current_stop is None:
        return True
    if direction == 1:
        return new_stop > current_stop
    return new_stop < current_stop


class StopCalculator:
    """
    Volatility stop and target calculator.

    Usage:
        calc = StopCalculator(SizingConfig())

        stop_pips = calc.calculate_stop_pips(atr=0.00085, pip_size=0.0001)
        levels = calc.initial_levels(
            entry_price=1.1000, direction=1, stop_pips=stop_pips, pip_size=0.0001
        )
        print(f"SL {levels.stop_loss} TP {levels.take_profit}")
    """

    def __init__(self, config: Optional[SizingConfig] = None):
        """
        Initialize stop calculator.

        Args:
            config: Sizing configuration (uses defaults if None)
        """
        self.config = config or SizingConfig()

    def calculate_stop_pips(self, atr: Optional[float], pip_size: float) -> Optional[float]:
        """
        Calculate the initial stop distance in pips.

        stop = atr * atr_stop_multiplier / pip_size + sl_pad_pips, never
        tighter than min_sl_pips.

        Args:
            atr: Latest ATR value in price units
            pip_size: Price increment of one pip

        Returns:
            Stop distance in pips, or None if it cannot be computed
        """
        if atr is None or pip_size <= 0:
            logger.warning(f"Cannot compute stop: atr={atr}, pip_size={pip_size}")
            return None

        stop_pips = atr * self.config.atr_stop_multiplier / pip_size + self.config.sl_pad_pips
        stop_pips = max(stop_pips, self.config.min_sl_pips)
        stop_pips = round(stop_pips, PIP_PRECISION)

        if stop_pips <= 0:
            logger.warning(f"Non-positive stop distance ({stop_pips} pips) - entry skipped")
            return None

        return stop_pips

    def initial_levels(
        self,
        entry_price: float,
        direction: int,
        stop_pips: float,
        pip_size: float,
    ) -> StopLevels:
        """
        Calculate initial SL/TP from the fill price.

        Args:
            entry_price: Actual fill price
            direction: 1 for long, -1 for short
            stop_pips: Stop distance in pips
            pip_size: Price increment of one pip

        Returns:
            StopLevels
        """
        stop_distance = stop_pips * pip_size
        target_distance = stop_distance * self.config.reward_risk_ratio

        stop_loss = normalize_price(entry_price - direction * stop_distance, pip_size)
        take_profit = normalize_price(entry_price + direction * target_distance, pip_size)

        logger.debug(
            f"Initial levels: entry={entry_price:.5f}, stop={stop_loss:.5f} "
            f"({stop_pips:.1f} pips), target={take_profit:.5f} "
            f"(RR {self.config.reward_risk_ratio:.1f})"
        )

        return StopLevels(
            stop_pips=stop_pips,
            stop_distance=stop_distance,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )

    def breakeven_price(self, entry_price: float, direction: int, pip_size: float) -> float:
        """
        Calculate the breakeven stop price.

        Args:
            entry_price: Position entry price
            direction: 1 for long, -1 for short
            pip_size: Price increment of one pip

        Returns:
            Entry price padded by sl_pad_pips in the favorable direction
        """
        return normalize_price(
            entry_price + direction * self.config.sl_pad_pips * pip_size,
            pip_size,
        )
