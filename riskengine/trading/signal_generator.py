"""
Entry Filters and Default Trend Signal.

Before any entry signal is evaluated the market must pass the entry
filters:
- Trading hours: start_hour <= hour < end_hour (UTC)
- Spread: spread in pips <= max_spread_pips (0 disables)
- Volatility: stddev > 0 and ATR / stddev >= min_volatility_ratio

TrendSignal is the default entry predicate:
- LONG:  close > EMA fast > EMA slow and RSI < rsi_long_max
- SHORT: close < EMA fast < EMA slow and RSI > rsi_short_min
- Both require ADX >= min_adx

Any callable taking a MarketUpdate and returning an optional Direction can
replace it.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import logging

from riskengine.lib.config import SessionConfig, SignalConfig
from riskengine.lib.constants import (
    INDICATOR_ADX,
    INDICATOR_ATR,
    INDICATOR_CLOSE,
    INDICATOR_EMA_FAST,
    INDICATOR_EMA_SLOW,
    INDICATOR_RSI,
    INDICATOR_STDDEV,
)
from riskengine.lib.time_utils import is_within_session, utc_hour
from riskengine.trading.events import Direction, MarketUpdate

logger = logging.getLogger(__name__)

EntrySignal = Callable[[MarketUpdate], Optional[Direction]]


@dataclass
class FilterResult:
    """Outcome of the entry filters."""
    passed: bool
    reason: str = ""


class EntryFilter:
    """
    Market condition checks gating new entries.

    Usage:
        entry_filter = EntryFilter(SessionConfig(), SignalConfig())
        result = entry_filter.check(update)
        if not result.passed:
            print(f"No entry: {result.reason}")
    """

    def __init__(
        self,
        session_config: Optional[SessionConfig] = None,
        signal_config: Optional[SignalConfig] = None,
    ):
        self.session_config = session_config or SessionConfig()
        self.signal_config = signal_config or SignalConfig()

    def check(self, update: MarketUpdate) -> FilterResult:
        """
        Run all entry filters.

        Args:
            update: Current market update

        Returns:
            FilterResult with the first failing reason
        """
        session = self.session_config
        if not is_within_session(update.timestamp, session.start_hour, session.end_hour):
            return FilterResult(
                False,
                f"outside trading hours ({utc_hour(update.timestamp)}h not in "
                f"[{session.start_hour}, {session.end_hour}))",
            )

        if session.max_spread_pips > 0 and update.spread_pips > session.max_spread_pips:
            return FilterResult(
                False,
                f"spread {update.spread_pips:.1f} pips > max {session.max_spread_pips:.1f}",
            )

        atr = update.indicator(INDICATOR_ATR)
        stddev = update.indicator(INDICATOR_STDDEV)
        if atr is None or stddev is None:
            logger.warning(f"{update.instrument}: ATR/StdDev missing - entry filter failed")
            return FilterResult(False, "volatility indicators missing")

        if stddev == 0:
            return FilterResult(False, "stddev is zero")

        ratio = atr / stddev
        if ratio < self.signal_config.min_volatility_ratio:
            return FilterResult(
                False,
                f"volatility ratio {ratio:.2f} < {self.signal_config.min_volatility_ratio:.2f}",
            )

        return FilterResult(True)


class TrendSignal:
    """
    EMA trend + RSI + ADX entry predicate.

    Callable: signal(update) -> Direction or None.
    """

    def __init__(self, config: Optional[SignalConfig] = None):
        self.config = config or SignalConfig()

    def __call__(self, update: MarketUpdate) -> Optional[Direction]:
        values = {
            key: update.indicator(key)
            for key in (INDICATOR_CLOSE, INDICATOR_EMA_FAST, INDICATOR_EMA_SLOW, INDICATOR_RSI, INDICATOR_ADX)
        }
        missing = [key for key, value in values.items() if value is None]
        if missing:
            logger.info(f"{update.instrument}: indicators not yet ready ({', '.join(missing)})")
            return None

        close = values[INDICATOR_CLOSE]
        fast = values[INDICATOR_EMA_FAST]
        slow = values[INDICATOR_EMA_SLOW]
        rsi = values[INDICATOR_RSI]

        if not values[INDICATOR_ADX] >= self.config.min_adx:
            return None

        if close > fast > slow and rsi < self.config.rsi_long_max:
            return Direction.LONG
        if close < fast < slow and rsi > self.config.rsi_short_min:
            return Direction.SHORT
        return None
