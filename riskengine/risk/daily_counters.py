"""
Daily Risk Counters.

Tracks the calendar-day trading budget:
- Trades executed today (against max trades/day)
- Realized PnL today (against max daily loss as a fraction of balance)

Counters reset exactly once when the observed calendar day changes.
Stop-out closures are excluded from the realized PnL budget: the broker has
already enforced a hard stop on the account and counting it again would
double-penalize the day.
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional
import logging
import threading

logger = logging.getLogger(__name__)


@dataclass
class DailyCounters:
    """Calendar-day counters."""
    trading_day: Optional[date] = None
    trades_executed_today: int = 0
    realized_pnl_today: float = 0.0
    daily_limit_reached: bool = False
    limit_reason: Optional[str] = None


class DailyRiskCounters:
    """
    Calendar-day trade and loss budget.

    Thread-safe through locking mechanism.

    Usage:
        counters = DailyRiskCounters()

        # Once per update
        counters.rollover_if_new_day(update_date)

        if not counters.trading_budget_exceeded(balance, 0.015, 3):
            ...  # new entries allowed

        counters.record_trade_opened()
        counters.record_position_closed(net_profit=-12.5, close_was_stop_out=False)
    """

    def __init__(self, trading_day: Optional[date] = None):
        """
        Initialize counters.

        Args:
            trading_day: Day being tracked (set on first rollover if None)
        """
        self.state = DailyCounters(trading_day=trading_day)
        self._lock = threading.RLock()

    @property
    def trading_day(self) -> Optional[date]:
        return self.state.trading_day

    @property
    def trades_executed_today(self) -> int:
        return self.state.trades_executed_today

    @property
    def realized_pnl_today(self) -> float:
        return self.state.realized_pnl_today

    @property
    def daily_limit_reached(self) -> bool:
        return self.state.daily_limit_reached

    def rollover_if_new_day(self, current_date: date) -> bool:
        """
        Reset counters when the calendar day changes.

        Idempotent within the same day.

        Args:
            current_date: Calendar day of the current update

        Returns:
            True if the counters were reset
        """
        with self._lock:
            if current_date == self.state.trading_day:
                return False

            previous = self.state
            self.state = DailyCounters(trading_day=current_date)

            if previous.trading_day is not None:
                logger.info(
                    f"=== NEW DAY {current_date.isoformat()} === previous day "
                    f"{previous.trading_day.isoformat()}: trades={previous.trades_executed_today}, "
                    f"pnl={previous.realized_pnl_today:+.2f}"
                )
            else:
                logger.info(f"Daily counters started for {current_date.isoformat()}")
            return True

    def record_trade_opened(self) -> None:
        """Count an executed entry."""
        with self._lock:
            self.state.trades_executed_today += 1
            logger.debug(f"Trades today: {self.state.trades_executed_today}")

    def record_position_closed(self, net_profit: float, close_was_stop_out: bool) -> None:
        """
        Add a closed position's result to today's realized PnL.

        Args:
            net_profit: Net profit of the closed position
            close_was_stop_out: True if the broker force-liquidated the position
        """
        with self._lock:
            if close_was_stop_out:
                logger.warning(
                    f"Stop-out close ({net_profit:+.2f}) excluded from daily PnL"
                )
                return

            self.state.realized_pnl_today += net_profit
            logger.info(
                f"Day PnL: {self.state.realized_pnl_today:+.2f} | "
                f"Trades: {self.state.trades_executed_today}"
            )

    def loss_limit_hit(self, balance: float, max_loss_fraction: float) -> bool:
        """
        Check the realized loss budget.

        Args:
            balance: Current account balance
            max_loss_fraction: Positive fraction of balance (0 disables)

        Returns:
            True if today's realized loss reached the budget
        """
        if max_loss_fraction <= 0:
            return False
        with self._lock:
            return self.state.realized_pnl_today <= -balance * max_loss_fraction

    def trade_limit_hit(self, max_trades_per_day: int) -> bool:
        """
        Check the trade count budget.

        Args:
            max_trades_per_day: Maximum entries per day (0 disables)

        Returns:
            True if no more entries are allowed today
        """
        if max_trades_per_day <= 0:
            return False
        with self._lock:
            return self.state.trades_executed_today >= max_trades_per_day

    def trading_budget_exceeded(
        self,
        balance: float,
        max_loss_fraction: float,
        max_trades_per_day: int,
    ) -> bool:
        """
        Check whether today's budget forbids new entries.

        Args:
            balance: Current account balance
            max_loss_fraction: Positive fraction of balance (0 disables)
            max_trades_per_day: Maximum entries per day (0 disables)

        Returns:
            True if either the loss or the trade count budget is exhausted
        """
        return (
            self.loss_limit_hit(balance, max_loss_fraction)
            or self.trade_limit_hit(max_trades_per_day)
        )

    def mark_limit_reached(self, reason: str) -> bool:
        """
        Latch the daily limit flag until the next day.

        Args:
            reason: Why the limit was reached

        Returns:
            True if the flag was newly set
        """
        with self._lock:
            if self.state.daily_limit_reached:
                return False
            self.state.daily_limit_reached = True
            self.state.limit_reason = reason
            logger.error(f"Daily limit reached: {reason}. No new trades today.")
            return True

    def snapshot(self) -> DailyCounters:
        """Get a copy of the current counters."""
        with self._lock:
            return replace(self.state)
