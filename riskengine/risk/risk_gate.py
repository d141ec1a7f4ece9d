"""
Session Risk Gate.

This module enforces the session-level account limits. Once a limit is
crossed trading is halted for the rest of the session - the halt is
durable and only an explicit reset (new session / new day) re-enables it.

Limits:
- Session loss: realized + unrealized PnL <= start equity * daily_loss_limit_fraction
- Drawdown: (equity - equity peak) / equity peak <= drawdown_limit_fraction

Both fractions are negative (e.g. -0.01 = -1%). A breach emits a
RiskBreachEvent to every registered listener (the supervising controller
flattens positions) and persists the gate state for audit/recovery.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional
import json
import logging
import threading

from riskengine.lib.config import RiskGateConfig
from riskengine.lib.time_utils import get_utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSnapshot:
    """Balance and equity at a point in time."""
    balance: float
    equity: float


@dataclass(frozen=True)
class RiskBreachEvent:
    """Outbound notification that the gate halted trading."""
    reason: str
    timestamp: datetime


@dataclass
class RiskGateState:
    """
    Current risk gate state.

    Invariants:
    - equity_peak >= session_start_equity (the peak only ratchets upward)
    - trading_allowed goes True -> False at most once per session
    """
    session_start_equity: float = 0.0
    equity_peak: float = 0.0
    trading_allowed: bool = False
    breach_reason: Optional[str] = None
    breach_time: Optional[datetime] = None


class RiskGate:
    """
    Process-wide trading gate driven by account equity updates.

    Thread-safe: the gate is consulted from both the equity update path and
    the pre-trade path, so all access goes through one re-entrant lock.

    Usage:
        gate = RiskGate(RiskGateConfig())
        gate.add_breach_listener(supervisor.on_breach)
        gate.init(AccountSnapshot(balance=10000.0, equity=10000.0))

        # On every account update
        gate.on_equity_update(AccountSnapshot(balance=10000.0, equity=9950.0))

        # Before each entry
        if gate.pre_trade_check(open_position_count=0):
            ...
    """

    def __init__(
        self,
        config: Optional[RiskGateConfig] = None,
        state_file: Optional[Path] = None,
    ):
        """
        Initialize risk gate.

        The gate starts closed; call init() with the session's account
        snapshot before any other operation.

        Args:
            config: Gate limits (uses defaults if None)
            state_file: Path to persist state (falls back to config.state_file)
        """
        self.config = config or RiskGateConfig()
        if state_file is None and self.config.state_file:
            state_file = Path(self.config.state_file)
        self.state_file = state_file
        self.state = RiskGateState()
        self._listeners: List[Callable[[RiskBreachEvent], None]] = []
        self._lock = threading.RLock()

    @property
    def is_trading_allowed(self) -> bool:
        """Whether new trades may currently be opened."""
        with self._lock:
            return self.state.trading_allowed

    def add_breach_listener(self, callback: Callable[[RiskBreachEvent], None]) -> None:
        """
        Register a callback for risk breach events.

        Args:
            callback: Function called with the RiskBreachEvent
        """
        self._listeners.append(callback)
        logger.debug(f"Risk breach listener registered: {callback}")

    def init(self, snapshot: AccountSnapshot) -> None:
        """
        Start a new session from an account snapshot.

        Calling it again performs a full reset.

        Args:
            snapshot: Current account balance/equity
        """
        with self._lock:
            self.state = RiskGateState(
                session_start_equity=snapshot.balance,
                equity_peak=snapshot.balance,
                trading_allowed=True,
            )
            logger.info(
                f"RiskGate initialized: start_equity={snapshot.balance:.2f}, "
                f"daily_loss_limit={self.config.daily_loss_limit_fraction:.2%}, "
                f"drawdown_limit={self.config.drawdown_limit_fraction:.2%}, "
                f"max_concurrent={self.config.max_concurrent_positions}"
            )

    def reset_for_new_session(self, snapshot: AccountSnapshot) -> None:
        """Reset the gate at the start of a new trading day."""
        logger.info("RiskGate reset for new session")
        self.init(snapshot)

    def pre_trade_check(self, open_position_count: int) -> bool:
        """
        Check whether a new position may be opened.

        Side-effect free.

        Args:
            open_position_count: Number of currently open positions

        Returns:
            True if trading is allowed and below the concurrency limit
        """
        with self._lock:
            return (
                self.state.trading_allowed
                and open_position_count < self.config.max_concurrent_positions
            )

    def on_equity_update(
        self,
        snapshot: AccountSnapshot,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        """
        Process an account update and halt trading if a limit is crossed.

        Args:
            snapshot: Current account balance/equity
            timestamp: Update time (uses current UTC time if None)

        Returns:
            True if this update triggered a breach
        """
        with self._lock:
            start = self.state.session_start_equity
            peak = self.state.equity_peak

            realized = snapshot.balance - start
            unrealized = snapshot.equity - snapshot.balance

            drawdown: Optional[float] = None
            if peak <= 0:
                logger.warning(
                    f"Equity peak {peak:.2f} is not positive - drawdown check skipped"
                )
            elif snapshot.equity < 0:
                logger.warning(
                    f"Negative equity {snapshot.equity:.2f} - drawdown check skipped"
                )
            else:
                drawdown = (snapshot.equity - peak) / peak

            self.state.equity_peak = max(peak, snapshot.equity)

            if not self.state.trading_allowed:
                return False

            reason = None
            loss_limit = start * self.config.daily_loss_limit_fraction
            if realized + unrealized <= loss_limit:
                reason = (
                    f"Session loss limit hit: PnL {realized + unrealized:+.2f} "
                    f"<= {loss_limit:.2f} ({self.config.daily_loss_limit_fraction:.2%} "
                    f"of {start:.2f})"
                )
            elif drawdown is not None and drawdown <= self.config.drawdown_limit_fraction:
                reason = (
                    f"Drawdown limit hit: {drawdown:.2%} from peak {peak:.2f} "
                    f"<= {self.config.drawdown_limit_fraction:.2%}"
                )

            if reason is None:
                return False

            self._trigger_shutdown(reason, timestamp or get_utc_now())
            return True

    def get_metrics(self) -> dict:
        """
        Get current gate metrics for logging/display.

        Returns:
            Dictionary of current gate metrics
        """
        with self._lock:
            return {
                "session_start_equity": self.state.session_start_equity,
                "equity_peak": self.state.equity_peak,
                "trading_allowed": self.state.trading_allowed,
                "breach_reason": self.state.breach_reason,
                "daily_loss_limit_fraction": self.config.daily_loss_limit_fraction,
                "drawdown_limit_fraction": self.config.drawdown_limit_fraction,
                "max_concurrent_positions": self.config.max_concurrent_positions,
            }

    def _trigger_shutdown(self, reason: str, timestamp: datetime) -> None:
        """Halt trading for the session, notify listeners and persist."""
        self.state.trading_allowed = False
        self.state.breach_reason = reason
        self.state.breach_time = timestamp
        logger.critical(f"RISK BREACH - TRADING HALTED: {reason}")

        event = RiskBreachEvent(reason=reason, timestamp=timestamp)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Risk breach listener failed: {e}", exc_info=True)

        self.persist()

    def persist(self) -> None:
        """Save current state to file."""
        if not self.state_file:
            return

        with self._lock:
            state_dict = {
                "session_start_equity": self.state.session_start_equity,
                "equity_peak": self.state.equity_peak,
                "trading_allowed": self.state.trading_allowed,
                "breach_reason": self.state.breach_reason,
                "breach_time": self.state.breach_time.isoformat() if self.state.breach_time else None,
                "daily_loss_limit_fraction": self.config.daily_loss_limit_fraction,
                "drawdown_limit_fraction": self.config.drawdown_limit_fraction,
                "max_concurrent_positions": self.config.max_concurrent_positions,
            }

        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_file, 'w') as f:
                json.dump(state_dict, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to persist risk state: {e}")

    def restore(self) -> bool:
        """
        Load persisted state (crash recovery).

        Returns:
            True if state was loaded, False if no usable state file exists
        """
        if not self.state_file or not self.state_file.exists():
            return False

        try:
            with open(self.state_file, 'r') as f:
                state_dict = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load risk state: {e}")
            return False

        with self._lock:
            start = float(state_dict.get("session_start_equity", 0.0))
            self.state = RiskGateState(
                session_start_equity=start,
                equity_peak=max(start, float(state_dict.get("equity_peak", start))),
                trading_allowed=bool(state_dict.get("trading_allowed", False)),
                breach_reason=state_dict.get("breach_reason"),
                breach_time=(
                    datetime.fromisoformat(state_dict["breach_time"])
                    if state_dict.get("breach_time") else None
                ),
            )

        logger.info(
            f"Loaded risk state from {self.state_file}: "
            f"trading_allowed={self.state.trading_allowed}"
        )
        return True
