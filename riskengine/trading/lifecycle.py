"""
Position Lifecycle State Machine.

Manages the single position an instrument label may hold:

    FLAT -> OPENING -> OPEN -> CLOSING -> FLAT

Entry sizes the trade from volatility and risk, places a market order and
protects the fill with broker-side SL/TP. Once open, a fixed-priority list
of rules runs on every update:

0. Pending close retry (a previous close request failed)
1. Signal exit (oscillator beyond the exit threshold)
2. Time exit (max bars in trade)
3. Breakeven (move stop to entry + pad)
4. Partial take-profit (reduce volume once)
5. Session end exit

The first rule that requests a close ends processing for that update.
Breakeven and partial flags are monotonic: set once per position, only
after the broker confirms the modification.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
import logging
import math

from riskengine.lib.config import ManagementConfig, SessionConfig, SizingConfig
from riskengine.lib.constants import INDICATOR_ATR, INDICATOR_RSI, PIP_PRECISION
from riskengine.lib.logging_utils import TradingLogger
from riskengine.lib.time_utils import is_session_end_window, to_utc
from riskengine.risk.daily_counters import DailyRiskCounters
from riskengine.risk.position_sizing import PositionSizer
from riskengine.risk.stops import StopCalculator, is_more_favorable, profit_pips
from riskengine.trading.events import (
    Direction,
    EngineEvent,
    EngineEventType,
    MarketUpdate,
    PositionClosedEvent,
)
from riskengine.trading.execution import ExecutionPort, ExecutionResult, OrderResult

logger = logging.getLogger(__name__)

# Close reasons
REASON_SIGNAL_EXIT = "signal exit"
REASON_TIME_EXIT = "time exit"
REASON_SESSION_END = "session end"
REASON_PARTIAL_FULL_CLOSE = "partial via full close - remainder below minimum"
REASON_INIT_PROTECTION_FAILED = "init SL/TP fail"

EventSink = Callable[[EngineEvent], None]


class LifecycleState(Enum):
    """Position lifecycle state."""
    FLAT = "flat"
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"


@dataclass
class ManagedPosition:
    """
    The position currently managed for a label.

    Attributes:
        position_id: Broker position id
        label: Instrument label the position belongs to
        direction: LONG or SHORT
        entry_price: Actual fill price
        initial_stop_distance: Initial stop distance in price units
        initial_stop_loss: Initial SL price
        initial_take_profit: Initial TP price
        current_stop_loss: Stop currently confirmed by the broker
        breakeven_applied: Stop was moved to breakeven (monotonic)
        partial_taken: Partial take-profit executed (monotonic)
        entry_time: Time of the fill
        entry_bar_index: Bar index at entry
        current_volume: Volume in units
        pip_size: Price increment of one pip
        pending_close_reason: Reason of a close still to be (re)requested
    """
    position_id: str
    label: str
    direction: Direction
    entry_price: float
    initial_stop_distance: float
    initial_stop_loss: float
    initial_take_profit: float
    current_volume: float
    pip_size: float
    entry_time: datetime
    entry_bar_index: int = 0
    current_stop_loss: Optional[float] = None
    breakeven_applied: bool = False
    partial_taken: bool = False
    pending_close_reason: Optional[str] = None
    close_reason: Optional[str] = None

    @property
    def initial_stop_pips(self) -> float:
        """Initial stop distance in pips."""
        return round(self.initial_stop_distance / self.pip_size, PIP_PRECISION)

    @property
    def is_long(self) -> bool:
        return self.direction is Direction.LONG

    def profit_pips(self, bid: float, ask: float) -> float:
        """Open profit in pips at the given quotes."""
        return profit_pips(self.direction.sign, self.entry_price, bid, ask, self.pip_size)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "position_id": self.position_id,
            "label": self.label,
            "direction": self.direction.name,
            "entry_price": self.entry_price,
            "initial_stop_distance": self.initial_stop_distance,
            "initial_stop_loss": self.initial_stop_loss,
            "initial_take_profit": self.initial_take_profit,
            "current_stop_loss": self.current_stop_loss,
            "breakeven_applied": self.breakeven_applied,
            "partial_taken": self.partial_taken,
            "entry_time": self.entry_time.isoformat(),
            "entry_bar_index": self.entry_bar_index,
            "current_volume": self.current_volume,
            "pending_close_reason": self.pending_close_reason,
        }


class PositionLifecycle:
    """
    Per-instrument position state machine.

    Not thread-safe on its own: the engine serializes calls per label.

    Usage:
        lifecycle = PositionLifecycle(
            label="HybridTrend_EURUSD",
            execution=broker,
            counters=counters,
        )

        # Each update
        lifecycle.manage(update)
        if lifecycle.is_flat and entry_allowed:
            lifecycle.open_position(Direction.LONG, update)

        # Broker close confirmation
        lifecycle.on_position_closed(event)
    """

    def __init__(
        self,
        label: str,
        execution: ExecutionPort,
        counters: DailyRiskCounters,
        sizing_config: Optional[SizingConfig] = None,
        management_config: Optional[ManagementConfig] = None,
        session_config: Optional[SessionConfig] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """
        Initialize lifecycle.

        Args:
            label: Label identifying positions of this instrument
            execution: Broker execution port
            counters: Shared daily risk counters
            sizing_config: Stop and sizing parameters
            management_config: Breakeven/partial/exit parameters
            session_config: Session hours (for the session end exit)
            event_sink: Optional callback receiving EngineEvents
        """
        self.label = label
        self.execution = execution
        self.counters = counters
        self.sizing_config = sizing_config or SizingConfig()
        self.management_config = management_config or ManagementConfig()
        self.session_config = session_config or SessionConfig()
        self.event_sink = event_sink

        self.stops = StopCalculator(self.sizing_config)
        self.sizer = PositionSizer(self.sizing_config.risk_per_trade_fraction)

        self.state = LifecycleState.FLAT
        self.position: Optional[ManagedPosition] = None

        self._trade_logger = TradingLogger()

        # Ordered management rules; each returns True when processing must stop
        self._rules = (
            self._check_signal_exit,
            self._check_time_exit,
            self._check_breakeven,
            self._check_partial_take,
            self._check_session_end,
        )

    @property
    def is_flat(self) -> bool:
        return self.state == LifecycleState.FLAT

    # =========================================================================
    # Entry
    # =========================================================================

    def open_position(self, direction: Direction, update: MarketUpdate) -> bool:
        """
        Size and open a new position.

        Args:
            direction: Trade direction
            update: Current market update (ATR, account, symbol rules)

        Returns:
            True if a position was opened
        """
        if self.state != LifecycleState.FLAT:
            logger.warning(f"{self.label}: entry ignored in state {self.state.value}")
            return False

        symbol = update.symbol
        stop_pips = self.stops.calculate_stop_pips(update.indicator(INDICATOR_ATR), symbol.pip_size)
        if stop_pips is None:
            self._emit(EngineEventType.ENTRY_REJECTED, "stop distance unavailable", update.timestamp)
            return False

        stop_distance = stop_pips * symbol.pip_size
        sizing = self.sizer.size(symbol, update.account.equity, stop_distance)
        if not sizing.success:
            self._emit(
                EngineEventType.SIZING_REJECTED,
                sizing.reason,
                update.timestamp,
                failure=sizing.failure.value,
            )
            return False

        self.state = LifecycleState.OPENING
        self._trade_logger.order(direction.side, sizing.volume, self.label)

        order = self._place_market_order(direction, sizing.volume)
        if not order.success:
            logger.error(f"{self.label}: market order failed: {order.reason}")
            self.state = LifecycleState.FLAT
            self._emit(EngineEventType.ENTRY_REJECTED, order.reason or "order failed", update.timestamp)
            return False

        volume = order.volume if order.volume else sizing.volume
        levels = self.stops.initial_levels(
            entry_price=order.entry_price,
            direction=direction.sign,
            stop_pips=stop_pips,
            pip_size=symbol.pip_size,
        )

        self.position = ManagedPosition(
            position_id=order.position_id,
            label=self.label,
            direction=direction,
            entry_price=order.entry_price,
            initial_stop_distance=levels.stop_distance,
            initial_stop_loss=levels.stop_loss,
            initial_take_profit=levels.take_profit,
            current_volume=volume,
            pip_size=symbol.pip_size,
            entry_time=to_utc(update.timestamp),
            entry_bar_index=update.bar_index,
        )
        self.state = LifecycleState.OPEN
        self.counters.record_trade_opened()

        self._trade_logger.trade_entry(
            direction.name,
            volume,
            order.entry_price,
            levels.stop_loss,
            levels.take_profit,
            position_id=order.position_id,
        )
        self._emit(
            EngineEventType.ENTRY,
            direction.name,
            update.timestamp,
            position_id=order.position_id,
            volume=volume,
            entry_price=order.entry_price,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
        )

        self._protect_position(levels.stop_loss, levels.take_profit, update.timestamp)
        return True

    def _protect_position(self, stop_loss: float, take_profit: float, timestamp: datetime) -> None:
        """Attach broker SL/TP; close the position if either cannot be set."""
        pos = self.position
        sl_result = self._execute(
            "modify_stop_loss", self.execution.modify_stop_loss, pos.position_id, stop_loss
        )
        if sl_result.success:
            pos.current_stop_loss = stop_loss

        tp_result = self._execute(
            "modify_take_profit", self.execution.modify_take_profit, pos.position_id, take_profit
        )

        if sl_result.success and tp_result.success:
            return

        failure = sl_result.reason if not sl_result.success else tp_result.reason
        logger.error(f"{self.label}: failed to set SL/TP ({failure}) - closing position")
        self._emit(EngineEventType.MODIFY_FAILED, failure or REASON_INIT_PROTECTION_FAILED, timestamp)
        self.request_close(REASON_INIT_PROTECTION_FAILED, timestamp)

    # =========================================================================
    # Management
    # =========================================================================

    def manage(self, update: MarketUpdate) -> None:
        """
        Apply the management rules to the open position.

        Args:
            update: Current market update
        """
        if self.state != LifecycleState.OPEN or self.position is None:
            return

        pos = self.position
        if pos.pending_close_reason:
            logger.info(f"{self.label}: retrying close ({pos.pending_close_reason})")
            self.request_close(pos.pending_close_reason, update.timestamp)
            return

        for rule in self._rules:
            if rule(pos, update):
                return

    def _check_signal_exit(self, pos: ManagedPosition, update: MarketUpdate) -> bool:
        oscillator = update.indicator(INDICATOR_RSI)
        if oscillator is None:
            logger.warning(f"{self.label}: oscillator missing - signal exit skipped")
            return False

        cfg = self.management_config
        if pos.is_long:
            triggered = oscillator >= cfg.exit_oscillator_long
        else:
            triggered = oscillator <= cfg.exit_oscillator_short

        if not triggered:
            return False

        logger.info(f"{self.label}: signal exit, oscillator={oscillator:.1f}")
        self.request_close(REASON_SIGNAL_EXIT, update.timestamp)
        return True

    def _check_time_exit(self, pos: ManagedPosition, update: MarketUpdate) -> bool:
        max_bars = self.management_config.max_bars_in_trade
        if max_bars <= 0:
            return False

        bars_held = update.bar_index - pos.entry_bar_index
        if bars_held < max_bars:
            return False

        logger.info(f"{self.label}: time exit after {bars_held} bars (max {max_bars})")
        self.request_close(REASON_TIME_EXIT, update.timestamp)
        return True

    def _check_breakeven(self, pos: ManagedPosition, update: MarketUpdate) -> bool:
        if pos.breakeven_applied:
            return False

        threshold = round(pos.initial_stop_pips * self.management_config.breakeven_multiplier, 6)
        pips = pos.profit_pips(update.bid, update.ask)
        if pips < threshold:
            return False

        be_price = self.stops.breakeven_price(pos.entry_price, pos.direction.sign, pos.pip_size)

        if not is_more_favorable(pos.direction.sign, be_price, pos.current_stop_loss):
            pos.breakeven_applied = True
            logger.info(
                f"{self.label}: stop {pos.current_stop_loss:.5f} already at or beyond "
                f"breakeven {be_price:.5f}"
            )
            return False

        result = self._execute(
            "modify_stop_loss", self.execution.modify_stop_loss, pos.position_id, be_price
        )
        if not result.success:
            logger.warning(f"{self.label}: breakeven modification failed: {result.reason}")
            self._emit(EngineEventType.MODIFY_FAILED, result.reason or "breakeven failed", update.timestamp)
            return False

        pos.current_stop_loss = be_price
        pos.breakeven_applied = True
        self._trade_logger.position_event(
            "BREAKEVEN",
            f"{self.label} SL moved to {be_price:.5f} at {pips:.1f} pips",
            position_id=pos.position_id,
        )
        self._emit(EngineEventType.BREAKEVEN, f"SL moved to {be_price:.5f}", update.timestamp, price=be_price)
        return False

    def _check_partial_take(self, pos: ManagedPosition, update: MarketUpdate) -> bool:
        cfg = self.management_config
        if pos.partial_taken or not 0 < cfg.partial_close_percent < 100:
            return False

        threshold = round(pos.initial_stop_pips * cfg.partial_multiplier, 6)
        pips = pos.profit_pips(update.bid, update.ask)
        if pips < threshold:
            return False

        symbol = update.symbol
        raw = math.floor(pos.current_volume * cfg.partial_close_percent / 100 + 1e-9)
        to_close = symbol.normalize_volume_down(raw)
        if to_close <= 0:
            logger.debug(f"{self.label}: partial volume rounds to zero - skipped")
            return False

        remainder = pos.current_volume - to_close
        if remainder < symbol.min_volume:
            logger.info(
                f"{self.label}: partial remainder {remainder:.0f}u below minimum "
                f"{symbol.min_volume:.0f}u - closing fully"
            )
            self.request_close(REASON_PARTIAL_FULL_CLOSE, update.timestamp)
            return True

        result = self._execute(
            "modify_volume", self.execution.modify_volume, pos.position_id, remainder
        )
        if not result.success:
            logger.warning(f"{self.label}: partial take failed: {result.reason}")
            self._emit(EngineEventType.MODIFY_FAILED, result.reason or "partial failed", update.timestamp)
            return False

        pos.current_volume = remainder
        pos.partial_taken = True
        self._trade_logger.position_event(
            "PARTIAL",
            f"{self.label} closed {to_close:.0f}u, remaining {remainder:.0f}u at {pips:.1f} pips",
            position_id=pos.position_id,
        )
        self._emit(
            EngineEventType.PARTIAL,
            f"closed {to_close:.0f}u",
            update.timestamp,
            closed=to_close,
            remaining=remainder,
        )
        return False

    def _check_session_end(self, pos: ManagedPosition, update: MarketUpdate) -> bool:
        cfg = self.management_config
        if not cfg.force_exit_at_session_end:
            return False

        if not is_session_end_window(
            update.timestamp, self.session_config.end_hour, cfg.session_exit_cutoff_hour
        ):
            return False

        logger.info(f"{self.label}: session end exit at {to_utc(update.timestamp):%H:%M}")
        self.request_close(REASON_SESSION_END, update.timestamp)
        return True

    # =========================================================================
    # Closing
    # =========================================================================

    def request_close(self, reason: str, timestamp: Optional[datetime] = None) -> bool:
        """
        Ask the broker to close the open position.

        On failure the reason is kept and the close is retried on the
        next update.

        Args:
            reason: Why the position is being closed
            timestamp: Time of the request (for telemetry)

        Returns:
            True if the broker accepted the close
        """
        if self.state != LifecycleState.OPEN or self.position is None:
            logger.debug(f"{self.label}: close '{reason}' ignored in state {self.state.value}")
            return False

        pos = self.position
        logger.info(f"{self.label}: closing {pos.position_id} due to: {reason}")
        result = self._execute("close_position", self.execution.close_position, pos.position_id)

        if not result.success:
            pos.pending_close_reason = reason
            logger.error(f"{self.label}: close error: {result.reason} - will retry")
            self._emit(EngineEventType.CLOSE_FAILED, reason, timestamp, error=result.reason)
            return False

        pos.pending_close_reason = None
        pos.close_reason = reason
        self.state = LifecycleState.CLOSING
        self._emit(EngineEventType.CLOSE_REQUESTED, reason, timestamp)
        return True

    def on_position_closed(self, event: PositionClosedEvent) -> bool:
        """
        Handle a broker close confirmation.

        Args:
            event: Close event from the broker

        Returns:
            True if the event belonged to this label
        """
        if event.label != self.label:
            return False

        self.counters.record_position_closed(event.net_profit, event.was_stop_out)
        self._trade_logger.trade_exit(
            event.label,
            event.volume_closed,
            event.pips,
            event.net_profit,
            event.close_reason.value,
            position_id=event.position_id,
        )

        if self.position is not None and event.position_id == self.position.position_id:
            self.position = None
            self.state = LifecycleState.FLAT
            logger.info(f"{self.label}: trade state reset")

        self._emit(
            EngineEventType.POSITION_CLOSED,
            event.close_reason.value,
            None,
            position_id=event.position_id,
            net_profit=event.net_profit,
        )
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _place_market_order(self, direction: Direction, volume: float) -> OrderResult:
        try:
            return self.execution.place_market_order(direction, volume, self.label)
        except Exception as e:
            logger.error(f"{self.label}: place_market_order raised: {e}", exc_info=True)
            return OrderResult.failed(str(e))

    def _execute(self, operation: str, call: Callable[..., ExecutionResult], *args) -> ExecutionResult:
        """Run a broker call, converting exceptions to failed results."""
        try:
            return call(*args)
        except Exception as e:
            logger.error(f"{self.label}: {operation} raised: {e}", exc_info=True)
            return ExecutionResult.failed(str(e))

    def _emit(
        self,
        kind: EngineEventType,
        reason: str,
        timestamp: Optional[datetime],
        **details,
    ) -> None:
        if self.event_sink is None:
            return
        if timestamp is None:
            event = EngineEvent(kind=kind, label=self.label, reason=reason, details=details)
        else:
            event = EngineEvent(
                kind=kind, label=self.label, reason=reason, timestamp=timestamp, details=details
            )
        try:
            self.event_sink(event)
        except Exception as e:
            logger.error(f"Event sink failed for {kind.value}: {e}", exc_info=True)
