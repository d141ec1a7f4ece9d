"""
Trade Engine.

Orchestrates the risk gate, daily counters and one position lifecycle per
instrument label. Each market update runs, in order:

1. Daily counter rollover (new calendar day resets the gate)
2. Risk gate equity update
3. Risk gate pre-trade check
4. Daily loss budget (first hit latches the day and closes the position)
5. Lifecycle management of the open position
6. Entry gating: flat, daily trade budget, pre-trade check
7. Entry filters and entry signal
8. Sizing, order placement and protection

Updates are serialized per instrument label through a re-entrant lock.
A risk breach halts new entries; open positions are flattened on the next
update of their instrument (or immediately through flatten_all()).
"""

from datetime import date, datetime
from typing import Dict, Optional
import logging
import threading

from riskengine.lib.config import EngineConfig
from riskengine.lib.logging_utils import TradingLogger
from riskengine.lib.time_utils import trading_day
from riskengine.risk.daily_counters import DailyRiskCounters
from riskengine.risk.risk_gate import AccountSnapshot, RiskBreachEvent, RiskGate
from riskengine.trading.events import (
    Direction,
    EngineEvent,
    EngineEventType,
    MarketUpdate,
    PositionClosedEvent,
)
from riskengine.trading.execution import ExecutionPort
from riskengine.trading.lifecycle import EventSink, LifecycleState, PositionLifecycle
from riskengine.trading.signal_generator import EntryFilter, EntrySignal, TrendSignal

logger = logging.getLogger(__name__)

REASON_DAILY_MAX_LOSS = "daily max loss"
REASON_RISK_BREACH = "risk breach"


def make_label(prefix: str, instrument: str, timeframe: Optional[str] = None) -> str:
    """Build the label identifying an instrument's positions."""
    if timeframe:
        return f"{prefix}_{instrument}_{timeframe}"
    return f"{prefix}_{instrument}"


class TradeEngine:
    """
    Per-update trading orchestrator.

    Usage:
        engine = TradeEngine(execution=broker, config=load_config("config.yaml"))
        engine.start(AccountSnapshot(balance=10000.0, equity=10000.0))

        # Market data loop
        engine.on_market_update(update)

        # Broker callbacks
        engine.on_position_closed(event)

        # Supervisor
        engine.flatten_all("manual stop")
    """

    def __init__(
        self,
        execution: ExecutionPort,
        config: Optional[EngineConfig] = None,
        signal: Optional[EntrySignal] = None,
        risk_gate: Optional[RiskGate] = None,
        counters: Optional[DailyRiskCounters] = None,
        event_sink: Optional[EventSink] = None,
        flatten_on_breach: bool = True,
    ):
        """
        Initialize trade engine.

        Args:
            execution: Broker execution port
            config: Engine configuration (uses defaults if None)
            signal: Entry predicate (defaults to TrendSignal)
            risk_gate: Process-wide risk gate (created from config if None)
            counters: Daily counters (created if None)
            event_sink: Optional callback receiving EngineEvents
            flatten_on_breach: Close open positions after a risk breach
        """
        self.execution = execution
        self.config = config or EngineConfig()
        self.risk_gate = risk_gate or RiskGate(self.config.risk_gate)
        self.counters = counters or DailyRiskCounters()
        self.entry_filter = EntryFilter(self.config.session, self.config.signal)
        self.signal = signal or TrendSignal(self.config.signal)
        self.event_sink = event_sink
        self.flatten_on_breach = flatten_on_breach

        self._lifecycles: Dict[str, PositionLifecycle] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

        self._started = False
        self._halt_reason: Optional[str] = None
        self._trade_logger = TradingLogger()

        self.risk_gate.add_breach_listener(self._on_risk_breach)

    # =========================================================================
    # Session control
    # =========================================================================

    def start(self, snapshot: AccountSnapshot, restore_state: bool = False) -> None:
        """
        Start the trading session.

        Args:
            snapshot: Account balance/equity at start
            restore_state: Load persisted gate state instead of a fresh init
        """
        if restore_state and self.risk_gate.restore():
            if not self.risk_gate.is_trading_allowed:
                self._halt_reason = self.risk_gate.state.breach_reason
        else:
            self.risk_gate.init(snapshot)
            self._halt_reason = None
        self._started = True

        cfg = self.config
        logger.info(
            f"=== TradeEngine started | Risk: {cfg.sizing.risk_per_trade_fraction:.2%} | "
            f"RR: {cfg.sizing.reward_risk_ratio:.1f} | Max trades/day: "
            f"{cfg.daily_limits.max_trades_per_day} ==="
        )

    def open_position_count(self) -> int:
        """Number of labels currently holding (or opening/closing) a position."""
        with self._registry_lock:
            lifecycles = list(self._lifecycles.values())
        return sum(1 for lc in lifecycles if lc.state != LifecycleState.FLAT)

    def get_lifecycle(self, label: str) -> Optional[PositionLifecycle]:
        """Get the lifecycle for a label, if one exists."""
        with self._registry_lock:
            return self._lifecycles.get(label)

    def get_status(self) -> dict:
        """
        Get engine status for logging/display.

        Returns:
            Dictionary with gate metrics, daily counters and positions
        """
        with self._registry_lock:
            lifecycles = dict(self._lifecycles)
        counters = self.counters.snapshot()
        return {
            "risk_gate": self.risk_gate.get_metrics(),
            "daily": {
                "trading_day": counters.trading_day.isoformat() if counters.trading_day else None,
                "trades_executed_today": counters.trades_executed_today,
                "realized_pnl_today": counters.realized_pnl_today,
                "daily_limit_reached": counters.daily_limit_reached,
            },
            "positions": {
                label: {
                    "state": lc.state.value,
                    "position": lc.position.to_dict() if lc.position else None,
                }
                for label, lc in lifecycles.items()
            },
        }

    # =========================================================================
    # Update path
    # =========================================================================

    def on_market_update(self, update: MarketUpdate) -> None:
        """
        Process one market/account update.

        Args:
            update: Market update for one instrument
        """
        label = make_label(self.config.label_prefix, update.instrument, update.timeframe)

        with self._lock_for(label):
            lifecycle = self._get_or_create_lifecycle(label)

            if not self._started:
                logger.warning("Engine not started - initializing risk gate from first update")
                self.start(update.account)

            previous_day = self.counters.trading_day
            if self.counters.rollover_if_new_day(trading_day(update.timestamp)):
                self._on_new_day(update, first_day=previous_day is None)

            self.risk_gate.on_equity_update(update.account, update.timestamp)
            gate_ok = self.risk_gate.pre_trade_check(self.open_position_count())

            if self._halt_reason and self.flatten_on_breach:
                if lifecycle.state == LifecycleState.OPEN:
                    lifecycle.request_close(REASON_RISK_BREACH, update.timestamp)
                return

            limits = self.config.daily_limits
            balance = update.account.balance
            if self.counters.daily_limit_reached or self.counters.loss_limit_hit(
                balance, limits.max_daily_loss_fraction
            ):
                self._handle_daily_loss_limit(lifecycle, update)
                return

            lifecycle.manage(update)

            if not lifecycle.is_flat:
                return
            if self.counters.trade_limit_hit(limits.max_trades_per_day):
                logger.debug(f"{label}: max trades per day reached")
                return
            if not gate_ok:
                logger.debug(f"{label}: pre-trade check failed")
                return

            result = self.entry_filter.check(update)
            if not result.passed:
                logger.debug(f"{label}: entry filter: {result.reason}")
                return

            direction = self._evaluate_signal(update)
            if direction is None:
                return

            lifecycle.open_position(direction, update)

    def on_position_closed(self, event: PositionClosedEvent) -> bool:
        """
        Route a broker close confirmation to its lifecycle.

        Args:
            event: Close event from the broker

        Returns:
            True if the event matched a managed label
        """
        lifecycle = self.get_lifecycle(event.label)
        if lifecycle is None:
            logger.debug(f"Ignoring close for unmanaged label {event.label}")
            return False

        with self._lock_for(event.label):
            return lifecycle.on_position_closed(event)

    def flatten_all(self, reason: str) -> int:
        """
        Request a close of every open position.

        Args:
            reason: Close reason

        Returns:
            Number of close requests accepted by the broker
        """
        with self._registry_lock:
            labels = list(self._lifecycles.keys())

        closed = 0
        for label in labels:
            with self._lock_for(label):
                lifecycle = self._lifecycles[label]
                if lifecycle.state == LifecycleState.OPEN and lifecycle.request_close(reason):
                    closed += 1

        logger.warning(f"Flatten all ({reason}): {closed} close request(s) accepted")
        return closed

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_for(self, label: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(label)
            if lock is None:
                lock = threading.RLock()
                self._locks[label] = lock
            return lock

    def _get_or_create_lifecycle(self, label: str) -> PositionLifecycle:
        with self._registry_lock:
            lifecycle = self._lifecycles.get(label)
            if lifecycle is None:
                lifecycle = PositionLifecycle(
                    label=label,
                    execution=self.execution,
                    counters=self.counters,
                    sizing_config=self.config.sizing,
                    management_config=self.config.management,
                    session_config=self.config.session,
                    event_sink=self.event_sink,
                )
                self._lifecycles[label] = lifecycle
                logger.info(f"Managing new label {label}")
            return lifecycle

    def _on_new_day(self, update: MarketUpdate, first_day: bool) -> None:
        day = trading_day(update.timestamp)
        self._emit(EngineEventType.NEW_DAY, day.isoformat(), update.timestamp)

        if not self.config.risk_gate.reset_gate_on_new_day:
            return
        if first_day and not self._halted_before(day):
            return

        self.risk_gate.reset_for_new_session(update.account)
        self._halt_reason = None

    def _halted_before(self, day: date) -> bool:
        """True if the gate holds a halt restored from an earlier trading day."""
        state = self.risk_gate.state
        if state.trading_allowed or state.breach_time is None:
            return False
        if trading_day(state.breach_time) < day:
            logger.info(f"Restored halt from {trading_day(state.breach_time)} expired on {day}")
            return True
        return False

    def _handle_daily_loss_limit(self, lifecycle: PositionLifecycle, update: MarketUpdate) -> None:
        if self.counters.mark_limit_reached(REASON_DAILY_MAX_LOSS):
            limit = update.account.balance * self.config.daily_limits.max_daily_loss_fraction
            self._trade_logger.risk_event(
                "DAILY_LIMIT",
                f"Daily max loss of {limit:.2f} reached. No new trades.",
                realized_pnl=self.counters.realized_pnl_today,
            )
            self._emit(EngineEventType.DAILY_LIMIT, REASON_DAILY_MAX_LOSS, update.timestamp)

        if lifecycle.state == LifecycleState.OPEN:
            lifecycle.request_close(REASON_DAILY_MAX_LOSS, update.timestamp)

    def _evaluate_signal(self, update: MarketUpdate) -> Optional[Direction]:
        try:
            return self.signal(update)
        except Exception as e:
            logger.error(f"{update.instrument}: entry signal raised: {e}", exc_info=True)
            return None

    def _on_risk_breach(self, event: RiskBreachEvent) -> None:
        self._halt_reason = event.reason
        self._trade_logger.risk_event("RISK_BREACH", event.reason)
        self._emit(EngineEventType.RISK_BREACH, event.reason, event.timestamp)

    def _emit(self, kind: EngineEventType, reason: str, timestamp: datetime) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(EngineEvent(kind=kind, label="*", reason=reason, timestamp=timestamp))
        except Exception as e:
            logger.error(f"Event sink failed for {kind.value}: {e}", exc_info=True)
