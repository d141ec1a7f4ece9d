"""
Execution Port.

Abstract broker interface used by the position lifecycle. Implementations
wrap a real broker connection (or a simulator/backtester). Every call is
synchronous and returns a result object; the engine never retries
implicitly within a call.

An implementation may raise - the lifecycle converts any exception into a
failed result so a broker error never escapes the update path.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from riskengine.trading.events import Direction


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a broker modification or close."""
    success: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> 'ExecutionResult':
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> 'ExecutionResult':
        return cls(success=False, reason=reason)


@dataclass(frozen=True)
class OrderResult:
    """
    Outcome of a market order.

    On success the broker position id and the actual fill price are set.
    """
    success: bool
    position_id: Optional[str] = None
    entry_price: Optional[float] = None
    volume: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def filled(cls, position_id: str, entry_price: float, volume: float) -> 'OrderResult':
        return cls(success=True, position_id=position_id, entry_price=entry_price, volume=volume)

    @classmethod
    def failed(cls, reason: str) -> 'OrderResult':
        return cls(success=False, reason=reason)


class ExecutionPort(ABC):
    """Abstract base class for broker execution."""

    @abstractmethod
    def place_market_order(self, direction: Direction, volume: float, label: str) -> OrderResult:
        """Open a position at market. Returns the fill or a failure."""
        pass

    @abstractmethod
    def modify_stop_loss(self, position_id: str, price: float) -> ExecutionResult:
        """Set the position's stop loss price."""
        pass

    @abstractmethod
    def modify_take_profit(self, position_id: str, price: float) -> ExecutionResult:
        """Set the position's take profit price."""
        pass

    @abstractmethod
    def modify_volume(self, position_id: str, new_volume: float) -> ExecutionResult:
        """Reduce the position to new_volume units."""
        pass

    @abstractmethod
    def close_position(self, position_id: str) -> ExecutionResult:
        """Close the whole position at market."""
        pass
