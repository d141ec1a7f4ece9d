"""
Position Sizing Module.

Calculates trade volume from a fixed fractional risk budget:

    monetary risk  = equity * risk fraction
    risk per unit  = stop distance (pips) * pip value per unit
    ideal units    = monetary risk / risk per unit

The ideal size is rounded DOWN to the broker's volume step and clamped to
the broker's maximum. A size that cannot reach the broker's minimum is
rejected - rounding up to the minimum would silently over-risk the account.

Sizing is a pure function: the same request always yields the same volume
or the same rejection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging
import math

from riskengine.lib.constants import SymbolSpec

logger = logging.getLogger(__name__)

# Tolerance for float noise when flooring to the volume step
_STEP_EPSILON = 1e-9


class SizingFailure(Enum):
    """Reason a sizing request was rejected."""
    INVALID_STOP = "invalid_stop"
    INVALID_PIP_VALUE = "invalid_pip_value"
    INVALID_RISK_PER_UNIT = "invalid_risk_per_unit"
    INVALID_VOLUME_STEP = "invalid_volume_step"
    BELOW_MINIMUM_VOLUME = "below_minimum_volume"


@dataclass(frozen=True)
class SizingRequest:
    """
    Inputs for a sizing calculation.

    Attributes:
        equity: Account equity
        risk_fraction: Fraction of equity to risk (0.01 = 1%)
        stop_distance: Stop distance in price units
        pip_size: Price increment of one pip
        pip_value_per_unit: Value of one pip for one unit
        min_volume: Broker minimum volume (units)
        max_volume: Broker maximum volume (units)
        volume_step: Broker volume increment (units)
    """
    equity: float
    risk_fraction: float
    stop_distance: float
    pip_size: float
    pip_value_per_unit: float
    min_volume: float
    max_volume: float
    volume_step: float

    @classmethod
    def for_symbol(
        cls,
        symbol: SymbolSpec,
        equity: float,
        risk_fraction: float,
        stop_distance: float,
    ) -> 'SizingRequest':
        """Build a request using a symbol's pip and volume rules."""
        return cls(
            equity=equity,
            risk_fraction=risk_fraction,
            stop_distance=stop_distance,
            pip_size=symbol.pip_size,
            pip_value_per_unit=symbol.pip_value_per_unit,
            min_volume=symbol.min_volume,
            max_volume=symbol.max_volume,
            volume_step=symbol.volume_step,
        )


@dataclass(frozen=True)
class SizingResult:
    """
    Result of a sizing calculation.

    Exactly one of volume / failure is set.
    """
    volume: Optional[float] = None
    failure: Optional[SizingFailure] = None
    monetary_risk: float = 0.0
    risk_per_unit: float = 0.0
    ideal_units: float = 0.0
    reason: str = ""

    @property
    def success(self) -> bool:
        """Check if a tradable volume was produced."""
        return self.failure is None and self.volume is not None


def _reject(failure: SizingFailure, reason: str, **kwargs) -> SizingResult:
    return SizingResult(failure=failure, reason=reason, **kwargs)


def compute_volume(request: SizingRequest) -> SizingResult:
    """
    Compute a validated trade volume for a request.

    Args:
        request: Sizing inputs

    Returns:
        SizingResult with a quantized volume or a typed rejection
    """
    if request.stop_distance <= 0:
        return _reject(
            SizingFailure.INVALID_STOP,
            f"Stop distance must be positive (got {request.stop_distance})",
        )

    monetary_risk = request.equity * request.risk_fraction

    if request.pip_value_per_unit <= 0 or request.pip_size <= 0:
        return _reject(
            SizingFailure.INVALID_PIP_VALUE,
            f"Invalid pip value {request.pip_value_per_unit} / pip size {request.pip_size}",
            monetary_risk=monetary_risk,
        )

    # Stop distances are quoted in pips to one decimal by the broker
    stop_pips = round(request.stop_distance / request.pip_size, 6)
    risk_per_unit = stop_pips * request.pip_value_per_unit
    if risk_per_unit <= 0:
        return _reject(
            SizingFailure.INVALID_RISK_PER_UNIT,
            f"Monetary risk per unit invalid ({risk_per_unit}), stop {stop_pips} pips",
            monetary_risk=monetary_risk,
        )

    ideal_units = monetary_risk / risk_per_unit

    if request.volume_step <= 0:
        return _reject(
            SizingFailure.INVALID_VOLUME_STEP,
            f"Volume step must be positive (got {request.volume_step})",
            monetary_risk=monetary_risk,
            risk_per_unit=risk_per_unit,
            ideal_units=ideal_units,
        )

    quantized = math.floor(ideal_units / request.volume_step + _STEP_EPSILON) * request.volume_step

    if quantized < request.min_volume:
        return _reject(
            SizingFailure.BELOW_MINIMUM_VOLUME,
            f"Calculated volume ({quantized:.0f}u) below minimum ({request.min_volume:.0f}u)",
            monetary_risk=monetary_risk,
            risk_per_unit=risk_per_unit,
            ideal_units=ideal_units,
        )

    volume = max(request.min_volume, min(request.max_volume, quantized))

    return SizingResult(
        volume=volume,
        monetary_risk=monetary_risk,
        risk_per_unit=risk_per_unit,
        ideal_units=ideal_units,
        reason=(
            f"{volume:.0f}u for risk {monetary_risk:.2f} "
            f"({request.risk_fraction:.2%}), stop {stop_pips:.1f} pips"
        ),
    )


class PositionSizer:
    """
    Fixed fractional position sizer.

    Thin stateful wrapper around compute_volume() that carries the
    configured risk fraction and logs every decision.

    Usage:
        sizer = PositionSizer(risk_fraction=0.01)
        result = sizer.size(symbol=EURUSD_SPEC, equity=10000.0, stop_distance=0.0020)
        if result.success:
            print(f"Trade {result.volume} units")
    """

    def __init__(self, risk_fraction: float = 0.01):
        """
        Initialize position sizer.

        Args:
            risk_fraction: Fraction of equity to risk per trade
        """
        self.risk_fraction = risk_fraction

    def size(
        self,
        symbol: SymbolSpec,
        equity: float,
        stop_distance: float,
    ) -> SizingResult:
        """
        Size a trade for a symbol.

        Args:
            symbol: Symbol pip and volume rules
            equity: Current account equity
            stop_distance: Stop distance in price units

        Returns:
            SizingResult
        """
        request = SizingRequest.for_symbol(
            symbol=symbol,
            equity=equity,
            risk_fraction=self.risk_fraction,
            stop_distance=stop_distance,
        )
        result = compute_volume(request)

        if result.success:
            logger.info(
                f"Dynamic volume: {symbol.units_to_lots(result.volume):.2f} lots "
                f"({result.volume:.0f}u) | {result.reason}"
            )
        else:
            logger.warning(f"Sizing rejected ({result.failure.value}): {result.reason}")

        return result
