"""
Engine configuration.

Typed dataclass sections for the risk gate, daily limits, sizing, position
management, session hours, the default entry signal and output. Values
resolve in this order, last wins:

1. Defaults from constants.py
2. A YAML file, one mapping per section
3. RISKENGINE_* environment variables

Example usage:
    config = load_config("config/engine.yaml")
    warnings = validate_config(config)

    config.risk_gate.daily_loss_limit_fraction   # -0.01
    config.management.breakeven_multiplier       # 0.8
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from riskengine.lib.constants import (
    # Risk gate defaults
    DEFAULT_DAILY_LOSS_LIMIT_FRACTION,
    DEFAULT_DRAWDOWN_LIMIT_FRACTION,
    DEFAULT_MAX_CONCURRENT_POSITIONS,
    DEFAULT_RISK_STATE_FILE,
    # Daily budget defaults
    DEFAULT_MAX_DAILY_LOSS_FRACTION,
    DEFAULT_MAX_TRADES_PER_DAY,
    # Sizing defaults
    DEFAULT_RISK_PER_TRADE_FRACTION,
    DEFAULT_REWARD_RISK_RATIO,
    DEFAULT_ATR_STOP_MULTIPLIER,
    DEFAULT_SL_PAD_PIPS,
    DEFAULT_MIN_SL_PIPS,
    # Management defaults
    DEFAULT_BREAKEVEN_MULTIPLIER,
    DEFAULT_PARTIAL_MULTIPLIER,
    DEFAULT_PARTIAL_CLOSE_PERCENT,
    DEFAULT_EXIT_OSCILLATOR_LONG,
    DEFAULT_EXIT_OSCILLATOR_SHORT,
    DEFAULT_MAX_BARS_IN_TRADE,
    DEFAULT_SESSION_EXIT_CUTOFF_HOUR,
    # Session / signal defaults
    DEFAULT_SESSION_START_HOUR,
    DEFAULT_SESSION_END_HOUR,
    DEFAULT_MAX_SPREAD_PIPS,
    DEFAULT_MIN_VOLATILITY_RATIO,
    DEFAULT_MIN_ADX,
    DEFAULT_RSI_LONG_MAX,
    DEFAULT_RSI_SHORT_MIN,
)


# =============================================================================
# Configuration Dataclasses
# =============================================================================

@dataclass
class RiskGateConfig:
    """Session-level limits enforced by the risk gate."""
    # Negative fractions: -0.01 means halt at -1% of session start equity
    daily_loss_limit_fraction: float = DEFAULT_DAILY_LOSS_LIMIT_FRACTION
    drawdown_limit_fraction: float = DEFAULT_DRAWDOWN_LIMIT_FRACTION
    max_concurrent_positions: int = DEFAULT_MAX_CONCURRENT_POSITIONS
    # Where the gate state is written on breach; None disables persistence
    state_file: Optional[str] = DEFAULT_RISK_STATE_FILE
    # Re-initialize the gate when the calendar day rolls over
    reset_gate_on_new_day: bool = True


@dataclass
class DailyLimitsConfig:
    """Calendar-day trading budget."""
    # Positive fraction of balance; 0 disables the loss budget
    max_daily_loss_fraction: float = DEFAULT_MAX_DAILY_LOSS_FRACTION
    # 0 disables the trade count budget
    max_trades_per_day: int = DEFAULT_MAX_TRADES_PER_DAY


@dataclass
class SizingConfig:
    """Configuration for initial stop and position size."""
    risk_per_trade_fraction: float = DEFAULT_RISK_PER_TRADE_FRACTION
    reward_risk_ratio: float = DEFAULT_REWARD_RISK_RATIO
    atr_stop_multiplier: float = DEFAULT_ATR_STOP_MULTIPLIER
    sl_pad_pips: float = DEFAULT_SL_PAD_PIPS
    min_sl_pips: float = DEFAULT_MIN_SL_PIPS


@dataclass
class ManagementConfig:
    """Configuration for open position management."""
    breakeven_multiplier: float = DEFAULT_BREAKEVEN_MULTIPLIER
    partial_multiplier: float = DEFAULT_PARTIAL_MULTIPLIER
    partial_close_percent: int = DEFAULT_PARTIAL_CLOSE_PERCENT
    # Oscillator (RSI) exit thresholds
    exit_oscillator_long: float = DEFAULT_EXIT_OSCILLATOR_LONG
    exit_oscillator_short: float = DEFAULT_EXIT_OSCILLATOR_SHORT
    max_bars_in_trade: int = DEFAULT_MAX_BARS_IN_TRADE
    force_exit_at_session_end: bool = True
    session_exit_cutoff_hour: int = DEFAULT_SESSION_EXIT_CUTOFF_HOUR


@dataclass
class SessionConfig:
    """Trading hours (UTC) and spread filter for new entries."""
    start_hour: int = DEFAULT_SESSION_START_HOUR
    end_hour: int = DEFAULT_SESSION_END_HOUR
    max_spread_pips: float = DEFAULT_MAX_SPREAD_PIPS


@dataclass
class SignalConfig:
    """Configuration for the default trend entry signal."""
    min_volatility_ratio: float = DEFAULT_MIN_VOLATILITY_RATIO
    min_adx: float = DEFAULT_MIN_ADX
    rsi_long_max: float = DEFAULT_RSI_LONG_MAX
    rsi_short_min: float = DEFAULT_RSI_SHORT_MIN


@dataclass
class OutputConfig:
    """Configuration for output and logging."""
    logs_dir: Optional[str] = None
    log_level: str = "INFO"


@dataclass
class EngineConfig:
    """Main configuration container."""
    risk_gate: RiskGateConfig = field(default_factory=RiskGateConfig)
    daily_limits: DailyLimitsConfig = field(default_factory=DailyLimitsConfig)
    sizing: SizingConfig = field(default_factory=SizingConfig)
    management: ManagementConfig = field(default_factory=ManagementConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    signal: SignalConfig = field(default_factory=SignalConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    # Position label prefix; label = "<prefix>_<instrument>[_<timeframe>]"
    label_prefix: str = "HybridTrend"


_SECTIONS = (
    "risk_gate",
    "daily_limits",
    "sizing",
    "management",
    "session",
    "signal",
    "output",
)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(
    config_path: Optional[str] = None,
    override_env: bool = True
) -> EngineConfig:
    """
    Load configuration from YAML file with optional environment overrides.

    Args:
        config_path: Path to YAML config file (optional)
        override_env: If True, apply environment variable overrides

    Returns:
        EngineConfig instance

    Example:
        config = load_config("config/engine.yaml")
        print(config.daily_limits.max_trades_per_day)  # 3
    """
    config = EngineConfig()

    if config_path:
        config = _load_from_yaml(config_path, config)

    if override_env:
        config = _apply_env_overrides(config)

    return config


def _load_from_yaml(config_path: str, base_config: EngineConfig) -> EngineConfig:
    """Load configuration from YAML file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        yaml_data = yaml.safe_load(f)

    if yaml_data is None:
        return base_config

    for section in _SECTIONS:
        if section in yaml_data:
            setattr(
                base_config,
                section,
                _update_dataclass(getattr(base_config, section), yaml_data[section]),
            )

    if "label_prefix" in yaml_data:
        base_config.label_prefix = yaml_data["label_prefix"]

    return base_config


def _update_dataclass(instance: Any, data: dict) -> Any:
    """Update dataclass fields from dictionary."""
    if not data:
        return instance

    field_names = {f.name for f in instance.__dataclass_fields__.values()}

    for key, value in data.items():
        normalized_key = key.replace(".", "_").replace("-", "_")

        if normalized_key in field_names:
            setattr(instance, normalized_key, value)

    return instance


def _apply_env_overrides(config: EngineConfig) -> EngineConfig:
    """Apply environment variable overrides to config."""

    # Key risk parameters
    if env_val := os.getenv("RISKENGINE_DAILY_LOSS_LIMIT_FRACTION"):
        config.risk_gate.daily_loss_limit_fraction = float(env_val)

    if env_val := os.getenv("RISKENGINE_DRAWDOWN_LIMIT_FRACTION"):
        config.risk_gate.drawdown_limit_fraction = float(env_val)

    if env_val := os.getenv("RISKENGINE_MAX_CONCURRENT_POSITIONS"):
        config.risk_gate.max_concurrent_positions = int(env_val)

    if env_val := os.getenv("RISKENGINE_STATE_FILE"):
        config.risk_gate.state_file = env_val

    if env_val := os.getenv("RISKENGINE_RISK_PER_TRADE"):
        config.sizing.risk_per_trade_fraction = float(env_val)

    if env_val := os.getenv("RISKENGINE_MAX_TRADES_PER_DAY"):
        config.daily_limits.max_trades_per_day = int(env_val)

    if env_val := os.getenv("RISKENGINE_MAX_DAILY_LOSS"):
        config.daily_limits.max_daily_loss_fraction = float(env_val)

    # Output
    if env_val := os.getenv("RISKENGINE_LOGS_DIR"):
        config.output.logs_dir = env_val

    if env_val := os.getenv("RISKENGINE_LOG_LEVEL"):
        config.output.log_level = env_val.upper()

    return config


# =============================================================================
# Configuration Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def validate_config(config: EngineConfig) -> list[str]:
    """
    Validate configuration values.

    Args:
        config: EngineConfig to validate

    Returns:
        List of validation warnings (empty if valid)

    Raises:
        ConfigValidationError: If critical validation fails
    """
    warnings = []
    errors = []

    # Risk gate validation
    gate = config.risk_gate
    if gate.daily_loss_limit_fraction >= 0:
        errors.append(
            f"daily_loss_limit_fraction ({gate.daily_loss_limit_fraction}) must be negative"
        )
    if gate.drawdown_limit_fraction >= 0:
        errors.append(
            f"drawdown_limit_fraction ({gate.drawdown_limit_fraction}) must be negative"
        )
    if gate.max_concurrent_positions < 1:
        errors.append(
            f"max_concurrent_positions ({gate.max_concurrent_positions}) must be >= 1"
        )

    # Daily budget validation
    daily = config.daily_limits
    if daily.max_daily_loss_fraction < 0:
        errors.append(
            f"max_daily_loss_fraction ({daily.max_daily_loss_fraction}) cannot be negative"
        )
    if daily.max_trades_per_day < 0:
        errors.append(f"max_trades_per_day ({daily.max_trades_per_day}) cannot be negative")
    if daily.max_daily_loss_fraction == 0 and daily.max_trades_per_day == 0:
        warnings.append("Both daily budgets are disabled - only the risk gate limits trading")

    # Sizing validation
    sizing = config.sizing
    if sizing.risk_per_trade_fraction <= 0:
        errors.append(
            f"risk_per_trade_fraction ({sizing.risk_per_trade_fraction}) must be positive"
        )
    elif sizing.risk_per_trade_fraction > 0.05:
        warnings.append(
            f"risk_per_trade_fraction ({sizing.risk_per_trade_fraction}) is > 5% of equity - "
            f"consider reducing for capital preservation"
        )
    if sizing.reward_risk_ratio < 1.0:
        errors.append(f"reward_risk_ratio ({sizing.reward_risk_ratio}) must be >= 1.0")
    if sizing.min_sl_pips <= 0:
        errors.append(f"min_sl_pips ({sizing.min_sl_pips}) must be positive")
    if sizing.sl_pad_pips < 0:
        errors.append("sl_pad_pips cannot be negative")

    # Management validation
    mgmt = config.management
    if not 0 <= mgmt.partial_close_percent < 100:
        errors.append(
            f"partial_close_percent ({mgmt.partial_close_percent}) must be in [0, 100)"
        )
    if mgmt.partial_close_percent > 0 and mgmt.partial_multiplier <= mgmt.breakeven_multiplier:
        warnings.append(
            f"partial_multiplier ({mgmt.partial_multiplier}) <= breakeven_multiplier "
            f"({mgmt.breakeven_multiplier}) - partial profit fires before breakeven protection"
        )
    if mgmt.max_bars_in_trade < 0:
        errors.append("max_bars_in_trade cannot be negative")
    if mgmt.exit_oscillator_short >= mgmt.exit_oscillator_long:
        errors.append(
            f"exit_oscillator_short ({mgmt.exit_oscillator_short}) must be below "
            f"exit_oscillator_long ({mgmt.exit_oscillator_long})"
        )

    # Session validation
    session = config.session
    for name, hour in (
        ("start_hour", session.start_hour),
        ("end_hour", session.end_hour),
        ("session_exit_cutoff_hour", mgmt.session_exit_cutoff_hour),
    ):
        if not 0 <= hour <= 23:
            errors.append(f"{name} ({hour}) must be between 0 and 23")
    if session.start_hour >= session.end_hour:
        errors.append(
            f"start_hour ({session.start_hour}) must be before end_hour ({session.end_hour})"
        )
    if mgmt.force_exit_at_session_end and session.end_hour >= mgmt.session_exit_cutoff_hour:
        warnings.append(
            f"end_hour ({session.end_hour}) >= session_exit_cutoff_hour "
            f"({mgmt.session_exit_cutoff_hour}) - the session end exit will never fire"
        )
    if session.max_spread_pips < 0:
        errors.append("max_spread_pips cannot be negative")

    if errors:
        raise ConfigValidationError("Configuration validation failed:\n" +
                                    "\n".join(f"  - {e}" for e in errors))

    return warnings


# =============================================================================
# Configuration Export
# =============================================================================

def config_to_dict(config: EngineConfig) -> dict:
    """
    Convert EngineConfig to dictionary for serialization.

    Args:
        config: Configuration to convert

    Returns:
        Dictionary representation (YAML-safe)
    """
    from dataclasses import asdict
    return asdict(config)


def save_config(config: EngineConfig, path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration to save
        path: Output file path
    """
    data = config_to_dict(config)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
