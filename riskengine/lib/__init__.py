"""
Shared utilities library for the risk engine.

This module provides common utilities used across the codebase:
- constants: Symbol specifications, default risk and management parameters
- time_utils: UTC normalization, trading day and session hour helpers
- config: Unified configuration loading from YAML and environment variables
- logging: Structured logging with rotation and formatting
"""

from riskengine.lib.constants import (
    UTC_TIMEZONE,
    SymbolSpec,
    EURUSD_SPEC,
)

from riskengine.lib.time_utils import (
    get_utc_now,
    to_utc,
    trading_day,
    utc_hour,
    is_within_session,
    is_session_end_window,
)

from riskengine.lib.config import (
    EngineConfig,
    RiskGateConfig,
    DailyLimitsConfig,
    SizingConfig,
    ManagementConfig,
    SessionConfig,
    SignalConfig,
    OutputConfig,
    ConfigValidationError,
    load_config,
    validate_config,
    save_config,
)

from riskengine.lib.logging_utils import (
    setup_logging,
    setup_logging_from_config,
    TradingLogger,
    TradingFormatter,
)

__all__ = [
    # Constants
    "UTC_TIMEZONE",
    "SymbolSpec",
    "EURUSD_SPEC",
    # Time utilities
    "get_utc_now",
    "to_utc",
    "trading_day",
    "utc_hour",
    "is_within_session",
    "is_session_end_window",
    # Config
    "EngineConfig",
    "RiskGateConfig",
    "DailyLimitsConfig",
    "SizingConfig",
    "ManagementConfig",
    "SessionConfig",
    "SignalConfig",
    "OutputConfig",
    "ConfigValidationError",
    "load_config",
    "validate_config",
    "save_config",
    # Logging
    "setup_logging",
    "setup_logging_from_config",
    "TradingLogger",
    "TradingFormatter",
]
