"""Core scoring components."""

from .exceptions import (
    RiskScoringError,
    ConfigurationError,
    DataUnavailableError,
)

from .dispatcher import (
    RequestDispatcher,
    ServiceRule,
    RetryAfter,
    QueuedRequest,
)

from .backtest import (
    LiquidationParameters,
    PriceSeries,
    simulate,
    run_backtest,
    blocks_to_query,
    token_to_usd,
    should_backtest,
)

from .overrides import (
    Category,
    OverrideMode,
    OverrideConfig,
    OverrideTables,
)

__all__ = [
    # Errors
    "RiskScoringError",
    "ConfigurationError",
    "DataUnavailableError",
    # Dispatcher
    "RequestDispatcher",
    "ServiceRule",
    "RetryAfter",
    "QueuedRequest",
    # Backtest
    "LiquidationParameters",
    "PriceSeries",
    "simulate",
    "run_backtest",
    "blocks_to_query",
    "token_to_usd",
    "should_backtest",
    # Overrides
    "Category",
    "OverrideMode",
    "OverrideConfig",
    "OverrideTables",
]
