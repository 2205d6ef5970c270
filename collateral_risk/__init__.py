"""
Collateral Risk Scoring.

Scores the collateral assets of a lending pool on four risk categories
(crash, liquidity, volatility, historical) and aggregates a pool grade.

Quick Start:
    import asyncio
    from collateral_risk import RequestDispatcher, OverrideTables, score_pool_from_chain, to_letter_grades

    dispatcher = RequestDispatcher.from_settings()
    overrides = OverrideTables.load()
    pool = asyncio.run(score_pool_from_chain(dispatcher, overrides, "6", comptroller_address))
    print(to_letter_grades(pool))
"""

__version__ = "1.0.0"

# Core components
from .core import (
    # Errors
    RiskScoringError,
    ConfigurationError,
    DataUnavailableError,
    # Dispatcher
    RequestDispatcher,
    ServiceRule,
    RetryAfter,
    # Backtest
    LiquidationParameters,
    PriceSeries,
    simulate,
    run_backtest,
    # Overrides
    OverrideMode,
    OverrideConfig,
    OverrideTables,
)

# Scoring
from .asset_score import (
    AssetMetrics,
    Score,
    ScoreBlock,
    PoolScore,
    UNSCORED,
    score_asset,
    letter_grade,
    calc_overall,
    to_letter_grades,
)

# Pipeline
from .pipeline import (
    score_asset_from_address,
    score_pool,
    score_pool_from_chain,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "RiskScoringError",
    "ConfigurationError",
    "DataUnavailableError",
    # Dispatcher
    "RequestDispatcher",
    "ServiceRule",
    "RetryAfter",
    # Backtest
    "LiquidationParameters",
    "PriceSeries",
    "simulate",
    "run_backtest",
    # Overrides
    "OverrideMode",
    "OverrideConfig",
    "OverrideTables",
    # Scoring
    "AssetMetrics",
    "Score",
    "ScoreBlock",
    "PoolScore",
    "UNSCORED",
    "score_asset",
    "letter_grade",
    "calc_overall",
    "to_letter_grades",
    # Pipeline
    "score_asset_from_address",
    "score_pool",
    "score_pool_from_chain",
]
