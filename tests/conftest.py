"""
Pytest configuration and fixtures for Collateral Risk Scoring.

This file contains shared fixtures used across all test modules.
Fixtures follow the pattern: factory functions with auto-cleanup.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from collateral_risk.asset_score import AssetMetrics
from collateral_risk.core.backtest import LiquidationParameters, PriceSeries
from collateral_risk.core.dispatcher import RequestDispatcher, ServiceRule
from collateral_risk.core.overrides import OverrideTables


TOKEN = "0x1f9840a85d5af5bf1d1762f925bdaddc4201f984"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"


# =============================================================================
# METRICS FIXTURES
# =============================================================================

@pytest.fixture
def metrics_factory():
    """
    Factory fixture for AssetMetrics.

    Defaults describe a large, liquid, audited asset on which no check fires.

    Usage:
        def test_something(metrics_factory):
            metrics = metrics_factory(market_cap=20_000_000, audits=False)
    """
    def _create_metrics(**overrides) -> AssetMetrics:
        base = {
            "address": TOKEN,
            "symbol": "UNI",
            "collateral_factor": 0.5,
            "liquidation_incentive": 0.08,
            "total_liquidity": 5_000_000.0,
            "market_cap": 1_000_000_000.0,
            "fully_diluted_value": 1_100_000_000.0,
            "twitter_followers": 50_000,
            "audits": True,
            "price_change": 0.0,
            "lp_addresses": 5_000,
        }
        base.update(overrides)
        return AssetMetrics(**base)

    return _create_metrics


@pytest.fixture
def safe_metrics(metrics_factory) -> AssetMetrics:
    return metrics_factory()


@pytest.fixture
def risky_metrics(metrics_factory) -> AssetMetrics:
    """Small, illiquid, unaudited asset: every crash and liquidity check fires."""
    return metrics_factory(
        market_cap=20_000_000.0,
        fully_diluted_value=1_000_000_000.0,
        twitter_followers=100,
        audits=False,
        total_liquidity=150_000.0,
        lp_addresses=50,
    )


# =============================================================================
# BACKTEST FIXTURES
# =============================================================================

@pytest.fixture
def liquidation_params() -> LiquidationParameters:
    return LiquidationParameters(liquidation_incentive=0.5, collateral_factor=0.1)


@pytest.fixture
def declining_prices() -> List[float]:
    """Golden series: token-down 0.0625 at li=0.5, cf=0.1."""
    return [100.0, 90.0, 80.0, 70.0]


@pytest.fixture
def rising_series() -> PriceSeries:
    return PriceSeries(
        blocks=tuple(1000 + 68 * i for i in range(10)),
        prices=tuple(100.0 + 5 * i for i in range(10)),
    )


# =============================================================================
# DISPATCHER FIXTURES
# =============================================================================

@pytest.fixture
def fast_rules() -> Dict[str, ServiceRule]:
    """Generous budgets for every provider so fetch tests never wait."""
    return {
        name: ServiceRule(rate_per_window=1000, window_seconds=1)
        for name in ("coingecko", "uniswap", "sushiswap", "ethplorer", "rpc")
    }


@pytest.fixture
def dispatcher(fast_rules) -> RequestDispatcher:
    return RequestDispatcher(fast_rules)


@pytest.fixture
def dispatcher_factory():
    """
    Factory fixture for single-service dispatchers.

    Usage:
        def test_something(dispatcher_factory):
            dispatcher = dispatcher_factory(rate=1, window=0.2)
    """
    def _create_dispatcher(rate: int = 1, window: float = 0.2, priority: int = 1, service: str = "svc"):
        return RequestDispatcher({service: ServiceRule(rate, window, priority)})

    return _create_dispatcher


# =============================================================================
# OVERRIDE FIXTURES
# =============================================================================

@pytest.fixture
def empty_overrides() -> OverrideTables:
    return OverrideTables()


@pytest.fixture
def override_files(tmp_path: Path):
    """
    Factory fixture writing asset and pool override tables to disk.

    Returns:
        Function (asset_entries, pool_entries) -> (asset_path, pool_path)
    """
    def _write(asset_entries=None, pool_entries=None):
        asset_path = tmp_path / "asset_overrides.json"
        pool_path = tmp_path / "pool_overrides.json"
        asset_path.write_text(json.dumps({"overrides": asset_entries or []}))
        pool_path.write_text(json.dumps({"overrides": pool_entries or []}))
        return str(asset_path), str(pool_path)

    return _write


# =============================================================================
# MOCK FIXTURES FOR EXTERNAL APIS
# =============================================================================

@pytest.fixture
def make_response():
    """
    Factory fixture for requests.Response stand-ins.

    Usage:
        def test_something(make_response):
            response = make_response(429, {"parameters": {"retry_after": 0.1}})
    """
    def _create_response(status: int = 200, payload: Any = None, headers: Dict[str, str] = None) -> MagicMock:
        response = MagicMock()
        response.status_code = status
        response.json.return_value = payload
        response.headers = headers or {}
        response.text = json.dumps(payload)
        return response

    return _create_response


@pytest.fixture
def mock_coingecko_response() -> Dict[str, Any]:
    """Standard CoinGecko contract response."""
    return {
        "symbol": "uni",
        "market_data": {
            "market_cap": {"usd": 4_000_000_000},
            "current_price": {"usd": 6.5},
            "fully_diluted_valuation": {"usd": 6_500_000_000},
        },
        "tickers": [
            {"market": {"identifier": "uniswap"}, "trust_score": "green"},
            {"market": {"identifier": "binance"}, "trust_score": "green"},
        ],
        "community_data": {"twitter_followers": 900_000},
    }


@pytest.fixture
def mock_market_chart_response() -> Dict[str, Any]:
    return {"prices": [[1700000000000, 100.0], [1700000300000, 110.0], [1700000600000, 99.0]]}


@pytest.fixture
def mock_web3():
    """Mock Web3 instance for on-chain reads."""
    w3 = MagicMock()
    w3.eth.block_number = 19_000_000
    return w3
