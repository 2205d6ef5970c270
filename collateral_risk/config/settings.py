"""
Collateral risk scoring configuration.

Provider endpoints, request rate rules and scoring defaults.
"""

import os
from pathlib import Path

# =============================================================================
# REQUEST RATE RULES
# =============================================================================

# rate = max requests per window, window = seconds, priority = lower drains first
SERVICE_RULES = {
    "coingecko": {"rate": 10, "window": 1, "priority": 1},
    "uniswap": {"rate": 60, "window": 10, "priority": 1},
    "sushiswap": {"rate": 60, "window": 10, "priority": 1},
    "ethplorer": {"rate": 10, "window": 1, "priority": 1},
    "rpc": {"rate": int(os.getenv("RPC_RATE_PER_SECOND", 25)), "window": 1, "priority": 1},
}

# Used when a 429 response carries no parseable retry-after
DEFAULT_RETRY_AFTER_SECONDS = 1.0

REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", 30))

# =============================================================================
# PROVIDER ENDPOINTS
# =============================================================================

COINGECKO_API_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
UNISWAP_SUBGRAPH_URL = os.getenv(
    "UNISWAP_SUBGRAPH_URL", "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v2"
)
SUSHISWAP_SUBGRAPH_URL = os.getenv(
    "SUSHISWAP_SUBGRAPH_URL", "https://api.thegraph.com/subgraphs/name/zippoxer/sushiswap-subgraph-fork"
)
ETHPLORER_API_URL = os.getenv("ETHPLORER_API_URL", "https://api.ethplorer.io")
ETHPLORER_API_KEY = os.getenv("ETHPLORER_API_KEY", "freekey")
ETH_RPC_URL = os.getenv("ETH_RPC_URL", "https://eth.llamarpc.com")

DEX_SUBGRAPHS = {
    "uniswap": UNISWAP_SUBGRAPH_URL,
    "sushiswap": SUSHISWAP_SUBGRAPH_URL,
}

# =============================================================================
# SCORING DEFAULTS
# =============================================================================

DEFAULT_LIQUIDATION_INCENTIVE = 0.15
DEFAULT_COLLATERAL_FACTOR = 0.75

# Native currency of the network, always scored as safe
BASE_ASSET_ADDRESS = "0x0000000000000000000000000000000000000000"
BASE_ASSET_SYMBOL = "ETH"

WETH_ADDRESS = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"

# =============================================================================
# HISTORICAL BACKTEST
# =============================================================================

BACKTEST_CONFIG = {
    "period": 68,           # blocks between samples, roughly 15 minutes
    "segments_back": 6500,  # roughly one week of blocks
    "block_lag": 2,         # stay behind head so subgraphs are in sync
}

# Backtest is skipped when (max / min - 1) of the series is below this
VOLATILITY_GATE_THRESHOLD = 0.01

# Blocks per aliased subgraph query
HISTORY_QUERY_BATCH = 24

# =============================================================================
# OVERRIDES
# =============================================================================

# "numeric" (value replaces computed sub-score) or "boolean" (sub-test gates)
OVERRIDE_MODE = os.getenv("RSS_OVERRIDE_MODE", "numeric")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
ASSET_OVERRIDES_PATH = os.getenv("ASSET_OVERRIDES_PATH", str(_DATA_DIR / "asset_overrides.json"))
POOL_OVERRIDES_PATH = os.getenv("POOL_OVERRIDES_PATH", str(_DATA_DIR / "pool_overrides.json"))

# Per-asset pipeline deadline in seconds, unset means none
ASSET_DEADLINE_SECONDS = float(os.getenv("ASSET_DEADLINE_SECONDS")) if os.getenv("ASSET_DEADLINE_SECONDS") else None
