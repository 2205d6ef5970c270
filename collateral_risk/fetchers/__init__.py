"""
Fetch collaborators - every provider call goes through the RequestDispatcher.

Available fetchers:
- market: CoinGecko asset data, recent prices, price-change metric
- liquidity: DEX liquidity, best WETH pair, holder counts
- history: block-sampled pair prices and ETH/USD reference prices
- chain: comptroller parameters and latest block (web3)
"""

from .market import (
    fetch_coin_data,
    fetch_recent_prices,
    calculate_price_change,
)

from .liquidity import (
    fetch_dex_liquidity,
    fetch_best_pair,
    fetch_holder_count,
    calculate_total_liquidity,
)

from .history import (
    fetch_pair_prices,
    fetch_reference_prices,
    fetch_usd_price_history,
)

from .chain import (
    PoolMarket,
    get_web3,
    get_latest_block,
    get_liquidation_incentive,
    get_pool_markets,
    rpc_call,
)

__all__ = [
    # Market
    "fetch_coin_data",
    "fetch_recent_prices",
    "calculate_price_change",
    # Liquidity
    "fetch_dex_liquidity",
    "fetch_best_pair",
    "fetch_holder_count",
    "calculate_total_liquidity",
    # History
    "fetch_pair_prices",
    "fetch_reference_prices",
    "fetch_usd_price_history",
    # Chain
    "PoolMarket",
    "get_web3",
    "get_latest_block",
    "get_liquidation_incentive",
    "get_pool_markets",
    "rpc_call",
]
