"""
Liquidity Fetcher - DEX subgraphs and holder counts.

Fetches:
- Token liquidity on uniswap and sushiswap (v2 subgraphs)
- The most liquid WETH pair across both exchanges (backtest source)
- Holder address count from ethplorer
"""

import logging
from typing import Any, Dict, Optional

from ..config.settings import DEX_SUBGRAPHS, ETHPLORER_API_KEY, ETHPLORER_API_URL, WETH_ADDRESS
from ..core.dispatcher import RequestDispatcher
from ..core.exceptions import DataUnavailableError
from .http import get_json, query_subgraph

logger = logging.getLogger(__name__)


async def fetch_dex_liquidity(dispatcher: RequestDispatcher, exchange: str, address: str) -> Optional[float]:
    """
    Token liquidity (in token units) on one exchange.

    Returns:
        totalLiquidity, or None when the token is not listed or the query failed
    """
    query = f"""
    {{
      token(id: "{address.lower()}") {{
        totalLiquidity
        txCount
      }}
    }}
    """
    try:
        data = await query_subgraph(dispatcher, exchange, DEX_SUBGRAPHS[exchange], query)
    except DataUnavailableError as e:
        logger.warning("%s liquidity unavailable for %s: %s", exchange, address, e)
        return None

    token = data.get("token")
    if not isinstance(token, dict) or token.get("totalLiquidity") is None:
        return None
    try:
        return float(token["totalLiquidity"])
    except (TypeError, ValueError) as e:
        logger.warning("%s returned malformed liquidity for %s: %s", exchange, address, e)
        return None


def calculate_total_liquidity(
    uniswap_liquidity: Optional[float],
    sushiswap_liquidity: Optional[float],
    price_usd: Optional[float],
) -> float:
    """USD liquidity across both exchanges; a missing exchange counts as 0."""
    if not price_usd:
        return 0.0
    return ((uniswap_liquidity or 0.0) + (sushiswap_liquidity or 0.0)) * price_usd


async def fetch_best_pair(dispatcher: RequestDispatcher, address: str) -> Optional[Dict[str, Any]]:
    """
    Most liquid token/WETH pair across uniswap and sushiswap.

    DAI and USDC pairs are not considered: a token traded only against
    stablecoins has no pair here and so gets no backtest. A malformed
    exchange response is skipped like a failed one.

    Returns:
        {"pair_address", "exchange", "reserve_usd", "total_reserve_usd"} or None
    """
    token = address.lower()
    query = f"""
    {{
      asToken0: pairs(first: 1, orderBy: reserveUSD, orderDirection: desc,
                      where: {{token0: "{token}", token1: "{WETH_ADDRESS}"}}) {{
        id
        reserveUSD
      }}
      asToken1: pairs(first: 1, orderBy: reserveUSD, orderDirection: desc,
                      where: {{token0: "{WETH_ADDRESS}", token1: "{token}"}}) {{
        id
        reserveUSD
      }}
    }}
    """
    best = None
    total = 0.0
    for exchange, url in DEX_SUBGRAPHS.items():
        try:
            data = await query_subgraph(dispatcher, exchange, url, query)
        except DataUnavailableError as e:
            logger.warning("%s pair lookup failed for %s: %s", exchange, address, e)
            continue

        try:
            pairs = [
                (pair["id"], float(pair.get("reserveUSD") or 0))
                for pair in (data.get("asToken0") or []) + (data.get("asToken1") or [])
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("%s returned malformed pairs for %s: %s", exchange, address, e)
            continue

        for pair_address, reserve in pairs:
            total += reserve
            if best is None or reserve > best["reserve_usd"]:
                best = {"pair_address": pair_address, "exchange": exchange, "reserve_usd": reserve}

    if best is not None:
        best["total_reserve_usd"] = total
    return best


async def fetch_holder_count(dispatcher: RequestDispatcher, address: str) -> int:
    """
    Holder address count from ethplorer.

    Raises:
        DataUnavailableError: Request failed, holdersCount missing or not an integer
    """
    url = f"{ETHPLORER_API_URL}/getTokenInfo/{address.lower()}"
    data = await get_json(dispatcher, "ethplorer", url, params={"apiKey": ETHPLORER_API_KEY})

    count = data.get("holdersCount") if isinstance(data, dict) else None
    if count is None:
        raise DataUnavailableError("ethplorer returned no holdersCount", service="ethplorer", address=address)
    try:
        return int(count)
    except (TypeError, ValueError) as e:
        raise DataUnavailableError(
            f"ethplorer returned malformed holdersCount {count!r}",
            service="ethplorer", address=address, original_error=e,
        ) from e
