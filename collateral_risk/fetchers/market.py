"""
Market Fetcher - CoinGecko asset data.

Fetches, for an ERC20 contract address:
- Market cap, USD price, fully diluted valuation
- Exchange tickers (for the audit rule)
- Twitter followers
- Quarter-day price samples (for the price-change metric)
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from ..config.settings import COINGECKO_API_URL
from ..core.dispatcher import RequestDispatcher
from ..core.exceptions import DataUnavailableError
from .http import get_json

logger = logging.getLogger(__name__)

SERVICE = "coingecko"


def _usd(section: Any) -> Optional[float]:
    if isinstance(section, dict) and section.get("usd") is not None:
        return float(section["usd"])
    return None


async def fetch_coin_data(dispatcher: RequestDispatcher, address: str) -> Dict[str, Any]:
    """
    Fetch CoinGecko contract data.

    Returns:
        Dict with symbol, market_cap, price_usd, fully_diluted_value,
        tickers, twitter_followers

    Raises:
        DataUnavailableError: Request failed or payload has no market data
    """
    url = f"{COINGECKO_API_URL}/coins/ethereum/contract/{address.lower()}"
    data = await get_json(dispatcher, SERVICE, url)

    market_data = data.get("market_data") if isinstance(data, dict) else None
    if not market_data:
        raise DataUnavailableError("CoinGecko returned no market data", service=SERVICE, address=address)

    try:
        community = data.get("community_data") or {}
        return {
            "symbol": (data.get("symbol") or "").upper(),
            "market_cap": _usd(market_data.get("market_cap")),
            "price_usd": _usd(market_data.get("current_price")),
            "fully_diluted_value": _usd(market_data.get("fully_diluted_valuation")),
            "tickers": data.get("tickers") or [],
            "twitter_followers": community.get("twitter_followers"),
        }
    except (AttributeError, TypeError, ValueError) as e:
        raise DataUnavailableError(
            "Malformed CoinGecko market data", service=SERVICE, address=address, original_error=e
        ) from e


async def fetch_recent_prices(dispatcher: RequestDispatcher, address: str, days: float = 0.25) -> List[float]:
    """
    Fetch USD price samples for the last `days` days.

    Raises:
        DataUnavailableError: Request failed or no prices returned
    """
    url = f"{COINGECKO_API_URL}/coins/ethereum/contract/{address.lower()}/market_chart/"
    data = await get_json(dispatcher, SERVICE, url, params={"vs_currency": "usd", "days": days})

    try:
        prices = [float(item[1]) for item in data["prices"]]
    except (KeyError, TypeError, IndexError, ValueError) as e:
        raise DataUnavailableError(
            "Malformed CoinGecko market chart", service=SERVICE, address=address, original_error=e
        ) from e

    if not prices:
        raise DataUnavailableError("CoinGecko returned no prices", service=SERVICE, address=address)
    return prices


def calculate_price_change(prices: List[float]) -> float:
    """
    Price-change metric: population variance of percentage returns.

    The first sample contributes a 0% return.
    """
    if len(prices) < 2:
        return 0.0
    values = np.asarray(prices, dtype=float)
    returns = np.concatenate(([0.0], np.diff(values) / values[:-1] * 100))
    return float(np.var(returns))
