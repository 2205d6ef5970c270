"""
Scoring pipeline - fetch, backtest and score the assets of a lending pool.

Per asset:
    1. Resolve the address through the asset override table
    2. Base asset -> safe record, no fetch
    3. Fetch market, liquidity and holder data, and the best WETH pair
    4. Backtest the pair's USD price history (skipped for flat markets)
    5. Score with the asset's test overrides

A DataUnavailableError or a missed deadline degrades only that asset to the
unscored record. ConfigurationError is fatal and propagates.

Usage:
    dispatcher = RequestDispatcher.from_settings()
    overrides = OverrideTables.load()
    pool = await score_pool_from_chain(dispatcher, overrides, "6", comptroller)
    print(to_letter_grades(pool))
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence, Tuple

from .asset_score import (
    AssetMetrics,
    PoolScore,
    ScoreBlock,
    calc_overall,
    check_audits,
    missing_score_block,
    safe_score_block,
    score_asset,
)
from .config.settings import (
    ASSET_DEADLINE_SECONDS,
    BACKTEST_CONFIG,
    BASE_ASSET_ADDRESS,
    DEFAULT_COLLATERAL_FACTOR,
    DEFAULT_LIQUIDATION_INCENTIVE,
    VOLATILITY_GATE_THRESHOLD,
)
from .core.backtest import LiquidationParameters, blocks_to_query, run_backtest
from .core.dispatcher import RequestDispatcher
from .core.exceptions import DataUnavailableError
from .core.overrides import OverrideTables
from .fetchers import (
    PoolMarket,
    calculate_price_change,
    calculate_total_liquidity,
    fetch_best_pair,
    fetch_coin_data,
    fetch_dex_liquidity,
    fetch_holder_count,
    fetch_recent_prices,
    fetch_usd_price_history,
    get_latest_block,
    get_liquidation_incentive,
    get_pool_markets,
    get_web3,
    rpc_call,
)

logger = logging.getLogger(__name__)


def _is_base_asset(address: str) -> bool:
    return address.lower() == BASE_ASSET_ADDRESS


async def _optional_holder_count(dispatcher: RequestDispatcher, address: str) -> Optional[int]:
    try:
        return await fetch_holder_count(dispatcher, address)
    except DataUnavailableError as e:
        logger.warning("holder count unavailable for %s: %s", address, e)
        return None


# =============================================================================
# DATA FETCH
# =============================================================================

async def fetch_asset_data(dispatcher: RequestDispatcher, address: str) -> Dict[str, Any]:
    """
    Fetch every provider signal for one token concurrently.

    Market data and recent prices are required; dex liquidity and holder
    count degrade to missing values. When a required fetch fails the
    remaining fetches are cancelled so they stop consuming rate budget.

    Raises:
        DataUnavailableError: CoinGecko data or prices unavailable
    """
    required = [
        asyncio.ensure_future(fetch_coin_data(dispatcher, address)),
        asyncio.ensure_future(fetch_recent_prices(dispatcher, address)),
    ]
    optional = [
        asyncio.ensure_future(fetch_dex_liquidity(dispatcher, "uniswap", address)),
        asyncio.ensure_future(fetch_dex_liquidity(dispatcher, "sushiswap", address)),
        asyncio.ensure_future(_optional_holder_count(dispatcher, address)),
        asyncio.ensure_future(fetch_best_pair(dispatcher, address)),
    ]
    try:
        coin, prices = await asyncio.gather(*required)
    except BaseException:
        for task in required + optional:
            task.cancel()
        await asyncio.gather(*required, *optional, return_exceptions=True)
        raise
    uniswap, sushiswap, holders, best_pair = await asyncio.gather(*optional)

    return {
        "symbol": coin["symbol"],
        "market_cap": coin["market_cap"],
        "fully_diluted_value": coin["fully_diluted_value"],
        "twitter_followers": coin["twitter_followers"],
        "audits": check_audits(coin["tickers"]),
        "total_liquidity": calculate_total_liquidity(uniswap, sushiswap, coin["price_usd"]),
        "price_change": calculate_price_change(prices),
        "lp_addresses": holders,
        "best_pair": best_pair,
    }


async def fetch_token_down(
    dispatcher: RequestDispatcher,
    best_pair: Optional[Dict[str, Any]],
    params: LiquidationParameters,
    end_block: int,
) -> Optional[float]:
    """Backtest over the best pair's week of prices. None without a pair or in a flat market."""
    if best_pair is None:
        return None

    blocks = blocks_to_query(end_block, BACKTEST_CONFIG["period"], BACKTEST_CONFIG["segments_back"])
    series = await fetch_usd_price_history(
        dispatcher, best_pair["exchange"], best_pair["pair_address"], blocks
    )
    return run_backtest(series, params, VOLATILITY_GATE_THRESHOLD)


async def fetch_data_sources(
    dispatcher: RequestDispatcher,
    address: str,
    symbol: str,
    params: LiquidationParameters,
    end_block: int,
) -> Tuple[AssetMetrics, Optional[float]]:
    """
    Everything needed to score one asset.

    Returns:
        (AssetMetrics, token_down)
    """
    data = await fetch_asset_data(dispatcher, address)
    token_down = await fetch_token_down(dispatcher, data["best_pair"], params, end_block)

    metrics = AssetMetrics(
        address=address,
        symbol=symbol or data["symbol"],
        collateral_factor=params.collateral_factor,
        liquidation_incentive=params.liquidation_incentive,
        total_liquidity=data["total_liquidity"],
        market_cap=data["market_cap"],
        fully_diluted_value=data["fully_diluted_value"],
        twitter_followers=data["twitter_followers"],
        audits=data["audits"],
        price_change=data["price_change"],
        lp_addresses=data["lp_addresses"],
    )
    return metrics, token_down


# =============================================================================
# SCORING
# =============================================================================

async def score_asset_from_address(
    dispatcher: RequestDispatcher,
    overrides: OverrideTables,
    address: str,
    symbol: str,
    params: LiquidationParameters,
    end_block: int,
) -> ScoreBlock:
    """
    Fetch and score one listed asset.

    The record keeps the listed address; data is fetched for the underlying
    address when the override table maps one.
    """
    resolved = overrides.resolve_address(address)
    if _is_base_asset(resolved):
        return safe_score_block(address, symbol)

    if resolved.lower() != address.lower():
        logger.info("scoring %s (%s) through underlying %s", symbol, address, resolved)

    try:
        metrics, token_down = await fetch_data_sources(dispatcher, resolved, symbol, params, end_block)
    except DataUnavailableError as e:
        logger.warning("%s (%s) unscored: %s", symbol, address, e)
        return missing_score_block(address, symbol)

    metrics = replace(metrics, address=address)
    block = score_asset(metrics, token_down, overrides.test_overrides(address))
    logger.info("%s (%s) scored overall=%s", symbol, address, block.score.overall)
    return block


async def _score_with_deadline(
    dispatcher: RequestDispatcher,
    overrides: OverrideTables,
    market: PoolMarket,
    liquidation_incentive: float,
    end_block: int,
    deadline: Optional[float],
) -> ScoreBlock:
    collateral_factor = market.collateral_factor
    if collateral_factor is None:
        collateral_factor = DEFAULT_COLLATERAL_FACTOR
    params = LiquidationParameters(liquidation_incentive, collateral_factor)

    pipeline = score_asset_from_address(
        dispatcher, overrides, market.underlying, market.symbol, params, end_block
    )
    if deadline is None:
        return await pipeline

    try:
        return await asyncio.wait_for(pipeline, timeout=deadline)
    except asyncio.TimeoutError:
        logger.warning("%s (%s) unscored: no result within %.1fs", market.symbol, market.underlying, deadline)
        return missing_score_block(market.underlying, market.symbol)


async def score_pool(
    dispatcher: RequestDispatcher,
    overrides: OverrideTables,
    pool_id: str,
    markets: Sequence[PoolMarket],
    liquidation_incentive: Optional[float],
    end_block: int,
    deadline: Optional[float] = ASSET_DEADLINE_SECONDS,
) -> PoolScore:
    """
    Score every market of a pool concurrently and aggregate.

    Args:
        pool_id: Pool identifier, key of the pool override table
        markets: Listed markets (underlying address, symbol, collateral factor)
        liquidation_incentive: Pool liquidation bonus as a fraction
        end_block: Last block of the backtest window
        deadline: Per-asset deadline in seconds, None for none

    Returns:
        PoolScore, overall = worst scored asset
    """
    if liquidation_incentive is None:
        liquidation_incentive = DEFAULT_LIQUIDATION_INCENTIVE

    logger.info("scoring pool %s: %d markets at block %d", pool_id, len(markets), end_block)
    blocks = await asyncio.gather(*(
        _score_with_deadline(dispatcher, overrides, market, liquidation_incentive, end_block, deadline)
        for market in markets
    ))

    pool = PoolScore(
        pool_id=str(pool_id),
        overall=calc_overall(blocks),
        multisig=overrides.multisig(pool_id),
        scores=list(blocks),
    )
    failed = sum(1 for block in blocks if not block.score.is_scored)
    if failed:
        logger.warning("pool %s: %d of %d assets unscored", pool_id, failed, len(blocks))
    return pool


async def score_pool_from_chain(
    dispatcher: RequestDispatcher,
    overrides: OverrideTables,
    pool_id: str,
    comptroller: str,
    w3=None,
    deadline: Optional[float] = ASSET_DEADLINE_SECONDS,
) -> PoolScore:
    """Read the pool's parameters and markets on-chain, then score it."""
    w3 = w3 or get_web3()
    end_block = await rpc_call(dispatcher, get_latest_block, w3, BACKTEST_CONFIG["block_lag"])
    liquidation_incentive = await rpc_call(dispatcher, get_liquidation_incentive, w3, comptroller)
    markets = await rpc_call(dispatcher, get_pool_markets, w3, comptroller)
    return await score_pool(
        dispatcher, overrides, pool_id, markets, liquidation_incentive, end_block, deadline
    )
