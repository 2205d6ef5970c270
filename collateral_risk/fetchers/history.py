"""
History Fetcher - Block-sampled prices for the liquidation backtest.

- Pair prices in WETH at each requested block (the asset's best pair)
- ETH/USD at the same blocks (uniswap bundle), used to convert to USD

Blocks are fetched in aliased batches. Any block missing from a response
fails the whole fetch: a backtest series never has gaps.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Sequence

from ..config.settings import DEX_SUBGRAPHS, HISTORY_QUERY_BATCH, WETH_ADDRESS
from ..core.backtest import PriceSeries, token_to_usd
from ..core.dispatcher import RequestDispatcher
from ..core.exceptions import DataUnavailableError
from .http import query_subgraph

logger = logging.getLogger(__name__)


def _batches(blocks: Sequence[int], size: int) -> List[Sequence[int]]:
    return [blocks[i:i + size] for i in range(0, len(blocks), size)]


async def _fetch_at_blocks(
    dispatcher: RequestDispatcher,
    service: str,
    blocks: Sequence[int],
    entity: Callable[[int], str],
    extract: Callable[[dict], float],
) -> PriceSeries:
    async def fetch_batch(batch: Sequence[int]) -> Dict[int, float]:
        query = "{\n" + "\n".join(f"b{block}: {entity(block)}" for block in batch) + "\n}"
        data = await query_subgraph(dispatcher, service, DEX_SUBGRAPHS[service], query)
        prices = {}
        for block in batch:
            item = data.get(f"b{block}")
            if not item:
                raise DataUnavailableError(
                    f"No data at block {block}", service=service, context={"block": block}
                )
            try:
                prices[block] = extract(item)
            except (KeyError, TypeError, ValueError) as e:
                raise DataUnavailableError(
                    f"Malformed data at block {block}", service=service, original_error=e
                ) from e
        return prices

    results = await asyncio.gather(*(fetch_batch(b) for b in _batches(list(blocks), HISTORY_QUERY_BATCH)))

    merged: Dict[int, float] = {}
    for result in results:
        merged.update(result)
    ordered = sorted(merged)
    return PriceSeries(blocks=tuple(ordered), prices=tuple(merged[b] for b in ordered))


def _pair_price_in_weth(pair: dict) -> float:
    # tokenXPrice is the price of the other token denominated in tokenX
    if pair["token1"]["id"].lower() == WETH_ADDRESS:
        return float(pair["token1Price"])
    return float(pair["token0Price"])


async def fetch_pair_prices(
    dispatcher: RequestDispatcher,
    exchange: str,
    pair_address: str,
    blocks: Sequence[int],
) -> PriceSeries:
    """
    Asset price in WETH at each block.

    Raises:
        DataUnavailableError: Any block missing or malformed
    """
    pair_id = pair_address.lower()

    def entity(block: int) -> str:
        return (
            f'pair(id: "{pair_id}", block: {{number: {block}}}) '
            "{ token0 { id } token1 { id } token0Price token1Price }"
        )

    return await _fetch_at_blocks(dispatcher, exchange, blocks, entity, _pair_price_in_weth)


async def fetch_reference_prices(dispatcher: RequestDispatcher, blocks: Sequence[int]) -> PriceSeries:
    """
    ETH/USD at each block from the uniswap bundle entity.

    Raises:
        DataUnavailableError: Any block missing or malformed
    """
    def entity(block: int) -> str:
        return f'bundle(id: "1", block: {{number: {block}}}) {{ ethPrice }}'

    return await _fetch_at_blocks(dispatcher, "uniswap", blocks, entity, lambda item: float(item["ethPrice"]))


async def fetch_usd_price_history(
    dispatcher: RequestDispatcher,
    exchange: str,
    pair_address: str,
    blocks: Sequence[int],
) -> PriceSeries:
    """Pair prices converted to USD: price_usd[i] = ratio[i] * eth_usd[i]."""
    ratio, reference = await asyncio.gather(
        fetch_pair_prices(dispatcher, exchange, pair_address, blocks),
        fetch_reference_prices(dispatcher, blocks),
    )
    if ratio.blocks != reference.blocks:
        raise DataUnavailableError(
            "Pair and reference series cover different blocks", service=exchange
        )
    logger.debug("fetched %d price samples for pair %s on %s", len(ratio), pair_address, exchange)
    return PriceSeries(blocks=ratio.blocks, prices=tuple(token_to_usd(ratio.prices, reference.prices)))
