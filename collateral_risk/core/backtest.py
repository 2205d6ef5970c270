"""
Historical Liquidation Backtest.

Replays a week of block-sampled prices to estimate "token-down": the largest
fractional price decline a liquidator would have absorbed before a
liquidation window became feasible.

For each start index i the simulator walks forward over consecutive pairs
(block0, block1) and stops at the first window where

    liquidation_incentive > (twap - block1) / twap + slippage

with twap = (block0 + block1) / 2 and slippage = collateral_factor / 8.
The decline from prices[i] to that twap is recorded. The result is the
maximum over all start indices, 0 when no window qualifies.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiquidationParameters:
    """Pool-and-asset specific inputs, fixed for one scoring run."""
    liquidation_incentive: float
    collateral_factor: float


@dataclass(frozen=True)
class PriceSeries:
    """Block-sampled prices, strictly increasing in block index, no gaps."""
    blocks: Tuple[int, ...]
    prices: Tuple[float, ...]

    def __post_init__(self):
        if len(self.blocks) != len(self.prices):
            raise ValueError(
                f"blocks and prices differ in length: {len(self.blocks)} != {len(self.prices)}"
            )
        if any(b1 <= b0 for b0, b1 in zip(self.blocks, self.blocks[1:])):
            raise ValueError("blocks must be strictly increasing")

    @classmethod
    def from_samples(cls, samples: Sequence[Tuple[int, float]]) -> "PriceSeries":
        return cls(
            blocks=tuple(int(block) for block, _ in samples),
            prices=tuple(float(price) for _, price in samples),
        )

    def __len__(self) -> int:
        return len(self.prices)


# =============================================================================
# SIMULATION
# =============================================================================

def twap(block0: float, block1: float) -> float:
    """Time-weighted average price of two consecutive samples."""
    return (block0 + block1) / 2


def simulate(prices, params: LiquidationParameters) -> float:
    """
    Estimate token-down for a price history.

    Args:
        prices: PriceSeries or plain sequence of prices in block order
        params: Liquidation incentive and collateral factor

    Returns:
        Maximum token-down over all feasible liquidation windows (0 if none)
    """
    values = list(prices.prices) if isinstance(prices, PriceSeries) else [float(p) for p in prices]
    n = len(values)

    if n < 2:
        return 0.0
    if any(not math.isfinite(p) or p <= 0 for p in values):
        # a non-positive history cannot demonstrate a feasible liquidation
        logger.debug("degenerate price series (%d samples), token-down 0", n)
        return 0.0

    li = round(params.liquidation_incentive, 4)
    slippage = params.collateral_factor / 8

    token_downs: List[float] = []

    for i in range(n - 1):
        original_price = values[i]

        for x in range(n - 1 - i):
            block0 = values[i + x]
            block1 = values[i + x + 1]
            current_twap = twap(block0, block1)

            if li > (current_twap - block1) / current_twap + slippage:
                # a rise above the start price is not a decline
                token_downs.append(max(0.0, (original_price - current_twap) / original_price))
                break

    return max(token_downs, default=0.0)


# =============================================================================
# BLOCK SCHEDULE AND PRICE CONVERSION
# =============================================================================

def blocks_to_query(end: int, period: int = 68, segments_back: int = 6500) -> List[int]:
    """
    Blocks to sample for a backtest ending at end.

    Args:
        end: Latest block to include
        period: Blocks between samples (68 is roughly 15 minutes)
        segments_back: How many blocks to look back (6500 is roughly a week)

    Returns:
        Strictly increasing block numbers, oldest first
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    start = max(0, end - segments_back)
    return list(range(start, end + 1, period))


def token_to_usd(ratio_prices: Sequence[float], reference_usd: Sequence[float]) -> List[float]:
    """Convert native-asset-ratio prices to USD: price_usd[i] = ratio[i] * ref[i]."""
    if len(ratio_prices) != len(reference_usd):
        raise ValueError(
            f"price and reference series differ in length: {len(ratio_prices)} != {len(reference_usd)}"
        )
    return (np.asarray(ratio_prices, dtype=float) * np.asarray(reference_usd, dtype=float)).tolist()


def price_range_ratio(prices: Sequence[float]) -> float:
    """Cheap volatility proxy: max / min - 1 over the series."""
    if len(prices) == 0:
        return 0.0
    values = np.asarray(prices, dtype=float)
    low = values.min()
    if low <= 0:
        return math.inf
    return float(values.max() / low - 1)


def should_backtest(prices: Sequence[float], threshold: float = 0.01) -> bool:
    """False when the series is too flat to warrant a backtest."""
    return price_range_ratio(prices) >= threshold


def run_backtest(
    series: PriceSeries,
    params: LiquidationParameters,
    threshold: float = 0.01,
) -> Optional[float]:
    """
    Gate then simulate.

    Returns:
        token-down, or None when the volatility gate skipped the backtest
    """
    if not should_backtest(series.prices, threshold):
        logger.info(
            "price range %.4f below gate %.4f, backtest skipped",
            price_range_ratio(series.prices), threshold,
        )
        return None
    return simulate(series, params)
