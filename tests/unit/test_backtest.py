"""
Unit tests for the liquidation backtest.

Tests token-down simulation, the block schedule, USD conversion and the
volatility gate that decides whether a backtest runs at all.
"""

import math

import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from collateral_risk.core.backtest import (
    LiquidationParameters,
    PriceSeries,
    blocks_to_query,
    price_range_ratio,
    run_backtest,
    should_backtest,
    simulate,
    token_to_usd,
    twap,
)


class TestSimulate:
    """Tests for token-down simulation."""

    @pytest.mark.unit
    @pytest.mark.smoke
    def test_golden_declining_series(self, declining_prices, liquidation_params):
        """Start indices give 0.05, 0.0556, 0.0625; the maximum wins."""
        assert simulate(declining_prices, liquidation_params) == pytest.approx(0.0625)

    @pytest.mark.unit
    @pytest.mark.parametrize("prices", [[], [100.0]])
    def test_short_series_is_zero(self, prices, liquidation_params):
        assert simulate(prices, liquidation_params) == 0

    @pytest.mark.unit
    def test_rising_series_is_zero(self, rising_series):
        params = LiquidationParameters(liquidation_incentive=0.08, collateral_factor=0.5)
        assert simulate(rising_series, params) == 0

    @pytest.mark.unit
    def test_rise_then_fall_counts_only_the_fall(self, liquidation_params):
        """
        From index 0 the first window rises to twap 150 and counts as 0, not
        0.5. From index 1 the window (200, 190) gives (200 - 195) / 200.
        """
        assert simulate([100.0, 200.0, 190.0], liquidation_params) == pytest.approx(0.025)

    @pytest.mark.unit
    def test_idempotent(self, declining_prices, liquidation_params):
        first = simulate(declining_prices, liquidation_params)
        assert simulate(declining_prices, liquidation_params) == first

    @pytest.mark.unit
    @pytest.mark.parametrize("prices", [
        [100.0, 0.0, 50.0],
        [100.0, -5.0],
        [100.0, float("nan"), 90.0],
        [100.0, float("inf")],
    ])
    def test_degenerate_prices_are_zero(self, prices, liquidation_params):
        assert simulate(prices, liquidation_params) == 0

    @pytest.mark.unit
    def test_accepts_price_series(self, declining_prices, liquidation_params):
        series = PriceSeries.from_samples([(i * 68, p) for i, p in enumerate(declining_prices)])
        assert simulate(series, liquidation_params) == simulate(declining_prices, liquidation_params)

    @pytest.mark.unit
    def test_no_feasible_window(self):
        """Incentive below slippage: no window ever qualifies."""
        params = LiquidationParameters(liquidation_incentive=0.01, collateral_factor=0.8)
        assert simulate([100.0, 80.0, 60.0, 40.0], params) == 0

    @pytest.mark.unit
    def test_break_on_first_feasible_window(self):
        """
        From index 0 the first window (100, 50) is not feasible, the second
        (50, 50) is: token-down is measured there, not at a later deeper dip.
        """
        params = LiquidationParameters(liquidation_incentive=0.2, collateral_factor=0.8)
        result = simulate([100.0, 50.0, 50.0, 10.0], params)
        # index 0 stops at twap 50 -> 0.5
        assert result == pytest.approx(0.5)

    @pytest.mark.unit
    def test_liquidation_incentive_rounded(self):
        """li is rounded to 4 decimals before comparison."""
        prices = [100.0, 99.0]
        # (99.5 - 99) / 99.5 + 0 = 0.005025...; li 0.00504 rounds to 0.005 -> infeasible
        params = LiquidationParameters(liquidation_incentive=0.00504, collateral_factor=0.0)
        assert simulate(prices, params) == 0

    @pytest.mark.unit
    def test_twap(self):
        assert twap(100.0, 90.0) == 95.0


class TestPriceSeries:
    """Tests for the PriceSeries invariants."""

    @pytest.mark.unit
    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            PriceSeries(blocks=(1, 2), prices=(1.0,))

    @pytest.mark.unit
    def test_blocks_must_increase(self):
        with pytest.raises(ValueError):
            PriceSeries(blocks=(2, 1), prices=(1.0, 1.0))

    @pytest.mark.unit
    def test_len(self, rising_series):
        assert len(rising_series) == 10


class TestBlockSchedule:
    """Tests for the block sampling schedule."""

    @pytest.mark.unit
    def test_week_of_quarter_hours(self):
        blocks = blocks_to_query(15_000_000)
        assert len(blocks) == 96
        assert blocks[0] == 15_000_000 - 6500
        assert all(b1 - b0 == 68 for b0, b1 in zip(blocks, blocks[1:]))
        assert blocks[-1] <= 15_000_000

    @pytest.mark.unit
    def test_never_negative(self):
        assert blocks_to_query(100, period=10, segments_back=500)[0] == 0

    @pytest.mark.unit
    def test_invalid_period(self):
        with pytest.raises(ValueError):
            blocks_to_query(1000, period=0)


class TestConversionAndGate:
    """Tests for USD conversion and the volatility gate."""

    @pytest.mark.unit
    def test_token_to_usd(self):
        assert token_to_usd([0.001, 0.002], [2000.0, 2500.0]) == pytest.approx([2.0, 5.0])

    @pytest.mark.unit
    def test_token_to_usd_length_mismatch(self):
        with pytest.raises(ValueError):
            token_to_usd([1.0], [1.0, 2.0])

    @pytest.mark.unit
    def test_price_range_ratio(self):
        assert price_range_ratio([100.0, 110.0, 105.0]) == pytest.approx(0.1)
        assert price_range_ratio([]) == 0.0
        assert math.isinf(price_range_ratio([0.0, 1.0]))

    @pytest.mark.unit
    def test_flat_market_skips_backtest(self, liquidation_params):
        series = PriceSeries(blocks=(1, 2, 3), prices=(100.0, 100.5, 100.2))
        assert should_backtest(series.prices) is False
        assert run_backtest(series, liquidation_params) is None

    @pytest.mark.unit
    def test_volatile_market_runs_backtest(self, declining_prices, liquidation_params):
        series = PriceSeries.from_samples(list(enumerate(declining_prices)))
        assert run_backtest(series, liquidation_params) == pytest.approx(0.0625)
