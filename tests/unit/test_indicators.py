"""
Unit tests for core/indicators.py.

Tests verify mathematical correctness of:
- SMA / EMA with known series (EMA seeded by the first-window SMA)
- RSI (Wilder's smoothing) including the zero-loss guard
- VWAP, momentum, volume trend, volatility
- Crossover banding (1% either side is neutral)
- The insufficient-data sentinel (None, never 0)
- Strategy-weighted technical score adjustment
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from core.indicators import Indicators, technical_score_adjustment
from shared.types import Crossover, Strategy, TechnicalIndicators, VolumeTrend
from tests.conftest import make_chart

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _d(v: str | float | int) -> Decimal:
    """Shorthand for Decimal."""
    return Decimal(str(v))


def _series(values) -> list[Decimal]:
    return [_d(v) for v in values]


# ---------------------------------------------------------------------------
# Moving averages
# ---------------------------------------------------------------------------


class TestSMA:
    def test_sma_uses_last_window(self):
        assert Indicators.sma(_series([1, 2, 3, 4, 5]), 3) == _d(4)

    def test_sma_insufficient_data(self):
        assert Indicators.sma(_series([1, 2]), 3) is None

    def test_sma_non_positive_period(self):
        assert Indicators.sma(_series([1, 2, 3]), 0) is None


class TestEMA:
    def test_ema_seed_is_sma(self):
        assert Indicators.ema(_series([1, 2, 3]), 3) == _d(2)

    def test_ema_with_known_values(self):
        # k = 2 / 4 = 0.5, seed = 2, then (4 - 2) * 0.5 + 2 = 3
        assert Indicators.ema(_series([1, 2, 3, 4]), 3) == _d(3)

    def test_ema_constant_series(self):
        assert Indicators.ema(_series([7] * 30), 20) == _d(7)

    def test_ema_insufficient_data(self):
        assert Indicators.ema(_series([1, 2, 3, 4]), 5) is None


# ---------------------------------------------------------------------------
# RSI
# ---------------------------------------------------------------------------


class TestRSI:
    def test_rsi_all_gains_is_100(self):
        assert Indicators.rsi(_series(range(1, 16))) == _d(100)

    def test_rsi_all_losses_is_zero(self):
        assert Indicators.rsi(_series(range(30, 15, -1))) == _d(0)

    def test_rsi_fifty_for_balanced(self):
        prices = _series([10, 11] * 7 + [10])
        assert Indicators.rsi(prices) == _d(50)

    def test_rsi_bounded(self):
        prices = _series([10, 14, 9, 13, 8, 15, 7, 12, 11, 16, 6, 13, 12, 17, 9, 14, 10])
        rsi = Indicators.rsi(prices)
        assert rsi is not None
        assert _d(0) <= rsi <= _d(100)

    def test_rsi_insufficient_data(self):
        # Needs period + 1 prices
        assert Indicators.rsi(_series(range(1, 15))) is None


# ---------------------------------------------------------------------------
# Momentum, VWAP, volume, volatility
# ---------------------------------------------------------------------------


class TestMomentum:
    def test_momentum_rate_of_change(self):
        prices = _series([100, 101, 102, 103, 104, 110])
        assert Indicators.momentum(prices, lookback=5) == _d(10)

    def test_momentum_insufficient_data(self):
        assert Indicators.momentum(_series([1, 2, 3]), lookback=5) is None


class TestVWAP:
    def test_vwap_weighted(self):
        assert Indicators.vwap(_series([1, 2]), _series([1, 3])) == _d("1.75")

    def test_vwap_zero_volume_is_none(self):
        assert Indicators.vwap(_series([1, 2]), _series([0, 0])) is None

    def test_vwap_empty(self):
        assert Indicators.vwap([], []) is None


class TestVolumeTrend:
    def test_increasing(self):
        assert Indicators.volume_trend(_series([100, 100, 100, 200, 200, 200])) is VolumeTrend.INCREASING

    def test_decreasing(self):
        assert Indicators.volume_trend(_series([200, 200, 200, 100, 100, 100])) is VolumeTrend.DECREASING

    def test_within_band_is_stable(self):
        assert Indicators.volume_trend(_series([100, 100, 100, 110, 110, 110])) is VolumeTrend.STABLE

    def test_short_series_is_stable(self):
        assert Indicators.volume_trend(_series([1, 500, 1000])) is VolumeTrend.STABLE


class TestVolatility:
    def test_constant_prices_zero_volatility(self):
        assert Indicators.volatility(_series([5, 5, 5, 5])) == _d(0)

    def test_sample_stdev_of_returns(self):
        # returns: +0.1, -0.1 -> mean 0, sample variance 0.02
        vol = Indicators.volatility(_series([100, 110, 99]))
        assert vol == _d("0.02").sqrt()

    def test_insufficient_data(self):
        assert Indicators.volatility(_series([1, 2])) is None


class TestCrossover:
    def test_bullish_above_band(self):
        assert Indicators.crossover(_d("102"), _d("100")) is Crossover.BULLISH

    def test_bearish_below_band(self):
        assert Indicators.crossover(_d("98"), _d("100")) is Crossover.BEARISH

    def test_inside_band_is_neutral(self):
        assert Indicators.crossover(_d("100.5"), _d("100")) is Crossover.NEUTRAL

    def test_missing_values_neutral(self):
        assert Indicators.crossover(None, _d("100")) is Crossover.NEUTRAL


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------


class TestComputeAll:
    def test_rising_series(self):
        ta = Indicators.compute_all(make_chart(range(1, 26)))
        assert ta.rsi == _d(100)
        assert ta.crossover is Crossover.BULLISH
        assert ta.sma_long is not None
        assert ta.vwap is not None

    def test_short_series_uses_sentinels(self):
        ta = Indicators.compute_all(make_chart([1, 2, 3]))
        assert ta.rsi is None
        assert ta.sma_long is None
        assert ta.ema_long is None
        assert ta.crossover is Crossover.NEUTRAL

    def test_non_positive_prices_dropped(self):
        ta = Indicators.compute_all(make_chart([0, 0, 1, 2, 3, 4, 5]))
        assert ta.sma_short == _d(3)


# ---------------------------------------------------------------------------
# Score adjustment
# ---------------------------------------------------------------------------


class TestTechnicalScoreAdjustment:
    def test_no_data_is_no_adjustment(self):
        adj = technical_score_adjustment(TechnicalIndicators(), Strategy.SWING_TRADER)
        assert adj.delta == 0
        assert adj.reasons == ("Insufficient chart data for TA",)

    def test_contrarian_rewards_deep_oversold(self):
        adj = technical_score_adjustment(TechnicalIndicators(rsi=_d(20)), Strategy.CONTRARIAN)
        assert adj.delta == 20

    def test_trend_follower_penalizes_bearish_crossover(self):
        ta = TechnicalIndicators(rsi=_d(50), crossover=Crossover.BEARISH)
        # +10 momentum zone, -15 bearish crossover
        assert technical_score_adjustment(ta, Strategy.TREND_FOLLOWER).delta == -5

    def test_volume_watcher_weights_volume_trend(self):
        ta = TechnicalIndicators(rsi=_d(50), volume_trend=VolumeTrend.INCREASING)
        assert technical_score_adjustment(ta, Strategy.VOLUME_WATCHER).delta == 12
        assert technical_score_adjustment(ta, None).delta == 5

    @pytest.mark.parametrize("strategy", list(Strategy) + [None])
    def test_adjustment_capped(self, strategy):
        ta = TechnicalIndicators(
            rsi=_d(20),
            crossover=Crossover.BULLISH,
            vwap=_d(1),
            price_vs_vwap_pct=_d(-10),
            momentum=_d(-30),
            volatility=_d("0.5"),
            volume_trend=VolumeTrend.INCREASING,
        )
        assert -30 <= technical_score_adjustment(ta, strategy).delta <= 30
