"""
Unit tests for core/market_regime.py.

Tests verify:
- Bull / bear / sideways classification from batch statistics
- The insufficient-data fallback (fewer than 5 tokens with market data)
- Outlier exclusion from the average change
- Regime threshold adjustment bounds and the regime x strategy bonus table
"""

from __future__ import annotations

from decimal import Decimal

from core.market_regime import detect_regime, strategy_bonus, threshold_adjustment
from shared.types import Regime, Strategy
from tests.conftest import NOW, make_market, make_token


def _batch(count: int, age_seconds: float = 3 * 3600, **market) -> list:
    return [
        make_token(address=f"0x{i:040x}", symbol=f"T{i}", age_seconds=age_seconds, market=make_market(**market))
        for i in range(count)
    ]


class TestDetectRegime:
    def test_bull_market(self):
        tokens = _batch(25, age_seconds=1800, price_change_1h=Decimal("10"), price_change_24h=Decimal("20"))
        analysis = detect_regime(tokens, NOW)
        assert analysis.regime is Regime.BULL
        assert analysis.confidence == 90
        assert analysis.new_token_count == 25
        assert analysis.positive_pct == Decimal("100")

    def test_bear_market(self):
        tokens = _batch(
            10,
            price_change_1h=Decimal("-10"),
            price_change_24h=Decimal("-20"),
            volume_mon=Decimal("50"),
        )
        analysis = detect_regime(tokens, NOW)
        assert analysis.regime is Regime.BEAR
        assert "REGIME: Bear market detected" in analysis.reasons

    def test_mixed_market_is_sideways(self):
        tokens = _batch(5, price_change_1h=Decimal("3"), price_change_24h=Decimal("0")) + [
            make_token(
                address=f"0x{100 + i:040x}",
                market=make_market(price_change_1h=Decimal("-3"), price_change_24h=Decimal("0")),
            )
            for i in range(5)
        ]
        analysis = detect_regime(tokens, NOW)
        assert analysis.regime is Regime.SIDEWAYS
        assert analysis.positive_pct == Decimal("50")
        # bear 10 from low token creation only
        assert analysis.confidence == 60

    def test_insufficient_data(self):
        analysis = detect_regime(_batch(4), NOW)
        assert analysis.regime is Regime.SIDEWAYS
        assert analysis.confidence == 20
        assert analysis.positive_pct == Decimal("50")
        assert analysis.reasons == ("Insufficient data for regime detection",)

    def test_tokens_without_market_do_not_count(self):
        tokens = _batch(4) + [make_token(address=f"0x{200 + i:040x}", with_market=False) for i in range(3)]
        assert detect_regime(tokens, NOW).confidence == 20

    def test_outliers_excluded_from_average(self):
        tokens = _batch(5, price_change_1h=Decimal("1")) + [
            make_token(address=f"0x{300:040x}", market=make_market(price_change_1h=Decimal("900")))
        ]
        assert detect_regime(tokens, NOW).avg_change_1h == Decimal("1")

    def test_empty_batch(self):
        assert detect_regime([], NOW).regime is Regime.SIDEWAYS


class TestThresholdAdjustment:
    def test_bull_lowers_with_floor(self):
        assert threshold_adjustment(Regime.BULL, 95) == 90
        assert threshold_adjustment(Regime.BULL, 75) == 85

    def test_bear_raises_with_cap(self):
        assert threshold_adjustment(Regime.BEAR, 75) == 90
        assert threshold_adjustment(Regime.BEAR, 85) == 95

    def test_sideways_unchanged(self):
        assert threshold_adjustment(Regime.SIDEWAYS, 75) == 75


class TestStrategyBonus:
    TABLE = {"bull": {"degen_ape": 10}, "bear": {"contrarian": -5}}

    def test_positive_bonus(self):
        adj = strategy_bonus(Regime.BULL, Strategy.DEGEN_APE, self.TABLE)
        assert adj.delta == 10
        assert adj.reasons == ("bull market favors degen_ape (+10)",)

    def test_negative_bonus(self):
        adj = strategy_bonus(Regime.BEAR, Strategy.CONTRARIAN, self.TABLE)
        assert adj.delta == -5
        assert "penalizes" in adj.reasons[0]

    def test_missing_entry_is_zero(self):
        adj = strategy_bonus(Regime.SIDEWAYS, Strategy.SNIPER, self.TABLE)
        assert adj.delta == 0
        assert adj.reasons == ()
