"""
Technical indicator module for Agent Fleet Bot.

Pure computation with no I/O and no side effects. Takes a token's price/volume
series and returns indicator values. All computations use Decimal for
precision consistency with the rest of the pipeline.

Every indicator returns None when the series is shorter than its window.
None is the "insufficient data" sentinel; it is never coerced to 0.

Indicators implemented:
- RSI (Wilder's smoothing)
- SMA / EMA (short and long windows) and EMA crossover
- VWAP and price-vs-VWAP deviation
- Momentum (rate of change), volatility (sample stdev of returns)
- Volume trend (recent vs prior window)

Usage:
    from core.indicators import Indicators, technical_score_adjustment

    ta = Indicators.compute_all(price_points)
    adj = technical_score_adjustment(ta, Strategy.CONTRARIAN)
"""

from __future__ import annotations

from decimal import Decimal

from shared.types import (
    Crossover,
    PricePoint,
    ScoreAdjustment,
    Strategy,
    TechnicalIndicators,
    VolumeTrend,
)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

CROSSOVER_UPPER_BAND = Decimal("1.01")
CROSSOVER_LOWER_BAND = Decimal("0.99")
VOLUME_TREND_BAND = Decimal("0.2")
TA_ADJUSTMENT_CAP = 30


class Indicators:
    """Static methods for technical indicator computation."""

    # ------------------------------------------------------------------
    # Moving averages
    # ------------------------------------------------------------------

    @staticmethod
    def sma(prices: list[Decimal], period: int) -> Decimal | None:
        """Simple average of the last `period` prices."""
        if period <= 0 or len(prices) < period:
            return None
        return sum(prices[-period:]) / Decimal(period)

    @staticmethod
    def ema(prices: list[Decimal], period: int) -> Decimal | None:
        """
        Exponential Moving Average (latest value).

        Multiplier k = 2 / (period + 1), seeded with the SMA of the first
        `period` prices and rolled forward over the rest of the series.
        """
        if period <= 0 or len(prices) < period:
            return None

        k = Decimal("2") / Decimal(period + 1)
        ema_val = sum(prices[:period]) / Decimal(period)
        for price in prices[period:]:
            ema_val = (price - ema_val) * k + ema_val
        return ema_val

    # ------------------------------------------------------------------
    # Oscillators
    # ------------------------------------------------------------------

    @staticmethod
    def rsi(prices: list[Decimal], period: int = 14) -> Decimal | None:
        """
        Relative Strength Index using Wilder's smoothing method.

        Seeds average gain/loss with the simple mean of the first `period`
        changes, then smooths with factor 1/period. Needs period + 1 prices.
        Returns 100 when there were no losses at all.
        """
        if len(prices) < period + 1:
            return None

        changes = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
        p = Decimal(period)

        avg_gain = sum(max(c, _ZERO) for c in changes[:period]) / p
        avg_loss = sum(max(-c, _ZERO) for c in changes[:period]) / p

        for c in changes[period:]:
            gain = c if c > 0 else _ZERO
            loss = -c if c < 0 else _ZERO
            avg_gain = (avg_gain * (p - 1) + gain) / p
            avg_loss = (avg_loss * (p - 1) + loss) / p

        if avg_loss == 0:
            return _HUNDRED

        rs = avg_gain / avg_loss
        return _HUNDRED - (_HUNDRED / (Decimal("1") + rs))

    @staticmethod
    def momentum(prices: list[Decimal], lookback: int = 5) -> Decimal | None:
        """Rate of change (%) of the latest price against `lookback` samples earlier."""
        if len(prices) < lookback + 1:
            return None
        old = prices[-(lookback + 1)]
        if old <= 0:
            return None
        return (prices[-1] - old) / old * _HUNDRED

    # ------------------------------------------------------------------
    # Volume-based
    # ------------------------------------------------------------------

    @staticmethod
    def vwap(prices: list[Decimal], volumes: list[Decimal]) -> Decimal | None:
        """Volume-weighted average price. None when total volume is zero."""
        if not prices or not volumes:
            return None
        cum_pv = _ZERO
        cum_vol = _ZERO
        for price, vol in zip(prices, volumes):
            cum_pv += price * vol
            cum_vol += vol
        if cum_vol == 0:
            return None
        return cum_pv / cum_vol

    @staticmethod
    def volume_trend(volumes: list[Decimal]) -> VolumeTrend:
        """Compare the mean of the last 3 volumes with the 3 before them."""
        if len(volumes) < 4:
            return VolumeTrend.STABLE

        recent = volumes[-3:]
        prior = volumes[-6:-3]
        recent_avg = sum(recent) / Decimal(len(recent))
        prior_avg = sum(prior) / Decimal(len(prior))

        if prior_avg == 0:
            return VolumeTrend.INCREASING if recent_avg > 0 else VolumeTrend.STABLE

        change = (recent_avg - prior_avg) / prior_avg
        if change > VOLUME_TREND_BAND:
            return VolumeTrend.INCREASING
        if change < -VOLUME_TREND_BAND:
            return VolumeTrend.DECREASING
        return VolumeTrend.STABLE

    # ------------------------------------------------------------------
    # Statistical
    # ------------------------------------------------------------------

    @staticmethod
    def volatility(prices: list[Decimal]) -> Decimal | None:
        """Sample standard deviation (n - 1) of simple returns. Needs 3+ prices."""
        if len(prices) < 3:
            return None

        returns = [
            (prices[i] - prices[i - 1]) / prices[i - 1]
            for i in range(1, len(prices))
            if prices[i - 1] > 0
        ]
        if len(returns) < 2:
            return None

        mean = sum(returns) / Decimal(len(returns))
        variance = sum((r - mean) ** 2 for r in returns) / Decimal(len(returns) - 1)
        return variance.sqrt()

    @staticmethod
    def crossover(short: Decimal | None, long: Decimal | None) -> Crossover:
        if short is None or long is None:
            return Crossover.NEUTRAL
        if short > long * CROSSOVER_UPPER_BAND:
            return Crossover.BULLISH
        if short < long * CROSSOVER_LOWER_BAND:
            return Crossover.BEARISH
        return Crossover.NEUTRAL

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    @staticmethod
    def compute_all(
        points: list[PricePoint],
        short_window: int = 5,
        long_window: int = 20,
        rsi_period: int = 14,
        momentum_lookback: int = 5,
    ) -> TechnicalIndicators:
        """
        Compute every indicator from a chart series (oldest first).

        Points with a non-positive price are dropped before computing.
        """
        valid = [p for p in points if p.price > 0]
        prices = [p.price for p in valid]
        volumes = [p.volume for p in valid]

        sma_short = Indicators.sma(prices, short_window)
        ema_short = Indicators.ema(prices, short_window)
        ema_long = Indicators.ema(prices, long_window)
        vwap = Indicators.vwap(prices, volumes)

        price_vs_vwap: Decimal | None = None
        if vwap is not None and vwap > 0 and prices:
            price_vs_vwap = (prices[-1] - vwap) / vwap * _HUNDRED

        return TechnicalIndicators(
            rsi=Indicators.rsi(prices, rsi_period),
            sma_short=sma_short,
            sma_long=Indicators.sma(prices, long_window),
            ema_short=ema_short,
            ema_long=ema_long,
            crossover=Indicators.crossover(ema_short, ema_long),
            vwap=vwap,
            price_vs_vwap_pct=price_vs_vwap,
            momentum=Indicators.momentum(prices, momentum_lookback),
            volatility=Indicators.volatility(prices),
            volume_trend=Indicators.volume_trend(volumes),
        )


# ---------------------------------------------------------------------------
# Strategy-weighted score adjustment
# ---------------------------------------------------------------------------


def technical_score_adjustment(ta: TechnicalIndicators, strategy: Strategy | None) -> ScoreAdjustment:
    """
    Score delta in [-30, +30] from technical indicators.

    ``strategy=None`` applies the generic weighting used by the base score.
    Returns 0 with "Insufficient chart data for TA" when RSI, VWAP and the
    short SMA are all unavailable.
    """
    if ta.rsi is None and ta.vwap is None and ta.sma_short is None:
        return ScoreAdjustment(0, ("Insufficient chart data for TA",))

    adj = 0
    reasons: list[str] = []
    trend_like = strategy in (Strategy.TREND_FOLLOWER, Strategy.SWING_TRADER)

    # RSI
    if ta.rsi is not None:
        rsi = ta.rsi
        if strategy is Strategy.CONTRARIAN:
            if rsi < 25:
                adj += 20
                reasons.append(f"RSI deeply oversold ({rsi:.0f}) - contrarian buy")
            elif rsi < 35:
                adj += 10
                reasons.append(f"RSI oversold ({rsi:.0f})")
            elif rsi > 75:
                adj -= 15
                reasons.append(f"RSI overbought ({rsi:.0f}) - avoid buying")
        elif trend_like:
            if 40 <= rsi <= 65:
                adj += 10
                reasons.append(f"RSI in momentum zone ({rsi:.0f})")
            elif rsi > 80:
                adj -= 15
                reasons.append(f"RSI overbought ({rsi:.0f}) - overextended")
            elif rsi < 25:
                adj -= 10
                reasons.append(f"RSI deeply oversold ({rsi:.0f}) - no momentum")
        else:
            if rsi > 80:
                adj -= 10
                reasons.append(f"RSI overbought ({rsi:.0f})")
            elif rsi < 25:
                adj += 5
                reasons.append(f"RSI oversold ({rsi:.0f})")

    # EMA crossover
    if ta.crossover is not Crossover.NEUTRAL:
        bullish = ta.crossover is Crossover.BULLISH
        if trend_like:
            adj += 15 if bullish else -15
            reasons.append(
                "EMA bullish crossover (short > long)" if bullish else "EMA bearish crossover (short < long)"
            )
        else:
            adj += 8 if bullish else -8
            reasons.append("EMA bullish signal" if bullish else "EMA bearish signal")

    # VWAP
    if ta.price_vs_vwap_pct is not None:
        dev = ta.price_vs_vwap_pct
        if strategy is Strategy.CONTRARIAN:
            if dev < -5:
                adj += 10
                reasons.append(f"Price {dev:.1f}% below VWAP - undervalued")
        elif strategy in (Strategy.VOLUME_WATCHER, Strategy.TREND_FOLLOWER):
            if dev > 3:
                adj += 8
                reasons.append(f"Price {dev:.1f}% above VWAP - buyers in control")
            elif dev < -5:
                adj -= 5
                reasons.append(f"Price {abs(dev):.1f}% below VWAP")

    # Volume trend
    if ta.volume_trend is VolumeTrend.INCREASING:
        if strategy is Strategy.VOLUME_WATCHER:
            adj += 12
            reasons.append("Volume trending up - confirming move")
        else:
            adj += 5
            reasons.append("Increasing volume")
    elif ta.volume_trend is VolumeTrend.DECREASING:
        if strategy is Strategy.VOLUME_WATCHER:
            adj -= 10
            reasons.append("Volume declining - weak conviction")
        else:
            adj -= 3
            reasons.append("Declining volume")

    # Momentum
    if ta.momentum is not None:
        if strategy in (Strategy.ALPHA_HUNTER, Strategy.DEGEN_APE) and ta.momentum > 15:
            adj += 10
            reasons.append(f"Strong momentum: +{ta.momentum:.1f}%")
        elif strategy is Strategy.CONTRARIAN and ta.momentum < -15:
            adj += 10
            reasons.append(f"Dropping fast ({ta.momentum:.1f}%) - reversion opportunity")

    # Volatility
    if ta.volatility is not None:
        vol_pct = ta.volatility * _HUNDRED
        if strategy is Strategy.SWING_TRADER and ta.volatility > Decimal("0.1"):
            adj += 8
            reasons.append(f"High volatility ({vol_pct:.1f}%) - swing opportunity")
        elif strategy is Strategy.DIAMOND_HANDS and ta.volatility > Decimal("0.2"):
            adj -= 8
            reasons.append(f"Too volatile ({vol_pct:.1f}%) for long hold")

    adj = max(-TA_ADJUSTMENT_CAP, min(TA_ADJUSTMENT_CAP, adj))
    return ScoreAdjustment(adj, tuple(reasons))
