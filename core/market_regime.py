"""
Market regime detector for Agent Fleet Bot.

Aggregates a batch of recent tokens into a bull / bear / sideways
classification. Bull and bear points accumulate independently from fixed
thresholds; a 15-point margin is required to call a direction.

Usage:
    from core.market_regime import detect_regime, threshold_adjustment

    regime = detect_regime(tokens, now=time.time())
    threshold = threshold_adjustment(regime.regime, 75)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from shared.types import Regime, RegimeAnalysis, ScoreAdjustment, Strategy, TokenSummary

MIN_TOKENS = 5
REGIME_MARGIN = 15
OUTLIER_1H_PCT = Decimal("500")
OUTLIER_24H_PCT = Decimal("1000")
NEW_TOKEN_WINDOW_SECONDS = 3600

_ZERO = Decimal("0")


def _mean(values: list[Decimal]) -> Decimal:
    if not values:
        return _ZERO
    return sum(values, _ZERO) / Decimal(len(values))


def detect_regime(tokens: list[TokenSummary], now: float) -> RegimeAnalysis:
    """
    Classify the market from a token batch. Never raises.

    Fewer than 5 tokens with market data yields sideways at confidence 20.
    """
    with_market = [t for t in tokens if t.market is not None]
    if len(with_market) < MIN_TOKENS:
        return RegimeAnalysis(
            regime=Regime.SIDEWAYS,
            confidence=20,
            avg_change_1h=_ZERO,
            avg_change_24h=_ZERO,
            positive_pct=Decimal("50"),
            avg_volume_mon=_ZERO,
            new_token_count=0,
            reasons=("Insufficient data for regime detection",),
        )

    changes_1h = [t.market.price_change_1h for t in with_market if abs(t.market.price_change_1h) < OUTLIER_1H_PCT]
    changes_24h = [
        t.market.price_change_24h for t in with_market if abs(t.market.price_change_24h) < OUTLIER_24H_PCT
    ]
    volumes = [t.market.volume_mon for t in with_market]

    avg_1h = _mean(changes_1h)
    avg_24h = _mean(changes_24h)
    positive_pct = (
        Decimal(sum(1 for c in changes_1h if c > 0)) / Decimal(len(changes_1h)) * 100 if changes_1h else Decimal("50")
    )
    avg_volume = _mean(volumes)
    new_tokens = sum(1 for t in tokens if now - t.created_at < NEW_TOKEN_WINDOW_SECONDS)

    bull = 0
    bear = 0
    reasons: list[str] = []

    if avg_1h > 5:
        bull += 30
        reasons.append(f"Avg 1h change: +{avg_1h:.1f}%")
    elif avg_1h < -5:
        bear += 30
        reasons.append(f"Avg 1h change: {avg_1h:.1f}%")

    if avg_24h > 10:
        bull += 20
        reasons.append(f"Avg 24h change: +{avg_24h:.1f}%")
    elif avg_24h < -10:
        bear += 20
        reasons.append(f"Avg 24h change: {avg_24h:.1f}%")

    if positive_pct > 65:
        bull += 25
        reasons.append(f"{positive_pct:.0f}% tokens positive - broad rally")
    elif positive_pct < 35:
        bear += 25
        reasons.append(f"Only {positive_pct:.0f}% tokens positive - broad decline")

    if avg_volume > 50_000:
        bull += 10
        reasons.append(f"High avg volume: {avg_volume / 1000:.0f}K MON")
    elif avg_volume < 100:
        bear += 5
        reasons.append(f"Low volume: {avg_volume:.0f} MON")

    if new_tokens > 20:
        bull += 15
        reasons.append(f"Active token creation: {new_tokens} in last hour")
    elif new_tokens < 5:
        bear += 10
        reasons.append(f"Low token creation: {new_tokens} in last hour")

    if bull > bear + REGIME_MARGIN:
        regime = Regime.BULL
        reasons.append("REGIME: Bull market detected")
    elif bear > bull + REGIME_MARGIN:
        regime = Regime.BEAR
        reasons.append("REGIME: Bear market detected")
    else:
        regime = Regime.SIDEWAYS
        reasons.append("REGIME: Sideways/choppy market")

    confidence = max(30, min(90, 50 + abs(bull - bear)))

    return RegimeAnalysis(
        regime=regime,
        confidence=confidence,
        avg_change_1h=avg_1h,
        avg_change_24h=avg_24h,
        positive_pct=positive_pct,
        avg_volume_mon=avg_volume,
        new_token_count=new_tokens,
        reasons=tuple(reasons),
    )


def threshold_adjustment(regime: Regime, base_threshold: int) -> int:
    """Bull lowers the bar slightly (floor 85); bear raises it (cap 95)."""
    if regime is Regime.BULL:
        return max(85, base_threshold - 5)
    if regime is Regime.BEAR:
        return min(95, base_threshold + 15)
    return base_threshold


def strategy_bonus(regime: Regime, strategy: Strategy, bonus_table: dict[str, Any]) -> ScoreAdjustment:
    """
    Regime x strategy bonus from the ``regime_bonus`` table in strategies.json.

    Returns an empty reason tuple when the bonus is zero.
    """
    adj = int(bonus_table.get(regime.value, {}).get(strategy.value, 0))
    if adj == 0:
        return ScoreAdjustment(0)
    verb = "favors" if adj > 0 else "penalizes"
    sign = "+" if adj > 0 else ""
    return ScoreAdjustment(adj, (f"{regime.value} market {verb} {strategy.value} ({sign}{adj})",))
