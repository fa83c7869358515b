"""
Holder concentration analyzer for Agent Fleet Bot.

Pure computation over a token's holder list: top-N shares, whale and
micro-holder counts, and an overall concentration label, plus the
strategy-weighted score delta derived from them.

Usage:
    from core.holder_analysis import analyze_holders, holder_score_adjustment

    analysis = analyze_holders(holders)
    adj = holder_score_adjustment(analysis, Strategy.DIAMOND_HANDS)
"""

from __future__ import annotations

from decimal import Decimal

from shared.types import Concentration, HolderAnalysis, HolderEntry, ScoreAdjustment, Strategy

WHALE_PCT = Decimal("5")
MICRO_HOLDER_PCT = Decimal("0.1")
LARGE_WHALE_PCT = Decimal("20")
HIGH_TOP5_PCT = Decimal("70")
DISTRIBUTED_TOP5_PCT = Decimal("40")
DISTRIBUTED_MIN_HOLDERS = 20
HOLDER_ADJUSTMENT_CAP = 20


def analyze_holders(holders: list[HolderEntry]) -> HolderAnalysis:
    ranked = sorted(holders, key=lambda h: h.percentage, reverse=True)
    count = len(ranked)

    top1 = ranked[0].percentage if ranked else Decimal("0")
    top5 = sum((h.percentage for h in ranked[:5]), Decimal("0"))
    top10 = sum((h.percentage for h in ranked[:10]), Decimal("0"))
    whales = sum(1 for h in ranked if h.percentage > WHALE_PCT)
    micro = sum(1 for h in ranked if h.percentage < MICRO_HOLDER_PCT)
    large_whale = top1 > LARGE_WHALE_PCT

    if top5 > HIGH_TOP5_PCT or large_whale:
        concentration = Concentration.HIGH
    elif top5 < DISTRIBUTED_TOP5_PCT and count > DISTRIBUTED_MIN_HOLDERS:
        concentration = Concentration.DISTRIBUTED
    else:
        concentration = Concentration.MODERATE

    return HolderAnalysis(
        holder_count=count,
        top1_pct=top1,
        top5_pct=top5,
        top10_pct=top10,
        whale_count=whales,
        micro_holder_count=micro,
        has_large_whale=large_whale,
        concentration=concentration,
    )


def holder_score_adjustment(analysis: HolderAnalysis, strategy: Strategy | None) -> ScoreAdjustment:
    """Score delta in [-20, +20]. ``strategy=None`` is the generic weighting."""
    if analysis.holder_count == 0:
        return ScoreAdjustment(0, ("No holder data available",))

    adj = 0
    reasons: list[str] = []
    n = analysis.holder_count

    if n > 50:
        adj += 8
        reasons.append(f"Strong holder base: {n} holders")
    elif n > 20:
        adj += 4
        reasons.append(f"Decent holder count: {n}")
    elif n < 5:
        adj -= 10
        reasons.append(f"Very few holders: {n} - high risk")

    if analysis.has_large_whale:
        if strategy is Strategy.DEGEN_APE:
            adj -= 3
            reasons.append(f"Whale alert: top holder has {analysis.top1_pct:.1f}%")
        else:
            adj -= 12
            reasons.append(f"Whale concentration risk: top holder {analysis.top1_pct:.1f}%")

    if analysis.concentration is Concentration.DISTRIBUTED:
        if strategy is Strategy.DIAMOND_HANDS:
            adj += 12
            reasons.append("Well distributed - healthy for long hold")
        else:
            adj += 6
            reasons.append("Distributed holder base")
    elif analysis.concentration is Concentration.HIGH:
        if strategy not in (Strategy.DEGEN_APE, Strategy.ALPHA_HUNTER):
            adj -= 8
            reasons.append(f"High concentration: top 5 hold {analysis.top5_pct:.1f}%")

    # A handful of whales without domination reads as smart money
    if 3 <= analysis.whale_count <= 6 and analysis.concentration is not Concentration.HIGH:
        adj += 5
        reasons.append(f"Multiple whales ({analysis.whale_count}) showing interest")

    if analysis.micro_holder_count > 30:
        adj += 5
        reasons.append(f"Strong organic growth: {analysis.micro_holder_count} small holders")

    adj = max(-HOLDER_ADJUSTMENT_CAP, min(HOLDER_ADJUSTMENT_CAP, adj))
    return ScoreAdjustment(adj, tuple(reasons))
