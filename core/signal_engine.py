"""
Signal engine for Agent Fleet Bot.

Turns one token's market snapshot (plus optional technicals, holder
analysis and market regime) into a scored, reasoned MarketSignal for a
given strategy.

Pipeline per (strategy, token):
    1. Base score: starts at 35 so tokens must earn their way to the
       threshold; shared volume / holder / 1h momentum tiers, then the
       generic technical and holder adjustments.
    2. Strategy rules: one pure function per Strategy, registered in
       SCORERS. Adding a strategy never touches another's rules.
    3. Strategy overlay: strategy-weighted technical and holder
       adjustments, then the regime x strategy bonus.
    4. Clamp to [0, 100]. Tokens are never dropped here; the threshold
       comparison happens in rank_signals().

Usage:
    engine = SignalEngine()
    signal = engine.score(Strategy.SNIPER, ctx)
    ranked = rank_signals(signals, threshold=80)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Mapping

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.holder_analysis import holder_score_adjustment
from core.indicators import technical_score_adjustment
from core.market_regime import strategy_bonus
from shared.constants import SCORE_MAX, SCORE_MIN
from shared.types import MarketSignal, Strategy, TokenContext

_ZERO = Decimal("0")

BASE_SCORE = 35
NO_MARKET_SCORE = 5

MEME_WORDS = (
    "meme", "pepe", "doge", "moon", "ape", "chad", "wojak", "based", "giga",
    "monkey", "cat", "dog", "frog", "nyan", "shib", "bonk", "cope", "wagmi",
)


class StrategyRegistryError(LookupError):
    """Raised when a strategy has no registered scorer. Ends the agent's cycle."""


# ---------------------------------------------------------------------------
# Context accessors (missing market data reads as zero)
# ---------------------------------------------------------------------------


def _vol(ctx: TokenContext) -> Decimal:
    return ctx.market.volume_mon if ctx.market else _ZERO


def _holders(ctx: TokenContext) -> int:
    return ctx.market.holder_count if ctx.market else 0


def _chg_1h(ctx: TokenContext) -> Decimal:
    return ctx.market.price_change_1h if ctx.market else _ZERO


def _chg_24h(ctx: TokenContext) -> Decimal:
    return ctx.market.price_change_24h if ctx.market else _ZERO


def _fmt_k(vol: Decimal, places: int = 0) -> str:
    return f"{vol / 1000:.{places}f}K"


def _fmt_m(vol: Decimal, places: int = 1) -> str:
    return f"{vol / 1_000_000:.{places}f}M"


# ---------------------------------------------------------------------------
# Shared scoring stages
# ---------------------------------------------------------------------------


def base_score(ctx: TokenContext) -> tuple[int, list[str]]:
    """Shared foundation for every strategy."""
    market = ctx.market
    if market is None:
        return NO_MARKET_SCORE, ["No market data available"]

    score = BASE_SCORE
    reasons: list[str] = []
    vol = market.volume_mon

    if vol > 10_000_000:
        score += 15
        reasons.append(f"Massive volume: {_fmt_m(vol)} MON")
    elif vol > 1_000_000:
        score += 10
        reasons.append(f"Strong volume: {_fmt_m(vol)} MON")
    elif vol > 100_000:
        score += 6
        reasons.append(f"Good volume: {_fmt_k(vol)} MON")
    elif vol > 10_000:
        score += 2
        reasons.append(f"Low volume: {_fmt_k(vol)} MON")

    holders = market.holder_count
    if holders > 100:
        score += 10
        reasons.append(f"Strong holder base: {holders}")
    elif holders > 30:
        score += 6
        reasons.append(f"Decent holders: {holders}")
    elif holders > 10:
        score += 3
        reasons.append(f"Some holders: {holders}")

    change = market.price_change_1h
    if change > 5:
        score += 5
        reasons.append(f"Upward momentum: +{change:.1f}%")
    elif change < -10:
        score -= 10
        reasons.append(f"Dumping: {change:.1f}%")

    if ctx.technicals is not None:
        ta = technical_score_adjustment(ctx.technicals, None)
        score += ta.delta
        reasons.extend(ta.reasons)

    if ctx.holders is not None:
        wa = holder_score_adjustment(ctx.holders, None)
        score += wa.delta
        reasons.extend(wa.reasons)

    return score, reasons


def strategy_overlay(
    ctx: TokenContext,
    strategy: Strategy,
    score: int,
    reasons: list[str],
    regime_bonus: Mapping[str, Any],
) -> int:
    """Apply strategy-weighted technical / holder adjustments and the regime bonus. Mutates reasons."""
    if ctx.technicals is not None:
        ta = technical_score_adjustment(ctx.technicals, strategy)
        score += ta.delta
        reasons.extend(ta.reasons)

    if ctx.holders is not None:
        wa = holder_score_adjustment(ctx.holders, strategy)
        score += wa.delta
        reasons.extend(wa.reasons)

    if ctx.regime is not None:
        rb = strategy_bonus(ctx.regime.regime, strategy, dict(regime_bonus))
        score += rb.delta
        reasons.extend(rb.reasons)

    return score


def build_signal(ctx: TokenContext, score: int, reasons: list[str]) -> MarketSignal:
    """Clamp the score and attach the metrics map."""
    market = ctx.market
    ta = ctx.technicals
    wa = ctx.holders

    metrics: dict[str, Any] = {
        "age": ctx.age_seconds,
        "price": str(market.price) if market else "0",
        "volume_mon": str(_vol(ctx)),
        "price_change_1h": str(_chg_1h(ctx)),
        "price_change_24h": str(_chg_24h(ctx)),
        "holder_count": _holders(ctx),
        "curve_progress": ctx.curve_progress_bps or 0,
        "rsi": str(ta.rsi) if ta is not None and ta.rsi is not None else "N/A",
        "ema_crossover": ta.crossover.value if ta is not None else "N/A",
        "vwap": str(ta.vwap) if ta is not None and ta.vwap is not None else "N/A",
        "volume_trend": ta.volume_trend.value if ta is not None else "N/A",
        "holder_concentration": wa.concentration.value if wa is not None else "N/A",
        "top5_holder_pct": str(wa.top5_pct) if wa is not None else "N/A",
        "market_regime": ctx.regime.regime.value if ctx.regime is not None else "unknown",
    }

    return MarketSignal(
        token_address=ctx.token.address,
        symbol=ctx.token.symbol,
        name=ctx.token.name,
        score=max(SCORE_MIN, min(SCORE_MAX, score)),
        reasons=tuple(reasons),
        metrics=metrics,
        raw_score=score,
    )


# ---------------------------------------------------------------------------
# Strategy scorers, one pure function each
# ---------------------------------------------------------------------------


def score_sniper(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Hunts freshly created tokens: age is everything."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    holders = _holders(ctx)
    age = ctx.age_seconds
    minutes = age // 60

    if age < 120:
        if vol > 5000:
            score += 30
            reasons.append(f"Ultra-fresh token ({age}s) with {_fmt_k(vol, 1)} MON - prime snipe")
        elif vol > 500:
            score += 20
            reasons.append(f"Fresh launch ({age}s) - {vol:.0f} MON initial buying")
        elif vol > 100:
            score += 10
            reasons.append(f"Very new ({age}s) with small activity")
    elif age < 300:
        if vol > 20_000 and holders > 5:
            score += 25
            reasons.append(f"New token ({minutes}m) with strong interest: {holders} holders, {_fmt_k(vol)} MON")
        elif vol > 5000 and holders > 3:
            score += 15
            reasons.append(f"New token ({minutes}m): {_fmt_k(vol, 1)} MON, {holders} holders")
        elif vol > 1000:
            score += 5
            reasons.append(f"Recently launched ({minutes}m) with some activity")
    elif age < 600:
        if vol > 50_000 and holders > 10:
            score += 15
            reasons.append(f"Early token ({minutes}m) with confirmed demand: {_fmt_k(vol)} MON")
    else:
        score -= 20
        reasons.append("Token too old for sniping")

    if holders > 8 and age < 180:
        score += 15
        reasons.append(f"Rapid holder growth: {holders} holders in {minutes}m")
    elif holders > 5 and age < 300:
        score += 8
        reasons.append(f"Growing holders: {holders} in {minutes}m")

    if ctx.curve_progress_bps is not None and age < 600:
        progress_pct = Decimal(ctx.curve_progress_bps) / 100
        if progress_pct > 10:
            score += 12
            reasons.append(f"Strong curve progress: {progress_pct:.1f}% - significant buying pressure")
        elif progress_pct > 3:
            score += 6
            reasons.append(f"Early curve progress: {progress_pct:.1f}%")

    if _chg_1h(ctx) > 0 and age < 600:
        score += 5
        reasons.append("Positive price since launch")

    score = strategy_overlay(ctx, Strategy.SNIPER, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_alpha_hunter(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """2-15 minute old tokens that have already proven demand."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    holders = _holders(ctx)
    age = ctx.age_seconds
    minutes = age // 60

    if 120 <= age < 300 and vol > 10_000:
        score += 25
        reasons.append(f"Alpha window: {minutes}m old, {_fmt_k(vol)} MON traded")
    elif 300 <= age < 900 and vol > 50_000:
        score += 15
        reasons.append(f"Early token with volume proof: {minutes}m old, {_fmt_k(vol)} MON")
    elif age < 120 and vol > 2000:
        score += 15
        reasons.append(f"Very new with activity: {age}s old, {_fmt_k(vol, 1)} MON")
    elif age > 1800:
        score -= 15
        reasons.append("Token too old for alpha hunting")

    if holders > 10 and age < 600:
        score += 10
        reasons.append(f"Fast adoption: {holders} holders in {minutes}m")

    change = _chg_1h(ctx)
    if vol > 50_000 and change > 5:
        score += 10
        reasons.append(f"Volume-backed pump: {_fmt_k(vol)} MON + {change:.1f}%")

    score = strategy_overlay(ctx, Strategy.ALPHA_HUNTER, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_diamond_hands(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Long holds on established tokens with a broad holder base."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    holders = _holders(ctx)

    if ctx.age_seconds > 3600:
        score += 10
        reasons.append("Established token (1h+)")
    else:
        score -= 10
        reasons.append("Too young for diamond hands")

    if holders > 200:
        score += 15
        reasons.append(f"Excellent holder base: {holders}")
    elif holders > 50:
        score += 8
        reasons.append(f"Good holder count: {holders}")
    elif holders < 20:
        score -= 10
        reasons.append("Insufficient holders for long hold")

    if vol > 5_000_000:
        score += 12
        reasons.append(f"Very high volume: {_fmt_m(vol)} MON")
    elif vol > 500_000:
        score += 8
        reasons.append(f"Consistent volume: {_fmt_k(vol)} MON")
    elif vol < 50_000:
        score -= 5
        reasons.append(f"Weak volume for long hold: {_fmt_k(vol)} MON")

    if _chg_24h(ctx) > 0:
        score += 8
        reasons.append(f"Positive 24h trend: +{_chg_24h(ctx):.1f}%")
    if _chg_1h(ctx) > 0:
        score += 5
        reasons.append(f"Positive 1h trend: +{_chg_1h(ctx):.1f}%")

    if ctx.market is not None and ctx.market.graduated:
        score += 10
        reasons.append("Graduated to DEX - proven demand")

    score = strategy_overlay(ctx, Strategy.DIAMOND_HANDS, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_swing_trader(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Upward swings in liquid tokens."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    change = _chg_1h(ctx)

    if vol < 100_000:
        score -= 10
        reasons.append("Insufficient liquidity for swing trade")
    elif vol > 1_000_000:
        score += 8
        reasons.append(f"Good liquidity: {_fmt_m(vol)} MON")

    if change > 15:
        score += 20
        reasons.append(f"Strong upswing: +{change:.1f}% in 1h")
    elif change > 5:
        score += 12
        reasons.append(f"Moderate upswing: +{change:.1f}% in 1h")
    elif change < -5:
        score -= 15
        reasons.append(f"Downswing - not buying: {change:.1f}%")

    if change > 5 and vol > 500_000:
        score += 10
        reasons.append("Volume-confirmed price swing")

    score = strategy_overlay(ctx, Strategy.SWING_TRADER, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_degen_ape(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Meme names plus volume-backed pumps."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    holders = _holders(ctx)
    age = ctx.age_seconds
    change = _chg_1h(ctx)

    if age < 600 and vol > 10_000 and holders > 5:
        score += 15
        reasons.append(f"Fresh active token - aping in: {_fmt_k(vol)} MON vol, {holders} holders")

    name = ctx.token.name.lower()
    if any(word in name for word in MEME_WORDS):
        score += 8
        reasons.append("Meme vibes detected")

    if change > 30 and vol > 1_000_000:
        score += 20
        reasons.append(f"Volume-backed moon: +{change:.1f}% with {_fmt_m(vol)} MON")
    elif change > 15 and vol > 100_000:
        score += 12
        reasons.append(f"Pumping with volume: +{change:.1f}%, {_fmt_k(vol)} MON")
    elif change > 10 and vol > 50_000:
        score += 5
        reasons.append(f"Pumping: +{change:.1f}%")

    if holders > 20 and age < 1800:
        score += 8
        reasons.append(f"{holders} holders in {age // 60}m - organic growth")

    score = strategy_overlay(ctx, Strategy.DEGEN_APE, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_volume_watcher(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Volume magnitude first, price confirmation second."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)

    if vol > 50_000_000:
        score += 25
        reasons.append(f"Massive volume: {_fmt_m(vol, 0)} MON")
    elif vol > 5_000_000:
        score += 18
        reasons.append(f"Very high volume: {_fmt_m(vol)} MON")
    elif vol > 1_000_000:
        score += 12
        reasons.append(f"Strong volume: {_fmt_m(vol)} MON")
    elif vol > 100_000:
        score += 5
        reasons.append(f"Moderate volume: {_fmt_k(vol)} MON")

    if _chg_1h(ctx) > 5 and vol > 1_000_000:
        score += 15
        reasons.append("Volume-confirmed price increase")

    if _chg_24h(ctx) > 0 and vol > 5_000_000:
        score += 8
        reasons.append("Sustained volume with positive 24h trend")

    score = strategy_overlay(ctx, Strategy.VOLUME_WATCHER, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_trend_follower(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Multi-timeframe alignment; never fights a downtrend."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    c1 = _chg_1h(ctx)
    c24 = _chg_24h(ctx)

    if vol < 100_000:
        score -= 8
        reasons.append("Low liquidity for trend following")

    if c1 > 10:
        score += 18
        reasons.append(f"Strong 1h trend: +{c1:.1f}%")
    elif c1 > 3:
        score += 8
        reasons.append(f"Positive 1h: +{c1:.1f}%")

    if c24 > 20:
        score += 12
        reasons.append(f"Strong 24h trend: +{c24:.1f}%")
    elif c24 > 5:
        score += 6
        reasons.append(f"Positive 24h: +{c24:.1f}%")

    if c1 > 3 and c24 > 0:
        score += 12
        reasons.append("Multi-timeframe trend alignment")

    if c1 < -5:
        score -= 20
        reasons.append("Downtrend - avoiding")

    score = strategy_overlay(ctx, Strategy.TREND_FOLLOWER, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


def score_contrarian(ctx: TokenContext, regime_bonus: Mapping[str, Any]) -> MarketSignal:
    """Quality dips on tokens with proven demand."""
    score, reasons = base_score(ctx)
    vol = _vol(ctx)
    holders = _holders(ctx)
    c1 = _chg_1h(ctx)
    c24 = _chg_24h(ctx)

    if vol < 100_000 or holders < 20:
        score -= 20
        reasons.append("Insufficient liquidity/holders for contrarian play")

    if c1 < -15 and holders > 50:
        score += 25
        reasons.append(f"Deeply oversold quality token: {c1:.1f}% drop, {holders} holders")
    elif c1 < -8 and holders > 20:
        score += 15
        reasons.append(f"Dipping with holder base: {c1:.1f}%, {holders} holders")
    elif c1 < -5 and holders > 15:
        score += 8
        reasons.append(f"Minor dip: {c1:.1f}%")

    if c24 < -20 and c1 > 0:
        score += 20
        reasons.append("Recovery after dump - mean reversion play")

    if c1 > 30:
        score -= 15
        reasons.append("Overpumped - would sell, not buy")

    if ctx.market is not None and ctx.market.graduated and vol > 500_000:
        score += 8
        reasons.append("Graduated token on dip - higher recovery chance")

    score = strategy_overlay(ctx, Strategy.CONTRARIAN, score, reasons, regime_bonus)
    return build_signal(ctx, score, reasons)


Scorer = Callable[[TokenContext, Mapping[str, Any]], MarketSignal]

SCORERS: dict[Strategy, Scorer] = {
    Strategy.ALPHA_HUNTER: score_alpha_hunter,
    Strategy.DIAMOND_HANDS: score_diamond_hands,
    Strategy.SWING_TRADER: score_swing_trader,
    Strategy.DEGEN_APE: score_degen_ape,
    Strategy.VOLUME_WATCHER: score_volume_watcher,
    Strategy.TREND_FOLLOWER: score_trend_follower,
    Strategy.CONTRARIAN: score_contrarian,
    Strategy.SNIPER: score_sniper,
}


def rank_signals(signals: list[MarketSignal], threshold: int) -> list[MarketSignal]:
    """
    Keep signals at or above threshold, best first.

    Ties on the clamped score fall back to the raw (pre-clamp) score, then
    to first-seen order (sorted() is stable).
    """
    kept = [s for s in signals if s.score >= threshold]
    return sorted(
        kept,
        key=lambda s: (s.score, s.raw_score if s.raw_score is not None else s.score),
        reverse=True,
    )


class SignalEngine:
    """Dispatches tokens to the strategy scorer table with the configured regime bonuses."""

    def __init__(self, scorers: Mapping[Strategy, Scorer] | None = None) -> None:
        self._scorers = dict(SCORERS if scorers is None else scorers)
        self._regime_bonus = get_config().get_strategies_config().get("regime_bonus", {})
        self._logger = setup_module_logger("signal_engine", "signal_engine.log", module_folder="Signal_Logs")

    def score(self, strategy: Strategy, ctx: TokenContext) -> MarketSignal:
        scorer = self._scorers.get(strategy)
        if scorer is None:
            raise StrategyRegistryError(f"No scorer registered for strategy '{strategy.value}'")

        signal = scorer(ctx, self._regime_bonus)
        self._logger.debug(
            "%s %s score=%d raw=%s reasons=%s",
            strategy.value,
            signal.symbol,
            signal.score,
            signal.raw_score,
            "; ".join(signal.reasons),
        )
        return signal
