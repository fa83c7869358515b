"""
Quality filter for Agent Fleet Bot.

Strategy-independent hard gate evaluated before any scoring. A token must
clear the liquidity, holder, age and price gates, then earn a quality score
of at least the configured floor (default 60/100). Rejections below the
floor still carry the numeric score for observability.

Usage:
    from core.quality_filter import QualityFilter

    qf = QualityFilter()
    check = qf.check(token, now=time.time())
    if not check.passed:
        print(check.reason)
"""

from __future__ import annotations

from decimal import Decimal

from config.loader import get_config
from shared.types import QualityCheck, TokenSummary


class QualityFilter:
    """Hard pass/fail gate plus a 0-100 quality score."""

    def __init__(self) -> None:
        cfg = get_config().get_trading_config().get("quality_filter", {})
        self._min_reserve_mon = Decimal(str(cfg.get("min_reserve_mon", "3")))
        self._min_holders = int(cfg.get("min_holders", 30))
        self._min_age_hours = Decimal(str(cfg.get("min_age_hours", "2")))
        self._hard_dump_pct = Decimal(str(cfg.get("hard_dump_1h_pct", "-15")))
        self._min_score = int(cfg.get("min_quality_score", 60))
        self._base_score = int(cfg.get("base_score", 50))

    def check(self, token: TokenSummary, now: float) -> QualityCheck:
        market = token.market
        if market is None:
            return QualityCheck(False, 0, "No market data")

        # ---- hard gates ----
        reserve = market.reserve_mon
        if reserve < self._min_reserve_mon:
            return QualityCheck(
                False, 0, f"Insufficient liquidity: {reserve:.1f} MON (need {self._min_reserve_mon}+)"
            )

        holders = market.holder_count
        if holders < self._min_holders:
            return QualityCheck(False, 0, f"Too few holders: {holders} (need {self._min_holders}+)")

        age_hours = Decimal(str(max(0.0, now - token.created_at))) / Decimal("3600")
        if age_hours < self._min_age_hours:
            return QualityCheck(False, 0, f"Too young: {age_hours:.1f}h (need {self._min_age_hours}h+)")

        if market.price <= 0:
            return QualityCheck(False, 0, "Invalid price")

        # ---- scoring ----
        score = self._base_score
        change = market.price_change_1h

        if change > 10:
            score += 20
        elif change > 0:
            score += 10
        elif change > -5:
            score += 5
        elif change > self._hard_dump_pct:
            score -= 10
        else:
            return QualityCheck(False, 0, f"Dumping hard: {change:.1f}% in 1h")

        if holders > 500:
            score += 15
        elif holders > 200:
            score += 10
        elif holders > 100:
            score += 5

        if reserve > 100:
            score += 15
        elif reserve > 50:
            score += 10
        elif reserve > 25:
            score += 5

        if age_hours > 72:
            score += 10
        elif age_hours > 24:
            score += 5

        # Turnover far above depth reads as exit liquidity
        ratio = market.volume_mon / reserve
        if ratio > 20:
            score -= 15
        elif 5 < ratio <= 10:
            score += 10
        elif 2 < ratio <= 5:
            score += 5

        score = max(0, min(100, score))
        if score < self._min_score:
            return QualityCheck(False, score, f"Low quality score: {score}/100 (need {self._min_score}+)")

        return QualityCheck(True, score)
