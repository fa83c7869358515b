"""
Adaptive learning controller for Agent Fleet Bot.

Derives a LearningProfile from an agent's most recent trades (default 100)
and uses it to gate and size new entries:

    - Confidence threshold: 75 until 10 trades exist, then 60 when the
      agent wins at least half its trades, otherwise 70.
    - Base position size: 2 MON when net PnL is below -10 MON, 10 MON when
      winning (>= 50 %) and up more than 10 MON, 7 MON at >= 40 % win rate,
      otherwise 5 MON.
    - Max concurrent positions: 5 / 3 / 2 by win-rate tier.

Only sell trades carry realized PnL, so buys count towards total_trades
but never towards wins or losses.

Usage:
    controller = LearningController()
    profile = controller.build_learning_profile(agent, trades)
    check = controller.should_take_trade(profile, confidence=82, open_positions=1)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import WAD
from shared.types import AgentRecord, LearningProfile, SafetyCheck, Trade

_ZERO = Decimal("0")


class LearningController:
    """Turns trade history into adaptive thresholds and sizes."""

    def __init__(self) -> None:
        cfg = get_config().get_trading_config().get("learning", {})
        self._window = int(cfg.get("window", 100))
        self._min_trades = int(cfg.get("min_trades", 10))
        self._default_threshold = int(cfg.get("default_threshold", 75))
        self._winning_threshold = int(cfg.get("winning_threshold", 60))
        self._losing_threshold = int(cfg.get("losing_threshold", 70))
        self._min_size = Decimal(str(cfg.get("min_size_mon", "2")))
        self._max_size = Decimal(str(cfg.get("max_size_mon", "15")))
        self._max_patterns = int(cfg.get("max_patterns", 10))

        self._logger = setup_module_logger("learning", "learning.log", module_folder="Learning_Logs")

    @property
    def window(self) -> int:
        return self._window

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def build_learning_profile(self, agent: AgentRecord, trades: Sequence[Trade]) -> LearningProfile:
        """
        Build the profile from ``trades`` ordered newest first.

        Only the first ``window`` trades are considered.
        """
        recent = list(trades)[: self._window]
        total = len(recent)
        winners = [t for t in recent if t.pnl_wei is not None and t.pnl_wei > 0]
        losers = [t for t in recent if t.pnl_wei is not None and t.pnl_wei < 0]
        win_rate = Decimal(len(winners)) / Decimal(total) if total else _ZERO
        net_pnl = sum((Decimal(t.pnl_wei) for t in recent if t.pnl_wei), _ZERO) / Decimal(WAD)

        profile = LearningProfile(
            agent_id=agent.id,
            total_trades=total,
            wins=len(winners),
            losses=len(losers),
            win_rate=win_rate,
            net_pnl_mon=net_pnl,
            confidence_threshold=self._confidence_threshold(win_rate, total),
            position_size_mon=_position_size(win_rate, net_pnl),
            max_positions=_max_positions(win_rate),
            winning_patterns=tuple(t.reason for t in winners if t.reason)[: self._max_patterns],
            losing_patterns=tuple(t.reason for t in losers if t.reason)[: self._max_patterns],
        )

        self._logger.debug(
            "%s: %dW/%dL over %d trades, net %.2f MON -> threshold %d, size %s, max %d",
            agent.name,
            profile.wins,
            profile.losses,
            total,
            net_pnl,
            profile.confidence_threshold,
            profile.position_size_mon,
            profile.max_positions,
        )
        return profile

    def _confidence_threshold(self, win_rate: Decimal, total_trades: int) -> int:
        if total_trades < self._min_trades:
            return self._default_threshold
        if win_rate >= Decimal("0.5"):
            return self._winning_threshold
        return self._losing_threshold

    # ------------------------------------------------------------------
    # Gates
    # ------------------------------------------------------------------

    def should_take_trade(self, profile: LearningProfile, confidence: int, open_positions: int) -> SafetyCheck:
        if confidence < profile.confidence_threshold:
            return SafetyCheck(
                False,
                f"Confidence {confidence}% below threshold {profile.confidence_threshold}% "
                f"(adaptive based on {profile.win_rate * 100:.1f}% win rate)",
            )

        if open_positions >= profile.max_positions:
            return SafetyCheck(
                False,
                f"Max positions reached ({open_positions}/{profile.max_positions}) - adaptive limit",
            )

        return SafetyCheck(
            True,
            f"Learning approved: {confidence}% confidence >= {profile.confidence_threshold}% threshold",
        )

    def recommended_position_size(self, profile: LearningProfile, confidence: int) -> Decimal:
        """Base size scaled by 0.5 + confidence/100, clamped to the configured MON range."""
        multiplier = Decimal("0.5") + Decimal(confidence) / Decimal("100")
        size = profile.position_size_mon * multiplier
        return min(self._max_size, max(self._min_size, size))

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def learning_insights(self, profile: LearningProfile) -> str:
        if profile.total_trades == 0:
            return "No trades yet - learning mode enabled. Starting conservative."

        if profile.win_rate >= Decimal("0.5"):
            posture = "AGGRESSIVE"
        elif profile.win_rate >= Decimal("0.35"):
            posture = "STANDARD"
        else:
            posture = "SELECTIVE"

        if profile.net_pnl_mon >= 10:
            sizing = "INCREASED"
        elif profile.net_pnl_mon <= -10:
            sizing = "REDUCED"
        else:
            sizing = "STANDARD"

        sign = "+" if profile.net_pnl_mon > 0 else ""
        lines = [
            "## Learning Insights",
            "",
            f"**Performance:** {profile.wins}W / {profile.losses}L ({profile.win_rate * 100:.1f}% win rate)",
            f"**Net PnL:** {sign}{profile.net_pnl_mon:.2f} MON",
            "",
            "**Adaptive Settings:**",
            f"- Confidence Threshold: {profile.confidence_threshold}% ({posture})",
            f"- Position Size: {profile.position_size_mon} MON ({sizing})",
            f"- Max Positions: {profile.max_positions} "
            f"({'CONFIDENT' if profile.win_rate >= Decimal('0.5') else 'FOCUSED'})",
        ]

        if profile.winning_patterns:
            lines += ["", "**What's Working:**"]
            lines += [f"- {p}" for p in profile.winning_patterns[:3]]

        if profile.losing_patterns:
            lines += ["", "**What to Avoid:**"]
            lines += [f"- {p}" for p in profile.losing_patterns[:3]]

        return "\n".join(lines)

    def learning_context(self, profile: LearningProfile) -> str:
        """Short recent-performance summary for the advisory prompt."""
        if profile.total_trades == 0:
            return "No trade history yet."

        parts = [
            f"Record: {profile.wins}W/{profile.losses}L "
            f"({profile.win_rate * 100:.0f}% win rate), net {profile.net_pnl_mon:+.2f} MON."
        ]
        if profile.winning_patterns:
            parts.append("Recent wins: " + "; ".join(profile.winning_patterns[:3]) + ".")
        if profile.losing_patterns:
            parts.append("Recent losses: " + "; ".join(profile.losing_patterns[:3]) + ".")
        return " ".join(parts)


def _position_size(win_rate: Decimal, net_pnl_mon: Decimal) -> Decimal:
    if net_pnl_mon < -10:
        return Decimal("2")
    if win_rate >= Decimal("0.5") and net_pnl_mon > 10:
        return Decimal("10")
    if win_rate >= Decimal("0.4"):
        return Decimal("7")
    return Decimal("5")


def _max_positions(win_rate: Decimal) -> int:
    if win_rate >= Decimal("0.5"):
        return 5
    if win_rate >= Decimal("0.35"):
        return 3
    return 2
