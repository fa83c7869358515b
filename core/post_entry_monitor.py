"""
Post-entry momentum monitor for Agent Fleet Bot.

Tracks holder / price / volume drift since a position was opened and
recommends early exits:

    Early checkpoint  (>= 15 min, once): demand spike or dead launch
    Mid checkpoint    (>= 30 min, once): massive pump or dying momentum
    Continuous        (>= 10 min, 3+ snapshots): holder-growth trend

Dead and dying tokens are added to the injected DeadTokenBlacklist so no
agent re-enters them for an hour. Checkpoint flags and snapshots are
in-memory only; after a restart both checkpoints may fire again, which is
harmless because each only recommends an exit.

Usage:
    monitor = PostEntryMonitor(data_service, blacklist)
    monitor.start_monitoring(entry)
    result = await monitor.check_momentum(entry.token_address, entry)
"""

from __future__ import annotations

import time
from decimal import Decimal
from typing import TYPE_CHECKING, Callable

from bot_logging.logger_manager import setup_module_logger
from shared.types import EntrySnapshot, MomentumAction, MomentumResult, MomentumSnapshot, MomentumState

if TYPE_CHECKING:
    from core.coordinator import DeadTokenBlacklist
    from core.data_service import MarketDataService

EARLY_CHECKPOINT_SECONDS = 900
MID_CHECKPOINT_SECONDS = 1800
CONTINUOUS_MIN_SECONDS = 600

_ZERO = Decimal("0")


class PostEntryMonitor:
    """Per-agent momentum tracker for freshly opened positions."""

    def __init__(
        self,
        data_service: MarketDataService,
        blacklist: DeadTokenBlacklist,
        clock: Callable[[], float] = time.time,
        logger_name: str = "post_entry_monitor",
    ) -> None:
        self._data_service = data_service
        self._blacklist = blacklist
        self._clock = clock
        self._snapshots: dict[str, list[MomentumSnapshot]] = {}
        self._early_done: set[str] = set()
        self._mid_done: set[str] = set()
        self._logger = setup_module_logger(logger_name, "post_entry_monitor.log", module_folder="Monitor_Logs")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_monitoring(self, entry: EntrySnapshot) -> None:
        key = entry.token_address.lower()
        self._snapshots[key] = [
            MomentumSnapshot(
                timestamp=entry.entry_time,
                holders=entry.holders,
                volume_mon=entry.volume_mon,
                price=entry.price,
            )
        ]
        self._early_done.discard(key)
        self._mid_done.discard(key)

    def stop_monitoring(self, token_address: str) -> None:
        key = token_address.lower()
        self._snapshots.pop(key, None)
        self._early_done.discard(key)
        self._mid_done.discard(key)

    def is_monitoring(self, token_address: str) -> bool:
        return token_address.lower() in self._snapshots

    def get_snapshots(self, token_address: str) -> list[MomentumSnapshot]:
        return list(self._snapshots.get(token_address.lower(), []))

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_momentum(self, token_address: str, entry: EntrySnapshot) -> MomentumResult:
        """Fetch fresh market data and evaluate the checkpoint matrices. Never raises."""
        key = token_address.lower()
        try:
            market = await self._data_service.get_market_snapshot(token_address)
            if market is None:
                return MomentumResult(MomentumAction.HOLD, 0, "Unable to fetch token data")

            now = self._clock()
            elapsed = now - entry.entry_time
            elapsed_min = f"{elapsed / 60:.1f}"

            snapshots = self._snapshots.setdefault(key, [])
            snapshots.append(
                MomentumSnapshot(
                    timestamp=now,
                    holders=market.holder_count,
                    volume_mon=market.volume_mon,
                    price=market.price,
                )
            )

            growth = market.holder_count - entry.holders
            if entry.price > 0:
                change = (market.price - entry.price) / entry.price * 100
            else:
                change = _ZERO

            self._logger.info(
                "%s holders %d->%d (%+d), price %.1f%%, %smin",
                entry.symbol,
                entry.holders,
                market.holder_count,
                growth,
                change,
                elapsed_min,
            )

            if elapsed >= EARLY_CHECKPOINT_SECONDS and key not in self._early_done:
                self._early_done.add(key)
                if growth >= 30 and change >= 15:
                    return self._result(
                        MomentumAction.SELL_DEMAND_SPIKE,
                        95,
                        f"Strong post-entry demand: +{growth} holders, +{change:.1f}% price in {elapsed_min}min",
                        MomentumState.ACCELERATING,
                        growth,
                        change,
                    )
                if growth >= 15 and change >= 10:
                    return self._result(
                        MomentumAction.SELL_DEMAND_SPIKE,
                        85,
                        f"Good follow-up: +{growth} holders, +{change:.1f}% in {elapsed_min}min",
                        MomentumState.ACCELERATING,
                        growth,
                        change,
                    )
                if growth <= 4 and change < -3:
                    self._blacklist.add(
                        token_address,
                        entry.symbol,
                        growth,
                        f"Dead launch: only +{growth} holders in {elapsed_min}min",
                    )
                    return self._result(
                        MomentumAction.SELL_DEAD_TOKEN,
                        90,
                        f"No follow-up buyers: only +{growth} holders in {elapsed_min}min - dead launch",
                        MomentumState.DEAD,
                        growth,
                        change,
                    )

            if elapsed >= MID_CHECKPOINT_SECONDS and key not in self._mid_done:
                self._mid_done.add(key)
                if growth >= 50 and change >= 25:
                    return self._result(
                        MomentumAction.SELL_DEMAND_SPIKE,
                        98,
                        f"Massive pump detected: +{growth} holders, +{change:.1f}% in {elapsed_min}min",
                        MomentumState.ACCELERATING,
                        growth,
                        change,
                    )
                if growth <= 7 and change < -2:
                    self._blacklist.add(
                        token_address,
                        entry.symbol,
                        growth,
                        f"Momentum dying: only +{growth} holders in {elapsed_min}min",
                    )
                    return self._result(
                        MomentumAction.SELL_MOMENTUM_DYING,
                        85,
                        f"Momentum dead: only +{growth} holders in {elapsed_min}min, price {change:+.1f}%",
                        MomentumState.DYING,
                        growth,
                        change,
                    )

            if elapsed >= CONTINUOUS_MIN_SECONDS and len(snapshots) >= 3:
                trend = analyze_trend(snapshots)
                if trend is MomentumState.ACCELERATING and change >= 20:
                    return self._result(
                        MomentumAction.SELL_DEMAND_SPIKE,
                        90,
                        f"Accelerating momentum with +{change:.1f}% gain - selling into strength",
                        MomentumState.ACCELERATING,
                        growth,
                        change,
                    )
                if trend is MomentumState.DYING and change < -5 and elapsed >= MID_CHECKPOINT_SECONDS:
                    return self._result(
                        MomentumAction.SELL_MOMENTUM_DYING,
                        80,
                        f"Dying momentum with -{abs(change):.1f}% loss - cutting at stop loss",
                        MomentumState.DYING,
                        growth,
                        change,
                    )

            return self._result(
                MomentumAction.HOLD,
                50,
                f"Monitoring: +{growth} holders, {change:+.1f}% ({elapsed:.0f}s elapsed)",
                classify_momentum(growth, elapsed),
                growth,
                change,
            )

        except Exception as e:
            self._logger.error("Momentum check failed for %s: %s", token_address, e, exc_info=True)
            return MomentumResult(MomentumAction.HOLD, 30, "Monitoring error - holding position")

    @staticmethod
    def _result(
        action: MomentumAction,
        confidence: int,
        reason: str,
        state: MomentumState,
        growth: int,
        change: Decimal,
    ) -> MomentumResult:
        return MomentumResult(
            action=action,
            confidence=confidence,
            reason=reason,
            state=state,
            holder_growth=growth,
            price_change_pct=change,
        )


# ---------------------------------------------------------------------------
# Classifiers
# ---------------------------------------------------------------------------


def analyze_trend(snapshots: list[MomentumSnapshot]) -> MomentumState:
    """Holder-growth trend across the last three snapshots."""
    if len(snapshots) < 3:
        return MomentumState.STABLE

    a, b, c = snapshots[-3:]
    g1 = b.holders - a.holders
    g2 = c.holders - b.holders

    if g2 > g1 and g2 >= 3:
        return MomentumState.ACCELERATING
    if g2 < g1 and g2 <= 1:
        return MomentumState.DYING
    return MomentumState.STABLE


def classify_momentum(holder_growth: int, elapsed_seconds: float) -> MomentumState:
    """Bucket holders gained per minute since entry."""
    minutes = elapsed_seconds / 60
    if minutes <= 0:
        return MomentumState.STABLE
    rate = holder_growth / minutes
    if rate >= 5:
        return MomentumState.ACCELERATING
    if rate >= 2:
        return MomentumState.STABLE
    if rate >= 0.5:
        return MomentumState.DYING
    return MomentumState.DEAD
