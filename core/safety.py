"""
Safety gate-keeper for Agent Fleet Bot.

Centralized kill switches checked before every buy, sell and transaction
submission. Default-to-safe: if the safety config is missing or corrupt,
defaults to dry_run=True, max_trade=0.

Dry run does not block the decision pipeline. Trades are quoted and
simulated against the vault, then recorded with a ``dry-run:`` tx ref, but
nothing is signed or broadcast.

Usage:
    from core.safety import SafetyState

    safety = SafetyState()
    check = safety.can_trade(amount_mon=Decimal("4.5"))
    if not check.can_proceed:
        print(f"Blocked: {check.reason}")
"""

from __future__ import annotations

import time
from collections import deque
from decimal import Decimal
from pathlib import Path

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.constants import DEFAULT_DRY_RUN
from shared.types import SafetyCheck

_PROJECT_ROOT = Path(__file__).parent.parent

_SECONDS_PER_DAY = 86400


class SafetyState:
    """
    Centralized safety controls for all trading actions.

    Two tiers of defaults:
    - Config present but key missing: operational defaults
    - Config section missing/empty: lockdown (dry_run=True, max_trade=0, no trades)
    """

    def __init__(self) -> None:
        cfg = get_config().get_trading_config().get("safety", {})

        if cfg:
            self._dry_run: bool = get_env_var("DRY_RUN", cfg.get("dry_run", DEFAULT_DRY_RUN), bool)
            self._max_trade_mon = Decimal(str(cfg.get("max_trade_mon", "15")))
            self._max_trades_per_24h: int = int(cfg.get("max_trades_per_24h", 200))
            sentinel = cfg.get("pause_sentinel", "PAUSE")
        else:
            self._dry_run = True
            self._max_trade_mon = Decimal("0")
            self._max_trades_per_24h = 0
            sentinel = "PAUSE"

        self._sentinel_file = _PROJECT_ROOT / sentinel

        # Mutable state
        self._global_pause = False
        self._pause_reason = ""
        self._action_timestamps: deque[float] = deque()

        self._logger = setup_module_logger("safety", "safety.log", module_folder="Safety_Logs")
        self._logger.info(
            "SafetyState initialized: dry_run=%s max_trade=%s MON max_trades_24h=%d",
            self._dry_run,
            self._max_trade_mon,
            self._max_trades_per_24h,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        """Check if trading is globally paused (includes sentinel file)."""
        self.check_pause_sentinel()
        return self._global_pause

    @property
    def is_dry_run(self) -> bool:
        return self._dry_run

    @property
    def max_trade_mon(self) -> Decimal:
        return self._max_trade_mon

    # ------------------------------------------------------------------
    # Gate checks
    # ------------------------------------------------------------------

    def can_trade(self, amount_mon: Decimal | None = None) -> SafetyCheck:
        """
        Check whether a trade may be placed.

        ``amount_mon`` is the MON spent on a buy. Exits pass None and are
        only blocked by a global pause.
        """
        if self.is_paused:
            return SafetyCheck(can_proceed=False, reason=f"Global pause active: {self._pause_reason}")

        if amount_mon is None:
            return SafetyCheck(can_proceed=True, reason="Exit allowed")

        if amount_mon > self._max_trade_mon:
            return SafetyCheck(
                can_proceed=False,
                reason=f"Trade {amount_mon:.4f} MON exceeds max {self._max_trade_mon} MON",
            )

        self._prune_old_timestamps()
        if len(self._action_timestamps) >= self._max_trades_per_24h:
            return SafetyCheck(
                can_proceed=False,
                reason=f"24h trade limit reached: {len(self._action_timestamps)}/{self._max_trades_per_24h}",
            )

        return SafetyCheck(can_proceed=True, reason="All checks passed")

    def can_submit_tx(self) -> SafetyCheck:
        """Check whether a signed transaction may be broadcast."""
        if self.is_paused:
            return SafetyCheck(can_proceed=False, reason=f"Global pause active: {self._pause_reason}")

        if self._dry_run:
            return SafetyCheck(can_proceed=False, reason="Dry run mode active")

        return SafetyCheck(can_proceed=True, reason="Submission allowed")

    # ------------------------------------------------------------------
    # State mutations
    # ------------------------------------------------------------------

    def record_action(self) -> None:
        """Record that a trade was placed (for the 24h rate limit)."""
        self._action_timestamps.append(time.time())
        self._logger.debug("Trade recorded; 24h count: %d", len(self._action_timestamps))

    def trigger_global_pause(self, reason: str) -> None:
        """Activate the emergency kill switch."""
        self._global_pause = True
        self._pause_reason = reason
        self._logger.critical("GLOBAL PAUSE TRIGGERED: %s", reason)

    def resume(self) -> None:
        """Clear the global pause (manual recovery)."""
        self._global_pause = False
        self._pause_reason = ""
        self._logger.warning("Global pause CLEARED, manual resume invoked")

    def check_pause_sentinel(self) -> bool:
        """Check for the PAUSE file in project root (emergency manual override)."""
        exists = self._sentinel_file.exists()
        if exists and not self._global_pause:
            self.trigger_global_pause("PAUSE sentinel file detected")
        return exists

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _prune_old_timestamps(self) -> None:
        """Remove trade timestamps older than 24 hours."""
        cutoff = time.time() - _SECONDS_PER_DAY
        while self._action_timestamps and self._action_timestamps[0] < cutoff:
            self._action_timestamps.popleft()
