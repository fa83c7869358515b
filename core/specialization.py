"""
Agent specialization windows for Agent Fleet Bot.

Optional market segmentation: each strategy only considers tokens inside
its own age window (or, for diamond hands, a bonding-curve progress band),
so agents stop competing for the same launches. Off by default; enabled
by ``use_specialization_windows`` in trading.json.

Windows live under ``strategies.<name>.window`` in strategies.json:
    {"min_age_seconds": 300, "max_age_seconds": 7200, "enabled": true}
    {"min_curve_bps": 9500, "max_curve_bps": 9999, "enabled": true}
"""

from __future__ import annotations

from typing import Any, Mapping

from shared.types import SafetyCheck, Strategy


def _format_age(age_seconds: int) -> str:
    if age_seconds < 60:
        return f"{age_seconds}s"
    if age_seconds < 3600:
        return f"{age_seconds / 60:.0f}min"
    return f"{age_seconds / 3600:.1f}h"


def is_token_in_window(
    strategy: Strategy,
    age_seconds: int,
    curve_progress_bps: int | None,
    window: Mapping[str, Any] | None,
) -> SafetyCheck:
    """Return whether a token falls inside the strategy's window, with the reason."""
    if not window:
        return SafetyCheck(False, f"Unknown strategy window: {strategy.value}")

    if not window.get("enabled", False):
        return SafetyCheck(False, "Agent disabled (poor performance)")

    if "min_curve_bps" in window or "max_curve_bps" in window:
        if curve_progress_bps is None:
            return SafetyCheck(False, "Curve progress not available")
        pct = curve_progress_bps / 100
        lo = window.get("min_curve_bps")
        hi = window.get("max_curve_bps")
        if lo is not None and curve_progress_bps < lo:
            return SafetyCheck(False, f"Curve too low: {pct:.1f}% (need {lo / 100:g}%+)")
        if hi is not None and curve_progress_bps > hi:
            return SafetyCheck(False, f"Curve too high: {pct:.1f}% (need <{hi / 100:g}%)")
        return SafetyCheck(True, f"Curve {pct:.1f}% - graduation target")

    min_age = window.get("min_age_seconds")
    max_age = window.get("max_age_seconds")
    if min_age is not None and age_seconds < min_age:
        return SafetyCheck(False, f"Too fresh: {age_seconds}s (need {min_age}s+)")
    if max_age is not None and age_seconds > max_age:
        return SafetyCheck(False, f"Too old: {age_seconds}s (need <{max_age}s)")

    return SafetyCheck(True, f"Age {_format_age(age_seconds)} - in window")
