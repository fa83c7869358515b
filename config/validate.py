"""
Configuration schema validation for Agent Fleet Bot.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from config.loader import get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


_STRATEGY_NAMES = (
    "alpha_hunter",
    "diamond_hands",
    "swing_trader",
    "degen_ape",
    "volume_watcher",
    "trend_follower",
    "contrarian",
    "sniper",
)


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    """Validate chains/143.json has required fields."""
    return _check_keys(
        config,
        [
            "chain_id",
            "rpc.http_url",
            "contracts.agent_vault",
            "contracts.lens",
            "contracts.reward_token",
        ],
        "chains/143.json",
    )


def validate_trading_config(config: dict[str, Any]) -> list[str]:
    """Validate trading.json has required fields."""
    return _check_keys(
        config,
        [
            "min_trade_mon",
            "slippage_bps",
            "deadline_seconds",
            "signal_threshold",
            "max_holdings",
            "max_position_pct_of_capital",
            "quality_filter.min_reserve_mon",
            "quality_filter.min_holders",
            "quality_filter.min_age_hours",
            "quality_filter.min_quality_score",
            "safety.dry_run",
            "learning.window",
        ],
        "trading.json",
    )


def validate_strategies_config(config: dict[str, Any]) -> list[str]:
    """Validate strategies.json covers every strategy and regime."""
    errors = _check_keys(
        config,
        ["strategies", "regime_bonus", "time_exits", "max_hold_minutes"],
        "strategies.json",
    )
    if errors:
        return errors
    for name in _STRATEGY_NAMES:
        errors.extend(
            f"strategies.{name}.{k}"
            for k in _check_keys(
                config["strategies"].get(name, {}),
                ["profit_targets", "stop_loss_pct", "trailing_stop_pct"],
                "strategies.json",
            )
        )
    for regime in ("bull", "bear", "sideways"):
        if regime not in config["regime_bonus"]:
            errors.append(f"regime_bonus.{regime}")
    return errors


def validate_agents_config(config: dict[str, Any]) -> list[str]:
    """Validate agents.json lists agents with known strategies."""
    errors = _check_keys(config, ["agents"], "agents.json")
    if not errors:
        agents = config.get("agents", [])
        if not isinstance(agents, list) or len(agents) == 0:
            errors.append("agents: must be a non-empty list")
        else:
            for i, agent in enumerate(agents):
                if agent.get("strategy") not in _STRATEGY_NAMES:
                    errors.append(f"agents[{i}].strategy: unknown '{agent.get('strategy')}'")
                if not agent.get("name"):
                    errors.append(f"agents[{i}].name")
    return errors


def validate_advisory_config(config: dict[str, Any]) -> list[str]:
    """Validate advisory.json has required fields."""
    return _check_keys(
        config,
        ["provider", "providers", "fallback_approve_score"],
        "advisory.json",
    )


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "chains/143.json": (loader.get_chain_config, validate_chain_config),
        "trading.json": (loader.get_trading_config, validate_trading_config),
        "strategies.json": (loader.get_strategies_config, validate_strategies_config),
        "agents.json": (loader.get_agents_config, validate_agents_config),
        "advisory.json": (loader.get_advisory_config, validate_advisory_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - missing: {error}")
        raise ConfigValidationError("\n".join(lines))
