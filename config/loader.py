"""
Configuration loader for Agent Fleet Bot.

Provides centralized configuration management over the JSON files in
config/ with .env overrides.

Usage:
    from config.loader import get_config

    config = get_config()
    chain_config = config.get_chain_config(143)
    strategies = config.get_strategies_config()
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the agent fleet.

    Loads configuration from JSON files in the config/ directory. Every
    accessor is cached via @lru_cache; call clear_cache() after editing a
    file at runtime.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def project_root(self) -> Path:
        return self._project_root

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=4)
    def get_chain_config(self, chain_id: int = 143) -> Dict[str, Any]:
        """Load chain-specific config (Monad mainnet = 143)."""
        return _load_json(self._config_dir / "chains" / f"{chain_id}.json")

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load cycle intervals, throttles and external call timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_trading_config(self) -> Dict[str, Any]:
        """Load entry gates, sizing limits, quality filter and safety settings."""
        return _load_json(self._config_dir / "trading.json")

    @lru_cache(maxsize=1)
    def get_strategies_config(self) -> Dict[str, Any]:
        """Load per-strategy exit tables, multipliers and regime bonuses."""
        return _load_json(self._config_dir / "strategies.json")

    @lru_cache(maxsize=1)
    def get_agents_config(self) -> Dict[str, Any]:
        """Load the fleet roster (name, strategy, personality, risk level)."""
        return _load_json(self._config_dir / "agents.json")

    @lru_cache(maxsize=1)
    def get_market_data_config(self) -> Dict[str, Any]:
        """Load market data API endpoints and cache TTLs."""
        return _load_json(self._config_dir / "market_data.json")

    @lru_cache(maxsize=1)
    def get_advisory_config(self) -> Dict[str, Any]:
        """Load advisory model providers and fallback policy."""
        return _load_json(self._config_dir / "advisory.json")

    # ------------------------------------------------------------------
    # ABI loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_abi(self, abi_name: str) -> list:
        """Load ABI from config/abis/<abi_name>.json."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        # ABI files are either raw arrays or {"abi": [...]}
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    # ------------------------------------------------------------------
    # Arbitrary config file loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=16)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Load an arbitrary JSON config file from config/ directory."""
        return _load_json(self._config_dir / f"{config_name}.json")

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
