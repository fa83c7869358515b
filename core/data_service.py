"""
Market data service for Agent Fleet Bot.

Fetches, caches, and normalizes token telemetry from the nad.fun HTTP API.
The API is noisy and rate-limited, so every endpoint sits behind a short
in-memory TTL cache and every failure degrades to an empty value instead of
raising. Callers treat an empty list or None as "data unavailable" and skip
the dependent enrichment.

Endpoints:
    - /order/latest_trade         recently traded tokens with inline market info
    - /trade/market/{token}       market snapshot
    - /trade/chart/{token}        price / volume series
    - /token/holders/{token}      holder distribution

Units:
    The API reports reserve and volume in wei; both are converted to MON
    here. Prices are already quoted in MON per token. Chart volumes are
    left in raw API units since indicators only use their ratios.

Usage:
    data_service = MarketDataService(session)
    tokens = await data_service.list_recent_tokens(limit=50)
    market = await data_service.get_market_snapshot(tokens[0].address)
"""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Any

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.constants import NADFUN_API_URL, WAD
from shared.types import HolderEntry, MarketSnapshot, PricePoint, TokenSummary

_ZERO = Decimal("0")

# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


class _CacheEntry:
    """In-memory cache entry with TTL."""

    __slots__ = ("data", "expires_at")

    def __init__(self, data: Any, ttl_seconds: float) -> None:
        self.data = data
        self.expires_at = time.monotonic() + ttl_seconds

    @property
    def is_valid(self) -> bool:
        return time.monotonic() < self.expires_at


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _dec(value: Any) -> Decimal:
    if value is None or value == "":
        return _ZERO
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return _ZERO
    return result if result.is_finite() else _ZERO


def _wei_to_mon(value: Any) -> Decimal:
    return _dec(value) / WAD


def parse_market_info(market_info: dict[str, Any], change_1h: Any, change_24h: Any) -> MarketSnapshot:
    """Normalize the API's ``market_info`` object into a MarketSnapshot."""
    return MarketSnapshot(
        price=_dec(market_info.get("price_native") or market_info.get("price")),
        reserve_mon=_wei_to_mon(market_info.get("reserve_native")),
        volume_mon=_wei_to_mon(market_info.get("volume")),
        price_change_1h=_dec(change_1h),
        price_change_24h=_dec(change_24h),
        holder_count=int(market_info.get("holder_count") or 0),
        total_supply=_dec(market_info.get("total_supply")),
        graduated=market_info.get("market_type") == "DEX",
    )


def parse_recent_token(item: dict[str, Any]) -> TokenSummary | None:
    info = item.get("token_info") or {}
    address = info.get("token_id")
    if not address:
        return None
    market_info = item.get("market_info")
    market = None
    if market_info:
        market = parse_market_info(market_info, item.get("percent_1h"), item.get("percent"))
    return TokenSummary(
        address=address.lower(),
        symbol=info.get("symbol", ""),
        name=info.get("name", ""),
        created_at=int(info.get("created_at") or 0),
        creator=info.get("creator") or "",
        market=market,
    )


class MarketDataService:
    """
    Async nad.fun API client with per-endpoint caching.

    All public methods return typed dataclasses from shared/types.py.
    Network failures return empty/None defaults rather than raising.
    """

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        """
        Args:
            session: Shared aiohttp session (created internally if None).
        """
        self._session = session
        self._owns_session = session is None

        cfg = get_config()
        md_cfg = cfg.get_market_data_config()
        timing = cfg.get_timing_config()

        self._base_url = md_cfg.get("api_base_url", NADFUN_API_URL).rstrip("/")
        self._chart_interval = md_cfg.get("chart_interval", "1h")
        ttl = md_cfg.get("cache_ttl_seconds", {})
        self._ttl_recent = float(ttl.get("recent_tokens", 15))
        self._ttl_market = float(ttl.get("market", 15))
        self._ttl_chart = float(ttl.get("chart", 60))
        self._ttl_holders = float(ttl.get("holders", 60))
        self._timeout = float(timing.get("market_data_timeout_seconds", 10))

        self._api_key = get_env_var("NADFUN_API_KEY", "", str)

        self._cache: dict[str, _CacheEntry] = {}

        self._logger = setup_module_logger("data_service", "data_service.log", module_folder="Data_Service_Logs")

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["X-API-Key"] = self._api_key
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=headers,
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _get_cached(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry and entry.is_valid:
            self._logger.debug("Cache hit: %s", key)
            return entry.data
        return None

    def _set_cached(self, key: str, data: Any, ttl: float) -> None:
        self._cache[key] = _CacheEntry(data, ttl)

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        """Fetch JSON from the API with error handling. Returns None on any failure."""
        url = f"{self._base_url}{path}"
        session = await self._get_session()
        try:
            return await asyncio.wait_for(self._fetch(session, url, params), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._logger.warning("Request timed out after %.0fs: %s", self._timeout, url)
            return None
        except (aiohttp.ClientError, ValueError) as e:
            self._logger.warning("Request failed for %s: %s", url, e)
            return None

    async def _fetch(self, session: aiohttp.ClientSession, url: str, params: dict[str, str] | None) -> Any:
        headers = {"X-API-Key": self._api_key} if self._api_key else None
        async with session.get(url, params=params, headers=headers) as resp:
            if resp.status == 429:
                self._logger.warning("Rate limited by %s", url)
                return None
            if resp.status != 200:
                self._logger.warning("HTTP %d from %s: %s", resp.status, url, await resp.text())
                return None
            return await resp.json(content_type=None)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_recent_tokens(self, limit: int = 50) -> list[TokenSummary]:
        """
        Recently traded tokens, newest activity first.

        Inline market info is parsed when present so callers can run the
        regime detector and quality filter without per-token requests.
        """
        cache_key = f"recent:{limit}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        data = await self._get_json("/order/latest_trade", {"page": "1", "limit": str(limit)})
        if not isinstance(data, dict):
            return []

        tokens: list[TokenSummary] = []
        for item in data.get("tokens") or []:
            try:
                token = parse_recent_token(item)
            except (TypeError, ValueError, AttributeError) as e:
                self._logger.debug("Skipping malformed token entry: %s", e)
                continue
            if token is not None:
                tokens.append(token)

        self._logger.debug("Fetched %d recent tokens", len(tokens))
        self._set_cached(cache_key, tokens, self._ttl_recent)
        return tokens

    async def get_market_snapshot(self, token_address: str) -> MarketSnapshot | None:
        cache_key = f"market:{token_address.lower()}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        data = await self._get_json(f"/trade/market/{token_address}")
        if not isinstance(data, dict) or not data.get("market_info"):
            return None

        try:
            snapshot = parse_market_info(
                data["market_info"],
                data.get("percent_1h"),
                data.get("percent_24h", data.get("percent")),
            )
        except (TypeError, ValueError, AttributeError) as e:
            self._logger.warning("Malformed market info for %s: %s", token_address, e)
            return None

        self._set_cached(cache_key, snapshot, self._ttl_market)
        return snapshot

    async def get_price_series(self, token_address: str, interval: str | None = None) -> list[PricePoint]:
        """Chart points oldest first. Empty list when unavailable."""
        interval = interval or self._chart_interval
        cache_key = f"chart:{token_address.lower()}:{interval}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        data = await self._get_json(f"/trade/chart/{token_address}", {"interval": interval})
        if not isinstance(data, dict):
            return []

        points = [
            PricePoint(
                timestamp=int(p.get("timestamp") or 0),
                price=_dec(p.get("price")),
                volume=_dec(p.get("volume")),
            )
            for p in data.get("chart") or []
            if isinstance(p, dict)
        ]
        points.sort(key=lambda p: p.timestamp)

        self._set_cached(cache_key, points, self._ttl_chart)
        return points

    async def get_holders(self, token_address: str) -> list[HolderEntry]:
        cache_key = f"holders:{token_address.lower()}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        data = await self._get_json(f"/token/holders/{token_address}")
        if not isinstance(data, dict):
            return []

        holders = [
            HolderEntry(
                address=str(h.get("address", "")),
                balance=_dec(h.get("balance")),
                percentage=_dec(h.get("percentage")),
            )
            for h in data.get("holders") or []
            if isinstance(h, dict)
        ]

        self._set_cached(cache_key, holders, self._ttl_holders)
        return holders
