"""
Cross-agent coordination for Agent Fleet Bot.

TokenClaimCoordinator: shared registry granting one agent an exclusive,
time-bounded right to act on a token. Claims exist only to stop two
agents buying the same token in one fleet cycle; they carry no financial
authority.

DeadTokenBlacklist: tokens the post-entry monitor flagged as dead or
dying, excluded from entry scans for one hour.

Both are plain objects injected through constructors; neither is a module
global. Check-and-set runs under a threading.Lock so the same instance is
safe if agents are ever run in parallel. Expired entries are swept lazily
on claim/list calls rather than by a background timer.

Usage:
    coordinator = TokenClaimCoordinator()
    if coordinator.claim(token, agent.id, agent.name, reason="signal 91"):
        try:
            ...
        finally:
            coordinator.release(token, agent.id)
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from bot_logging.logger_manager import setup_module_logger
from shared.constants import DEAD_TOKEN_TTL_SECONDS, DEFAULT_CLAIM_TTL_SECONDS, MAX_CLAIM_TTL_SECONDS
from shared.types import DeadTokenEntry, TokenClaim

Clock = Callable[[], float]


def _short(address: str) -> str:
    return address[:10] + "..."


class TokenClaimCoordinator:
    """Exclusive, expiring token claims keyed by lowercase address."""

    def __init__(
        self,
        clock: Clock = time.time,
        default_ttl: float = DEFAULT_CLAIM_TTL_SECONDS,
        max_ttl: float = MAX_CLAIM_TTL_SECONDS,
    ) -> None:
        self._clock = clock
        self._default_ttl = default_ttl
        self._max_ttl = max_ttl
        self._claims: dict[str, TokenClaim] = {}
        self._lock = threading.Lock()
        self._logger = setup_module_logger("coordinator", "coordinator.log", module_folder="Coordination_Logs")

    # ------------------------------------------------------------------
    # Claim / release
    # ------------------------------------------------------------------

    def claim(
        self,
        token_address: str,
        agent_id: int,
        agent_name: str,
        reason: str = "standard trade",
        ttl: float | None = None,
    ) -> bool:
        """
        Atomically claim a token.

        Returns True if the token was free, expired, or already held by the
        same agent (whose claim is then extended). Returns False if another
        agent holds an unexpired claim. TTL is capped at max_ttl.
        """
        key = token_address.lower()
        duration = min(self._default_ttl if ttl is None else ttl, self._max_ttl)

        with self._lock:
            now = self._clock()
            self._sweep_locked(now)

            existing = self._claims.get(key)
            if existing is not None:
                if existing.agent_id == agent_id:
                    self._claims[key] = TokenClaim(
                        token_address=key,
                        agent_id=existing.agent_id,
                        agent_name=existing.agent_name,
                        reason=existing.reason,
                        claimed_at=existing.claimed_at,
                        expires_at=now + duration,
                    )
                    self._logger.info("%s re-claimed %s (extended %ds)", agent_name, _short(key), duration)
                    return True

                self._logger.info(
                    "%s BLOCKED: %s already claimed by %s (%ds remaining)",
                    agent_name,
                    _short(key),
                    existing.agent_name,
                    round(existing.expires_at - now),
                )
                return False

            self._claims[key] = TokenClaim(
                token_address=key,
                agent_id=agent_id,
                agent_name=agent_name,
                reason=reason,
                claimed_at=now,
                expires_at=now + duration,
            )

        self._logger.info("%s claimed %s for %s (%ds)", agent_name, _short(key), reason, duration)
        return True

    def release(self, token_address: str, agent_id: int) -> bool:
        """
        Release a claim held by ``agent_id``.

        Releasing an unclaimed token, or one held by another agent, is a
        logged no-op. Returns True only when a claim was removed.
        """
        key = token_address.lower()
        with self._lock:
            existing = self._claims.get(key)
            if existing is None:
                self._logger.warning("Release of unclaimed token %s ignored", _short(key))
                return False
            if existing.agent_id != agent_id:
                self._logger.warning(
                    "Agent %s cannot release %s held by %s", agent_id, _short(key), existing.agent_name
                )
                return False
            del self._claims[key]

        self._logger.info("%s released %s", existing.agent_name, _short(key))
        return True

    def release_all_by_agent(self, agent_id: int) -> int:
        with self._lock:
            keys = [k for k, c in self._claims.items() if c.agent_id == agent_id]
            for k in keys:
                del self._claims[k]
        if keys:
            self._logger.info("Released %d claims held by agent %s", len(keys), agent_id)
        return len(keys)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_available(self, token_address: str) -> bool:
        key = token_address.lower()
        with self._lock:
            existing = self._claims.get(key)
            if existing is None:
                return True
            if existing.expires_at < self._clock():
                del self._claims[key]
                return True
            return False

    def get_claim(self, token_address: str) -> TokenClaim | None:
        key = token_address.lower()
        with self._lock:
            existing = self._claims.get(key)
            if existing is not None and existing.expires_at < self._clock():
                del self._claims[key]
                return None
            return existing

    def all_claims(self) -> list[TokenClaim]:
        with self._lock:
            self._sweep_locked(self._clock())
            return list(self._claims.values())

    def stats(self) -> dict[str, object]:
        claims = self.all_claims()
        by_agent: dict[str, int] = {}
        for c in claims:
            by_agent[c.agent_name] = by_agent.get(c.agent_name, 0) + 1
        return {"active_claims": len(claims), "claims_by_agent": by_agent}

    def reset(self) -> None:
        with self._lock:
            self._claims.clear()

    def _sweep_locked(self, now: float) -> None:
        expired = [k for k, c in self._claims.items() if c.expires_at < now]
        for k in expired:
            claim = self._claims.pop(k)
            self._logger.info("Expired claim removed: %s (%s)", _short(k), claim.agent_name)


class DeadTokenBlacklist:
    """Tokens that showed no follow-through after entry, excluded for one hour."""

    def __init__(self, clock: Clock = time.time, ttl: float = DEAD_TOKEN_TTL_SECONDS) -> None:
        self._clock = clock
        self._ttl = ttl
        self._entries: dict[str, DeadTokenEntry] = {}
        self._lock = threading.Lock()
        self._logger = setup_module_logger("coordinator", "coordinator.log", module_folder="Coordination_Logs")

    def add(self, token_address: str, symbol: str, holder_growth: int, reason: str) -> None:
        key = token_address.lower()
        entry = DeadTokenEntry(
            token_address=key,
            symbol=symbol,
            detected_at=self._clock(),
            holder_growth=holder_growth,
            reason=reason,
        )
        with self._lock:
            self._entries[key] = entry
        self._logger.info("Dead-token blacklist += %s (%s) - %s", symbol, _short(key), reason)

    def is_blacklisted(self, token_address: str) -> bool:
        with self._lock:
            self._cleanup_locked()
            return token_address.lower() in self._entries

    def get_info(self, token_address: str) -> DeadTokenEntry | None:
        with self._lock:
            self._cleanup_locked()
            return self._entries.get(token_address.lower())

    def size(self) -> int:
        with self._lock:
            self._cleanup_locked()
            return len(self._entries)

    def all_entries(self) -> list[DeadTokenEntry]:
        with self._lock:
            self._cleanup_locked()
            return list(self._entries.values())

    def _cleanup_locked(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.detected_at > self._ttl]
        for k in expired:
            entry = self._entries.pop(k)
            self._logger.info("Dead-token blacklist -= %s (expired)", entry.symbol)
