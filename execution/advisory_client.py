"""
Advisory client for Agent Fleet Bot.

Asks a language model, in the agent's own persona, whether to take a
scored entry. The model must answer with strict JSON:

    {"action": "BUY" | "SKIP" | "SELL", "confidence": 0-100,
     "reasoning": "...", "targetAmount": 5, "narrative": "...", "risks": ["..."]}

Normalization: an unknown action becomes SKIP; confidence is clamped to
[0, 100] and defaults to 50; a BUY without a target gets 10 MON when
confidence > 70, else 5 MON. Malformed output, HTTP errors and timeouts
raise AdvisoryError. The caller then falls back to the score bar
(``fallback_decision``).

Two implementations share the one-method ``AdvisoryClient`` interface:
    - OpenAICompatibleAdvisor: chat-completions over aiohttp (OpenRouter / Groq)
    - ScoreThresholdAdvisor: deterministic, used when no API key is configured

Usage:
    advisor = build_advisor(session)
    decision = await advisor.decide(request)
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

import aiohttp
from pydantic import BaseModel, Field, ValidationError, field_validator

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config, get_env_var
from shared.constants import DEFAULT_ADVISORY_FALLBACK_SCORE
from shared.types import AdvisoryAction, AdvisoryDecision, AdvisoryRequest, MarketSignal

_VALID_ACTIONS = {a.value for a in AdvisoryAction}


class AdvisoryError(Exception):
    """Raised when the advisory call fails or returns unusable output."""


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------


class AdvisoryPayload(BaseModel):
    """Raw model answer, leniently coerced."""

    action: str = "SKIP"
    confidence: float | None = None
    reasoning: str = ""
    target_amount: float | None = Field(default=None, alias="targetAmount")
    narrative: str = ""
    risks: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> str:
        action = str(v or "").strip().upper()
        return action if action in _VALID_ACTIONS else AdvisoryAction.SKIP.value

    @field_validator("risks", mode="before")
    @classmethod
    def coerce_risks(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(r) for r in v]


def parse_advisory_response(
    content: str,
    default_confidence: int = 50,
    high_confidence_cutoff: int = 70,
    target_high_mon: Decimal = Decimal("10"),
    target_low_mon: Decimal = Decimal("5"),
) -> AdvisoryDecision:
    """Validate and normalize the model's JSON answer. Raises AdvisoryError."""
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as e:
        raise AdvisoryError(f"Advisory response is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise AdvisoryError(f"Advisory response must be a JSON object, got {type(raw).__name__}")

    try:
        payload = AdvisoryPayload.model_validate(raw)
    except ValidationError as e:
        raise AdvisoryError(f"Advisory response failed validation: {e}") from e

    # A confidence of 0 reads as missing, like an absent field
    confidence = int(payload.confidence) if payload.confidence else default_confidence
    confidence = max(0, min(100, confidence))

    action = AdvisoryAction(payload.action)
    target: Decimal | None = None
    if payload.target_amount is not None and payload.target_amount > 0:
        target = Decimal(str(payload.target_amount))
    if action is AdvisoryAction.BUY and target is None:
        target = target_high_mon if confidence > high_confidence_cutoff else target_low_mon

    return AdvisoryDecision(
        action=action,
        confidence=confidence,
        reasoning=payload.reasoning,
        target_amount_mon=target,
        narrative=payload.narrative,
        risks=tuple(payload.risks),
    )


def fallback_decision(signal: MarketSignal, approve_score: int = DEFAULT_ADVISORY_FALLBACK_SCORE) -> AdvisoryDecision:
    """Decision used when no model answer is available: approve only strong signals."""
    if signal.score >= approve_score:
        return AdvisoryDecision(
            action=AdvisoryAction.BUY,
            confidence=signal.score,
            reasoning=f"Advisory unavailable; score {signal.score} >= {approve_score}",
        )
    return AdvisoryDecision(
        action=AdvisoryAction.SKIP,
        confidence=0,
        reasoning=f"Advisory unavailable; score {signal.score} below {approve_score}",
    )


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class AdvisoryClient(ABC):
    """One-method advisory interface."""

    name: str = "advisory"

    @abstractmethod
    async def decide(self, request: AdvisoryRequest) -> AdvisoryDecision:
        """
        Return BUY / SKIP / SELL for one scored token.

        Raises AdvisoryError on any failure; never returns a partial decision.
        """


class ScoreThresholdAdvisor(AdvisoryClient):
    """Deterministic advisor: BUY at or above the approve score, else SKIP."""

    name = "score_threshold"

    def __init__(self, approve_score: int | None = None) -> None:
        if approve_score is None:
            cfg = get_config().get_advisory_config()
            approve_score = int(cfg.get("fallback_approve_score", DEFAULT_ADVISORY_FALLBACK_SCORE))
        self._approve_score = approve_score

    async def decide(self, request: AdvisoryRequest) -> AdvisoryDecision:
        return fallback_decision(request.signal, self._approve_score)


class OpenAICompatibleAdvisor(AdvisoryClient):
    """
    Chat-completions advisor for OpenAI-compatible endpoints.

    Sends the persona as the system message and the learning context plus
    token data as the user message, with JSON response format requested.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._session = session
        self._owns_session = session is None
        self.name = model

        cfg = get_config()
        adv = cfg.get_advisory_config()
        self._temperature = float(adv.get("temperature", 0.8))
        self._max_tokens = int(adv.get("max_tokens", 300))
        self._default_confidence = int(adv.get("default_confidence", 50))
        self._high_cutoff = int(adv.get("high_confidence_cutoff", 70))
        self._target_high = Decimal(str(adv.get("default_target_high_mon", 10)))
        self._target_low = Decimal(str(adv.get("default_target_low_mon", 5)))
        self._timeout = float(cfg.get_timing_config().get("advisory_timeout_seconds", 20))

        self._logger = setup_module_logger("advisory_client", "advisory_client.log", module_folder="Advisory_Logs")
        self._logger.info("Initialized advisory provider %s at %s", self._model, self._base_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def decide(self, request: AdvisoryRequest) -> AdvisoryDecision:
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": build_system_prompt(request)},
                {"role": "user", "content": build_user_prompt(request)},
            ],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "response_format": {"type": "json_object"},
        }

        try:
            data = await asyncio.wait_for(self._post(payload), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise AdvisoryError(f"Advisory call timed out after {self._timeout:.0f}s") from e
        except aiohttp.ClientError as e:
            raise AdvisoryError(f"Advisory call failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AdvisoryError("Advisory response missing choices[0].message.content") from e
        if not content:
            raise AdvisoryError("Empty advisory response")

        decision = parse_advisory_response(
            content,
            default_confidence=self._default_confidence,
            high_confidence_cutoff=self._high_cutoff,
            target_high_mon=self._target_high,
            target_low_mon=self._target_low,
        )
        self._logger.info(
            "%s -> %s %s (%d%%): %s",
            request.agent_name,
            decision.action.value,
            request.signal.symbol,
            decision.confidence,
            decision.reasoning,
        )
        return decision

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        session = await self._get_session()
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        async with session.post(f"{self._base_url}/chat/completions", headers=headers, json=payload) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise AdvisoryError(f"HTTP {resp.status} from advisory provider: {body[:200]}")
            return await resp.json(content_type=None)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def build_system_prompt(request: AdvisoryRequest) -> str:
    return "\n".join(
        [
            f"You are {request.agent_name}, an autonomous trading agent running the "
            f"{request.strategy.value} strategy on newly launched bonding-curve tokens.",
            request.personality,
            "",
            "You are analyzing one token and must decide: BUY, SKIP, or SELL.",
            "Return JSON only:",
            '{"action": "BUY" | "SKIP" | "SELL", "confidence": 0-100, '
            '"reasoning": "2-3 sentences", "targetAmount": 5, '
            '"narrative": "what story is this token telling", "risks": ["risk 1", "risk 2"]}',
            "",
            "Rules:",
            "- BUY only if this fits your strategy and you have conviction",
            "- SKIP if uncertain, off-style, or too risky",
            "- targetAmount is in MON, usually 2-10 based on confidence",
            "A good SKIP is better than a bad BUY.",
        ]
    )


def build_user_prompt(request: AdvisoryRequest) -> str:
    signal = request.signal
    m = signal.metrics
    age = int(m.get("age", 0))
    age_display = f"{age // 3600}h {(age % 3600) // 60}m" if age >= 3600 else f"{age // 60}m"

    lines = [
        "## YOUR PERFORMANCE",
        request.learning_context or "No trade history yet. Be cautious but opportunistic.",
        "",
        "## TOKEN DATA",
        f"Name: {signal.name} ({signal.symbol})",
        f"Address: {signal.token_address}",
        f"Age: {age_display} ({age} seconds)",
        f"Price: {m.get('price', 'N/A')} MON",
        f"24h Volume: {m.get('volume_mon', 'N/A')} MON",
        f"Holders: {m.get('holder_count', 'N/A')}",
        f"1h Change: {m.get('price_change_1h', 'N/A')}%",
        f"24h Change: {m.get('price_change_24h', 'N/A')}%",
        f"RSI: {m.get('rsi', 'N/A')}",
        f"EMA Crossover: {m.get('ema_crossover', 'N/A')}",
        f"Volume Trend: {m.get('volume_trend', 'N/A')}",
        f"Holder Concentration: {m.get('holder_concentration', 'N/A')} (top 5: {m.get('top5_holder_pct', 'N/A')}%)",
        f"Market Regime: {str(m.get('market_regime', 'unknown')).upper()}",
        "",
        f"## SIGNAL: {signal.score}/100",
        *[f"- {r}" for r in signal.reasons],
        "",
        f"Current Holdings: {request.holdings_count}/{request.max_holdings} positions",
        "What's your decision? Return JSON only.",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_advisor(session: aiohttp.ClientSession | None = None) -> AdvisoryClient:
    """
    Pick the configured provider if its API key is set, then any other
    provider with a key, else the deterministic score-threshold advisor.
    """
    cfg = get_config().get_advisory_config()
    logger = setup_module_logger("advisory_client", "advisory_client.log", module_folder="Advisory_Logs")

    if not cfg.get("enabled", False):
        logger.info("Advisory disabled, using score threshold advisor")
        return ScoreThresholdAdvisor()

    providers: dict[str, dict[str, Any]] = cfg.get("providers", {})
    preferred = cfg.get("provider", "")
    order = [preferred] + [p for p in providers if p != preferred]

    for name in order:
        provider = providers.get(name)
        if not provider:
            continue
        api_key = get_env_var(provider.get("api_key_env", ""), "", str)
        if api_key:
            return OpenAICompatibleAdvisor(
                api_key=api_key,
                base_url=provider["base_url"],
                model=provider["model"],
                session=session,
            )

    logger.warning("No advisory API key configured, using score threshold advisor")
    return ScoreThresholdAdvisor()
