"""
Per-agent position lifecycle for Agent Fleet Bot.

AgentRunner drives one agent through a fleet cycle:
    1. Sync the agent's capital from the vault into the store.
    2. Evaluate every open holding for exit (always before new entries).
    3. Scan recent tokens: filter, enrich, score, rank, ask the advisor,
       pass the learning gate, claim, size and buy.
    4. Record a PnL snapshot.

Exit priority per holding (thresholds from config/strategies.json):
    post-entry momentum monitor (first monitor_window_minutes)
    → profit targets → stop-loss → trailing stop → time exits → max hold.

Trailing-stop peaks and monitor checkpoint flags live in memory only. They
are lost on restart and re-armed at the current PnL the first time a
holding is evaluated again.

Usage:
    runner = AgentRunner(agent, store, vault, data_service, signal_engine,
                         quality_filter, coordinator, blacklist, monitor,
                         learning, advisor, safety)
    bought = await runner.run_cycle(shared_tokens, cross_agent_blacklist)
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, replace
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from bot_logging.logger_manager import (
    log_data_entry,
    log_data_output,
    log_data_processing,
    setup_module_logger,
)
from config.loader import get_config
from core.holder_analysis import analyze_holders
from core.indicators import Indicators
from core.market_regime import detect_regime, threshold_adjustment
from core.signal_engine import rank_signals
from core.specialization import is_token_in_window
from execution.advisory_client import AdvisoryError, fallback_decision
from execution.vault_client import VaultClientError
from shared.constants import (
    DEFAULT_ADVISORY_FALLBACK_SCORE,
    DEFAULT_MAX_HOLDINGS,
    DEFAULT_MAX_POSITION_PCT,
    DEFAULT_MIN_TRADE_MON,
    DEFAULT_SIGNAL_THRESHOLD,
    MONAD_CHAIN_ID,
    REWARD_TOKEN_ADDRESS,
    WAD,
)
from shared.types import (
    AdvisoryAction,
    AdvisoryDecision,
    AdvisoryRequest,
    AgentLogType,
    AgentRecord,
    EntrySnapshot,
    HolderAnalysis,
    Holding,
    LearningProfile,
    MarketSignal,
    MomentumAction,
    PnLSnapshot,
    Regime,
    RegimeAnalysis,
    SellDecision,
    Strategy,
    TechnicalIndicators,
    TokenContext,
    TokenSummary,
    Trade,
    TradeType,
    TrailingStopState,
)

if TYPE_CHECKING:
    from core.coordinator import DeadTokenBlacklist, TokenClaimCoordinator
    from core.data_service import MarketDataService
    from core.learning import LearningController
    from core.post_entry_monitor import PostEntryMonitor
    from core.quality_filter import QualityFilter
    from core.safety import SafetyState
    from core.signal_engine import SignalEngine
    from core.trade_store import TradeStore
    from execution.advisory_client import AdvisoryClient
    from execution.vault_client import VaultClient

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")
_MON_PLACES = Decimal("0.0001")

DEFAULT_STRATEGY_SIZE_MULTIPLIERS: dict[Strategy, Decimal] = {
    Strategy.SNIPER: Decimal("0.7"),
    Strategy.ALPHA_HUNTER: Decimal("0.7"),
    Strategy.DIAMOND_HANDS: Decimal("1.1"),
}

DEFAULT_REGIME_SIZE_MULTIPLIERS: dict[Regime, Decimal] = {
    Regime.BULL: Decimal("1.15"),
    Regime.BEAR: Decimal("0.6"),
    Regime.SIDEWAYS: _ONE,
}


def _dec(value: Any, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(default)


# ---------------------------------------------------------------------------
# Exit rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProfitTarget:
    pnl_pct: Decimal
    full: bool


@dataclass(frozen=True)
class TimeExit:
    min_minutes: Decimal
    reason: str
    min_pnl_pct: Decimal | None = None
    max_pnl_pct: Decimal | None = None

    def matches(self, pnl_pct: Decimal, hold_minutes: Decimal) -> bool:
        if hold_minutes < self.min_minutes:
            return False
        if self.min_pnl_pct is not None and pnl_pct < self.min_pnl_pct:
            return False
        if self.max_pnl_pct is not None and pnl_pct > self.max_pnl_pct:
            return False
        return True


@dataclass(frozen=True)
class ExitRules:
    """One strategy's exit thresholds, in percent and minutes."""

    profit_targets: tuple[ProfitTarget, ...]  # highest first
    stop_loss_pct: Decimal
    trailing_stop_pct: Decimal
    trailing_arm_pct: Decimal = Decimal("5")
    time_exits: tuple[TimeExit, ...] = ()
    max_hold_minutes: Decimal = Decimal("90")
    partial_fraction: Decimal = Decimal("0.5")
    min_partial_fraction: Decimal = Decimal("0.25")

    @classmethod
    def from_config(cls, strategies_cfg: Mapping[str, Any], strategy: Strategy) -> ExitRules:
        per_strategy = strategies_cfg.get("strategies", {}).get(strategy.value, {})
        targets = sorted(
            (
                ProfitTarget(pnl_pct=_dec(t["pnl_pct"]), full=t.get("action") == "full")
                for t in per_strategy.get("profit_targets", [])
            ),
            key=lambda t: t.pnl_pct,
            reverse=True,
        )
        time_exits = tuple(
            TimeExit(
                min_minutes=_dec(t["min_minutes"]),
                reason=t.get("reason", "Time exit"),
                min_pnl_pct=_dec(t["min_pnl_pct"]) if "min_pnl_pct" in t else None,
                max_pnl_pct=_dec(t["max_pnl_pct"]) if "max_pnl_pct" in t else None,
            )
            for t in strategies_cfg.get("time_exits", [])
        )
        return cls(
            profit_targets=tuple(targets),
            stop_loss_pct=_dec(per_strategy.get("stop_loss_pct", strategies_cfg.get("default_stop_loss_pct", "-7"))),
            trailing_stop_pct=_dec(per_strategy.get("trailing_stop_pct", "10")),
            trailing_arm_pct=_dec(strategies_cfg.get("trailing_arm_pct", "5")),
            time_exits=time_exits,
            max_hold_minutes=_dec(strategies_cfg.get("max_hold_minutes", 90)),
            partial_fraction=_dec(strategies_cfg.get("partial_sell_fraction", "0.5")),
            min_partial_fraction=_dec(strategies_cfg.get("min_partial_sell_fraction", "0.25")),
        )


def evaluate_exit(
    rules: ExitRules,
    pnl_pct: Decimal,
    peak_pnl_pct: Decimal,
    hold_minutes: Decimal,
) -> SellDecision:
    """
    Walk the exit triggers in fixed priority and return the first that fires.

    Profit targets → stop-loss → trailing stop (armed once the peak exceeds
    trailing_arm_pct) → time exits → max hold.
    """
    for target in rules.profit_targets:
        if pnl_pct >= target.pnl_pct:
            action = "full" if target.full else "partial"
            return SellDecision(
                should_sell=True,
                fraction=_ONE if target.full else rules.partial_fraction,
                reason=f"Profit target +{target.pnl_pct}% hit: {pnl_pct:+.1f}% ({action})",
                exit_type="profit_target",
            )

    if pnl_pct <= rules.stop_loss_pct:
        return SellDecision(True, _ONE, f"Stop loss: {pnl_pct:.1f}% loss", "stop_loss")

    drop = peak_pnl_pct - pnl_pct
    if peak_pnl_pct > rules.trailing_arm_pct and drop > rules.trailing_stop_pct:
        return SellDecision(
            True,
            _ONE,
            f"Trailing stop: dropped {drop:.1f}% from peak of +{peak_pnl_pct:.1f}%",
            "trailing_stop",
        )

    for rule in rules.time_exits:
        if rule.matches(pnl_pct, hold_minutes):
            return SellDecision(
                True,
                _ONE,
                f"{rule.reason}: {pnl_pct:+.1f}% after {hold_minutes:.0f}min",
                "time_exit",
            )

    if hold_minutes >= rules.max_hold_minutes:
        return SellDecision(
            True,
            _ONE,
            f"Stale position: held {hold_minutes:.0f}min, PnL {pnl_pct:+.1f}%",
            "time_exit",
        )

    return SellDecision(False, _ZERO, "Hold")


def update_trailing(state: TrailingStopState | None, pnl_pct: Decimal, now: float) -> TrailingStopState:
    """Raise the peak when PnL makes a new high. A missing state re-arms at the current PnL."""
    if state is None:
        return TrailingStopState(peak_pnl_pct=pnl_pct, last_peak_update=now)
    if pnl_pct > state.peak_pnl_pct:
        return TrailingStopState(peak_pnl_pct=pnl_pct, last_peak_update=now)
    return state


# ---------------------------------------------------------------------------
# Sell sizing and cost-basis accounting
# ---------------------------------------------------------------------------


def calculate_sell_amount(
    amount: int,
    fraction: Decimal,
    min_fraction: Decimal = Decimal("0.25"),
) -> int:
    """Token units to sell. Fractions below ``min_fraction`` are raised to it."""
    if amount <= 0:
        return 0
    if fraction >= _ONE:
        return amount
    sold = int(Decimal(amount) * max(fraction, min_fraction))
    return max(1, min(amount, sold))


def apply_partial_sell(holding: Holding, sold: int) -> Holding:
    """
    Holding left after selling ``sold`` units.

    Cost basis and current value shrink by exactly ``x * sold // amount``,
    so the remaining unrealized PnL% is unchanged. Selling nothing is a
    no-op; selling everything leaves an empty holding.
    """
    if sold <= 0 or holding.amount <= 0:
        return holding
    sold = min(sold, holding.amount)
    cost_sold = holding.cost_basis * sold // holding.amount
    value_sold = holding.current_value * sold // holding.amount
    return replace(
        holding,
        amount=holding.amount - sold,
        cost_basis=holding.cost_basis - cost_sold,
        current_value=holding.current_value - value_sold,
    )


def pnl_percent(value_wei: int, cost_basis_wei: int) -> Decimal:
    if cost_basis_wei <= 0:
        return _ZERO
    return Decimal(value_wei - cost_basis_wei) / Decimal(cost_basis_wei) * _HUNDRED


# ---------------------------------------------------------------------------
# Entry sizing
# ---------------------------------------------------------------------------


def calculate_position_size(
    score: int,
    threshold: int,
    regime: Regime,
    strategy: Strategy,
    capital_mon: Decimal,
    *,
    base_pct: Decimal = Decimal("0.05"),
    pct_range: Decimal = Decimal("0.05"),
    regime_multipliers: Mapping[Regime, Decimal] | None = None,
    strategy_multipliers: Mapping[Strategy, Decimal] | None = None,
    min_trade_mon: Decimal = DEFAULT_MIN_TRADE_MON,
    max_position_pct: Decimal = DEFAULT_MAX_POSITION_PCT,
) -> Decimal:
    """
    Position size in MON.

    The score is normalized against the decision threshold, so a score at
    the threshold buys base_pct of capital and a perfect score buys
    base_pct + pct_range. Regime and strategy multipliers are applied, then
    the result is raised to min_trade_mon and capped at max_position_pct
    of capital (the cap wins).
    """
    if capital_mon <= 0:
        return _ZERO

    span = 100 - threshold
    if span <= 0:
        normalized = _ONE if score >= threshold else _ZERO
    else:
        normalized = min(_ONE, max(_ZERO, Decimal(score - threshold) / Decimal(span)))

    regimes = DEFAULT_REGIME_SIZE_MULTIPLIERS if regime_multipliers is None else regime_multipliers
    strategies = DEFAULT_STRATEGY_SIZE_MULTIPLIERS if strategy_multipliers is None else strategy_multipliers

    size = capital_mon * (base_pct + pct_range * normalized)
    size *= regimes.get(regime, _ONE)
    size *= strategies.get(strategy, _ONE)

    size = max(min_trade_mon, size)
    size = min(size, capital_mon * max_position_pct)
    return size.quantize(_MON_PLACES, rounding=ROUND_DOWN)


def serialize_signal(signal: MarketSignal) -> str:
    return json.dumps(
        {
            "token_address": signal.token_address,
            "symbol": signal.symbol,
            "name": signal.name,
            "score": signal.score,
            "raw_score": signal.raw_score,
            "reasons": list(signal.reasons),
            "metrics": signal.metrics,
        },
        default=str,
    )


def entry_snapshot_from_trade(trade: Trade) -> EntrySnapshot:
    """Rebuild the monitor's entry snapshot from a buy trade's recorded signal."""
    metrics: dict[str, Any] = {}
    if trade.signal_json:
        try:
            metrics = json.loads(trade.signal_json).get("metrics", {}) or {}
        except (ValueError, AttributeError):
            metrics = {}
    curve = int(metrics.get("curve_progress") or 0)
    return EntrySnapshot(
        token_address=trade.token_address,
        symbol=trade.symbol,
        entry_time=float(trade.created_at),
        holders=int(metrics.get("holder_count") or 0),
        volume_mon=_dec(metrics.get("volume_mon", "0")),
        price=_dec(metrics.get("price", "0")) if metrics.get("price") else trade.price,
        curve_progress_bps=curve or None,
    )


# ---------------------------------------------------------------------------
# Agent runner
# ---------------------------------------------------------------------------


class AgentRunner:
    """
    One agent's decision loop: exits first, then at most one entry per cycle.

    All collaborators are injected. The runner owns the agent's trailing
    stop state; the coordinator and dead-token blacklist are shared with
    the rest of the fleet.
    """

    def __init__(
        self,
        agent: AgentRecord,
        store: TradeStore,
        vault: VaultClient,
        data_service: MarketDataService,
        signal_engine: SignalEngine,
        quality_filter: QualityFilter,
        coordinator: TokenClaimCoordinator,
        blacklist: DeadTokenBlacklist,
        monitor: PostEntryMonitor,
        learning: LearningController,
        advisor: AdvisoryClient,
        safety: SafetyState,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._agent = agent
        self._store = store
        self._vault = vault
        self._data_service = data_service
        self._signal_engine = signal_engine
        self._quality_filter = quality_filter
        self._coordinator = coordinator
        self._blacklist = blacklist
        self._monitor = monitor
        self._learning = learning
        self._advisor = advisor
        self._safety = safety
        self._clock = clock
        self._sleep = sleep

        cfg = get_config()
        trading = cfg.get_trading_config()
        strategies_cfg = cfg.get_strategies_config()
        timing = cfg.get_timing_config()
        advisory = cfg.get_advisory_config()
        contracts = cfg.get_chain_config(MONAD_CHAIN_ID).get("contracts", {})

        self._exit_rules = ExitRules.from_config(strategies_cfg, agent.strategy)
        self._window = strategies_cfg.get("strategies", {}).get(agent.strategy.value, {}).get("window")
        self._monitor_window_seconds = int(strategies_cfg.get("monitor_window_minutes", 35)) * 60

        self._regime_multipliers = {
            Regime(k): _dec(v) for k, v in strategies_cfg.get("regime_size_multipliers", {}).items()
        } or DEFAULT_REGIME_SIZE_MULTIPLIERS
        self._strategy_multiplier = _dec(
            strategies_cfg.get("strategies", {}).get(agent.strategy.value, {}).get("size_multiplier", "1")
        )

        self._min_trade_mon = _dec(trading.get("min_trade_mon", DEFAULT_MIN_TRADE_MON))
        self._min_capital_mon = _dec(trading.get("min_capital_mon", self._min_trade_mon))
        self._signal_threshold = int(trading.get("signal_threshold", DEFAULT_SIGNAL_THRESHOLD))
        self._max_holdings = int(trading.get("max_holdings", DEFAULT_MAX_HOLDINGS))
        self._max_position_pct = _dec(trading.get("max_position_pct_of_capital", DEFAULT_MAX_POSITION_PCT))
        self._base_position_pct = _dec(trading.get("base_position_pct", "0.05"))
        self._position_pct_range = _dec(trading.get("position_pct_range", "0.05"))
        self._recent_tokens_limit = int(trading.get("recent_tokens_limit", 50))
        self._regime_sample_size = int(trading.get("regime_sample_size", 20))
        self._max_enriched = int(trading.get("max_enriched_tokens", 5))
        self._max_candidates = int(trading.get("max_advisory_candidates", 5))
        self._min_chart_candles = int(trading.get("min_chart_candles", 5))
        self._sell_cooldown_seconds = int(trading.get("recent_sell_cooldown_minutes", 30)) * 60
        volume_cfg = trading.get("min_volume_mon", {})
        self._min_volume_mon = _dec(volume_cfg.get(agent.strategy.value, volume_cfg.get("default", "1000")))
        self._min_holders = int(trading.get("min_holders", 30))
        self._max_dump_pct = _dec(trading.get("max_dump_1h_pct", "-20"))
        self._use_windows = bool(trading.get("use_specialization_windows", False))

        self._throttle_seconds = float(timing.get("enrichment_throttle_seconds", 0.5))
        self._fallback_score = int(advisory.get("fallback_approve_score", DEFAULT_ADVISORY_FALLBACK_SCORE))
        self._reward_token = str(contracts.get("reward_token", REWARD_TOKEN_ADDRESS)).lower()

        # Per-holding peak PnL; in memory only
        self._trailing: dict[str, TrailingStopState] = {}

        slug = agent.name.lower().replace(" ", "_")
        self._logger = setup_module_logger(f"agent_runner.{slug}", f"{slug}.log", module_folder="Agent_Logs")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def agent(self) -> AgentRecord:
        return self._agent

    @property
    def exit_rules(self) -> ExitRules:
        return self._exit_rules

    def get_trailing_state(self, token_address: str) -> TrailingStopState | None:
        return self._trailing.get(token_address.lower())

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(
        self,
        shared_tokens: list[TokenSummary] | None = None,
        cross_agent_blacklist: set[str] | None = None,
    ) -> list[str]:
        """
        Run one full cycle. Returns the token addresses bought this cycle.

        A StrategyRegistryError (no scorer for this agent's strategy)
        propagates so the fleet runner reports the cycle as failed.
        """
        capital_wei = await self.sync_capital()
        await self.evaluate_holdings()

        bought: list[str] = []
        token = await self.scan_and_buy(capital_wei, shared_tokens, cross_agent_blacklist)
        if token is not None:
            bought.append(token)

        await self._record_pnl_snapshot()
        return bought

    async def sync_capital(self) -> int:
        """Pull the agent's balance from the vault; the stored value is used if the read fails."""
        try:
            info = await self._vault.get_agent_info(self._agent.vault_index)
        except VaultClientError as e:
            self._logger.warning("Vault info read failed, using stored capital: %s", e)
            return self._agent.capital_wei

        await self._store.update_agent_balances(self._agent.id, info["balance"], info["reward_balance"])
        self._agent = replace(
            self._agent,
            capital_wei=info["balance"],
            reward_balance_wei=info["reward_balance"],
        )
        return info["balance"]

    async def _record_pnl_snapshot(self) -> None:
        agent = await self._store.get_agent(self._agent.id) or self._agent
        await self._store.record_pnl_snapshot(
            PnLSnapshot(
                agent_id=agent.id,
                realized_pnl_wei=agent.realized_pnl_wei,
                capital_wei=self._agent.capital_wei,
                timestamp=int(self._clock()),
            )
        )

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    async def evaluate_holdings(self) -> None:
        """Check every open holding against the exit triggers and sell where one fires."""
        holdings = await self._store.get_holdings(self._agent.id)
        for holding in holdings:
            if holding.token_address.lower() == self._reward_token:
                continue
            try:
                await self._evaluate_holding(holding)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error("Holding evaluation failed for %s: %s", holding.symbol, e, exc_info=True)
                await self._log(AgentLogType.ERROR, f"Error evaluating {holding.symbol}: {e}")

    async def _evaluate_holding(self, holding: Holding) -> None:
        token = holding.token_address.lower()

        # 1. Reconcile the amount with the vault; the vault wins
        amount = holding.amount
        try:
            vault_amount, _vault_cost = await self._vault.get_holding(self._agent.vault_index, token)
            if vault_amount != amount:
                self._logger.warning(
                    "%s amount mismatch: stored=%d vault=%d (using vault)", holding.symbol, amount, vault_amount
                )
            amount = vault_amount
        except VaultClientError as e:
            self._logger.warning("Vault holding read failed for %s, using stored amount: %s", holding.symbol, e)

        if amount <= 0:
            await self._store.delete_holding(self._agent.id, token)
            self._trailing.pop(token, None)
            self._monitor.stop_monitoring(token)
            self._logger.info("%s holding empty on the vault, removed", holding.symbol)
            return

        # 2. Value at the current sell quote
        try:
            value_wei = await self._vault.quote(token, amount, is_buy=False)
        except VaultClientError as e:
            self._logger.warning("Sell quote failed for %s, skipping: %s", holding.symbol, e)
            return

        now = self._clock()
        pnl_pct = pnl_percent(value_wei, holding.cost_basis)
        hold_seconds = max(0.0, now - holding.acquired_at)
        hold_minutes = Decimal(str(hold_seconds)) / Decimal("60")

        holding = replace(holding, amount=amount, current_value=value_wei, unrealized_pnl_pct=pnl_pct)
        await self._store.upsert_holding(holding)

        if holding.cost_basis <= 0:
            self._logger.warning("%s has no cost basis, skipping exit checks", holding.symbol)
            return

        # 3. Post-entry momentum monitor
        decision: SellDecision | None = None
        if hold_seconds <= self._monitor_window_seconds:
            decision = await self._momentum_exit(holding)

        # 4. Trailing peak, then the exit ladder
        trailing = update_trailing(self._trailing.get(token), pnl_pct, now)
        self._trailing[token] = trailing

        if decision is None:
            decision = evaluate_exit(self._exit_rules, pnl_pct, trailing.peak_pnl_pct, hold_minutes)

        if not decision.should_sell:
            self._logger.debug(
                "HOLD %s: pnl=%+.1f%% peak=%+.1f%% held=%.0fmin",
                holding.symbol,
                pnl_pct,
                trailing.peak_pnl_pct,
                hold_minutes,
            )
            return

        sell_amount = calculate_sell_amount(amount, decision.fraction, self._exit_rules.min_partial_fraction)
        await self.execute_sell(holding, sell_amount, decision)

    async def _momentum_exit(self, holding: Holding) -> SellDecision | None:
        entry_trade = await self._store.get_entry_trade(self._agent.id, holding.token_address, since=holding.acquired_at)
        if entry_trade is None:
            return None

        entry = entry_snapshot_from_trade(entry_trade)
        if not self._monitor.is_monitoring(holding.token_address):
            self._monitor.start_monitoring(entry)

        result = await self._monitor.check_momentum(holding.token_address, entry)
        if result.action is MomentumAction.HOLD:
            return None

        await self._log(
            AgentLogType.DECISION,
            f"Momentum exit for {holding.symbol}: {result.action.value} ({result.confidence}%) - {result.reason}",
        )
        return SellDecision(True, _ONE, f"{result.action.value}: {result.reason}", "momentum")

    async def execute_sell(self, holding: Holding, sell_amount: int, decision: SellDecision) -> bool:
        """
        Sell ``sell_amount`` of ``holding`` and book the result.

        Realized PnL is the MON received minus the proportional cost basis.
        Returns False when the sell was blocked or failed.
        """
        token = holding.token_address.lower()
        check = self._safety.can_trade()
        if not check.can_proceed:
            await self._log(AgentLogType.DECISION, f"Sell of {holding.symbol} blocked: {check.reason}")
            return False

        try:
            result = await self._vault.execute_sell(self._agent.vault_index, token, sell_amount)
        except VaultClientError as e:
            await self._log(AgentLogType.ERROR, f"Sell failed for {holding.symbol}: {e}")
            return False

        remaining = apply_partial_sell(holding, sell_amount)
        proportional_cost = holding.cost_basis - remaining.cost_basis
        pnl_wei = result.amount_out - proportional_cost
        now = self._clock()

        await self._store.record_trade(
            Trade(
                agent_id=self._agent.id,
                token_address=token,
                symbol=holding.symbol,
                trade_type=TradeType.SELL,
                amount_in=sell_amount,
                amount_out=result.amount_out,
                price=Decimal(result.amount_out) / Decimal(sell_amount) if sell_amount else _ZERO,
                reason=decision.reason,
                pnl_wei=pnl_wei,
                tx_ref=result.tx_ref,
                created_at=int(now),
            )
        )
        await self._store.add_realized_pnl(self._agent.id, pnl_wei)

        full_exit = remaining.amount == 0
        if full_exit:
            await self._store.delete_holding(self._agent.id, token)
            self._trailing.pop(token, None)
            self._monitor.stop_monitoring(token)
        else:
            await self._store.upsert_holding(remaining)

        self._safety.record_action()
        await self.sync_capital()

        await self._log(
            AgentLogType.TRADE,
            f"SELL {holding.symbol} ({'full' if full_exit else 'partial'}): {decision.reason} | "
            f"received {Decimal(result.amount_out) / WAD:.4f} MON, PnL {Decimal(pnl_wei) / WAD:+.4f} MON",
            {"tx_ref": result.tx_ref, "exit_type": decision.exit_type, "pnl_wei": pnl_wei},
        )
        return True

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def scan_and_buy(
        self,
        capital_wei: int,
        shared_tokens: list[TokenSummary] | None = None,
        cross_agent_blacklist: set[str] | None = None,
    ) -> str | None:
        """
        Look for one token to buy. Returns its address, or None when the
        cycle ends without a buy (every such path logs its reason).
        """
        trace_id = uuid.uuid4().hex[:12]
        capital_mon = Decimal(capital_wei) / WAD

        if capital_mon < self._min_capital_mon:
            await self._log(AgentLogType.DECISION, "Insufficient vault balance for trading")
            return None

        if self._safety.is_paused:
            await self._log(AgentLogType.DECISION, "Trading paused, skipping entries")
            return None

        holdings = await self._store.get_holdings(self._agent.id)
        if len(holdings) >= self._max_holdings:
            await self._log(AgentLogType.DECISION, "Max holdings reached, waiting for sells")
            return None

        tokens = shared_tokens if shared_tokens is not None else await self._data_service.list_recent_tokens(
            self._recent_tokens_limit
        )
        if not tokens:
            await self._log(AgentLogType.DECISION, "No tokens available to analyze (API may be rate-limited)")
            return None

        now = self._clock()

        # 1. Regime and threshold
        regime = detect_regime(tokens[: self._regime_sample_size], now)
        threshold = threshold_adjustment(regime.regime, self._signal_threshold)
        await self._log(
            AgentLogType.DECISION,
            f"Market regime: {regime.regime.value} (confidence: {regime.confidence}%) | "
            f"Threshold: {threshold} | {'; '.join(regime.reasons[-2:])}",
        )

        # 2. Per-agent blacklist
        excluded = {h.token_address.lower() for h in holdings}
        excluded.add(self._reward_token)
        if cross_agent_blacklist:
            excluded |= {t.lower() for t in cross_agent_blacklist}
        excluded |= await self._store.get_recently_sold_tokens(self._agent.id, int(now) - self._sell_cooldown_seconds)

        # 3. Filter, enrich, score
        signals = await self._score_tokens(tokens, excluded, regime, now)
        ranked = rank_signals(signals, threshold)
        if not ranked:
            await self._log(
                AgentLogType.DECISION,
                f"No tokens passed dynamic threshold ({threshold}) in {regime.regime.value} market",
            )
            return None

        candidates = ranked[: self._max_candidates]
        await self._log(
            AgentLogType.DECISION,
            f"Found {len(ranked)} candidates above threshold, consulting advisor on top {len(candidates)}",
        )

        # 4. Advisory + learning gate
        trades = await self._store.get_recent_trades(self._agent.id, limit=self._learning.window)
        profile = self._learning.build_learning_profile(self._agent, trades)

        chosen: tuple[MarketSignal, AdvisoryDecision] | None = None
        for signal in candidates:
            log_data_entry(trace_id, self._agent.name, "signal", signal.token_address, serialize_signal(signal))
            decision = await self.consult_advisor(signal, len(holdings), profile)
            log_data_processing(
                trace_id,
                self._agent.name,
                "advisory",
                signal.token_address,
                {"score": signal.score},
                {"action": decision.action.value, "confidence": decision.confidence},
            )
            await self._log(
                AgentLogType.ADVISORY,
                f"Advisory for {signal.symbol}: {decision.action.value} "
                f"(confidence: {decision.confidence}%) - {decision.reasoning}",
            )
            if decision.action is not AdvisoryAction.BUY:
                log_data_output(trace_id, self._agent.name, "advisory", signal.token_address, "SKIP", decision.reasoning)
                continue

            gate = self._learning.should_take_trade(profile, decision.confidence, len(holdings))
            if not gate.can_proceed:
                await self._log(AgentLogType.LEARNING, f"Learning gate blocked {signal.symbol}: {gate.reason}")
                log_data_output(trace_id, self._agent.name, "learning", signal.token_address, "SKIP", gate.reason)
                continue

            chosen = (signal, decision)
            break

        if chosen is None:
            await self._log(
                AgentLogType.DECISION,
                f"Advisor reviewed {len(candidates)} candidates and decided to SKIP all",
            )
            return None

        signal, decision = chosen
        return await self._buy(signal, decision, profile, regime, threshold, capital_wei, trace_id)

    async def consult_advisor(
        self,
        signal: MarketSignal,
        holdings_count: int,
        profile: LearningProfile,
    ) -> AdvisoryDecision:
        """Ask the advisor; on any advisory failure fall back to the fixed score bar."""
        request = AdvisoryRequest(
            agent_name=self._agent.name,
            strategy=self._agent.strategy,
            personality=self._agent.personality,
            signal=signal,
            holdings_count=holdings_count,
            max_holdings=profile.max_positions,
            learning_context=self._learning.learning_context(profile),
        )
        try:
            return await self._advisor.decide(request)
        except AdvisoryError as e:
            fallback = fallback_decision(signal, self._fallback_score)
            self._logger.warning(
                "Advisory failed for %s (%s), fallback %s at score %d",
                signal.symbol,
                e,
                fallback.action.value,
                signal.score,
            )
            return fallback

    async def _score_tokens(
        self,
        tokens: list[TokenSummary],
        excluded: set[str],
        regime: RegimeAnalysis,
        now: float,
    ) -> list[MarketSignal]:
        signals: list[MarketSignal] = []
        enriched = 0

        for token in tokens:
            address = token.address.lower()
            if address in excluded:
                continue

            skip = self._screen(token, now)
            if skip is not None:
                self._logger.debug("SKIP %s: %s", token.symbol, skip)
                continue

            age_seconds = max(0, int(now - token.created_at))
            curve_bps = await self._vault.get_curve_progress(address)

            if self._use_windows:
                window_check = is_token_in_window(self._agent.strategy, age_seconds, curve_bps, self._window)
                if not window_check.can_proceed:
                    self._logger.debug("SKIP %s: %s", token.symbol, window_check.reason)
                    continue

            technicals: TechnicalIndicators | None = None
            holder_analysis: HolderAnalysis | None = None
            if enriched < self._max_enriched:
                technicals, holder_analysis = await self._enrich(address)
                enriched += 1

            ctx = TokenContext(
                token=token,
                age_seconds=age_seconds,
                curve_progress_bps=curve_bps,
                technicals=technicals,
                holders=holder_analysis,
                regime=regime,
            )
            signals.append(self._signal_engine.score(self._agent.strategy, ctx))

        return signals

    def _screen(self, token: TokenSummary, now: float) -> str | None:
        """Hard per-token filters. Returns the skip reason, or None if the token may be scored."""
        if self._blacklist.is_blacklisted(token.address):
            info = self._blacklist.get_info(token.address)
            return f"Blacklisted - {info.reason if info else 'dead token'}"

        quality = self._quality_filter.check(token, now)
        if not quality.passed:
            return f"Quality {quality.score}/100 - {quality.reason}"

        market = token.market
        if market is None or market.price <= 0:
            return "No valid price"

        if market.volume_mon < self._min_volume_mon:
            return f"Low volume {market.volume_mon:.0f} MON (need {self._min_volume_mon})"

        if market.holder_count < self._min_holders:
            return f"Only {market.holder_count} holders (need {self._min_holders})"

        if self._agent.strategy is not Strategy.CONTRARIAN and market.price_change_1h < self._max_dump_pct:
            return f"Dumping {market.price_change_1h:.1f}% in 1h"

        return None

    async def _enrich(self, address: str) -> tuple[TechnicalIndicators | None, HolderAnalysis | None]:
        """Chart indicators and holder analysis, throttled. Missing data means no adjustment."""
        technicals: TechnicalIndicators | None = None
        holder_analysis: HolderAnalysis | None = None

        await self._sleep(self._throttle_seconds)
        chart = await self._data_service.get_price_series(address)
        if len(chart) >= self._min_chart_candles:
            technicals = Indicators.compute_all(chart)

        await self._sleep(self._throttle_seconds)
        holders = await self._data_service.get_holders(address)
        if holders:
            holder_analysis = analyze_holders(holders)

        return technicals, holder_analysis

    def position_size(self, score: int, threshold: int, regime: Regime, capital_mon: Decimal) -> Decimal:
        return calculate_position_size(
            score,
            threshold,
            regime,
            self._agent.strategy,
            capital_mon,
            base_pct=self._base_position_pct,
            pct_range=self._position_pct_range,
            regime_multipliers=self._regime_multipliers,
            strategy_multipliers={self._agent.strategy: self._strategy_multiplier},
            min_trade_mon=self._min_trade_mon,
            max_position_pct=self._max_position_pct,
        )

    async def _buy(
        self,
        signal: MarketSignal,
        decision: AdvisoryDecision,
        profile: LearningProfile,
        regime: RegimeAnalysis,
        threshold: int,
        capital_wei: int,
        trace_id: str,
    ) -> str | None:
        token = signal.token_address.lower()

        # 1. Exclusive claim
        claimed = self._coordinator.claim(
            token,
            self._agent.id,
            self._agent.name,
            f"Advisory: {decision.confidence}% confidence",
        )
        if not claimed:
            await self._log(AgentLogType.DECISION, f"SKIP {signal.symbol}: already claimed by another agent")
            log_data_output(trace_id, self._agent.name, "claim", token, "SKIP", "already claimed")
            return None

        # 2. Size: formula size, capped by the learning and advisory sizes
        capital_mon = Decimal(capital_wei) / WAD
        size_mon = self.position_size(signal.score, threshold, regime.regime, capital_mon)
        size_mon = min(size_mon, self._learning.recommended_position_size(profile, decision.confidence))
        if decision.target_amount_mon is not None and decision.target_amount_mon > 0:
            size_mon = min(size_mon, decision.target_amount_mon)
        size_mon = size_mon.quantize(_MON_PLACES, rounding=ROUND_DOWN)
        size_wei = int(size_mon * WAD)

        if size_wei <= 0 or size_wei > capital_wei:
            self._coordinator.release(token, self._agent.id)
            await self._log(AgentLogType.DECISION, f"Trade amount {size_mon} MON exceeds vault balance")
            return None

        check = self._safety.can_trade(size_mon)
        if not check.can_proceed:
            self._coordinator.release(token, self._agent.id)
            await self._log(AgentLogType.DECISION, f"Buy of {signal.symbol} blocked: {check.reason}")
            log_data_output(trace_id, self._agent.name, "safety", token, "SKIP", check.reason)
            return None

        # 3. Settle
        try:
            result = await self._vault.execute_buy(self._agent.vault_index, token, size_wei)
        except VaultClientError as e:
            self._coordinator.release(token, self._agent.id)
            await self._log(AgentLogType.ERROR, f"Buy failed for {signal.symbol}: {e}")
            log_data_output(trace_id, self._agent.name, "settlement", token, "ERROR", str(e))
            return None

        # 4. Book the position
        now = self._clock()
        price = _dec(signal.metrics.get("price", "0"))
        await self._store.record_trade(
            Trade(
                agent_id=self._agent.id,
                token_address=token,
                symbol=signal.symbol,
                trade_type=TradeType.BUY,
                amount_in=result.amount_in,
                amount_out=result.amount_out,
                price=price,
                reason=(
                    f"{'; '.join(signal.reasons)} | Advisory: {decision.reasoning} | "
                    f"Size: {size_mon} MON (confidence: {decision.confidence}%, regime: {regime.regime.value})"
                ),
                signal_json=serialize_signal(signal),
                tx_ref=result.tx_ref,
                created_at=int(now),
            )
        )
        await self._store.upsert_holding(
            Holding(
                agent_id=self._agent.id,
                token_address=token,
                symbol=signal.symbol,
                amount=result.amount_out,
                cost_basis=result.amount_in,
                current_value=result.amount_in,
                acquired_at=int(now),
            )
        )

        self._trailing[token] = TrailingStopState(peak_pnl_pct=_ZERO, last_peak_update=now)
        curve = int(signal.metrics.get("curve_progress") or 0)
        self._monitor.start_monitoring(
            EntrySnapshot(
                token_address=token,
                symbol=signal.symbol,
                entry_time=float(int(now)),
                holders=int(signal.metrics.get("holder_count") or 0),
                volume_mon=_dec(signal.metrics.get("volume_mon", "0")),
                price=price,
                curve_progress_bps=curve or None,
            )
        )
        self._safety.record_action()

        await self._log(
            AgentLogType.TRADE,
            f"BUY {signal.symbol}: {size_mon} MON -> {Decimal(result.amount_out) / WAD:.4f} tokens "
            f"(advisory confidence: {decision.confidence}%, regime: {regime.regime.value})",
            {"tx_ref": result.tx_ref, "narrative": decision.narrative, "risks": list(decision.risks)},
        )
        log_data_output(trace_id, self._agent.name, "settlement", token, "BUY", {"tx_ref": result.tx_ref})
        return token

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    async def _log(self, log_type: AgentLogType, message: str, data: dict[str, Any] | None = None) -> None:
        self._logger.info("[%s] %s", log_type.value, message)
        await self._store.log_agent_event(self._agent.id, log_type, message, data)
