"""
Fleet runner for Agent Fleet Bot.

Runs every active agent's cycle in sequence with a randomized 2-5s delay
between agents. Recent tokens are fetched once per fleet cycle and shared;
tokens bought by one agent are added to a per-cycle set that later agents
treat as blacklisted. Agents run sequentially so the shared set and the
claim coordinator only ever see one writer at a time.

One agent's failure never reaches another: each cycle is wrapped, logged
and reported as ``failed`` in the cycle results.

Usage:
    fleet = FleetRunner(store, vault, data_service, advisor, safety)
    results = await fleet.run_fleet_cycle()
    asyncio.create_task(fleet.run())
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.coordinator import DeadTokenBlacklist, TokenClaimCoordinator
from core.learning import LearningController
from core.position_manager import AgentRunner
from core.post_entry_monitor import PostEntryMonitor
from core.quality_filter import QualityFilter
from core.signal_engine import SignalEngine
from shared.constants import DEFAULT_CYCLE_INTERVAL_SECONDS
from shared.types import AgentCycleResult, AgentRecord, CycleStatus

if TYPE_CHECKING:
    from core.data_service import MarketDataService
    from core.safety import SafetyState
    from core.trade_store import TradeStore
    from execution.advisory_client import AdvisoryClient
    from execution.vault_client import VaultClient


class FleetRunnerError(Exception):
    """Raised when a single-agent cycle is requested for an unknown or inactive agent."""


class FleetRunner:
    """
    Cycle control surface: run_fleet_cycle, run_single_agent_cycle, run/stop.

    Agent runners are built lazily and cached by agent id, so trailing-stop
    state and monitor checkpoints persist across cycles.
    """

    def __init__(
        self,
        store: TradeStore,
        vault: VaultClient,
        data_service: MarketDataService,
        advisor: AdvisoryClient,
        safety: SafetyState,
        coordinator: TokenClaimCoordinator | None = None,
        blacklist: DeadTokenBlacklist | None = None,
        signal_engine: SignalEngine | None = None,
        quality_filter: QualityFilter | None = None,
        learning: LearningController | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._vault = vault
        self._data_service = data_service
        self._advisor = advisor
        self._safety = safety
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._coordinator = coordinator or TokenClaimCoordinator(clock=clock)
        self._blacklist = blacklist or DeadTokenBlacklist(clock=clock)
        self._signal_engine = signal_engine or SignalEngine()
        self._quality_filter = quality_filter or QualityFilter()
        self._learning = learning or LearningController()

        cfg = get_config()
        timing = cfg.get_timing_config()
        trading = cfg.get_trading_config()
        self._interval = float(timing.get("cycle_interval_seconds", DEFAULT_CYCLE_INTERVAL_SECONDS))
        self._delay_min = float(timing.get("inter_agent_delay_min_seconds", 2))
        self._delay_max = float(timing.get("inter_agent_delay_max_seconds", 5))
        self._recent_tokens_limit = int(trading.get("recent_tokens_limit", 50))

        self._runners: dict[int, AgentRunner] = {}
        self._running = False
        self._cycle_count = 0

        self._logger = setup_module_logger("fleet_runner", "fleet_runner.log", module_folder="Fleet_Logs")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def coordinator(self) -> TokenClaimCoordinator:
        return self._coordinator

    @property
    def blacklist(self) -> DeadTokenBlacklist:
        return self._blacklist

    # ------------------------------------------------------------------
    # Runner cache
    # ------------------------------------------------------------------

    def get_runner(self, agent: AgentRecord) -> AgentRunner:
        runner = self._runners.get(agent.id)
        if runner is None:
            slug = agent.name.lower().replace(" ", "_")
            monitor = PostEntryMonitor(
                self._data_service,
                self._blacklist,
                clock=self._clock,
                logger_name=f"post_entry_monitor.{slug}",
            )
            runner = AgentRunner(
                agent=agent,
                store=self._store,
                vault=self._vault,
                data_service=self._data_service,
                signal_engine=self._signal_engine,
                quality_filter=self._quality_filter,
                coordinator=self._coordinator,
                blacklist=self._blacklist,
                monitor=monitor,
                learning=self._learning,
                advisor=self._advisor,
                safety=self._safety,
                clock=self._clock,
                sleep=self._sleep,
            )
            self._runners[agent.id] = runner
        return runner

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def run_fleet_cycle(self) -> list[AgentCycleResult]:
        """Run every active agent once. Returns one result per agent, in run order."""
        agents = await self._store.list_agents(active_only=True)
        shared_tokens = await self._data_service.list_recent_tokens(self._recent_tokens_limit)
        bought_this_cycle: set[str] = set()
        results: list[AgentCycleResult] = []

        self._logger.info("Fleet cycle: %d agents, %d shared tokens", len(agents), len(shared_tokens))

        for i, agent in enumerate(agents):
            results.append(await self._run_agent(agent, shared_tokens, bought_this_cycle))

            if i < len(agents) - 1:
                await self._sleep(self._rng.uniform(self._delay_min, self._delay_max))

        return results

    async def run_single_agent_cycle(self, agent_id: int) -> AgentCycleResult:
        """Run one agent outside the fleet loop; it fetches its own token list."""
        agent = await self._store.get_agent(agent_id)
        if agent is None or not agent.active:
            raise FleetRunnerError(f"Agent {agent_id} not found or inactive")
        return await self._run_agent(agent, None, None)

    async def _run_agent(
        self,
        agent: AgentRecord,
        shared_tokens: list[Any] | None,
        bought_this_cycle: set[str] | None,
    ) -> AgentCycleResult:
        try:
            runner = self.get_runner(agent)
            bought = await runner.run_cycle(shared_tokens, bought_this_cycle)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error("Agent %s cycle failed: %s", agent.name, exc, exc_info=True)
            return AgentCycleResult(agent_name=agent.name, status=CycleStatus.FAILED, error=str(exc))

        if bought_this_cycle is not None:
            bought_this_cycle.update(t.lower() for t in bought)
        return AgentCycleResult(agent_name=agent.name, status=CycleStatus.COMPLETED)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run fleet cycles every ``cycle_interval_seconds`` until stop() is called."""
        self._running = True
        self._logger.info("Fleet loop started (interval: %.0fs)", self._interval)

        try:
            while self._running:
                self._cycle_count += 1
                self._logger.info("=== Cycle #%d starting ===", self._cycle_count)

                try:
                    results = await self.run_fleet_cycle()
                    completed = sum(1 for r in results if r.status is CycleStatus.COMPLETED)
                    for r in results:
                        if r.status is CycleStatus.FAILED:
                            self._logger.warning("  %s: %s", r.agent_name, r.error)
                    self._logger.info(
                        "=== Cycle #%d done: %d ok, %d failed ===",
                        self._cycle_count,
                        completed,
                        len(results) - completed,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("Cycle #%d crashed: %s", self._cycle_count, exc, exc_info=True)

                if self._running:
                    await self._sleep(self._interval)

        except asyncio.CancelledError:
            self._logger.info("Fleet loop cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        """Signal the run loop to stop after the current cycle."""
        self._running = False
