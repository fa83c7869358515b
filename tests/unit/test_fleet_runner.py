"""
Unit tests for core/fleet_runner.py.

Tests verify:
- One shared token fetch per fleet cycle
- Tokens bought earlier in a cycle are blacklisted for later agents
- Failure isolation between agents
- Randomized inter-agent delay, skipped after the last agent
- Single-agent cycles and the run/stop loop
"""

from __future__ import annotations

import random
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.fleet_runner import FleetRunner, FleetRunnerError
from core.position_manager import AgentRunner
from shared.types import CycleStatus, Strategy
from tests.conftest import NOW, make_agent, make_config_loader, make_token

TOKEN_A = "0x" + "a" * 40
TOKEN_B = "0x" + "b" * 40


@pytest.fixture
def patched_config():
    loader = make_config_loader()
    with (
        patch("core.fleet_runner.get_config", return_value=loader),
        patch("core.fleet_runner.setup_module_logger", return_value=MagicMock()),
        patch("core.position_manager.get_config", return_value=loader),
        patch("core.position_manager.setup_module_logger", return_value=MagicMock()),
        patch("core.post_entry_monitor.setup_module_logger", return_value=MagicMock()),
    ):
        yield loader


@pytest.fixture
def store():
    s = AsyncMock()
    s.list_agents.return_value = [
        make_agent(id=1, name="Sniper", strategy=Strategy.SNIPER),
        make_agent(id=2, name="Degen Ape", strategy=Strategy.DEGEN_APE),
        make_agent(id=3, name="Contrarian", strategy=Strategy.CONTRARIAN),
    ]
    return s


@pytest.fixture
def data_service():
    ds = AsyncMock()
    ds.list_recent_tokens.return_value = [make_token(address=TOKEN_A), make_token(address=TOKEN_B)]
    return ds


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def fleet(patched_config, store, data_service, sleep):
    return FleetRunner(
        store=store,
        vault=AsyncMock(),
        data_service=data_service,
        advisor=AsyncMock(),
        safety=MagicMock(),
        coordinator=MagicMock(),
        blacklist=MagicMock(),
        signal_engine=MagicMock(),
        quality_filter=MagicMock(),
        learning=MagicMock(),
        clock=lambda: NOW,
        sleep=sleep,
        rng=random.Random(7),
    )


def _fake_runners(fleet: FleetRunner, behaviours: dict[int, object]) -> dict[int, MagicMock]:
    """Replace runner construction with per-agent mocks whose run_cycle follows ``behaviours``."""
    runners: dict[int, MagicMock] = {}
    for agent_id, behaviour in behaviours.items():
        runner = MagicMock()
        if isinstance(behaviour, Exception):
            runner.run_cycle = AsyncMock(side_effect=behaviour)
        else:
            runner.run_cycle = AsyncMock(return_value=behaviour)
        runners[agent_id] = runner
    fleet.get_runner = lambda agent: runners[agent.id]
    return runners


class TestRunFleetCycle:
    async def test_all_agents_complete(self, fleet):
        _fake_runners(fleet, {1: [], 2: [], 3: []})

        results = await fleet.run_fleet_cycle()

        assert [r.agent_name for r in results] == ["Sniper", "Degen Ape", "Contrarian"]
        assert all(r.status is CycleStatus.COMPLETED for r in results)

    async def test_tokens_fetched_once_and_shared(self, fleet, data_service):
        runners = _fake_runners(fleet, {1: [], 2: [], 3: []})

        await fleet.run_fleet_cycle()

        data_service.list_recent_tokens.assert_awaited_once_with(50)
        shared = runners[1].run_cycle.await_args.args[0]
        assert [t.address for t in shared] == [TOKEN_A, TOKEN_B]
        assert runners[3].run_cycle.await_args.args[0] is shared

    async def test_bought_tokens_blacklisted_for_later_agents(self, fleet):
        seen: dict[int, set[str]] = {}

        def behaviour(agent_id, bought):
            async def run_cycle(shared_tokens, blacklist):
                seen[agent_id] = set(blacklist)
                return bought

            return run_cycle

        runners = _fake_runners(fleet, {1: [], 2: [], 3: []})
        runners[1].run_cycle = behaviour(1, [TOKEN_A.upper().replace("0X", "0x")])
        runners[2].run_cycle = behaviour(2, [])
        runners[3].run_cycle = behaviour(3, [])

        await fleet.run_fleet_cycle()

        assert seen[1] == set()
        assert seen[2] == {TOKEN_A}
        assert seen[3] == {TOKEN_A}

    async def test_failure_is_isolated(self, fleet):
        runners = _fake_runners(fleet, {1: [], 2: RuntimeError("scorer exploded"), 3: []})

        results = await fleet.run_fleet_cycle()

        assert results[1].status is CycleStatus.FAILED
        assert results[1].error == "scorer exploded"
        assert results[2].status is CycleStatus.COMPLETED
        runners[3].run_cycle.assert_awaited_once()

    async def test_delay_between_agents_only(self, fleet, sleep):
        _fake_runners(fleet, {1: [], 2: [], 3: []})

        await fleet.run_fleet_cycle()

        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert 2 <= call.args[0] <= 5

    async def test_single_agent_fleet_has_no_delay(self, fleet, store, sleep):
        store.list_agents.return_value = [make_agent(id=1, name="Sniper", strategy=Strategy.SNIPER)]
        _fake_runners(fleet, {1: []})

        await fleet.run_fleet_cycle()

        sleep.assert_not_awaited()


class TestRunSingleAgentCycle:
    async def test_unknown_agent(self, fleet, store):
        store.get_agent.return_value = None
        with pytest.raises(FleetRunnerError, match="Agent 9 not found or inactive"):
            await fleet.run_single_agent_cycle(9)

    async def test_inactive_agent(self, fleet, store):
        store.get_agent.return_value = make_agent(id=2, active=False)
        with pytest.raises(FleetRunnerError):
            await fleet.run_single_agent_cycle(2)

    async def test_runs_with_own_token_list(self, fleet, store):
        store.get_agent.return_value = make_agent(id=1, name="Sniper", strategy=Strategy.SNIPER)
        runners = _fake_runners(fleet, {1: [TOKEN_A]})

        result = await fleet.run_single_agent_cycle(1)

        assert result.status is CycleStatus.COMPLETED
        runners[1].run_cycle.assert_awaited_once_with(None, None)


class TestGetRunner:
    def test_runner_cached_per_agent(self, fleet):
        agent = make_agent(id=1, name="Sniper", strategy=Strategy.SNIPER)

        first = fleet.get_runner(agent)

        assert isinstance(first, AgentRunner)
        assert fleet.get_runner(agent) is first
        assert fleet.get_runner(make_agent(id=2, name="Degen Ape", strategy=Strategy.DEGEN_APE)) is not first


class TestRunLoop:
    async def test_stop_ends_loop(self, fleet, sleep):
        _fake_runners(fleet, {1: [], 2: [], 3: []})

        async def interval_sleep(seconds):
            if seconds == 60:
                fleet.stop()

        sleep.side_effect = interval_sleep

        await fleet.run()

        assert fleet.cycle_count == 1
        assert fleet.is_running is False

    async def test_crashed_cycle_does_not_stop_loop(self, fleet, store, sleep):
        store.list_agents.side_effect = [RuntimeError("db locked"), []]
        interval_sleeps = []

        async def interval_sleep(seconds):
            interval_sleeps.append(seconds)
            if len(interval_sleeps) == 2:
                fleet.stop()

        sleep.side_effect = interval_sleep

        await fleet.run()

        assert fleet.cycle_count == 2
        assert interval_sleeps == [60, 60]
