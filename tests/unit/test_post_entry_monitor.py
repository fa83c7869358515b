"""
Unit tests for core/post_entry_monitor.py.

Tests verify the early and mid checkpoints fire once each, dead and dying
tokens are blacklisted, the continuous trend check, and that fetch
failures degrade to HOLD.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.post_entry_monitor import analyze_trend, classify_momentum
from shared.types import EntrySnapshot, MomentumAction, MomentumSnapshot, MomentumState
from tests.conftest import SAMPLE_TOKEN, make_market

ENTRY_TIME = 10_000.0


class FakeClock:
    def __init__(self, now: float = ENTRY_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _entry(holders: int = 100, price: str = "0.001") -> EntrySnapshot:
    return EntrySnapshot(
        token_address=SAMPLE_TOKEN,
        symbol="TEST",
        entry_time=ENTRY_TIME,
        holders=holders,
        volume_mon=Decimal("1000"),
        price=Decimal(price),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_service():
    ds = MagicMock()
    ds.get_market_snapshot = AsyncMock()
    return ds


@pytest.fixture
def blacklist():
    return MagicMock()


@pytest.fixture
def monitor(data_service, blacklist, clock):
    with patch("core.post_entry_monitor.setup_module_logger", return_value=MagicMock()):
        from core.post_entry_monitor import PostEntryMonitor

        mon = PostEntryMonitor(data_service, blacklist, clock=clock)
        mon.start_monitoring(_entry())
        return mon


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_start_records_entry_snapshot(self, monitor):
        assert monitor.is_monitoring(SAMPLE_TOKEN) is True
        snaps = monitor.get_snapshots(SAMPLE_TOKEN)
        assert len(snaps) == 1
        assert snaps[0].holders == 100

    def test_stop(self, monitor):
        monitor.stop_monitoring(SAMPLE_TOKEN.upper().replace("0X", "0x"))
        assert monitor.is_monitoring(SAMPLE_TOKEN) is False
        assert monitor.get_snapshots(SAMPLE_TOKEN) == []


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------


class TestEarlyCheckpoint:
    @pytest.mark.asyncio
    async def test_demand_spike(self, monitor, data_service, clock):
        clock.now = ENTRY_TIME + 900
        data_service.get_market_snapshot.return_value = make_market(holder_count=140, price=Decimal("0.0012"))

        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.SELL_DEMAND_SPIKE
        assert result.confidence == 95
        assert result.holder_growth == 40

    @pytest.mark.asyncio
    async def test_dead_launch_blacklisted(self, monitor, data_service, blacklist, clock):
        clock.now = ENTRY_TIME + 900
        data_service.get_market_snapshot.return_value = make_market(holder_count=102, price=Decimal("0.00095"))

        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.SELL_DEAD_TOKEN
        assert result.state is MomentumState.DEAD
        blacklist.add.assert_called_once()

    @pytest.mark.asyncio
    async def test_fires_only_once(self, monitor, data_service, clock):
        clock.now = ENTRY_TIME + 900
        data_service.get_market_snapshot.return_value = make_market(holder_count=140, price=Decimal("0.0012"))
        await monitor.check_momentum(SAMPLE_TOKEN, _entry())

        clock.now = ENTRY_TIME + 960
        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.HOLD

    @pytest.mark.asyncio
    async def test_before_checkpoint_holds(self, monitor, data_service, clock):
        clock.now = ENTRY_TIME + 300
        data_service.get_market_snapshot.return_value = make_market(holder_count=200, price=Decimal("0.002"))
        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.HOLD


class TestMidCheckpoint:
    @pytest.mark.asyncio
    async def test_momentum_dying(self, monitor, data_service, blacklist, clock):
        monitor._early_done.add(SAMPLE_TOKEN.lower())
        clock.now = ENTRY_TIME + 1800
        data_service.get_market_snapshot.return_value = make_market(holder_count=105, price=Decimal("0.00097"))

        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.SELL_MOMENTUM_DYING
        assert result.state is MomentumState.DYING
        assert blacklist.add.call_args.args[0] == SAMPLE_TOKEN

    @pytest.mark.asyncio
    async def test_massive_pump(self, monitor, data_service, clock):
        monitor._early_done.add(SAMPLE_TOKEN.lower())
        clock.now = ENTRY_TIME + 1800
        data_service.get_market_snapshot.return_value = make_market(holder_count=160, price=Decimal("0.0013"))

        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.SELL_DEMAND_SPIKE
        assert result.confidence == 98


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_data_holds(self, monitor, data_service):
        data_service.get_market_snapshot.return_value = None
        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.HOLD
        assert result.reason == "Unable to fetch token data"

    @pytest.mark.asyncio
    async def test_fetch_error_holds(self, monitor, data_service):
        data_service.get_market_snapshot.side_effect = RuntimeError("boom")
        result = await monitor.check_momentum(SAMPLE_TOKEN, _entry())
        assert result.action is MomentumAction.HOLD
        assert result.confidence == 30


# ---------------------------------------------------------------------------
# Classifiers
# ---------------------------------------------------------------------------


def _snap(holders: int) -> MomentumSnapshot:
    return MomentumSnapshot(timestamp=0.0, holders=holders, volume_mon=Decimal("0"), price=Decimal("1"))


class TestClassifiers:
    def test_trend_accelerating(self):
        assert analyze_trend([_snap(100), _snap(102), _snap(110)]) is MomentumState.ACCELERATING

    def test_trend_dying(self):
        assert analyze_trend([_snap(100), _snap(110), _snap(111)]) is MomentumState.DYING

    def test_trend_needs_three(self):
        assert analyze_trend([_snap(100), _snap(200)]) is MomentumState.STABLE

    @pytest.mark.parametrize(
        "growth,expected",
        [
            (50, MomentumState.ACCELERATING),
            (20, MomentumState.STABLE),
            (5, MomentumState.DYING),
            (1, MomentumState.DEAD),
        ],
    )
    def test_classify_rate(self, growth, expected):
        assert classify_momentum(growth, 600) is expected

    def test_classify_zero_elapsed(self):
        assert classify_momentum(10, 0) is MomentumState.STABLE
