"""
采集调度器测试
"""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from quantflow.core.clock import ManualClock
from quantflow.core.config import Settings
from quantflow.core.errors import ConfigurationError
from quantflow.core.timeframes import Timeframe
from quantflow.data.collector import CancellationToken, CollectionBatch
from quantflow.data.store import MemoryCandleStore
from quantflow.ops.scheduler import (
    CollectionConfig,
    CollectionScheduler,
    CycleReport,
    SchedulerState,
    TierSpec,
    due_tiers,
    is_tier_due,
)

# 2024-01-16 是周二
TUESDAY_8AM = datetime(2024, 1, 16, 8, 0, tzinfo=UTC)
MONDAY_MIDNIGHT = datetime(2024, 1, 15, 0, 0, tzinfo=UTC)


def make_config(
    tiers=(TierSpec(Timeframe.H1, lookback_minutes=180),),
    symbols=("BTCUSD",),
    exchanges=("kraken",),
    tier_pause_seconds=0.0,
) -> CollectionConfig:
    return CollectionConfig(
        symbols=tuple(symbols),
        exchanges=tuple(exchanges),
        tiers=tuple(tiers),
        retry_attempts=1,
        retry_delay_seconds=0,
        tier_pause_seconds=tier_pause_seconds,
    )


def make_scheduler(adapter, config, now=TUESDAY_8AM, store=None, **kwargs):
    return CollectionScheduler(
        {adapter.exchange: adapter},
        store if store is not None else MemoryCandleStore(),
        config_provider=lambda: config,
        clock=ManualClock(now),
        **kwargs,
    )


class TestTierDue:
    """档位触发判断测试"""

    @pytest.mark.parametrize(
        "timeframe, now, expected",
        [
            (Timeframe.M1, TUESDAY_8AM + timedelta(hours=5), True),
            (Timeframe.H1, TUESDAY_8AM + timedelta(hours=3), True),
            (Timeframe.H4, TUESDAY_8AM, True),
            (Timeframe.H4, TUESDAY_8AM + timedelta(hours=1), False),
            (Timeframe.D1, TUESDAY_8AM, False),
            (Timeframe.D1, TUESDAY_8AM.replace(hour=0), True),
            (Timeframe.W1, TUESDAY_8AM.replace(hour=0), False),
            (Timeframe.W1, MONDAY_MIDNIGHT, True),
            (Timeframe.W1, MONDAY_MIDNIGHT + timedelta(hours=1), False),
        ],
    )
    def test_is_tier_due(self, timeframe, now, expected):
        assert is_tier_due(timeframe, now) is expected

    def test_due_tiers_sorted_and_filtered(self):
        """测试按周期升序并跳过禁用档位"""
        tiers = [
            TierSpec(Timeframe.D1),
            TierSpec(Timeframe.H4),
            TierSpec(Timeframe.M5),
            TierSpec(Timeframe.M30, enabled=False),
            TierSpec(Timeframe.H1),
        ]
        result = due_tiers(tiers, TUESDAY_8AM)
        assert [t.timeframe for t in result] == [Timeframe.M5, Timeframe.H1, Timeframe.H4]

    def test_window(self):
        """测试档位窗口 [safe_end - lookback, safe_end]"""
        tier = TierSpec(Timeframe.H1, lookback_minutes=120, buffer_minutes=5)
        start, end = tier.window(TUESDAY_8AM + timedelta(minutes=7))

        assert end == TUESDAY_8AM - timedelta(minutes=5)
        assert start == end - timedelta(minutes=120)


class TestCollectionConfig:
    """配置快照测试"""

    def test_from_settings(self):
        settings = Settings(
            collection={"symbols": "BTCUSD, ETHUSD", "exchanges": "kraken"}
        )
        config = CollectionConfig.from_settings(settings)

        assert config.symbols == ("BTCUSD", "ETHUSD")
        assert config.exchanges == ("kraken",)
        assert len(config.tiers) == 8
        disabled = {t.timeframe for t in config.tiers if not t.enabled}
        assert disabled == {Timeframe.M30, Timeframe.W1}

    @pytest.mark.parametrize(
        "kwargs",
        [{"symbols": ()}, {"exchanges": ()}],
    )
    def test_validate_missing(self, kwargs):
        with pytest.raises(ConfigurationError):
            make_config(**kwargs).validate()


class TestRunCycle:
    """采集周期测试"""

    @pytest.mark.asyncio
    async def test_runs_due_tiers_in_order(self, make_adapter):
        """测试周二 8 点运行 1h 和 4h，跳过日线"""
        store = MemoryCandleStore()
        config = make_config(
            tiers=[
                TierSpec(Timeframe.D1, lookback_minutes=2880),
                TierSpec(Timeframe.H4, lookback_minutes=480),
                TierSpec(Timeframe.H1, lookback_minutes=180),
            ]
        )
        scheduler = make_scheduler(make_adapter(), config, store=store)

        report = await scheduler.run_cycle()

        assert [t.timeframe for t in report.tiers] == [Timeframe.H1, Timeframe.H4]
        h1, h4 = report.tiers
        assert (h1.window_start, h1.window_end) == (
            TUESDAY_8AM - timedelta(hours=3),
            TUESDAY_8AM,
        )
        # 05:00..08:00 四根, 00:00/04:00/08:00 三根
        assert h1.stored == 4
        assert h4.stored == 3
        assert report.total_stored == 7
        assert len(store) == 7
        assert report.failed_tiers == []
        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.last_report is report

    @pytest.mark.asyncio
    async def test_config_error_aborts_cycle(self, make_adapter):
        """测试配置错误中止周期，不发起请求"""
        adapter = make_adapter()
        scheduler = make_scheduler(adapter, make_config(symbols=()))

        report = await scheduler.run_cycle()

        assert "No symbols" in report.aborted_reason
        assert report.tiers == []
        adapter.fetch_candles.assert_not_awaited()
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_provider_error_aborts_cycle(self):
        def broken_provider():
            raise ConfigurationError("bad env")

        scheduler = CollectionScheduler(
            {},
            MemoryCandleStore(),
            config_provider=broken_provider,
            clock=ManualClock(TUESDAY_8AM),
        )
        report = await scheduler.run_cycle()
        assert report.aborted_reason == "bad env"

    @pytest.mark.asyncio
    async def test_tier_failure_is_isolated(self, make_adapter):
        """测试单个档位异常不影响后续档位"""

        async def collect(symbols, exchanges, timeframes, start, end, cancel):
            if Timeframe.H1 in timeframes:
                raise RuntimeError("storage offline")
            return CollectionBatch()

        orchestrator = MagicMock()
        orchestrator.collect = MagicMock(side_effect=collect)
        config = make_config(
            tiers=[
                TierSpec(Timeframe.H1, lookback_minutes=60),
                TierSpec(Timeframe.H4, lookback_minutes=240),
            ]
        )
        scheduler = make_scheduler(
            make_adapter(), config, orchestrator_factory=lambda cfg: orchestrator
        )

        report = await scheduler.run_cycle()

        assert len(report.tiers) == 2
        assert report.tiers[0].error == "storage offline"
        assert report.tiers[1].ok is True
        assert [t.timeframe for t in report.failed_tiers] == [Timeframe.H1]

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(self, make_adapter):
        """测试上一个周期未结束时跳过新周期"""
        release = asyncio.Event()

        async def blocking_fetch(symbol, timeframe, start, end):
            await release.wait()
            return []

        adapter = make_adapter(side_effect=blocking_fetch)
        scheduler = make_scheduler(adapter, make_config())

        first = asyncio.create_task(scheduler.run_cycle())
        await asyncio.sleep(0)
        assert scheduler.state == SchedulerState.RUNNING

        second = await scheduler.run_cycle()
        release.set()
        first_report = await first

        assert second.skipped is True
        assert second.tiers == []
        assert first_report.skipped is False
        assert adapter.fetch_candles.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_first_tier(self, make_adapter):
        adapter = make_adapter()
        scheduler = make_scheduler(adapter, make_config())
        token = CancellationToken()
        token.cancel()

        report = await scheduler.run_cycle(token)

        assert report.cancelled is True
        assert report.tiers == []
        adapter.fetch_candles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_interrupts_tier_pause(self, make_adapter):
        """测试 stop() 中断档位间暂停"""
        config = make_config(
            tiers=[
                TierSpec(Timeframe.H1, lookback_minutes=60),
                TierSpec(Timeframe.H4, lookback_minutes=240),
            ],
            tier_pause_seconds=30,
        )
        scheduler = make_scheduler(make_adapter(), config)
        asyncio.get_running_loop().call_later(0.05, scheduler.stop)

        report = await asyncio.wait_for(scheduler.run_cycle(), timeout=5)

        assert report.cancelled is True
        assert [t.timeframe for t in report.tiers] == [Timeframe.H1]


class TestCycleReport:
    """CycleReport 测试"""

    def test_duration(self):
        report = CycleReport(
            started_at=TUESDAY_8AM,
            finished_at=TUESDAY_8AM + timedelta(seconds=1, milliseconds=500),
        )
        assert report.duration_ms == 1500.0

    def test_unfinished_duration(self):
        assert CycleReport(started_at=TUESDAY_8AM).duration_ms == 0.0


class TestLifecycle:
    """调度器启动/停止测试"""

    def test_next_fire_time_without_scheduler(self, make_adapter):
        scheduler = make_scheduler(
            make_adapter(), make_config(), now=TUESDAY_8AM + timedelta(minutes=20)
        )
        assert scheduler.next_fire_time == TUESDAY_8AM + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_adapter):
        """测试启动后注册整点任务，停止后释放"""
        scheduler = make_scheduler(make_adapter(), make_config())

        scheduler.start(run_immediately=False)
        try:
            assert scheduler.is_running is True
            fire_time = scheduler.next_fire_time
            assert (fire_time.minute, fire_time.second) == (0, 0)
        finally:
            scheduler.stop()

        assert scheduler.is_running is False
