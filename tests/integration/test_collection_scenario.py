"""
采集流程集成测试

调度器 → 编排器 → Parquet 存储 → 质量检查 / 回填，交易所使用 mock
"""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from quantflow.core.clock import ManualClock
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe
from quantflow.data.collector import CollectionOrchestrator, RetryPolicy
from quantflow.data.quality import DataQualityChecker, GapBackfiller
from quantflow.data.store import ParquetCandleStore
from quantflow.ops.scheduler import CollectionConfig, CollectionScheduler, TierSpec

pytestmark = pytest.mark.integration

NOW = datetime(2024, 1, 15, 13, 0, tzinfo=UTC)


@pytest.fixture
def store():
    """临时目录中的 Parquet 存储"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield ParquetCandleStore(Path(tmpdir))


def hourly_config() -> CollectionConfig:
    return CollectionConfig(
        symbols=("BTCUSD",),
        exchanges=("kraken",),
        tiers=(TierSpec(Timeframe.H1, lookback_minutes=180, buffer_minutes=0),),
        retry_attempts=1,
        retry_delay_seconds=0,
        tier_pause_seconds=0,
    )


class TestHourlyCollection:
    """整点采集场景"""

    @pytest.mark.asyncio
    async def test_cycle_stores_and_validates(self, store, make_adapter, make_candle):
        """测试 13:00 周期采集 10/11/12 点 K 线后数据完整"""

        async def fetch(symbol, timeframe, start, end):
            return [
                make_candle(
                    NOW - timedelta(hours=h),
                    close=42000.0 + h,
                    symbol=symbol,
                    timeframe=timeframe,
                )
                for h in (3, 2, 1)
            ]

        adapter = make_adapter(side_effect=fetch)
        scheduler = CollectionScheduler(
            {Exchange.KRAKEN: adapter},
            store,
            config_provider=hourly_config,
            clock=ManualClock(NOW),
        )

        report = await scheduler.run_cycle()

        [tier] = report.tiers
        assert (tier.window_start, tier.window_end) == (NOW - timedelta(hours=3), NOW)
        assert tier.stored == 3
        assert report.total_stored == 3

        quality = DataQualityChecker(store).validate_quality(
            "BTCUSD", "kraken", "1h", NOW - timedelta(hours=3), NOW
        )
        assert quality.gap_count == 0
        assert quality.expected_points == 3
        assert quality.completeness == 1.0
        assert quality.is_valid is True

        stored = store.query_candles(
            "BTCUSD", Exchange.KRAKEN, Timeframe.H1, NOW - timedelta(hours=3), NOW
        )
        assert [float(c.close) for c in stored] == [42003.0, 42002.0, 42001.0]

    @pytest.mark.asyncio
    async def test_repeated_cycle_is_idempotent(self, store, make_adapter):
        """测试重复采集同一窗口不产生重复数据"""
        scheduler = CollectionScheduler(
            {Exchange.KRAKEN: make_adapter()},
            store,
            config_provider=hourly_config,
            clock=ManualClock(NOW),
        )

        await scheduler.run_cycle()
        await scheduler.run_cycle()

        stored = store.query_candles(
            "BTCUSD", Exchange.KRAKEN, Timeframe.H1, NOW - timedelta(hours=3), NOW
        )
        assert len(stored) == 4


class TestGapRepair:
    """缺口修复场景"""

    @pytest.mark.asyncio
    async def test_backfill_restores_completeness(self, store, make_adapter, make_candle):
        """测试检测缺口 → 回填 → 完整度恢复"""
        start = NOW - timedelta(hours=6)
        store.store_candles(
            [
                make_candle(start + timedelta(hours=h), timeframe=Timeframe.H1)
                for h in (0, 1, 4, 5)
            ]
        )
        adapter = make_adapter()
        orchestrator = CollectionOrchestrator(
            {Exchange.KRAKEN: adapter},
            store,
            retry_policy=RetryPolicy(max_retries=1, base_delay=0),
        )
        checker = DataQualityChecker(
            store, GapBackfiller(orchestrator, clock=ManualClock(NOW))
        )

        result = await checker.ensure_complete_data(
            "BTCUSD", "kraken", "1h", start, NOW
        )

        assert result.initial_report.missing_points == 2
        assert result.backfill.new_points == 2
        assert result.final_report.gap_count == 0
        assert result.complete is True
        adapter.fetch_candles.assert_awaited_once()
