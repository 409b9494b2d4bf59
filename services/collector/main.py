"""
数据采集服务

职责:
- 启动时立即采集一次，之后每个 UTC 整点按档位采集 (1m ~ 1d)
- 从 Kraken / KuCoin 拉取 OHLCV，写入 Parquet
- 可选: 启动前检测最近 N 小时的缺口并回填
- 使用 APScheduler 调度

运行方式:
    python -m services.collector.main
    python -m services.collector.main --once
    python -m services.collector.main --backfill-hours 24
"""

import argparse
import asyncio
import signal
from datetime import UTC, datetime, timedelta
from typing import Any

from quantflow.core.clock import safe_end_time
from quantflow.core.config import get_settings
from quantflow.core.timeframes import COLLECTION_TIMEFRAMES
from quantflow.data.collector.orchestrator import CancellationToken
from quantflow.data.connectors import AdapterRegistry, build_adapter_registry
from quantflow.data.quality import DataQualityChecker, GapBackfiller
from quantflow.data.store import ParquetCandleStore
from quantflow.ops.logging import configure_logging, get_logger
from quantflow.ops.scheduler import (
    CollectionConfig,
    CollectionScheduler,
    build_orchestrator,
)

logger = get_logger(__name__)


class CollectorService:
    """
    数据采集服务

    持有适配器、存储和调度器，stop() 取消正在运行的周期并退出。
    """

    def __init__(
        self,
        adapters: AdapterRegistry | None = None,
        store: ParquetCandleStore | None = None,
    ):
        settings = get_settings()
        settings.ensure_dirs()

        self._adapters = adapters or build_adapter_registry(settings)
        self._store = store or ParquetCandleStore(settings.parquet_dir)
        self._scheduler = CollectionScheduler(self._adapters, self._store)
        self._cancel = CancellationToken()
        self._stop_event = asyncio.Event()

        logger.info(
            "collector_initialized",
            exchanges=[e.value for e in self._adapters],
            symbols=settings.collection.symbol_list,
            parquet_dir=str(settings.parquet_dir),
        )

    async def backfill_recent(self, hours: int) -> None:
        """
        检测最近 hours 小时的缺口并回填

        Args:
            hours: 回看小时数
        """
        config = CollectionConfig.from_settings()
        config.validate()

        orchestrator = build_orchestrator(self._adapters, self._store, config)
        settings = get_settings()
        now = datetime.now(UTC)

        wanted = {name.strip().lower() for name in config.exchanges}

        for exchange in self._adapters:
            if exchange.value not in wanted:
                continue
            exchange_settings = settings.exchange_settings(exchange.value)
            checker = DataQualityChecker(
                self._store,
                GapBackfiller(
                    orchestrator,
                    max_points_per_request=exchange_settings.max_candles_per_request,
                ),
            )
            for symbol in config.symbols:
                for timeframe in COLLECTION_TIMEFRAMES:
                    if self._cancel.cancelled:
                        return
                    end = safe_end_time(now, timeframe)
                    result = await checker.ensure_complete_data(
                        symbol,
                        exchange,
                        timeframe,
                        end - timedelta(hours=hours),
                        end,
                        self._cancel,
                    )
                    logger.info(
                        "initial_backfill_checked",
                        symbol=symbol,
                        exchange=exchange.value,
                        timeframe=timeframe.value,
                        completeness=round(result.final_report.completeness, 4),
                        new_points=result.backfill.new_points if result.backfill else 0,
                    )

    async def run_once(self) -> None:
        """只执行一个采集周期"""
        try:
            await self._scheduler.run_cycle(self._cancel)
        finally:
            await self._adapters.close()

    async def start(self, backfill_hours: int = 0) -> None:
        """启动服务并阻塞直到 stop()"""
        try:
            if backfill_hours > 0:
                await self.backfill_recent(backfill_hours)

            self._scheduler.start(run_immediately=True)
            logger.info("collector_started")

            await self._stop_event.wait()
        finally:
            self._scheduler.stop()
            await self._adapters.close()
            logger.info("collector_stopped")

    def stop(self) -> None:
        """停止服务"""
        self._cancel.cancel()
        self._scheduler.stop()
        self._stop_event.set()


def main() -> None:
    """Collector 服务主入口"""
    parser = argparse.ArgumentParser(description="Market Data Collector Service")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single collection cycle and exit",
    )
    parser.add_argument(
        "--backfill-hours",
        type=int,
        default=0,
        help="Detect and backfill gaps over the last N hours before scheduling",
    )
    args = parser.parse_args()

    configure_logging(service_name="collector")

    async def run() -> None:
        service = CollectorService()

        # 信号处理
        def signal_handler(signum: int, frame: Any) -> None:  # noqa: ARG001
            logger.info("shutdown_signal_received", signal=signum)
            service.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        if args.once:
            await service.run_once()
        else:
            await service.start(backfill_hours=args.backfill_hours)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")


if __name__ == "__main__":
    main()
