"""
采集调度器

职责:
- 启动时立即执行一次采集周期，之后每个 UTC 整点触发
- 每个周期读取一次配置 (CollectionConfig)，按小时判断需要运行的档位
- 档位按周期从小到大依次执行，档位之间可取消地暂停
- 单个档位失败只记录，继续后续档位；配置错误中止本周期

状态: IDLE → RUNNING → IDLE。周期运行中触发的新周期直接跳过。

使用 APScheduler 实现调度
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from quantflow.core.clock import Clock, LiveClock, next_hour_boundary, safe_end_time
from quantflow.core.config import Settings, TierSettings, get_settings
from quantflow.core.errors import ConfigurationError
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe
from quantflow.data.collector.orchestrator import (
    CancellationToken,
    CollectionOrchestrator,
    RetryPolicy,
)
from quantflow.data.connectors.base import ExchangeAdapter
from quantflow.data.store.base import CandleSink
from quantflow.ops.logging import get_logger, log_context

logger = get_logger(__name__)

JOB_ID = "hourly_collection"

# 配置字段 → 时间框架
TIER_FIELDS: dict[str, Timeframe] = {
    "one_minute": Timeframe.M1,
    "five_minute": Timeframe.M5,
    "fifteen_minute": Timeframe.M15,
    "thirty_minute": Timeframe.M30,
    "one_hour": Timeframe.H1,
    "four_hour": Timeframe.H4,
    "one_day": Timeframe.D1,
    "one_week": Timeframe.W1,
}


class SchedulerState(StrEnum):
    """调度器状态"""

    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class TierSpec:
    """采集档位"""

    timeframe: Timeframe
    enabled: bool = True
    lookback_minutes: int = 60
    buffer_minutes: int = 0

    @classmethod
    def from_settings(cls, timeframe: Timeframe, tier: TierSettings) -> "TierSpec":
        return cls(
            timeframe=timeframe,
            enabled=tier.enabled,
            lookback_minutes=tier.lookback_minutes,
            buffer_minutes=tier.buffer_minutes,
        )

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        """本档位的采集窗口 [end - lookback, end]"""
        end = safe_end_time(now, self.timeframe, self.buffer_minutes)
        return end - timedelta(minutes=self.lookback_minutes), end


def is_tier_due(timeframe: Timeframe, now: datetime) -> bool:
    """
    判断档位在当前小时是否需要运行

    规则:
    - 小时及以下: 每次触发
    - 多小时: hour % 小时数 == 0
    - 日线: 0 点
    - 周线: 周一 0 点
    """
    hour = now.astimezone(UTC).hour
    minutes = timeframe.minutes
    if minutes <= 60:
        return True
    if minutes < 1440:
        return hour % (minutes // 60) == 0
    if minutes == 1440:
        return hour == 0
    return hour == 0 and now.astimezone(UTC).weekday() == 0


def due_tiers(tiers: Sequence[TierSpec], now: datetime) -> list[TierSpec]:
    """需要运行的档位，按周期从小到大排序"""
    return sorted(
        (t for t in tiers if t.enabled and is_tier_due(t.timeframe, now)),
        key=lambda t: t.timeframe.minutes,
    )


@dataclass(frozen=True)
class CollectionConfig:
    """
    单个采集周期使用的配置快照

    每个周期开始时由 config_provider 生成一次，周期内不再变化。
    """

    symbols: tuple[str, ...]
    exchanges: tuple[str, ...]
    tiers: tuple[TierSpec, ...]
    max_concurrency: int = 3
    retry_attempts: int = 3
    retry_delay_seconds: float = 5.0
    tier_pause_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CollectionConfig":
        """从 Settings 生成配置"""
        settings = settings or get_settings()
        collection = settings.collection
        schedule = settings.schedule
        return cls(
            symbols=tuple(collection.symbol_list),
            exchanges=tuple(collection.exchange_list),
            tiers=tuple(
                TierSpec.from_settings(timeframe, getattr(schedule, name))
                for name, timeframe in TIER_FIELDS.items()
            ),
            max_concurrency=collection.max_concurrency,
            retry_attempts=collection.retry_attempts,
            retry_delay_seconds=collection.retry_delay_seconds,
            tier_pause_seconds=schedule.tier_pause_seconds,
        )

    def validate(self) -> None:
        """
        校验配置

        Raises:
            ConfigurationError: 缺少交易对/交易所或参数非法
        """
        if not self.symbols:
            raise ConfigurationError("No symbols configured for collection")
        if not self.exchanges:
            raise ConfigurationError("No exchanges configured for collection")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be >= 1")
        if self.retry_attempts < 1:
            raise ConfigurationError("retry_attempts must be >= 1")
        for tier in self.tiers:
            if tier.lookback_minutes < 1:
                raise ConfigurationError(
                    f"lookback_minutes must be >= 1 for {tier.timeframe.value}"
                )


@dataclass
class TierOutcome:
    """单个档位的执行结果"""

    timeframe: Timeframe
    window_start: datetime
    window_end: datetime
    stored: int = 0
    succeeded: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CycleReport:
    """采集周期报告"""

    started_at: datetime
    finished_at: datetime | None = None
    tiers: list[TierOutcome] = field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False
    aborted_reason: str | None = None

    @property
    def total_stored(self) -> int:
        return sum(t.stored for t in self.tiers)

    @property
    def failed_tiers(self) -> list[TierOutcome]:
        return [t for t in self.tiers if not t.ok]

    @property
    def duration_ms(self) -> float:
        """执行时间 (毫秒)"""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000


OrchestratorFactory = Callable[[CollectionConfig], CollectionOrchestrator]


def build_orchestrator(
    adapters: Mapping[Exchange, ExchangeAdapter],
    sink: CandleSink,
    config: CollectionConfig,
) -> CollectionOrchestrator:
    """按配置的并发与重试参数创建编排器"""
    return CollectionOrchestrator(
        adapters,
        sink,
        max_concurrency=config.max_concurrency,
        retry_policy=RetryPolicy(
            max_retries=config.retry_attempts,
            base_delay=config.retry_delay_seconds,
        ),
    )


class CollectionScheduler:
    """
    采集调度器

    run_cycle 可直接调用 (测试/手动触发)，start 后由 APScheduler 每小时触发。
    """

    def __init__(
        self,
        adapters: Mapping[Exchange, ExchangeAdapter],
        sink: CandleSink,
        config_provider: Callable[[], CollectionConfig] | None = None,
        clock: Clock | None = None,
        orchestrator_factory: OrchestratorFactory | None = None,
    ):
        """
        初始化调度器

        Args:
            adapters: 交易所适配器
            sink: K 线存储
            config_provider: 每个周期调用一次，返回配置快照
            clock: 时钟，默认系统 UTC 时钟
            orchestrator_factory: 按配置创建编排器
        """
        self._adapters = adapters
        self._sink = sink
        self._config_provider = config_provider or CollectionConfig.from_settings
        self._clock = clock or LiveClock()
        self._orchestrator_factory = orchestrator_factory or self._default_orchestrator

        self._state = SchedulerState.IDLE
        self._cancel: CancellationToken | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self.last_report: CycleReport | None = None

    def _default_orchestrator(self, config: CollectionConfig) -> CollectionOrchestrator:
        return build_orchestrator(self._adapters, self._sink, config)

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        """APScheduler 是否已启动"""
        return self._scheduler is not None and self._scheduler.running

    @property
    def next_fire_time(self) -> datetime:
        """下一次触发时间"""
        if self._scheduler is not None:
            job = self._scheduler.get_job(JOB_ID)
            if job is not None and job.next_run_time is not None:
                return job.next_run_time
        return next_hour_boundary(self._clock.now())

    async def run_cycle(self, cancel: CancellationToken | None = None) -> CycleReport:
        """
        执行一个采集周期

        Args:
            cancel: 取消令牌，默认新建 (stop() 时取消)

        Returns:
            CycleReport
        """
        now = self._clock.now()

        if self._state == SchedulerState.RUNNING:
            logger.warning("collection_cycle_skipped", reason="previous_cycle_running")
            return CycleReport(started_at=now, finished_at=now, skipped=True)

        self._state = SchedulerState.RUNNING
        self._cancel = cancel or CancellationToken()
        report = CycleReport(started_at=now)

        try:
            with log_context(cycle=now.isoformat()):
                await self._run_tiers(now, self._cancel, report)
        finally:
            report.finished_at = self._clock.now()
            self._state = SchedulerState.IDLE
            self._cancel = None
            self.last_report = report

        logger.info(
            "collection_cycle_completed",
            hour=now.hour,
            tiers=[t.timeframe.value for t in report.tiers],
            failed_tiers=len(report.failed_tiers),
            stored=report.total_stored,
            cancelled=report.cancelled,
            aborted_reason=report.aborted_reason,
            duration_ms=report.duration_ms,
            next_fire_time=self.next_fire_time.isoformat(),
        )
        return report

    async def _run_tiers(
        self, now: datetime, cancel: CancellationToken, report: CycleReport
    ) -> None:
        try:
            config = self._config_provider()
            config.validate()
        except ConfigurationError as err:
            report.aborted_reason = str(err)
            logger.error("collection_cycle_aborted", reason=str(err))
            return

        tiers = due_tiers(config.tiers, now)
        orchestrator = self._orchestrator_factory(config)

        logger.info(
            "collection_cycle_started",
            hour=now.hour,
            tiers=[t.timeframe.value for t in tiers],
            symbols=list(config.symbols),
            exchanges=list(config.exchanges),
        )

        for index, tier in enumerate(tiers):
            if cancel.cancelled:
                report.cancelled = True
                return

            report.tiers.append(
                await self._run_tier(orchestrator, config, tier, now, cancel)
            )

            is_last = index == len(tiers) - 1
            if not is_last and await cancel.sleep(config.tier_pause_seconds):
                report.cancelled = True
                return

        report.cancelled = cancel.cancelled

    async def _run_tier(
        self,
        orchestrator: CollectionOrchestrator,
        config: CollectionConfig,
        tier: TierSpec,
        now: datetime,
        cancel: CancellationToken,
    ) -> TierOutcome:
        start, end = tier.window(now)
        outcome = TierOutcome(tier.timeframe, start, end)

        try:
            batch = await orchestrator.collect(
                config.symbols,
                config.exchanges,
                [tier.timeframe],
                start,
                end,
                cancel,
            )
        except Exception as err:
            outcome.error = str(err)
            logger.error(
                "tier_failed",
                timeframe=tier.timeframe.value,
                error=str(err),
                exc_info=True,
            )
            return outcome

        outcome.stored = batch.total_stored
        outcome.succeeded = len(batch.successes)
        outcome.failed = len(batch.failures)

        logger.info(
            "tier_completed",
            timeframe=tier.timeframe.value,
            window_start=start.isoformat(),
            window_end=end.isoformat(),
            stored=outcome.stored,
            succeeded=outcome.succeeded,
            failed=outcome.failed,
        )
        return outcome

    async def _scheduled_cycle(self) -> None:
        """APScheduler 回调"""
        try:
            await self.run_cycle()
        except Exception:
            logger.exception("collection_cycle_failed")

    # ==================== 生命周期 ====================

    def start(self, run_immediately: bool = True) -> None:
        """
        启动调度器 (需要在运行中的事件循环内调用)

        Args:
            run_immediately: 是否立即执行一次
        """
        if self.is_running:
            logger.warning("scheduler_already_running")
            return

        job_defaults: dict[str, Any] = {
            "coalesce": True,  # 合并错过的执行
            "max_instances": 1,  # 同一时刻只运行一个周期
            "misfire_grace_time": 300,
        }
        job_kwargs: dict[str, Any] = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(UTC)

        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone="UTC")
        self._scheduler.add_job(
            self._scheduled_cycle,
            trigger=CronTrigger(minute=0, second=0, timezone="UTC"),
            id=JOB_ID,
            name="Hourly market data collection",
            replace_existing=True,
            **job_kwargs,
        )
        self._scheduler.start()

        logger.info(
            "scheduler_started",
            run_immediately=run_immediately,
            next_fire_time=self.next_fire_time.isoformat(),
        )

    def stop(self) -> None:
        """停止调度器并取消正在运行的周期"""
        if self._cancel is not None:
            self._cancel.cancel()

        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("scheduler_stopped")


__all__ = [
    "SchedulerState",
    "TierSpec",
    "CollectionConfig",
    "TierOutcome",
    "CycleReport",
    "CollectionScheduler",
    "is_tier_due",
    "due_tiers",
    "build_orchestrator",
]
