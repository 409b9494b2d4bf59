"""
采集编排器

职责:
- 将 symbols × exchanges × timeframes 展开为 CollectionTask
- 在 Semaphore 限制下并发执行，每个任务独立重试 (线性退避)
- 每个任务返回 TaskSuccess / TaskFailure，失败不影响其他任务
- 协作式取消: 创建任务前、获得许可后、每次重试前以及退避等待中检查
"""

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from quantflow.core.candle import CollectionTask
from quantflow.core.errors import (
    ConfigurationError,
    RateLimitedError,
    UnsupportedExchangeError,
    is_retryable,
)
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe
from quantflow.data.connectors.base import AdapterRegistry, ExchangeAdapter
from quantflow.data.store.base import CandleSink
from quantflow.ops.logging import get_logger

logger = get_logger(__name__)

CANCELLED_REASON = "cancelled"


class CancellationToken:
    """
    协作式取消令牌

    一个采集周期共享一个令牌，服务关闭时调用 cancel()。
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """
        可被取消的等待

        Returns:
            等待期间是否被取消
        """
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class RetryPolicy:
    """重试配置"""

    max_retries: int = 3
    base_delay: float = 5.0

    def get_delay(self, attempt: int) -> float:
        """第 attempt 次失败后的退避延迟 (线性)"""
        return self.base_delay * attempt


@dataclass(frozen=True)
class TaskSuccess:
    """任务成功"""

    task: CollectionTask
    stored: int
    attempts: int

    ok = True


@dataclass(frozen=True)
class TaskFailure:
    """任务失败"""

    task: CollectionTask
    reason: str
    attempts: int
    error: BaseException | None = None

    ok = False

    @property
    def cancelled(self) -> bool:
        return self.reason == CANCELLED_REASON

    @property
    def error_type(self) -> str | None:
        return type(self.error).__name__ if self.error is not None else None

    @property
    def rate_limited(self) -> bool:
        return isinstance(self.error, RateLimitedError)


TaskOutcome = TaskSuccess | TaskFailure


@dataclass
class CollectionBatch:
    """一次批量采集的结果汇总"""

    outcomes: list[TaskOutcome] = field(default_factory=list)

    @property
    def successes(self) -> list[TaskSuccess]:
        return [o for o in self.outcomes if isinstance(o, TaskSuccess)]

    @property
    def failures(self) -> list[TaskFailure]:
        return [o for o in self.outcomes if isinstance(o, TaskFailure)]

    @property
    def total_stored(self) -> int:
        return sum(o.stored for o in self.successes)

    @property
    def cancelled(self) -> bool:
        return any(o.cancelled for o in self.failures)

    def summary(self) -> dict[str, int]:
        """日志用汇总"""
        return {
            "tasks": len(self.outcomes),
            "succeeded": len(self.successes),
            "failed": len(self.failures),
            "stored": self.total_stored,
        }


class CollectionOrchestrator:
    """
    采集编排器

    Semaphore 归实例所有，同一实例上的并发调用共享同一并发上限。
    """

    def __init__(
        self,
        adapters: Mapping[Exchange, ExchangeAdapter],
        sink: CandleSink,
        max_concurrency: int = 3,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """
        初始化编排器

        Args:
            adapters: 交易所适配器 (启动时解析)
            sink: K 线存储
            max_concurrency: 最大并发任务数
            retry_policy: 重试配置
        """
        if max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be >= 1")

        self._adapters = (
            adapters
            if isinstance(adapters, AdapterRegistry)
            else AdapterRegistry(adapters)
        )
        self._sink = sink
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.max_concurrency = max_concurrency
        self.retry_policy = retry_policy or RetryPolicy()

    @staticmethod
    def build_tasks(
        symbols: Sequence[str],
        exchanges: Sequence[str],
        timeframes: Sequence[str | Timeframe],
        start: datetime,
        end: datetime,
    ) -> list[CollectionTask]:
        """展开 symbols × exchanges × timeframes"""
        return [
            CollectionTask(
                symbol=symbol,
                exchange=str(exchange),
                timeframe=(
                    timeframe.value if isinstance(timeframe, Timeframe) else timeframe
                ),
                window_start=start,
                window_end=end,
            )
            for symbol in symbols
            for exchange in exchanges
            for timeframe in timeframes
        ]

    async def collect(
        self,
        symbols: Sequence[str],
        exchanges: Sequence[str],
        timeframes: Sequence[str | Timeframe],
        start: datetime,
        end: datetime,
        cancel: CancellationToken | None = None,
    ) -> CollectionBatch:
        """
        并发执行采集

        Args:
            symbols: 交易对列表
            exchanges: 交易所名称列表
            timeframes: 时间框架列表
            start: 窗口开始
            end: 窗口结束
            cancel: 取消令牌

        Returns:
            每个任务的结果
        """
        cancel = cancel or CancellationToken()
        tasks = self.build_tasks(symbols, exchanges, timeframes, start, end)

        pending: list[asyncio.Task[TaskOutcome]] = []
        skipped: list[TaskOutcome] = []
        for task in tasks:
            if cancel.cancelled:
                skipped.append(TaskFailure(task, CANCELLED_REASON, attempts=0))
                continue
            pending.append(asyncio.create_task(self.run_task(task, cancel)))

        outcomes = list(await asyncio.gather(*pending)) + skipped
        batch = CollectionBatch(outcomes)

        logger.info(
            "collection_batch_completed",
            start=start.isoformat(),
            end=end.isoformat(),
            cancelled=batch.cancelled,
            **batch.summary(),
        )
        return batch

    async def collect_recent_data(
        self,
        symbols: Sequence[str],
        exchanges: Sequence[str],
        timeframes: Sequence[str | Timeframe],
        start: datetime,
        end: datetime,
        cancel: CancellationToken | None = None,
    ) -> int:
        """
        采集最近数据

        Returns:
            成功写入的 K 线总数 (任务失败不会抛出)
        """
        batch = await self.collect(symbols, exchanges, timeframes, start, end, cancel)
        return batch.total_stored

    async def run_task(
        self, task: CollectionTask, cancel: CancellationToken | None = None
    ) -> TaskOutcome:
        """
        执行单个采集任务

        无法解析的交易所或时间框架直接失败，不重试。
        """
        cancel = cancel or CancellationToken()
        if cancel.cancelled:
            return TaskFailure(task, CANCELLED_REASON, attempts=0)

        try:
            adapter = self._adapters.resolve(task.exchange)
            timeframe = Timeframe.from_string(task.timeframe)
        except (UnsupportedExchangeError, ValueError) as err:
            logger.error("task_rejected", task=task.label, error=str(err))
            return TaskFailure(task, str(err), attempts=0, error=err)

        async with self._semaphore:
            if cancel.cancelled:
                return TaskFailure(task, CANCELLED_REASON, attempts=0)
            return await self._run_with_retry(task, adapter, timeframe, cancel)

    async def _run_with_retry(
        self,
        task: CollectionTask,
        adapter: ExchangeAdapter,
        timeframe: Timeframe,
        cancel: CancellationToken,
    ) -> TaskOutcome:
        max_retries = self.retry_policy.max_retries
        attempt = 0

        while True:
            attempt += 1
            try:
                candles = await adapter.fetch_candles(
                    task.symbol, timeframe, task.window_start, task.window_end
                )
                stored = self._sink.store_candles(candles) if candles else 0
            except Exception as err:
                retry = is_retryable(err) and attempt < max_retries
                logger.warning(
                    "task_attempt_failed",
                    task=task.label,
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(err),
                    error_type=type(err).__name__,
                    will_retry=retry,
                )
                if not retry:
                    return TaskFailure(task, str(err), attempts=attempt, error=err)

                delay = self.retry_policy.get_delay(attempt)
                if isinstance(err, RateLimitedError) and err.retry_after:
                    delay = max(delay, err.retry_after)
                if cancel.cancelled or await cancel.sleep(delay):
                    return TaskFailure(
                        task, CANCELLED_REASON, attempts=attempt, error=err
                    )
                continue

            logger.info(
                "task_completed",
                task=task.label,
                stored=stored,
                attempts=attempt,
            )
            return TaskSuccess(task, stored, attempts=attempt)


__all__ = [
    "CancellationToken",
    "RetryPolicy",
    "TaskSuccess",
    "TaskFailure",
    "TaskOutcome",
    "CollectionBatch",
    "CollectionOrchestrator",
]
