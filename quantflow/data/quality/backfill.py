"""
缺口回填

将缺口列表拆分为若干请求区间，放入 FIFO 队列依次回填:
- 超过 max_points_per_request 的缺口按块拆分
- 每个区间复用编排器的单任务采集路径 (含重试)
- 返回空数据的区间视为失败，留在剩余缺口中
- 遇到限流立即停止，未处理区间全部作为剩余缺口返回
"""

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from quantflow.core.candle import CollectionTask, DataGap
from quantflow.core.clock import Clock, LiveClock
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe
from quantflow.data.collector.orchestrator import (
    CancellationToken,
    CollectionOrchestrator,
    TaskFailure,
)
from quantflow.ops.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingRange:
    """待回填区间 (start / end 为首尾缺失 K 线的开盘时间)"""

    index: int
    start: datetime
    end: datetime
    points: int

    def to_gap(self, timeframe: Timeframe) -> DataGap:
        return DataGap(self.start, self.end, self.points, timeframe)


@dataclass
class BackfillResult:
    """回填结果"""

    symbol: str
    exchange: Exchange
    timeframe: Timeframe
    started_at: datetime
    finished_at: datetime | None = None
    total_ranges: int = 0
    successful_ranges: int = 0
    failed_ranges: int = 0
    new_points: int = 0
    errors: list[str] = field(default_factory=list)
    remaining_gaps: list[DataGap] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def elapsed(self) -> timedelta:
        if self.finished_at is None:
            return timedelta(0)
        return self.finished_at - self.started_at

    @property
    def complete(self) -> bool:
        """是否全部回填"""
        return not self.remaining_gaps

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "exchange": self.exchange.value,
            "timeframe": self.timeframe.value,
            "total_ranges": self.total_ranges,
            "successful_ranges": self.successful_ranges,
            "failed_ranges": self.failed_ranges,
            "new_points": self.new_points,
            "errors": list(self.errors),
            "remaining_gaps": [gap.to_dict() for gap in self.remaining_gaps],
            "stopped_early": self.stopped_early,
            "elapsed_seconds": self.elapsed.total_seconds(),
        }


def split_gaps(
    gaps: Sequence[DataGap], timeframe: Timeframe, max_points_per_request: int
) -> list[PendingRange]:
    """
    将缺口拆分为请求区间

    Args:
        gaps: 缺口列表
        timeframe: 时间框架
        max_points_per_request: 单个区间的最大 K 线数

    Returns:
        按原顺序编号的区间列表
    """
    spacing = timeframe.timedelta
    ranges: list[PendingRange] = []
    for gap in gaps:
        remaining = gap.missing_points
        chunk_start = gap.start
        while remaining > 0:
            points = min(remaining, max_points_per_request)
            chunk_end = chunk_start + spacing * (points - 1)
            ranges.append(PendingRange(len(ranges), chunk_start, chunk_end, points))
            chunk_start = chunk_end + spacing
            remaining -= points
    return ranges


class GapBackfiller:
    """缺口回填器"""

    def __init__(
        self,
        orchestrator: CollectionOrchestrator,
        max_points_per_request: int = 720,
        request_delay: float = 0.0,
        clock: Clock | None = None,
    ):
        """
        初始化回填器

        Args:
            orchestrator: 采集编排器 (复用其重试与存储路径)
            max_points_per_request: 单次请求最大 K 线数
            request_delay: 区间之间的等待秒数
            clock: 时钟
        """
        if max_points_per_request < 1:
            raise ValueError("max_points_per_request must be >= 1")
        self._orchestrator = orchestrator
        self.max_points_per_request = max_points_per_request
        self.request_delay = request_delay
        self._clock = clock or LiveClock()

    async def populate_missing_data(
        self,
        symbol: str,
        exchange: Exchange | str,
        timeframe: Timeframe | str,
        gaps: Sequence[DataGap],
        cancel: CancellationToken | None = None,
    ) -> BackfillResult:
        """
        回填缺口

        Args:
            symbol: 交易对
            exchange: 交易所
            timeframe: 时间框架
            gaps: 待回填缺口
            cancel: 取消令牌

        Returns:
            BackfillResult
        """
        exchange = Exchange.from_string(exchange)
        timeframe = Timeframe.from_string(timeframe)
        cancel = cancel or CancellationToken()

        ranges = split_gaps(gaps, timeframe, self.max_points_per_request)
        queue: deque[int] = deque(r.index for r in ranges)
        result = BackfillResult(
            symbol=symbol,
            exchange=exchange,
            timeframe=timeframe,
            started_at=self._clock.now(),
            total_ranges=len(ranges),
        )

        logger.info(
            "backfill_started",
            symbol=symbol,
            exchange=exchange.value,
            timeframe=timeframe.value,
            gaps=len(gaps),
            ranges=len(ranges),
        )

        while queue:
            if cancel.cancelled:
                result.stopped_early = True
                break

            pending = ranges[queue.popleft()]
            task = CollectionTask(
                symbol=symbol,
                exchange=exchange.value,
                timeframe=timeframe.value,
                window_start=pending.start,
                window_end=pending.end,
            )
            outcome = await self._orchestrator.run_task(task, cancel)

            if isinstance(outcome, TaskFailure):
                result.failed_ranges += 1
                result.errors.append(
                    f"{pending.start.isoformat()} - {pending.end.isoformat()}: "
                    f"{outcome.reason}"
                )
                result.remaining_gaps.append(pending.to_gap(timeframe))
                if outcome.rate_limited or outcome.cancelled:
                    logger.warning(
                        "backfill_stopped",
                        symbol=symbol,
                        exchange=exchange.value,
                        reason=outcome.reason,
                        unprocessed=len(queue),
                    )
                    result.stopped_early = True
                    break
            elif outcome.stored == 0:
                result.failed_ranges += 1
                result.errors.append(
                    f"{pending.start.isoformat()} - {pending.end.isoformat()}: "
                    "no data returned"
                )
                result.remaining_gaps.append(pending.to_gap(timeframe))
            else:
                result.successful_ranges += 1
                result.new_points += outcome.stored

            if queue and await cancel.sleep(self.request_delay):
                result.stopped_early = True
                break

        result.remaining_gaps.extend(ranges[i].to_gap(timeframe) for i in queue)
        result.finished_at = self._clock.now()

        logger.info(
            "backfill_completed",
            symbol=symbol,
            exchange=exchange.value,
            timeframe=timeframe.value,
            successful_ranges=result.successful_ranges,
            failed_ranges=result.failed_ranges,
            new_points=result.new_points,
            remaining_gaps=len(result.remaining_gaps),
        )
        return result


__all__ = ["PendingRange", "BackfillResult", "GapBackfiller", "split_gaps"]
