"""
数据质量验证

职责:
- 缺口检测 (按时间框架间隔遍历)
- 单根 K 线检查 (OHLC 关系、零成交量、重复时间戳)
- 完整度计算与质量报告
- 基于存储的检查器: 检测 → 回填 → 复查

约定:
- 期望条数按半开区间 [start, end) 计算: floor((end - start) / 间隔)
- DataGap 的 start / end 为首尾缺失 K 线的开盘时间
- 完整度 = [start, end) 内去重后条数 / 期望条数，截断到 [0, 1]；期望为 0 时为 1.0
  (恰好落在 end 上的 K 线参与检查，但不计入完整度)
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from quantflow.core.candle import Candle, DataGap
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe, ensure_utc
from quantflow.data.collector.orchestrator import CancellationToken
from quantflow.data.quality.backfill import BackfillResult, GapBackfiller
from quantflow.data.store.base import CandleSink
from quantflow.ops.logging import get_logger

logger = get_logger(__name__)


@dataclass
class QualityReport:
    """数据质量报告"""

    timeframe: Timeframe
    start: datetime
    end: datetime
    total_points: int
    expected_points: int
    completeness: float
    invalid_ohlc_count: int = 0
    zero_volume_count: int = 0
    duplicate_count: int = 0
    gaps: list[DataGap] = field(default_factory=list)
    validation_errors: list[str] = field(default_factory=list)
    symbol: str | None = None
    exchange: Exchange | None = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_valid(self) -> bool:
        """无 OHLC 违规且无重复时间戳"""
        return self.invalid_ohlc_count == 0 and self.duplicate_count == 0

    @property
    def gap_count(self) -> int:
        return len(self.gaps)

    @property
    def missing_points(self) -> int:
        return sum(gap.missing_points for gap in self.gaps)

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            "symbol": self.symbol,
            "exchange": self.exchange.value if self.exchange else None,
            "timeframe": self.timeframe.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_points": self.total_points,
            "expected_points": self.expected_points,
            "completeness": self.completeness,
            "invalid_ohlc_count": self.invalid_ohlc_count,
            "zero_volume_count": self.zero_volume_count,
            "duplicate_count": self.duplicate_count,
            "gap_count": self.gap_count,
            "missing_points": self.missing_points,
            "is_valid": self.is_valid,
            "gaps": [gap.to_dict() for gap in self.gaps],
            "validation_errors": list(self.validation_errors),
            "generated_at": self.generated_at.isoformat(),
        }


def _in_window(
    candles: Sequence[Candle], start: datetime, end: datetime
) -> list[Candle]:
    return [c for c in candles if start <= c.timestamp <= end]


def detect_gaps(
    candles: Sequence[Candle],
    timeframe: Timeframe,
    start: datetime,
    end: datetime,
) -> list[DataGap]:
    """
    检测缺口

    Args:
        candles: 同一品种/周期的 K 线 (无需排序，可含重复)
        timeframe: 时间框架
        start: 窗口开始
        end: 窗口结束

    Returns:
        按时间排序的缺口列表
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    spacing = timeframe.timedelta

    points = sorted({c.timestamp for c in _in_window(candles, start, end)})

    if not points:
        expected = timeframe.bars_between(start, end)
        if expected == 0:
            return []
        return [
            DataGap(start, start + spacing * (expected - 1), expected, timeframe)
        ]

    gaps: list[DataGap] = []

    # 窗口开头
    leading = (points[0] - start) // spacing
    if leading > 0:
        gaps.append(
            DataGap(
                points[0] - spacing * leading,
                points[0] - spacing,
                leading,
                timeframe,
            )
        )

    # 相邻点之间
    for prev, curr in zip(points, points[1:]):
        missing = (curr - prev) // spacing - 1
        if missing > 0:
            gaps.append(
                DataGap(prev + spacing, prev + spacing * missing, missing, timeframe)
            )

    # 窗口结尾: 严格位于最后一点与 end 之间的网格点
    last = points[-1]
    trailing = -((last - end) // spacing) - 1
    if trailing > 0:
        gaps.append(
            DataGap(last + spacing, last + spacing * trailing, trailing, timeframe)
        )

    return gaps


def validate_quality(
    candles: Sequence[Candle],
    timeframe: Timeframe,
    start: datetime,
    end: datetime,
    symbol: str | None = None,
    exchange: Exchange | None = None,
) -> QualityReport:
    """
    生成质量报告

    Args:
        candles: 同一品种/周期的 K 线
        timeframe: 时间框架
        start: 窗口开始
        end: 窗口结束
        symbol: 交易对 (仅用于报告)
        exchange: 交易所 (仅用于报告)

    Returns:
        QualityReport
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    window = _in_window(candles, start, end)

    invalid_ohlc = 0
    zero_volume = 0
    duplicates = 0
    seen: set[datetime] = set()
    errors: list[str] = []

    for candle in window:
        ts = candle.timestamp.isoformat()
        if not candle.is_valid_ohlc():
            invalid_ohlc += 1
            errors.append(
                f"Invalid OHLC at {ts}: "
                f"O={candle.open} H={candle.high} L={candle.low} "
                f"C={candle.close} V={candle.volume}"
            )
        if candle.volume == 0:
            zero_volume += 1
        if candle.timestamp in seen:
            duplicates += 1
            errors.append(f"Duplicate timestamp {ts}")
        seen.add(candle.timestamp)

    expected = timeframe.bars_between(start, end)
    counted = sum(1 for ts in seen if ts < end)
    completeness = 1.0 if expected == 0 else min(1.0, counted / expected)

    return QualityReport(
        timeframe=timeframe,
        start=start,
        end=end,
        total_points=counted,
        expected_points=expected,
        completeness=completeness,
        invalid_ohlc_count=invalid_ohlc,
        zero_volume_count=zero_volume,
        duplicate_count=duplicates,
        gaps=detect_gaps(window, timeframe, start, end),
        validation_errors=errors,
        symbol=symbol,
        exchange=exchange,
    )


@dataclass
class CompleteDataResult:
    """补全流程结果"""

    initial_report: QualityReport
    final_report: QualityReport
    backfill: BackfillResult | None = None

    @property
    def complete(self) -> bool:
        return not self.final_report.gaps


class DataQualityChecker:
    """
    基于存储的数据质量检查器

    从 CandleSink 读取窗口内数据后执行纯函数检查；
    配置了回填器时支持 ensure_complete_data。
    """

    def __init__(
        self,
        sink: CandleSink,
        backfiller: GapBackfiller | None = None,
    ):
        self._sink = sink
        self._backfiller = backfiller

    def _load(
        self,
        symbol: str,
        exchange: Exchange,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        return self._sink.query_candles(symbol, exchange, timeframe, start, end)

    def detect_gaps(
        self,
        symbol: str,
        exchange: Exchange | str,
        timeframe: Timeframe | str,
        start: datetime,
        end: datetime,
    ) -> list[DataGap]:
        """检测已存储数据的缺口"""
        exchange = Exchange.from_string(exchange)
        timeframe = Timeframe.from_string(timeframe)
        candles = self._load(symbol, exchange, timeframe, start, end)
        gaps = detect_gaps(candles, timeframe, start, end)

        if gaps:
            logger.warning(
                "data_gaps_detected",
                symbol=symbol,
                exchange=exchange.value,
                timeframe=timeframe.value,
                gap_count=len(gaps),
                missing_points=sum(g.missing_points for g in gaps),
            )
        return gaps

    def validate_quality(
        self,
        symbol: str,
        exchange: Exchange | str,
        timeframe: Timeframe | str,
        start: datetime,
        end: datetime,
    ) -> QualityReport:
        """生成已存储数据的质量报告"""
        exchange = Exchange.from_string(exchange)
        timeframe = Timeframe.from_string(timeframe)
        candles = self._load(symbol, exchange, timeframe, start, end)
        report = validate_quality(candles, timeframe, start, end, symbol, exchange)

        logger.info(
            "quality_report_generated",
            symbol=symbol,
            exchange=exchange.value,
            timeframe=timeframe.value,
            completeness=round(report.completeness, 4),
            gap_count=report.gap_count,
            is_valid=report.is_valid,
        )
        return report

    async def ensure_complete_data(
        self,
        symbol: str,
        exchange: Exchange | str,
        timeframe: Timeframe | str,
        start: datetime,
        end: datetime,
        cancel: CancellationToken | None = None,
    ) -> CompleteDataResult:
        """
        检测缺口并回填，然后重新生成质量报告

        Raises:
            RuntimeError: 未配置回填器
        """
        if self._backfiller is None:
            raise RuntimeError("DataQualityChecker has no backfiller configured")

        initial = self.validate_quality(symbol, exchange, timeframe, start, end)
        if not initial.gaps:
            return CompleteDataResult(initial_report=initial, final_report=initial)

        backfill = await self._backfiller.populate_missing_data(
            symbol, exchange, timeframe, initial.gaps, cancel
        )
        final = self.validate_quality(symbol, exchange, timeframe, start, end)
        return CompleteDataResult(
            initial_report=initial, final_report=final, backfill=backfill
        )


__all__ = [
    "QualityReport",
    "CompleteDataResult",
    "DataQualityChecker",
    "detect_gaps",
    "validate_quality",
]
