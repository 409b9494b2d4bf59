"""
时钟与 K 线边界计算

职责:
- 提供统一的时间获取接口 (实盘 / 手动推进)
- 计算最近一根已完全收盘的 K 线边界
- 计算带安全缓冲的采集结束时间 (避免采集到未收盘的 K 线)
- 计算下一个整点调度时间
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol

from quantflow.core.timeframes import Timeframe, ensure_utc


class Clock(Protocol):
    """时钟协议"""

    def now(self) -> datetime:
        """获取当前时间"""
        ...


class LiveClock:
    """
    实盘时钟

    使用真实的 UTC 时间
    """

    def now(self) -> datetime:
        """获取当前 UTC 时间"""
        return datetime.now(UTC)


class ManualClock:
    """
    手动时钟

    时间只随 set_time / advance 推进，用于测试和补数任务
    """

    def __init__(self, start_time: datetime | None = None):
        """
        初始化手动时钟

        Args:
            start_time: 起始时间，默认为 2020-01-01 00:00 UTC
        """
        self._current_time = ensure_utc(
            start_time or datetime(2020, 1, 1, 0, 0, 0, tzinfo=UTC)
        )

    def now(self) -> datetime:
        """获取当前模拟时间"""
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        """设置当前时间"""
        self._current_time = ensure_utc(dt)

    def advance(self, delta: timedelta) -> datetime:
        """
        推进时间

        Args:
            delta: 推进量

        Returns:
            datetime: 推进后的时间
        """
        self._current_time = self._current_time + delta
        return self._current_time


def last_candle_boundary(now: datetime, timeframe: Timeframe) -> datetime:
    """
    获取最近一根已收盘 K 线的结束边界

    规则:
    - 日线及以上: 当日 UTC 0 点
    - 小时级: 当前整点，多小时周期向下取整到周期的整数倍 (4h: 0/4/8/.. 点)
    - 分钟级: 当日 0 点 + floor(当日分钟数 / 周期分钟数) * 周期分钟数

    恰好落在边界上时返回该边界本身，即刚收盘那根 K 线的结束时间。

    Args:
        now: 当前时间
        timeframe: 时间框架

    Returns:
        边界时间 (UTC)，总是 <= now
    """
    now = ensure_utc(now)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tf_minutes = timeframe.minutes

    if tf_minutes >= 1440:
        return midnight

    if tf_minutes >= 60:
        step_hours = tf_minutes // 60
        hour = (now.hour // step_hours) * step_hours
        return midnight.replace(hour=hour)

    minutes_since_midnight = now.hour * 60 + now.minute
    completed_minutes = (minutes_since_midnight // tf_minutes) * tf_minutes
    return midnight + timedelta(minutes=completed_minutes)


def safe_end_time(
    now: datetime,
    timeframe: Timeframe,
    buffer_minutes: int = 0,
) -> datetime:
    """
    计算安全的采集结束时间

    在最近收盘边界基础上再减去缓冲分钟数，确保交易所侧 K 线已完全落地。
    纯函数，不抛异常；负数缓冲按 0 处理。

    Args:
        now: 当前时间
        timeframe: 时间框架
        buffer_minutes: 安全缓冲 (分钟)

    Returns:
        安全结束时间 (UTC)
    """
    boundary = last_candle_boundary(now, timeframe)
    return boundary - timedelta(minutes=max(0, buffer_minutes))


def next_hour_boundary(now: datetime) -> datetime:
    """
    计算下一个 UTC 整点

    恰好落在整点上时返回下一个整点 (当前整点的调度已触发)
    """
    now = ensure_utc(now)
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


# 导出
__all__ = [
    "Clock",
    "LiveClock",
    "ManualClock",
    "last_candle_boundary",
    "safe_end_time",
    "next_hour_boundary",
]
