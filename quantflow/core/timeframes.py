"""
时间框架定义

支持的时间框架:
- 1m, 5m, 15m, 30m: 分钟级
- 1h, 4h: 小时级
- 1d, 1w: 日/周级

设计原则:
- 统一时区处理 (UTC)
- 分钟数用于边界计算和期望 bar 数量计算
"""

from datetime import UTC, datetime, timedelta
from enum import Enum


class Timeframe(str, Enum):
    """时间框架枚举"""

    M1 = "1m"  # 1分钟
    M5 = "5m"  # 5分钟
    M15 = "15m"  # 15分钟
    M30 = "30m"  # 30分钟
    H1 = "1h"  # 1小时
    H4 = "4h"  # 4小时
    D1 = "1d"  # 日线
    W1 = "1w"  # 周线

    @property
    def minutes(self) -> int:
        """返回时间框架对应的分钟数"""
        _minutes_map = {
            "1m": 1,
            "5m": 5,
            "15m": 15,
            "30m": 30,
            "1h": 60,
            "4h": 240,
            "1d": 1440,
            "1w": 10080,
        }
        return _minutes_map[self.value]

    @property
    def seconds(self) -> int:
        """返回时间框架对应的秒数"""
        return self.minutes * 60

    @property
    def timedelta(self) -> timedelta:
        """返回时间框架对应的 timedelta"""
        return timedelta(minutes=self.minutes)

    @property
    def is_intraday(self) -> bool:
        """是否为日内周期"""
        return self.minutes < 1440

    def floor(self, dt: datetime) -> datetime:
        """
        将时间向下取整到该时间框架

        周线按 epoch 取整 (1970-01-01 为周四)，与交易所周线不一定对齐，
        仅用于日内及日线周期的对齐计算。

        Args:
            dt: 输入时间

        Returns:
            取整后的时间
        """
        dt = ensure_utc(dt)
        timestamp = int(dt.timestamp())
        floored_ts = (timestamp // self.seconds) * self.seconds
        return datetime.fromtimestamp(floored_ts, tz=UTC)

    def is_aligned(self, dt: datetime) -> bool:
        """时间是否落在该周期边界上"""
        dt = ensure_utc(dt)
        return dt.microsecond == 0 and int(dt.timestamp()) % self.seconds == 0

    def bars_between(self, start: datetime, end: datetime) -> int:
        """
        计算 [start, end) 之间完整 bar 的数量 (向下取整)

        Args:
            start: 开始时间
            end: 结束时间

        Returns:
            bar 数量，end <= start 时为 0
        """
        diff = (ensure_utc(end) - ensure_utc(start)).total_seconds()
        if diff <= 0:
            return 0
        return int(diff // self.seconds)

    @classmethod
    def from_string(cls, value: "str | Timeframe") -> "Timeframe":
        """
        从字符串解析时间框架 (大小写不敏感)

        Args:
            value: 如 "15m", "1H"

        Returns:
            Timeframe 实例

        Raises:
            ValueError: 未知时间框架
        """
        if isinstance(value, Timeframe):
            return value
        normalized = value.lower().strip()
        for tf in cls:
            if tf.value == normalized:
                return tf
        raise ValueError(f"Unknown timeframe: {value}")

    def to_ccxt(self) -> str:
        """
        转换为 CCXT 格式

        Returns:
            CCXT 格式的时间框架
        """
        return self.value


def ensure_utc(dt: datetime) -> datetime:
    """无时区的时间视为 UTC，有时区的转换为 UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


# 采集调度支持的时间框架 (按周期从短到长)
COLLECTION_TIMEFRAMES = [
    Timeframe.M1,
    Timeframe.M5,
    Timeframe.M15,
    Timeframe.H1,
    Timeframe.H4,
    Timeframe.D1,
]


# 导出
__all__ = [
    "Timeframe",
    "COLLECTION_TIMEFRAMES",
    "ensure_utc",
]
