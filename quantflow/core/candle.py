"""
K 线数据模型

- Candle: 单根 OHLCV 记录，自然键 (symbol, exchange, timeframe, timestamp)
- CollectionTask: 一次采集任务 (不落盘)
- DataGap: 连续缺失区间

设计原则:
- 不可变 (frozen dataclass)
- 价格使用 Decimal，时间统一 UTC
- 构造时不校验 OHLC 关系，问题由质量检查上报
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe, ensure_utc

CandleKey = tuple[str, Exchange, Timeframe, datetime]


def to_decimal(value: Any) -> Decimal:
    """数值转换为 Decimal (经 str 避免二进制浮点误差)"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class Candle:
    """
    K 线

    timestamp 为 K 线开盘时间 (UTC)
    """

    symbol: str
    exchange: Exchange
    timeframe: Timeframe
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    vwap: Decimal | None = None
    trade_count: int | None = None
    bid: Decimal | None = None
    ask: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        for name in ("open", "high", "low", "close", "volume"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        for name in ("vwap", "bid", "ask"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, to_decimal(value))

    @property
    def key(self) -> CandleKey:
        """自然键"""
        return (self.symbol, self.exchange, self.timeframe, self.timestamp)

    @property
    def close_time(self) -> datetime:
        """K 线收盘时间"""
        return self.timestamp + self.timeframe.timedelta

    @property
    def typical_price(self) -> Decimal:
        """典型价格 (high + low + close) / 3"""
        return (self.high + self.low + self.close) / 3

    def is_valid_ohlc(self) -> bool:
        """low <= min(open, close) <= max(open, close) <= high 且 volume >= 0"""
        return (
            self.low <= min(self.open, self.close)
            and max(self.open, self.close) <= self.high
            and self.volume >= 0
        )

    def to_dict(self) -> dict[str, Any]:
        """转换为字典 (价格转 float，便于写入 DataFrame)"""
        return {
            "symbol": self.symbol,
            "exchange": self.exchange.value,
            "timeframe": self.timeframe.value,
            "timestamp": self.timestamp,
            "open": float(self.open),
            "high": float(self.high),
            "low": float(self.low),
            "close": float(self.close),
            "volume": float(self.volume),
            "vwap": float(self.vwap) if self.vwap is not None else None,
            "trade_count": self.trade_count,
            "bid": float(self.bid) if self.bid is not None else None,
            "ask": float(self.ask) if self.ask is not None else None,
        }


@dataclass(frozen=True)
class CollectionTask:
    """
    采集任务

    由编排器对 (symbols × exchanges × timeframes) 展开生成，不持久化。
    exchange / timeframe 保留配置中的原始写法，分发时再解析。
    """

    symbol: str
    exchange: str
    timeframe: str
    window_start: datetime
    window_end: datetime

    @property
    def label(self) -> str:
        """日志用标识"""
        return f"{self.exchange}:{self.symbol}:{self.timeframe}"


@dataclass(frozen=True)
class DataGap:
    """
    数据缺口

    start / end 均为缺失 K 线的开盘时间 (闭区间)
    """

    start: datetime
    end: datetime
    missing_points: int
    timeframe: Timeframe

    @property
    def duration(self) -> timedelta:
        """缺口覆盖的时长"""
        return self.end - self.start + self.timeframe.timedelta

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "missing_points": self.missing_points,
            "timeframe": self.timeframe.value,
        }


__all__ = [
    "Candle",
    "CandleKey",
    "CollectionTask",
    "DataGap",
    "to_decimal",
]
