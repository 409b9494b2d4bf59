"""
K 线存储接口

写入按自然键 (symbol, exchange, timeframe, timestamp) 幂等覆盖，后写入者生效。
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from quantflow.core.candle import Candle
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe


@runtime_checkable
class CandleSink(Protocol):
    """K 线存储协议"""

    def store_candles(self, candles: Sequence[Candle]) -> int:
        """写入 K 线，返回写入 (覆盖) 的条数"""
        ...

    def query_candles(
        self,
        symbol: str,
        exchange: Exchange,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """查询 [start, end] 内的 K 线，按时间升序"""
        ...


__all__ = ["CandleSink"]
