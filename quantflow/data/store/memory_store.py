"""
内存 K 线存储

用于测试和回放，按自然键保存。
"""

from collections.abc import Sequence
from datetime import datetime

from quantflow.core.candle import Candle, CandleKey
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe, ensure_utc


class MemoryCandleStore:
    """内存 K 线存储"""

    def __init__(self) -> None:
        self._candles: dict[CandleKey, Candle] = {}

    def __len__(self) -> int:
        return len(self._candles)

    def store_candles(self, candles: Sequence[Candle]) -> int:
        """
        写入 K 线

        同一批次内重复的键只计一次。

        Returns:
            写入的条数
        """
        keys = set()
        for candle in candles:
            self._candles[candle.key] = candle
            keys.add(candle.key)
        return len(keys)

    def query_candles(
        self,
        symbol: str,
        exchange: Exchange,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        start = ensure_utc(start)
        end = ensure_utc(end)
        result = [
            candle
            for (c_symbol, c_exchange, c_timeframe, ts), candle in self._candles.items()
            if c_symbol == symbol
            and c_exchange == exchange
            and c_timeframe == timeframe
            and start <= ts <= end
        ]
        return sorted(result, key=lambda c: c.timestamp)

    def snapshot(self) -> dict[CandleKey, Candle]:
        """当前存储内容的拷贝"""
        return dict(self._candles)


__all__ = ["MemoryCandleStore"]
