"""
测试公共 fixture
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from quantflow.core.candle import Candle
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe

BASE_TIME = datetime(2024, 1, 15, 0, 0, tzinfo=UTC)


def build_candle(
    timestamp: datetime,
    close: float = 100.0,
    *,
    symbol: str = "BTCUSD",
    exchange: Exchange = Exchange.KRAKEN,
    timeframe: Timeframe = Timeframe.M1,
    open_: float | None = None,
    high: float | None = None,
    low: float | None = None,
    volume: float = 10.0,
) -> Candle:
    """构造 K 线，未指定的 OHLC 围绕 close 生成合法值"""
    open_ = close if open_ is None else open_
    high = max(open_, close) + 1 if high is None else high
    low = min(open_, close) - 1 if low is None else low
    return Candle(
        symbol=symbol,
        exchange=exchange,
        timeframe=timeframe,
        timestamp=timestamp,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


@pytest.fixture
def make_candle() -> Callable[..., Candle]:
    """单根 K 线工厂"""
    return build_candle


@pytest.fixture
def make_series() -> Callable[..., list[Candle]]:
    """按收盘价序列构造等间隔 K 线"""

    def factory(
        closes: Sequence[float],
        timeframe: Timeframe = Timeframe.M1,
        start: datetime = BASE_TIME,
        **kwargs,
    ) -> list[Candle]:
        return [
            build_candle(
                start + timeframe.timedelta * i,
                close,
                timeframe=timeframe,
                **kwargs,
            )
            for i, close in enumerate(closes)
        ]

    return factory


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def minutes() -> Callable[[int], datetime]:
    """BASE_TIME + n 分钟"""
    return lambda n: BASE_TIME + timedelta(minutes=n)


def candles_for_window(
    symbol: str,
    exchange: Exchange,
    timeframe: Timeframe,
    start: datetime,
    end: datetime,
) -> list[Candle]:
    """[start, end] 内每个周期一根 K 线"""
    candles = []
    ts = timeframe.floor(start)
    if ts < start:
        ts += timeframe.timedelta
    while ts <= end:
        candles.append(
            build_candle(ts, symbol=symbol, exchange=exchange, timeframe=timeframe)
        )
        ts += timeframe.timedelta
    return candles


@pytest.fixture
def make_adapter() -> Callable[..., MagicMock]:
    """
    模拟交易所适配器

    默认返回请求窗口内的完整 K 线；side_effect 可替换为异常或自定义函数。
    """

    def factory(exchange: Exchange = Exchange.KRAKEN, side_effect=None) -> MagicMock:
        async def fetch(symbol, timeframe, start, end):
            return candles_for_window(symbol, exchange, timeframe, start, end)

        adapter = MagicMock()
        adapter.exchange = exchange
        adapter.fetch_candles = AsyncMock(side_effect=side_effect or fetch)
        adapter.close = AsyncMock()
        return adapter

    return factory
