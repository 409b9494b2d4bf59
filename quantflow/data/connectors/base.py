"""
交易所适配器接口与注册表

- ExchangeAdapter: 拉取单个 symbol/timeframe/时间窗口 的 K 线
- AdapterRegistry: 启动时为每个 Exchange 成员解析好的适配器集合，
  分发按枚举查找，不再按字符串 switch
"""

from collections.abc import Iterator, Mapping
from datetime import datetime
from typing import Protocol, runtime_checkable

from quantflow.core.candle import Candle
from quantflow.core.errors import UnsupportedExchangeError
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe


@runtime_checkable
class ExchangeAdapter(Protocol):
    """
    交易所适配器协议

    fetch_candles 只返回开盘时间落在 [start, end] 内的 K 线 (按时间升序)，
    失败时抛出 RateLimitedError / NotFoundError / TransportError。
    """

    exchange: Exchange

    async def fetch_candles(
        self,
        symbol: str,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Candle]: ...

    async def close(self) -> None: ...


class AdapterRegistry(Mapping[Exchange, ExchangeAdapter]):
    """已注册适配器的只读集合"""

    def __init__(self, adapters: Mapping[Exchange, ExchangeAdapter] | None = None):
        self._adapters: dict[Exchange, ExchangeAdapter] = dict(adapters or {})

    def __getitem__(self, exchange: Exchange) -> ExchangeAdapter:
        return self._adapters[exchange]

    def __iter__(self) -> Iterator[Exchange]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def resolve(self, name: str | Exchange) -> ExchangeAdapter:
        """
        按名称 (大小写不敏感) 解析适配器

        Raises:
            UnsupportedExchangeError: 未知交易所或未注册适配器
        """
        try:
            exchange = Exchange.from_string(name)
        except ValueError as err:
            raise UnsupportedExchangeError(str(name)) from err

        adapter = self._adapters.get(exchange)
        if adapter is None:
            raise UnsupportedExchangeError(exchange.value)
        return adapter

    async def close(self) -> None:
        """关闭所有适配器"""
        for adapter in self._adapters.values():
            await adapter.close()


__all__ = ["ExchangeAdapter", "AdapterRegistry"]
