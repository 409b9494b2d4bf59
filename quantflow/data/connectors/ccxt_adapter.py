"""
CCXT 交易所适配器

使用 ccxt.async_support 接入 Kraken / KuCoin 公开 K 线接口:
- 按 since/limit 分页拉取，直到覆盖 [start, end]
- ccxt 异常映射为内部错误分类 (认证、参数、不支持类错误不重试)
- K 线 symbol 保留调用方写法，请求时转换为 BASE/QUOTE

注意:
- 只用公开接口，不需要 API key
- enableRateLimit 交给 ccxt 做请求节流
"""

from datetime import UTC, datetime
from typing import Any

import ccxt.async_support as ccxt

from quantflow.core.candle import Candle
from quantflow.core.config import Settings, get_settings
from quantflow.core.errors import (
    NotFoundError,
    RateLimitedError,
    RequestRejectedError,
    TransportError,
)
from quantflow.core.instruments import Exchange, normalize_symbol
from quantflow.core.timeframes import Timeframe, ensure_utc
from quantflow.data.connectors.base import AdapterRegistry
from quantflow.ops.logging import get_logger

logger = get_logger(__name__)

# 防止交易所返回异常数据导致死循环
MAX_PAGES = 1000


def _to_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)


class CcxtExchangeAdapter:
    """
    基于 ccxt 的交易所适配器

    同一实例可被多个任务并发使用，ccxt 实例惰性创建。
    """

    def __init__(
        self,
        exchange: Exchange,
        rate_limit_per_minute: int = 60,
        max_candles_per_request: int = 720,
        sandbox: bool = False,
    ) -> None:
        """
        初始化适配器

        Args:
            exchange: 交易所
            rate_limit_per_minute: 每分钟请求上限，换算为 ccxt 的 rateLimit (毫秒)
            max_candles_per_request: 单次请求的 K 线数量上限
            sandbox: 是否使用测试网
        """
        self.exchange = exchange
        self.max_candles_per_request = max_candles_per_request
        self._config: dict[str, Any] = {
            "enableRateLimit": True,
            "rateLimit": max(1, int(60_000 / rate_limit_per_minute)),
            "options": {
                "defaultType": "spot",
            },
        }
        self._sandbox = sandbox
        self._client: ccxt.Exchange | None = None

    def _get_client(self) -> ccxt.Exchange:
        """获取或创建 ccxt 实例"""
        if self._client is None:
            exchange_class = getattr(ccxt, self.exchange.value)
            self._client = exchange_class(self._config)
            if self._sandbox:
                self._client.set_sandbox_mode(True)
        return self._client

    async def close(self) -> None:
        """关闭连接"""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> "CcxtExchangeAdapter":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _fetch_page(
        self, ccxt_symbol: str, timeframe: Timeframe, since_ms: int
    ) -> list[list[Any]]:
        """拉取一页原始 OHLCV，并转换异常"""
        client = self._get_client()
        name = self.exchange.value
        try:
            return await client.fetch_ohlcv(
                symbol=ccxt_symbol,
                timeframe=timeframe.to_ccxt(),
                since=since_ms,
                limit=self.max_candles_per_request,
            )
        except (ccxt.RateLimitExceeded, ccxt.DDoSProtection) as err:
            raise RateLimitedError(str(err), exchange=name) from err
        except ccxt.BadSymbol as err:
            raise NotFoundError(
                f"Symbol {ccxt_symbol} not found on {name}", exchange=name
            ) from err
        except (
            ccxt.AuthenticationError,
            ccxt.BadRequest,
            ccxt.NotSupported,
            ccxt.ArgumentsRequired,
        ) as err:
            raise RequestRejectedError(str(err), exchange=name) from err
        except (ccxt.NetworkError, ccxt.ExchangeError) as err:
            raise TransportError(str(err), exchange=name) from err

    async def fetch_candles(
        self,
        symbol: str,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """
        拉取 [start, end] 内的 K 线

        Args:
            symbol: 交易对 (BTCUSD / BTC-USD / BTC/USD 均可)
            timeframe: 时间框架
            start: 开始时间 (含)
            end: 结束时间 (含)

        Returns:
            按开盘时间升序的 K 线列表

        Raises:
            RateLimitedError: 被限流
            NotFoundError: 交易对不存在或无法解析
            RequestRejectedError: 认证失败、参数非法或交易所不支持该请求
            TransportError: 网络或交易所错误
        """
        start_ms = _to_ms(start)
        end_ms = _to_ms(end)
        if end_ms < start_ms:
            return []

        try:
            ccxt_symbol = normalize_symbol(symbol)
        except ValueError as err:
            raise NotFoundError(str(err), exchange=self.exchange.value) from err
        rows: dict[int, list[Any]] = {}
        since_ms = start_ms

        for _ in range(MAX_PAGES):
            page = await self._fetch_page(ccxt_symbol, timeframe, since_ms)
            if not page:
                break

            for row in page:
                ts = int(row[0])
                if start_ms <= ts <= end_ms:
                    rows[ts] = row

            last_ts = int(page[-1][0])
            if last_ts >= end_ms or last_ts < since_ms:
                break
            since_ms = last_ts + timeframe.seconds * 1000

        candles = [
            Candle(
                symbol=symbol,
                exchange=self.exchange,
                timeframe=timeframe,
                timestamp=datetime.fromtimestamp(ts / 1000, tz=UTC),
                open=row[1],
                high=row[2],
                low=row[3],
                close=row[4],
                volume=row[5] if row[5] is not None else 0,
            )
            for ts, row in sorted(rows.items())
        ]

        logger.debug(
            "candles_fetched",
            exchange=self.exchange.value,
            symbol=ccxt_symbol,
            timeframe=timeframe.value,
            count=len(candles),
        )
        return candles


def build_adapter_registry(settings: Settings | None = None) -> AdapterRegistry:
    """
    为所有启用的交易所创建适配器

    Args:
        settings: 配置，默认读取全局配置

    Returns:
        AdapterRegistry
    """
    settings = settings or get_settings()
    adapters: dict[Exchange, CcxtExchangeAdapter] = {}
    for exchange in Exchange:
        exchange_settings = settings.exchange_settings(exchange.value)
        if not exchange_settings.enabled:
            continue
        adapters[exchange] = CcxtExchangeAdapter(
            exchange,
            rate_limit_per_minute=exchange_settings.rate_limit_per_minute,
            max_candles_per_request=exchange_settings.max_candles_per_request,
            sandbox=exchange_settings.sandbox,
        )
    return AdapterRegistry(adapters)


__all__ = ["CcxtExchangeAdapter", "build_adapter_registry"]
