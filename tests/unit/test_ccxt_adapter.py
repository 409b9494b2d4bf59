"""
CCXT 适配器单元测试

不访问网络，ccxt 客户端使用 mock 替换
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import ccxt.async_support as ccxt
import pytest

from quantflow.core.config import Settings
from quantflow.core.errors import (
    NotFoundError,
    RateLimitedError,
    RequestRejectedError,
    TransportError,
    is_retryable,
)
from quantflow.core.instruments import Exchange
from quantflow.core.timeframes import Timeframe
from quantflow.data.connectors import (
    AdapterRegistry,
    CcxtExchangeAdapter,
    build_adapter_registry,
)
from quantflow.data.connectors.ccxt_adapter import _to_ms

HOUR_MS = 3_600_000


def ohlcv_pages(total_rows: int, start_ms: int, step_ms: int = HOUR_MS):
    """按 since/limit 返回模拟分页数据"""

    async def fetch_ohlcv(symbol, timeframe, since, limit):
        last_ms = start_ms + (total_rows - 1) * step_ms
        rows = []
        ts = since
        while ts <= last_ms and len(rows) < limit:
            rows.append([ts, 100.0, 101.0, 99.0, 100.5, 2.0])
            ts += step_ms
        return rows

    return fetch_ohlcv


def mock_client(side_effect) -> MagicMock:
    client = MagicMock()
    client.fetch_ohlcv = AsyncMock(side_effect=side_effect)
    client.close = AsyncMock()
    return client


class TestFetchCandles:
    """K 线拉取测试"""

    @pytest.mark.asyncio
    async def test_paginates_until_end(self, base_time):
        """测试分页覆盖整个窗口并过滤窗口外数据"""
        adapter = CcxtExchangeAdapter(Exchange.KRAKEN, max_candles_per_request=2)
        client = mock_client(ohlcv_pages(10, _to_ms(base_time)))

        with patch.object(adapter, "_get_client", return_value=client):
            candles = await adapter.fetch_candles(
                "BTCUSD", Timeframe.H1, base_time, base_time + timedelta(hours=4)
            )

        assert [c.timestamp for c in candles] == [
            base_time + timedelta(hours=h) for h in range(5)
        ]
        assert client.fetch_ohlcv.await_count == 3
        first_call = client.fetch_ohlcv.await_args_list[0].kwargs
        assert first_call["symbol"] == "BTC/USD"
        assert first_call["timeframe"] == "1h"
        assert first_call["limit"] == 2

    @pytest.mark.asyncio
    async def test_keeps_caller_symbol(self, base_time):
        """测试返回的 K 线保留调用方 symbol"""
        adapter = CcxtExchangeAdapter(Exchange.KUCOIN)
        client = mock_client(ohlcv_pages(3, _to_ms(base_time)))

        with patch.object(adapter, "_get_client", return_value=client):
            candles = await adapter.fetch_candles(
                "ETH-USDT", Timeframe.H1, base_time, base_time + timedelta(hours=2)
            )

        assert len(candles) == 3
        assert {c.symbol for c in candles} == {"ETH-USDT"}
        assert candles[0].exchange == Exchange.KUCOIN
        assert candles[0].timeframe == Timeframe.H1
        assert float(candles[0].close) == pytest.approx(100.5)

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self, base_time):
        """测试交易所无更多数据时停止"""
        adapter = CcxtExchangeAdapter(Exchange.KRAKEN, max_candles_per_request=2)
        client = mock_client(ohlcv_pages(3, _to_ms(base_time)))

        with patch.object(adapter, "_get_client", return_value=client):
            candles = await adapter.fetch_candles(
                "BTCUSD", Timeframe.H1, base_time, base_time + timedelta(hours=10)
            )

        assert len(candles) == 3
        assert client.fetch_ohlcv.await_count == 3

    @pytest.mark.asyncio
    async def test_inverted_window(self, base_time):
        """测试 end < start 直接返回空"""
        adapter = CcxtExchangeAdapter(Exchange.KRAKEN)
        client = mock_client(ohlcv_pages(3, _to_ms(base_time)))

        with patch.object(adapter, "_get_client", return_value=client):
            candles = await adapter.fetch_candles(
                "BTCUSD", Timeframe.H1, base_time, base_time - timedelta(hours=1)
            )

        assert candles == []
        client.fetch_ohlcv.assert_not_awaited()


class TestErrorMapping:
    """ccxt 异常映射测试"""

    @pytest.mark.asyncio
    async def test_invalid_symbol_not_requested(self, base_time):
        """测试无法解析的交易对直接报 NotFound，不发请求"""
        adapter = CcxtExchangeAdapter(Exchange.KRAKEN)
        client = mock_client([])

        with patch.object(adapter, "_get_client", return_value=client):
            with pytest.raises(NotFoundError) as exc_info:
                await adapter.fetch_candles(
                    "BTC", Timeframe.H1, base_time, base_time + timedelta(hours=1)
                )

        assert exc_info.value.exchange == "kraken"
        client.fetch_ohlcv.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raised, expected",
        [
            (ccxt.RateLimitExceeded("429"), RateLimitedError),
            (ccxt.DDoSProtection("blocked"), RateLimitedError),
            (ccxt.BadSymbol("unknown pair"), NotFoundError),
            (ccxt.RequestTimeout("timeout"), TransportError),
            (ccxt.ExchangeNotAvailable("503"), TransportError),
            (ccxt.AuthenticationError("invalid key"), RequestRejectedError),
            (ccxt.PermissionDenied("forbidden"), RequestRejectedError),
            (ccxt.BadRequest("invalid interval"), RequestRejectedError),
            (ccxt.NotSupported("fetchOHLCV"), RequestRejectedError),
            (ccxt.ExchangeError("boom"), TransportError),
        ],
    )
    async def test_mapping(self, base_time, raised, expected):
        adapter = CcxtExchangeAdapter(Exchange.KRAKEN)
        client = mock_client(raised)

        with patch.object(adapter, "_get_client", return_value=client):
            with pytest.raises(expected) as exc_info:
                await adapter.fetch_candles(
                    "BTCUSD", Timeframe.H1, base_time, base_time + timedelta(hours=1)
                )

        assert exc_info.value.exchange == "kraken"
        assert exc_info.value.__cause__ is raised
        assert is_retryable(exc_info.value) is expected.retryable


class TestLifecycle:
    """客户端生命周期测试"""

    def test_rate_limit_converted_to_ms(self):
        adapter = CcxtExchangeAdapter(Exchange.KRAKEN, rate_limit_per_minute=30)
        assert adapter._config["rateLimit"] == 2000
        assert adapter._config["enableRateLimit"] is True

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        """测试关闭后释放 ccxt 实例"""
        client = mock_client([])
        async with CcxtExchangeAdapter(Exchange.KRAKEN) as adapter:
            adapter._client = client

        client.close.assert_awaited_once()
        assert adapter._client is None

    @pytest.mark.asyncio
    async def test_close_without_client(self):
        adapter = CcxtExchangeAdapter(Exchange.KUCOIN)
        await adapter.close()
        assert adapter._client is None


class TestRegistry:
    """适配器注册表测试"""

    def test_build_from_settings(self):
        """测试只为启用的交易所创建适配器"""
        settings = Settings(kucoin={"enabled": False})
        registry = build_adapter_registry(settings)

        assert isinstance(registry, AdapterRegistry)
        assert list(registry) == [Exchange.KRAKEN]
        assert registry.resolve("Kraken").exchange == Exchange.KRAKEN
