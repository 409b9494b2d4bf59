"""
交易所与 Symbol 规范化

内部 Symbol 格式为 CCXT 风格 BASE/QUOTE (例如 BTC/USD)，
配置中常见的 BTCUSD / BTC-USD / btc_usd 写法统一在这里转换。
"""

from enum import Enum


class Exchange(str, Enum):
    """支持的交易所 (封闭集合，启动时为每个成员解析适配器)"""

    KRAKEN = "kraken"
    KUCOIN = "kucoin"

    @classmethod
    def from_string(cls, value: "str | Exchange") -> "Exchange":
        """
        大小写不敏感地解析交易所名称

        Raises:
            ValueError: 未知交易所
        """
        if isinstance(value, Exchange):
            return value
        normalized = value.strip().lower()
        for exchange in cls:
            if exchange.value == normalized:
                return exchange
        raise ValueError(f"Unknown exchange: {value}")


# 常见计价货币，用于拆分无分隔符的 Symbol (如 BTCUSDT)
KNOWN_QUOTES = ("USDT", "USDC", "BUSD", "USD", "EUR", "GBP", "BTC", "ETH")


def normalize_symbol(symbol: str) -> str:
    """
    规范化 Symbol 为 BASE/QUOTE

    无分隔符且不以已知计价货币结尾时，按后 3 位拆分 quote。

    Examples:
        >>> normalize_symbol("btcusd")
        'BTC/USD'
        >>> normalize_symbol("ETH-USDT")
        'ETH/USDT'

    Raises:
        ValueError: 无法拆出非空的 base 和 quote (如 "BTC"、"BTC/")
    """
    value = symbol.strip().upper()
    for sep in ("/", "-", "_", ":"):
        if sep in value:
            base, quote = value.split(sep, 1)
            if not base or not quote:
                raise ValueError(f"Invalid symbol: {symbol!r}")
            return f"{base}/{quote}"

    for quote in KNOWN_QUOTES:
        if value.endswith(quote) and len(value) > len(quote):
            return f"{value[: -len(quote)]}/{quote}"

    if len(value) <= 3:
        raise ValueError(f"Invalid symbol: {symbol!r}")
    return f"{value[:-3]}/{value[-3:]}"


__all__ = ["Exchange", "KNOWN_QUOTES", "normalize_symbol"]
