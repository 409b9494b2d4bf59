"""
交易所连接器

- base: ExchangeAdapter 协议与适配器注册表
- ccxt_adapter: 基于 ccxt 的 Kraken / KuCoin 实现
"""

from .base import AdapterRegistry, ExchangeAdapter
from .ccxt_adapter import CcxtExchangeAdapter, build_adapter_registry

__all__ = [
    "ExchangeAdapter",
    "AdapterRegistry",
    "CcxtExchangeAdapter",
    "build_adapter_registry",
]
