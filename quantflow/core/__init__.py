"""
Core 模块 - 基础组件

包含:
- config: 配置加载与环境区分
- candle: K 线 / 采集任务 / 缺口模型
- clock: 时钟与收盘边界计算
- errors: 错误分类
- instruments: 交易所与 Symbol 规范化
- timeframes: 时间框架定义
"""

from .candle import Candle, CollectionTask, DataGap
from .clock import last_candle_boundary, next_hour_boundary, safe_end_time
from .errors import (
    ConfigurationError,
    DataIntegrityError,
    NotFoundError,
    QuantFlowError,
    RateLimitedError,
    TransportError,
    UnsupportedExchangeError,
)
from .instruments import Exchange, normalize_symbol
from .timeframes import COLLECTION_TIMEFRAMES, Timeframe

__all__ = [
    # Models
    "Candle",
    "CollectionTask",
    "DataGap",
    # Boundaries
    "last_candle_boundary",
    "safe_end_time",
    "next_hour_boundary",
    # Errors
    "QuantFlowError",
    "ConfigurationError",
    "TransportError",
    "RateLimitedError",
    "NotFoundError",
    "UnsupportedExchangeError",
    "DataIntegrityError",
    # Instruments
    "Exchange",
    "normalize_symbol",
    # Timeframes
    "Timeframe",
    "COLLECTION_TIMEFRAMES",
]
