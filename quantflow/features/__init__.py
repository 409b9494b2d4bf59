"""
特征与技术指标
"""

from .indicators import (
    BollingerBands,
    MacdResult,
    VwapBands,
    atr,
    atr_series,
    bollinger,
    bollinger_series,
    ema,
    ema_series,
    macd,
    macd_series,
    rsi,
    rsi_series,
    sma,
    sma_series,
    vwap,
    vwap_bands,
    vwap_series,
)

__all__ = [
    "MacdResult",
    "BollingerBands",
    "VwapBands",
    "sma",
    "sma_series",
    "ema",
    "ema_series",
    "rsi",
    "rsi_series",
    "macd",
    "macd_series",
    "bollinger",
    "bollinger_series",
    "atr",
    "atr_series",
    "vwap",
    "vwap_series",
    "vwap_bands",
]
