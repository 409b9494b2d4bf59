"""
技术指标

输入为按时间升序的 K 线序列，每个指标提供:
- 最新值形式: 返回 float / 结果对象，历史不足时返回 None
- *_series 形式: 与输入等长，历史不足的位置为 None

所有函数不抛异常 (周期非法或数据不足时返回 None)。
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from quantflow.core.candle import Candle


@dataclass(frozen=True)
class MacdResult:
    """MACD 结果 (signal / histogram 在历史不足时为 None)"""

    macd: float
    signal: float | None
    histogram: float | None


@dataclass(frozen=True)
class BollingerBands:
    """布林带"""

    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class VwapBands:
    """VWAP 带"""

    upper: float
    vwap: float
    lower: float


def _frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """K 线转 float DataFrame"""
    return pd.DataFrame(
        {
            "open": [float(c.open) for c in candles],
            "high": [float(c.high) for c in candles],
            "low": [float(c.low) for c in candles],
            "close": [float(c.close) for c in candles],
            "volume": [float(c.volume) for c in candles],
        },
        dtype=float,
    )


def _to_list(series: pd.Series) -> list[float | None]:
    return [None if pd.isna(v) else float(v) for v in series]


def _last(series: pd.Series) -> float | None:
    if series.empty or pd.isna(series.iloc[-1]):
        return None
    return float(series.iloc[-1])


def _seeded_ema(values: pd.Series, period: int) -> pd.Series:
    """
    以 SMA 为种子的 EMA

    从第一个有效值开始取 period 个值的均值作为种子，
    之后 ema = (x - ema_prev) * 2 / (period + 1) + ema_prev
    """
    result = pd.Series(np.nan, index=values.index)
    valid = values.notna().to_numpy()
    if not valid.any():
        return result

    first = int(valid.argmax())
    seed_idx = first + period - 1
    if seed_idx >= len(values):
        return result

    seeded = values.copy()
    seeded.iloc[:seed_idx] = np.nan
    seeded.iloc[seed_idx] = values.iloc[first : seed_idx + 1].mean()
    return seeded.ewm(alpha=2 / (period + 1), adjust=False).mean()


# ============================================
# SMA / EMA
# ============================================


def sma_series(candles: Sequence[Candle], period: int) -> list[float | None]:
    """简单移动平均序列"""
    if period < 1:
        return [None] * len(candles)
    close = _frame(candles)["close"]
    return _to_list(close.rolling(window=period).mean())


def sma(candles: Sequence[Candle], period: int) -> float | None:
    """最近 period 根收盘价均值"""
    if period < 1 or len(candles) < period:
        return None
    return sma_series(candles, period)[-1]


def ema_series(candles: Sequence[Candle], period: int) -> list[float | None]:
    """指数移动平均序列 (SMA 种子)"""
    if period < 1:
        return [None] * len(candles)
    close = _frame(candles)["close"]
    return _to_list(_seeded_ema(close, period))


def ema(candles: Sequence[Candle], period: int) -> float | None:
    """最新 EMA"""
    if period < 1 or len(candles) < period:
        return None
    return ema_series(candles, period)[-1]


# ============================================
# RSI
# ============================================


def _rsi(close: pd.Series, period: int) -> pd.Series:
    delta = close.diff()
    gain = delta.clip(lower=0)
    loss = (-delta).clip(lower=0)

    avg_gain = gain.rolling(window=period).mean()
    avg_loss = loss.rolling(window=period).mean()

    rs = avg_gain / avg_loss.where(avg_loss != 0)
    rsi = 100 - (100 / (1 + rs))
    return rsi.where(avg_loss != 0, 100.0).where(avg_loss.notna())


def rsi_series(candles: Sequence[Candle], period: int = 14) -> list[float | None]:
    """RSI 序列 (前 period 个位置为 None)"""
    if period < 1:
        return [None] * len(candles)
    return _to_list(_rsi(_frame(candles)["close"], period))


def rsi(candles: Sequence[Candle], period: int = 14) -> float | None:
    """
    相对强弱指数

    使用最近 period 个涨跌幅的简单平均，需要 period + 1 根 K 线；
    平均跌幅为 0 时返回 100。
    """
    if period < 1 or len(candles) < period + 1:
        return None
    return rsi_series(candles, period)[-1]


# ============================================
# MACD
# ============================================


def _macd_frame(
    candles: Sequence[Candle], fast: int, slow: int, signal: int
) -> pd.DataFrame:
    close = _frame(candles)["close"]
    line = _seeded_ema(close, fast) - _seeded_ema(close, slow)
    signal_line = _seeded_ema(line, signal)
    return pd.DataFrame(
        {"macd": line, "signal": signal_line, "histogram": line - signal_line}
    )


def _macd_row(row: pd.Series) -> MacdResult | None:
    if pd.isna(row["macd"]):
        return None
    return MacdResult(
        macd=float(row["macd"]),
        signal=None if pd.isna(row["signal"]) else float(row["signal"]),
        histogram=None if pd.isna(row["histogram"]) else float(row["histogram"]),
    )


def macd_series(
    candles: Sequence[Candle], fast: int = 12, slow: int = 26, signal: int = 9
) -> list[MacdResult | None]:
    """
    MACD 序列

    macd 从 slow - 1 起有值，signal / histogram 从 slow + signal - 2 起有值。
    """
    if min(fast, slow, signal) < 1 or fast >= slow:
        return [None] * len(candles)
    df = _macd_frame(candles, fast, slow, signal)
    return [_macd_row(row) for _, row in df.iterrows()]


def macd(
    candles: Sequence[Candle], fast: int = 12, slow: int = 26, signal: int = 9
) -> MacdResult | None:
    """最新 MACD"""
    if min(fast, slow, signal) < 1 or fast >= slow or len(candles) < slow:
        return None
    return macd_series(candles, fast, slow, signal)[-1]


# ============================================
# 布林带
# ============================================


def bollinger_series(
    candles: Sequence[Candle], period: int = 20, num_std: float = 2.0
) -> list[BollingerBands | None]:
    """布林带序列 (总体标准差)"""
    if period < 1:
        return [None] * len(candles)
    close = _frame(candles)["close"]
    middle = close.rolling(window=period).mean()
    std = close.rolling(window=period).std(ddof=0)
    return [
        None
        if pd.isna(m)
        else BollingerBands(upper=m + num_std * s, middle=m, lower=m - num_std * s)
        for m, s in zip(middle.tolist(), std.tolist())
    ]


def bollinger(
    candles: Sequence[Candle], period: int = 20, num_std: float = 2.0
) -> BollingerBands | None:
    """最新布林带"""
    if period < 1 or len(candles) < period:
        return None
    return bollinger_series(candles, period, num_std)[-1]


# ============================================
# ATR
# ============================================


def _atr(df: pd.DataFrame, period: int) -> pd.Series:
    prev_close = df["close"].shift(1)

    tr1 = df["high"] - df["low"]
    tr2 = (df["high"] - prev_close).abs()
    tr3 = (df["low"] - prev_close).abs()

    tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
    # 第一根没有前收盘价
    tr.iloc[:1] = np.nan
    return tr.rolling(window=period).mean()


def atr_series(candles: Sequence[Candle], period: int = 14) -> list[float | None]:
    """ATR 序列 (前 period 个位置为 None)"""
    if period < 1:
        return [None] * len(candles)
    return _to_list(_atr(_frame(candles), period))


def atr(candles: Sequence[Candle], period: int = 14) -> float | None:
    """平均真实波幅，需要 period + 1 根 K 线"""
    if period < 1 or len(candles) < period + 1:
        return None
    return atr_series(candles, period)[-1]


# ============================================
# VWAP
# ============================================


def _typical_price(df: pd.DataFrame) -> pd.Series:
    return (df["high"] + df["low"] + df["close"]) / 3


def vwap_series(
    candles: Sequence[Candle], window: int | None = None
) -> list[float | None]:
    """
    VWAP 序列

    window 为 None 时为累计 VWAP，否则为滚动窗口 VWAP；
    成交量合计为 0 的位置为 None。
    """
    if window is not None and window < 1:
        return [None] * len(candles)
    df = _frame(candles)
    pv = _typical_price(df) * df["volume"]
    if window is None:
        pv_sum = pv.cumsum()
        vol_sum = df["volume"].cumsum()
    else:
        pv_sum = pv.rolling(window=window).sum()
        vol_sum = df["volume"].rolling(window=window).sum()
    return _to_list(pv_sum / vol_sum.where(vol_sum != 0))


def _vwap_window(candles: Sequence[Candle], window: int | None) -> pd.DataFrame | None:
    """最近 window 根 K 线；window 超过总数时使用全部 K 线"""
    if not candles or (window is not None and window < 1):
        return None
    df = _frame(candles)
    return df if window is None else df.iloc[-window:]


def vwap(candles: Sequence[Candle], window: int | None = None) -> float | None:
    """
    成交量加权平均价 (典型价格)

    window 为 None 或大于 K 线总数时使用全部 K 线。
    """
    df = _vwap_window(candles, window)
    if df is None:
        return None
    volume = df["volume"].sum()
    if volume == 0:
        return None
    return float((_typical_price(df) * df["volume"]).sum() / volume)


def vwap_bands(
    candles: Sequence[Candle], window: int | None = None, num_std: float = 2.0
) -> VwapBands | None:
    """VWAP ± num_std × 典型价格相对 VWAP 的均方根偏差"""
    center = vwap(candles, window)
    if center is None:
        return None
    df = _vwap_window(candles, window)
    deviation = _typical_price(df) - center
    std = float(np.sqrt((deviation**2).mean()))
    return VwapBands(
        upper=center + num_std * std,
        vwap=center,
        lower=center - num_std * std,
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
