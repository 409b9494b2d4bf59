"""
Parquet K 线存储

分区规则: {base}/{exchange}/{BASE}_{QUOTE}/{timeframe}/year={YYYY}/month={MM}/data.parquet

特性:
- 按交易所/品种/时间框架/年月分区
- 写入时与已有分区合并，相同时间戳保留新数据
- 查询结果为 Candle 列表，按时间升序
"""

from collections import defaultdict
from collections.abc import Iterator, Sequence
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from quantflow.core.candle import Candle
from quantflow.core.config import get_settings
from quantflow.core.instruments import Exchange, normalize_symbol
from quantflow.core.timeframes import Timeframe, ensure_utc
from quantflow.ops.logging import get_logger

logger = get_logger(__name__)

COLUMNS = [
    "timestamp",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "vwap",
    "trade_count",
    "bid",
    "ask",
]


def _iter_months(start: datetime, end: datetime) -> Iterator[tuple[int, int]]:
    """遍历 [start, end] 覆盖的 (年, 月)"""
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        yield year, month
        month += 1
        if month > 12:
            year, month = year + 1, 1


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or pd.isna(value):
        return None
    return Decimal(str(value))


class ParquetCandleStore:
    """Parquet K 线存储"""

    # Parquet schema 定义
    OHLCV_SCHEMA = pa.schema(
        [
            ("timestamp", pa.timestamp("us", tz="UTC")),
            ("open", pa.float64()),
            ("high", pa.float64()),
            ("low", pa.float64()),
            ("close", pa.float64()),
            ("volume", pa.float64()),
            ("vwap", pa.float64()),
            ("trade_count", pa.int64()),
            ("bid", pa.float64()),
            ("ask", pa.float64()),
        ]
    )

    def __init__(self, base_path: Path | str | None = None):
        """
        初始化 Parquet 存储

        Args:
            base_path: 数据存储根目录，默认使用配置中的路径
        """
        self.base_path = (
            Path(base_path) if base_path else get_settings().parquet_dir
        )
        self.base_path.mkdir(parents=True, exist_ok=True)

        logger.info(
            "parquet_store_initialized",
            base_path=str(self.base_path),
        )

    def _get_instrument_path(
        self, symbol: str, exchange: Exchange, timeframe: Timeframe
    ) -> Path:
        """{base}/{exchange}/{BASE}_{QUOTE}/{timeframe}"""
        return (
            self.base_path
            / exchange.value
            / normalize_symbol(symbol).replace("/", "_")
            / timeframe.value
        )

    def _get_parquet_path(
        self,
        symbol: str,
        exchange: Exchange,
        timeframe: Timeframe,
        year: int,
        month: int,
    ) -> Path:
        """获取分区文件路径"""
        return (
            self._get_instrument_path(symbol, exchange, timeframe)
            / f"year={year:04d}"
            / f"month={month:02d}"
            / "data.parquet"
        )

    @staticmethod
    def _to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
        records = []
        for candle in candles:
            row = candle.to_dict()
            records.append({col: row[col] for col in COLUMNS})
        df = pd.DataFrame(records, columns=COLUMNS)
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        df["trade_count"] = df["trade_count"].astype("Int64")
        return df

    def _write_partition(self, path: Path, df: pd.DataFrame) -> None:
        if path.exists():
            existing_df = pd.read_parquet(path)
            existing_df["trade_count"] = existing_df["trade_count"].astype("Int64")
            df = pd.concat([existing_df, df], ignore_index=True)

        # 合并并去重（保留新数据）
        df = df.drop_duplicates(subset=["timestamp"], keep="last")
        df = df.sort_values("timestamp").reset_index(drop=True)

        path.parent.mkdir(parents=True, exist_ok=True)
        table = pa.Table.from_pandas(
            df, schema=self.OHLCV_SCHEMA, preserve_index=False
        )
        pq.write_table(table, path, compression="snappy")

    def store_candles(self, candles: Sequence[Candle]) -> int:
        """
        写入 K 线

        Args:
            candles: K 线列表，可混合多个品种/周期

        Returns:
            写入 (新增或覆盖) 的条数，同一批次内重复时间戳只计一次
        """
        if not candles:
            return 0

        groups: dict[tuple[str, Exchange, Timeframe], list[Candle]] = defaultdict(list)
        for candle in candles:
            groups[(candle.symbol, candle.exchange, candle.timeframe)].append(candle)

        total_written = 0

        for (symbol, exchange, timeframe), group in groups.items():
            df = self._to_frame(group)
            df = df.drop_duplicates(subset=["timestamp"], keep="last")

            for (year, month), month_df in df.groupby(
                [df["timestamp"].dt.year, df["timestamp"].dt.month]
            ):
                path = self._get_parquet_path(
                    symbol, exchange, timeframe, int(year), int(month)
                )
                self._write_partition(path, month_df)
                total_written += len(month_df)

                logger.debug(
                    "parquet_partition_written",
                    symbol=symbol,
                    exchange=exchange.value,
                    timeframe=timeframe.value,
                    year=int(year),
                    month=int(month),
                    rows=len(month_df),
                )

        logger.info("parquet_write_complete", total_rows=total_written)
        return total_written

    def query_candles(
        self,
        symbol: str,
        exchange: Exchange,
        timeframe: Timeframe,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """
        查询 K 线

        Args:
            symbol: 交易对
            exchange: 交易所
            timeframe: 时间框架
            start: 开始时间（包含）
            end: 结束时间（包含）

        Returns:
            按时间升序的 K 线列表
        """
        start = ensure_utc(start)
        end = ensure_utc(end)
        if end < start:
            return []

        frames = []
        for year, month in _iter_months(start, end):
            path = self._get_parquet_path(symbol, exchange, timeframe, year, month)
            if path.exists():
                frames.append(pd.read_parquet(path))

        if not frames:
            logger.debug(
                "parquet_partition_not_found",
                symbol=symbol,
                exchange=exchange.value,
                timeframe=timeframe.value,
            )
            return []

        df = pd.concat(frames, ignore_index=True)
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        df = df[(df["timestamp"] >= start) & (df["timestamp"] <= end)]
        df = df.sort_values("timestamp")

        return [
            Candle(
                symbol=symbol,
                exchange=exchange,
                timeframe=timeframe,
                timestamp=row.timestamp.to_pydatetime(),
                open=Decimal(str(row.open)),
                high=Decimal(str(row.high)),
                low=Decimal(str(row.low)),
                close=Decimal(str(row.close)),
                volume=Decimal(str(row.volume)),
                vwap=_optional_decimal(row.vwap),
                trade_count=None if pd.isna(row.trade_count) else int(row.trade_count),
                bid=_optional_decimal(row.bid),
                ask=_optional_decimal(row.ask),
            )
            for row in df.itertuples(index=False)
        ]


__all__ = ["ParquetCandleStore"]
