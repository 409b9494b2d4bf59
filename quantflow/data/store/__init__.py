"""
K 线存储

- base: CandleSink 协议
- memory_store: 内存实现
- parquet_store: Parquet 分区文件实现
"""

from .base import CandleSink
from .memory_store import MemoryCandleStore
from .parquet_store import ParquetCandleStore

__all__ = ["CandleSink", "MemoryCandleStore", "ParquetCandleStore"]
