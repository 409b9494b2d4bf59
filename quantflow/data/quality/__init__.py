"""
数据质量

- validators: 缺口检测、质量报告、基于存储的检查器
- backfill: 缺口回填
"""

from .backfill import BackfillResult, GapBackfiller
from .validators import (
    CompleteDataResult,
    DataQualityChecker,
    QualityReport,
    detect_gaps,
    validate_quality,
)

__all__ = [
    "BackfillResult",
    "GapBackfiller",
    "CompleteDataResult",
    "DataQualityChecker",
    "QualityReport",
    "detect_gaps",
    "validate_quality",
]
