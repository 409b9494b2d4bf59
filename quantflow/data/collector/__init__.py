"""
数据采集

- orchestrator: 并发采集编排、重试与取消
"""

from .orchestrator import (
    CancellationToken,
    CollectionBatch,
    CollectionOrchestrator,
    RetryPolicy,
    TaskFailure,
    TaskOutcome,
    TaskSuccess,
)

__all__ = [
    "CancellationToken",
    "CollectionBatch",
    "CollectionOrchestrator",
    "RetryPolicy",
    "TaskFailure",
    "TaskOutcome",
    "TaskSuccess",
]
