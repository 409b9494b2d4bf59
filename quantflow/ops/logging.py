"""
统一日志模块

使用 structlog 实现结构化日志:
- 开发环境彩色 Console 输出，生产环境 JSON 输出
- 可选 JSON 文件输出 (按大小轮转)
- 事件名使用 snake_case，上下文以键值对形式附加
- 采集周期 / 回填过程通过 contextvars 绑定上下文 (cycle、symbol 等)
"""

import logging
import logging.handlers
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from quantflow.core.config import get_settings

# 第三方库日志降级
NOISY_LOGGERS = ("ccxt", "urllib3", "aiohttp", "asyncio", "apscheduler")

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def add_timestamp(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
    """添加 ISO 格式 UTC 时间戳"""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def service_info(service_name: str) -> Processor:
    """添加服务名和运行环境"""
    env = get_settings().env.value

    def processor(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict["env"] = env
        return event_dict

    return processor


def _formatted(
    handler: logging.Handler, renderer: Processor, pre_chain: list[Processor]
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def configure_logging(
    service_name: str = "quantflow",
    log_level: str | None = None,
    log_to_file: bool = True,
) -> structlog.stdlib.BoundLogger:
    """
    配置日志系统

    Args:
        service_name: 服务名称，同时作为日志文件名
        log_level: 日志级别，默认从配置读取
        log_to_file: 是否输出到 {log_dir}/{service_name}.log

    Returns:
        配置好的 logger 实例
    """
    settings = get_settings()
    level = (log_level or settings.log_level).upper()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        service_info(service_name),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True)
        if settings.is_dev
        else structlog.processors.JSONRenderer()
    )
    handlers = [
        _formatted(
            logging.StreamHandler(sys.stdout), console_renderer, shared_processors
        )
    ]

    if log_to_file:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            settings.log_dir / f"{service_name}.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        handlers.append(
            _formatted(
                file_handler, structlog.processors.JSONRenderer(), shared_processors
            )
        )

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    return structlog.get_logger(service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取 logger 实例"""
    return structlog.get_logger(name)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """
    在当前上下文 (含其派生的 asyncio task) 内附加日志字段

    Example:
        with log_context(cycle="2024-01-15T13:00:00+00:00"):
            logger.info("tier_completed", timeframe="1h")
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


__all__ = ["configure_logging", "get_logger", "log_context"]
