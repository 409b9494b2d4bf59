"""
错误分类

- ConfigurationError: 配置错误，整个采集周期中止，不重试
- TransportError / RateLimitedError: 网络或限流错误，按退避重试
- NotFoundError: 交易对不存在，不重试
- RequestRejectedError: 请求被交易所拒绝 (参数或权限问题)，不重试
- UnsupportedExchangeError: 不支持的交易所，仅当前任务失败
- DataIntegrityError: 数据完整性问题，只通过质量报告体现，从不抛出
"""


class QuantFlowError(Exception):
    """所有业务错误的基类"""


class ConfigurationError(QuantFlowError):
    """配置错误"""


class ExchangeError(QuantFlowError):
    """交易所调用错误基类"""

    retryable: bool = False

    def __init__(self, message: str, exchange: str | None = None):
        super().__init__(message)
        self.exchange = exchange


class TransportError(ExchangeError):
    """网络传输错误 (超时、连接断开、5xx)"""

    retryable = True


class RateLimitedError(TransportError):
    """交易所限流"""

    def __init__(
        self,
        message: str,
        exchange: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, exchange)
        self.retry_after = retry_after


class NotFoundError(ExchangeError):
    """交易对或周期在交易所不存在"""


class RequestRejectedError(ExchangeError):
    """交易所拒绝请求 (认证失败、参数非法、不支持的周期等)，不重试"""


class UnsupportedExchangeError(ConfigurationError):
    """未注册适配器的交易所"""

    def __init__(self, exchange: str):
        super().__init__(f"Unsupported exchange: {exchange}")
        self.exchange = exchange


class DataIntegrityError(QuantFlowError):
    """数据完整性错误 (保留类型，质量问题通过 QualityReport 上报)"""


def is_retryable(error: BaseException) -> bool:
    """
    判断错误是否可重试

    配置类错误和 NotFound 不重试；交易所传输错误按 retryable 标记；
    其他未分类异常视为瞬时错误，允许重试。
    """
    if isinstance(error, ConfigurationError):
        return False
    if isinstance(error, ExchangeError):
        return error.retryable
    return True


__all__ = [
    "QuantFlowError",
    "ConfigurationError",
    "ExchangeError",
    "TransportError",
    "RateLimitedError",
    "NotFoundError",
    "RequestRejectedError",
    "UnsupportedExchangeError",
    "DataIntegrityError",
    "is_retryable",
]
