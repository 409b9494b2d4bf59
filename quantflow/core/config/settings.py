"""
配置设置定义

使用 Pydantic Settings 实现类型安全的配置
"""

from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """运行环境"""

    DEV = "dev"
    PROD = "prod"


def split_csv(value: str) -> list[str]:
    """解析逗号分隔列表，忽略空项"""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class CollectionSettings(BaseSettings):
    """数据采集配置"""

    model_config = SettingsConfigDict(
        env_prefix="COLLECTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    symbols: str = Field(
        default="BTCUSDT,ETHUSDT,ADAUSDT",
        description="采集的交易对列表，逗号分隔",
    )
    exchanges: str = Field(
        default="kraken,kucoin", description="采集的交易所列表，逗号分隔"
    )
    max_concurrency: int = Field(default=3, ge=1, description="单个批次最大并发数")
    retry_attempts: int = Field(default=3, ge=1, description="单任务最大尝试次数")
    retry_delay_seconds: float = Field(
        default=5.0, ge=0, description="重试基础延迟 (秒)，第 N 次失败后等待 N 倍"
    )

    @property
    def symbol_list(self) -> list[str]:
        """解析为交易对列表"""
        return split_csv(self.symbols)

    @property
    def exchange_list(self) -> list[str]:
        """解析为交易所列表"""
        return split_csv(self.exchanges)


class TierSettings(BaseModel):
    """单个采集档位配置"""

    enabled: bool = True
    lookback_minutes: int = Field(ge=1, description="回看窗口 (分钟)")
    buffer_minutes: int = Field(default=2, ge=0, description="收盘安全缓冲 (分钟)")


class ScheduleSettings(BaseSettings):
    """
    采集调度配置

    环境变量示例: SCHEDULE_FOUR_HOUR__ENABLED=false
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    one_minute: TierSettings = TierSettings(lookback_minutes=5, buffer_minutes=2)
    five_minute: TierSettings = TierSettings(lookback_minutes=15, buffer_minutes=2)
    fifteen_minute: TierSettings = TierSettings(
        lookback_minutes=30, buffer_minutes=2
    )
    thirty_minute: TierSettings = TierSettings(
        enabled=False, lookback_minutes=60, buffer_minutes=2
    )
    one_hour: TierSettings = TierSettings(lookback_minutes=120, buffer_minutes=5)
    four_hour: TierSettings = TierSettings(lookback_minutes=480, buffer_minutes=10)
    one_day: TierSettings = TierSettings(lookback_minutes=2880, buffer_minutes=15)
    one_week: TierSettings = TierSettings(
        enabled=False, lookback_minutes=20160, buffer_minutes=15
    )

    tier_pause_seconds: float = Field(
        default=2.0, ge=0, description="档位之间的暂停秒数 (限流保护)"
    )


class ExchangeSettings(BaseModel):
    """单个交易所配置"""

    enabled: bool = True
    rate_limit_per_minute: int = Field(default=60, ge=1)
    sandbox: bool = False
    max_candles_per_request: int = Field(default=720, ge=1)


class Settings(BaseSettings):
    """主配置类"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # 环境
    env: Environment = Field(default=Environment.DEV, description="运行环境")

    # 数据目录
    data_dir: Path = Field(default=Path("./data"), description="数据根目录")
    log_dir: Path = Field(default=Path("./logs"), description="日志目录")

    # 日志
    log_level: str = Field(default="INFO", description="日志级别")

    # 子配置
    collection: CollectionSettings = Field(default_factory=CollectionSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    kraken: ExchangeSettings = Field(
        default_factory=lambda: ExchangeSettings(
            rate_limit_per_minute=180, max_candles_per_request=720
        )
    )
    kucoin: ExchangeSettings = Field(
        default_factory=lambda: ExchangeSettings(
            rate_limit_per_minute=300, max_candles_per_request=1500
        )
    )

    @property
    def is_prod(self) -> bool:
        """是否为生产环境"""
        return self.env == Environment.PROD

    @property
    def is_dev(self) -> bool:
        """是否为开发环境"""
        return self.env == Environment.DEV

    @property
    def parquet_dir(self) -> Path:
        """Parquet 存储目录"""
        return self.data_dir / "parquet"

    def exchange_settings(self, name: str) -> ExchangeSettings:
        """按交易所名称获取配置"""
        return getattr(self, name.lower())

    def ensure_dirs(self) -> None:
        """确保必要目录存在"""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """
    获取配置单例

    使用 lru_cache 确保配置只加载一次

    Returns:
        Settings: 配置实例
    """
    return Settings()
