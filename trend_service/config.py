"""
趋势数据服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class TrendServiceSettings(BaseSettings):
    """趋势数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8001)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 上游数据源 ────────────────────────────────────────
    COINGECKO_BASE_URL: str = Field(default="https://api.coingecko.com/api/v3")
    VS_CURRENCY: str = Field(default="usd")
    TOP_COINS_LIMIT: int = Field(default=10)
    HTTP_TIMEOUT: float = Field(default=30.0)       # 单次请求超时（秒）

    # ── 限流队列 ──────────────────────────────────────────
    MIN_REQUEST_INTERVAL_MS: int = Field(default=1200)  # 相邻两次派发的最小间隔

    # ── Redis 配置（可选，支持服务发现） ──────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=False)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 缓存配置 ──────────────────────────────────────────
    CACHE_FRESHNESS_SECONDS: int = Field(default=6 * 60 * 60)  # 新鲜度窗口 6 小时
    CACHE_DIR: str = Field(default="./cache")                  # 文件缓存目录

    # ── 趋势计算 ──────────────────────────────────────────
    EMA_PERIOD: int = Field(default=30)
    EMA_SEED_POLICY: str = Field(default="first_price")  # first_price / sma
    HISTORY_DEFAULT_DAYS: int = Field(default=365)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")

    @property
    def MIN_REQUEST_INTERVAL(self) -> float:
        """最小请求间隔（秒）"""
        return self.MIN_REQUEST_INTERVAL_MS / 1000.0


@lru_cache
def get_settings() -> TrendServiceSettings:
    """获取全局配置（单例）"""
    return TrendServiceSettings()


settings = get_settings()
