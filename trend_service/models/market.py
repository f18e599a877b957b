"""行情数据模型：币种摘要、价格点、趋势点、缓存条目"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class CoinSummary(BaseModel):
    """市值排行中的单个币种"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    symbol: str
    name: str
    image: str
    current_price: Optional[float] = None


class PricePoint(BaseModel):
    """上游原始价格点（时间戳为毫秒）"""
    model_config = ConfigDict(frozen=True)

    timestamp: int
    price: float


class TrendPoint(BaseModel):
    """平滑后的趋势点，与 PricePoint 按下标一一对应"""
    model_config = ConfigDict(frozen=True)

    timestamp: int
    price: float
    ema: Optional[float] = None


class CalmPrice(BaseModel):
    """币种的 Calm Price（最新 EMA，不可用时回退为最新价格）"""
    model_config = ConfigDict(frozen=True)

    coin_id: str
    calm_price: Optional[float] = None


class CacheEntry(BaseModel):
    """缓存介质中保存的 JSON 信封：{data, timestamp}"""

    data: Any
    timestamp: float
