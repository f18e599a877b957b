"""
行情数据服务
整合缓存、限流队列、数据获取、处理、分析各层，对外提供两个读取接口：
  get_coin_list    市值前 N 币种列表
  get_coin_history 单币种历史价格 + EMA 趋势

流程：查缓存 → 未命中则经限流队列请求上游 → 解析 → 平滑 → 写缓存。
失败时不写缓存，错误以 FetchError 子类抛给调用方，不自动重试。
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from trend_service.config import settings
from trend_service.errors import FetchError
from trend_service.layers.acquisition import CoinGeckoClient, get_coingecko_client
from trend_service.layers.analysis import AnalysisLayer, get_analysis_layer
from trend_service.layers.cache import (
    COINS_LIST_KEY,
    CacheLayer,
    get_cache_layer,
    make_history_key,
)
from trend_service.layers.processing import ProcessingLayer, get_processing_layer
from trend_service.layers.rate_limiter import RequestQueue, get_request_queue
from trend_service.models.market import CalmPrice, CoinSummary, TrendPoint

logger = logging.getLogger(__name__)


class MarketDataService:
    """行情数据业务服务"""

    def __init__(
        self,
        cache: Optional[CacheLayer] = None,
        queue: Optional[RequestQueue] = None,
        client: Optional[CoinGeckoClient] = None,
        processor: Optional[ProcessingLayer] = None,
        analysis: Optional[AnalysisLayer] = None,
    ):
        self._cache = cache or get_cache_layer()
        self._queue = queue or get_request_queue()
        self._client = client or get_coingecko_client()
        self._proc = processor or get_processing_layer()
        self._analysis = analysis or get_analysis_layer()

    @property
    def queue(self) -> RequestQueue:
        return self._queue

    @property
    def cache(self) -> CacheLayer:
        return self._cache

    async def _cached_models(self, key: str, model) -> Optional[list]:
        """读取缓存并还原为模型列表；结构不符视为未命中"""
        cached = await self._cache.get(key)
        if cached is None:
            return None
        try:
            return [model.model_validate(item) for item in cached]
        except (ValidationError, TypeError) as exc:
            logger.debug(f"缓存内容结构不符，重新获取 {key}: {exc}")
            return None

    async def _queued_fetch(self, url: str, params: dict) -> bytes:
        return await self._queue.run(lambda: self._client.fetch(url, params))

    # ── 币种列表 ──────────────────────────────────────────

    async def get_coin_list(self) -> List[CoinSummary]:
        """获取市值排名前 N 的币种（与历史数据共用限流队列）"""
        cached = await self._cached_models(COINS_LIST_KEY, CoinSummary)
        if cached is not None:
            return cached

        raw = await self._queued_fetch(self._client.markets_url(), self._client.markets_params())
        coins = self._proc.parse_coin_list(raw)
        logger.info(f"币种列表获取成功，共 {len(coins)} 个")

        await self._cache.set(COINS_LIST_KEY, [c.model_dump() for c in coins])
        return coins

    # ── 历史趋势 ──────────────────────────────────────────

    async def get_coin_history(self, coin_id: str, days: Optional[int] = None) -> List[TrendPoint]:
        """
        获取单个币种的历史价格及 EMA 趋势

        Args:
            coin_id: CoinGecko 币种 ID，如 bitcoin
            days: 回溯天数，默认 365
        """
        if days is None:
            days = settings.HISTORY_DEFAULT_DAYS
        key = make_history_key(coin_id, days)
        cached = await self._cached_models(key, TrendPoint)
        if cached is not None:
            return cached

        raw = await self._queued_fetch(
            self._client.market_chart_url(coin_id),
            self._client.market_chart_params(days),
        )
        series = self._proc.parse_price_series(raw)
        trend = self._analysis.smooth(series)
        logger.info(f"{coin_id} 历史数据获取成功（{days} 天），共 {len(trend)} 个点")

        await self._cache.set(key, [p.model_dump() for p in trend])
        return trend

    # ── Calm Price ────────────────────────────────────────

    async def get_calm_price(self, coin_id: str, days: Optional[int] = None) -> CalmPrice:
        """单个币种的 Calm Price（最新 EMA）"""
        history = await self.get_coin_history(coin_id, days)
        return CalmPrice(coin_id=coin_id, calm_price=self._analysis.calm_price(history))

    async def get_calm_prices(self) -> List[CalmPrice]:
        """
        依次获取所有币种的 Calm Price

        单个币种失败不影响其他币种，失败项 calm_price 为 None
        """
        coins = await self.get_coin_list()
        results: List[CalmPrice] = []
        for coin in coins:
            try:
                results.append(await self.get_calm_price(coin.id))
            except FetchError as exc:
                logger.warning(f"{coin.id} Calm Price 获取失败: {exc}")
                results.append(CalmPrice(coin_id=coin.id))
        return results

    def describe(self) -> Dict[str, Any]:
        return {
            "ema_period": self._analysis.period,
            "seed_policy": self._analysis.seed_policy,
            "queue": self._queue.stats(),
        }


# ── 模块级别单例 ──────────────────────────────────────────
_market_service: Optional[MarketDataService] = None


def get_market_service() -> MarketDataService:
    global _market_service
    if _market_service is None:
        _market_service = MarketDataService()
    return _market_service
