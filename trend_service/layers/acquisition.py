"""
Layer 1 – 数据获取层
对 CoinGecko 发起单次 HTTP 请求并分类响应，不做任何重试：
  429        → RateLimited
  其他非 2xx → RequestFailed
  网络异常    → TransportError
  成功       → 原始响应字节（由处理层解析）
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from trend_service.config import settings
from trend_service.errors import RateLimited, RequestFailed, TransportError

logger = logging.getLogger(__name__)


class CoinGeckoClient:
    """CoinGecko 公共 API 客户端（无需认证）"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.COINGECKO_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    # ── 端点 ──────────────────────────────────────────────

    def markets_url(self) -> str:
        return f"{self.base_url}/coins/markets"

    def markets_params(self) -> Dict[str, Any]:
        """市值排名前 N 的币种"""
        return {
            "vs_currency": settings.VS_CURRENCY,
            "order": "market_cap_desc",
            "per_page": settings.TOP_COINS_LIMIT,
            "page": 1,
            "sparkline": "false",
        }

    def market_chart_url(self, coin_id: str) -> str:
        # 币种 ID 整体作为一个路径段，防止 ?、/ 等字符改写请求路径
        return f"{self.base_url}/coins/{quote(coin_id, safe='')}/market_chart"

    def market_chart_params(self, days: int) -> Dict[str, Any]:
        return {
            "vs_currency": settings.VS_CURRENCY,
            "days": days,
            "interval": "daily",
        }

    # ── 请求 ──────────────────────────────────────────────

    async def fetch(self, url: str, params: Optional[Dict[str, Any]] = None) -> bytes:
        """发起一次 GET 请求，返回原始响应体"""
        try:
            response = await self._get_client().get(url, params=params)
        except httpx.HTTPError as exc:
            logger.warning(f"请求 {url} 网络失败: {exc!r}")
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == 429:
            logger.warning(f"CoinGecko 429 限流: {url}")
            raise RateLimited(status=429)

        if not response.is_success:
            message = response.reason_phrase or response.text[:200]
            logger.warning(f"请求 {url} 失败: HTTP {response.status_code} {message}")
            raise RequestFailed(response.status_code, message)

        logger.debug(f"请求成功 {url}（{len(response.content)} 字节）")
        return response.content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ── 模块级别单例 ──────────────────────────────────────────
_client: Optional[CoinGeckoClient] = None


def get_coingecko_client() -> CoinGeckoClient:
    global _client
    if _client is None:
        _client = CoinGeckoClient()
    return _client
