"""
行情数据服务集成测试

覆盖范围：
  - MarketDataService：缓存 → 限流队列 → 解析 → 平滑 → 写缓存
  - 失败时缓存保持不变
  - FastAPI 路由（TestClient + httpx.MockTransport，无需真实上游）
"""

import asyncio
import json
import os
import sys
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from trend_service.errors import ParseFailure, RateLimited, RequestFailed
from trend_service.layers.acquisition import CoinGeckoClient
from trend_service.layers.analysis import AnalysisLayer
from trend_service.layers.cache import CacheLayer, FileCacheMedium
from trend_service.layers.processing import ProcessingLayer
from trend_service.layers.rate_limiter import RequestQueue
from trend_service.services.market_service import MarketDataService


# ─────────────────────────────────────────────────────────
# 模拟 CoinGecko
# ─────────────────────────────────────────────────────────

_DAY_MS = 86_400_000
_START_MS = 1_700_000_000_000

_COINS = [
    {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "image": "https://img/btc.png", "current_price": 67000.0},
    {"id": "ethereum", "symbol": "eth", "name": "Ethereum", "image": "https://img/eth.png", "current_price": 3500.0},
    {"id": "solana", "symbol": "sol", "name": "Solana", "image": "https://img/sol.png", "current_price": 150.0},
]


def _chart(days: int, base: float = 30000.0) -> dict:
    return {
        "prices": [[_START_MS + i * _DAY_MS, base + (i % 11) * 37.25 + i * 0.5] for i in range(days)],
        "market_caps": [],
        "total_volumes": [],
    }


class FakeCoinGecko:
    """按路径返回固定数据，可指定个别币种返回错误状态"""

    def __init__(self, failures=None, coins_status=200):
        self.requests = []
        self.failures = failures or {}
        self.coins_status = coins_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/coins/markets"):
            if self.coins_status != 200:
                return httpx.Response(self.coins_status)
            return httpx.Response(200, json=_COINS)
        coin_id = path.split("/")[-2]
        if coin_id in self.failures:
            status, body = self.failures[coin_id]
            return httpx.Response(status, content=body)
        days = int(request.url.params["days"])
        return httpx.Response(200, json=_chart(days))

    def chart_requests(self):
        return [r for r in self.requests if r.url.path.endswith("/market_chart")]


def _build_service(tmp_path, upstream, min_interval: float = 0.0) -> MarketDataService:
    return MarketDataService(
        cache=CacheLayer(medium=FileCacheMedium(str(tmp_path)), freshness_seconds=6 * 60 * 60),
        queue=RequestQueue(min_interval=min_interval),
        client=CoinGeckoClient(
            base_url="https://api.test/api/v3",
            transport=httpx.MockTransport(upstream),
        ),
        processor=ProcessingLayer(),
        analysis=AnalysisLayer(period=30, seed_policy="first_price"),
    )


# ─────────────────────────────────────────────────────────
# 1. 服务层测试
# ─────────────────────────────────────────────────────────

class TestMarketDataService:
    def test_history_cold_then_warm(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)

        async def scenario():
            first = await svc.get_coin_history("bitcoin", 365)
            second = await svc.get_coin_history("bitcoin", 365)
            return first, second

        first, second = asyncio.run(scenario())
        assert len(first) == 365
        assert len(upstream.chart_requests()) == 1
        assert second == first
        assert first[0].ema == first[0].price
        assert svc.queue.stats()["dispatched"] == 1

    def test_history_request_params(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)
        asyncio.run(svc.get_coin_history("ethereum", 90))
        request = upstream.chart_requests()[0]
        assert request.url.path == "/api/v3/coins/ethereum/market_chart"
        assert request.url.params["days"] == "90"
        assert request.url.params["interval"] == "daily"
        assert request.url.params["vs_currency"] == "usd"

    def test_history_default_days(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)
        history = asyncio.run(svc.get_coin_history("bitcoin"))
        assert len(history) == 365
        assert os.path.exists(tmp_path / "history_bitcoin_365.json")

    def test_history_matches_transform(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)
        history = asyncio.run(svc.get_coin_history("bitcoin", 60))
        raw = json.dumps(_chart(60)).encode()
        expected = AnalysisLayer(period=30).smooth(ProcessingLayer().parse_price_series(raw))
        assert history == expected

    def test_different_days_are_separate_entries(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)

        async def scenario():
            await svc.get_coin_history("bitcoin", 30)
            await svc.get_coin_history("bitcoin", 365)

        asyncio.run(scenario())
        assert len(upstream.chart_requests()) == 2

    def test_coin_list_cached(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)

        async def scenario():
            return await svc.get_coin_list(), await svc.get_coin_list()

        first, second = asyncio.run(scenario())
        assert [c.id for c in first] == ["bitcoin", "ethereum", "solana"]
        assert second == first
        assert len(upstream.requests) == 1

    def test_rate_limited_leaves_cache_untouched(self, tmp_path):
        upstream = FakeCoinGecko(failures={"bitcoin": (429, b"")})
        svc = _build_service(tmp_path, upstream)
        with pytest.raises(RateLimited):
            asyncio.run(svc.get_coin_history("bitcoin", 365))
        assert os.listdir(tmp_path) == []

    def test_parse_failure_leaves_cache_untouched(self, tmp_path):
        upstream = FakeCoinGecko(failures={"bitcoin": (200, b'{"prices": "nope"}')})
        svc = _build_service(tmp_path, upstream)
        with pytest.raises(ParseFailure):
            asyncio.run(svc.get_coin_history("bitcoin", 365))
        assert os.listdir(tmp_path) == []

    def test_coin_list_failure(self, tmp_path):
        upstream = FakeCoinGecko(coins_status=503)
        svc = _build_service(tmp_path, upstream)
        with pytest.raises(RequestFailed) as info:
            asyncio.run(svc.get_coin_list())
        assert info.value.status == 503
        assert os.listdir(tmp_path) == []

    def test_failure_then_success_fetches_again(self, tmp_path):
        upstream = FakeCoinGecko(failures={"bitcoin": (429, b"")})
        svc = _build_service(tmp_path, upstream)
        with pytest.raises(RateLimited):
            asyncio.run(svc.get_coin_history("bitcoin", 365))
        upstream.failures.clear()
        history = asyncio.run(svc.get_coin_history("bitcoin", 365))
        assert len(history) == 365
        assert len(upstream.chart_requests()) == 2

    def test_corrupted_cache_refetches(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)
        asyncio.run(svc.cache.set("history_bitcoin_365", [{"unexpected": True}]))
        history = asyncio.run(svc.get_coin_history("bitcoin", 365))
        assert len(history) == 365
        assert len(upstream.chart_requests()) == 1

    def test_calm_prices_isolate_failures(self, tmp_path):
        upstream = FakeCoinGecko(failures={"ethereum": (429, b"")})
        svc = _build_service(tmp_path, upstream)
        prices = asyncio.run(svc.get_calm_prices())
        by_id = {p.coin_id: p.calm_price for p in prices}
        assert list(by_id) == ["bitcoin", "ethereum", "solana"]
        assert by_id["ethereum"] is None
        assert by_id["bitcoin"] is not None
        assert by_id["solana"] is not None

    def test_calm_price_is_latest_ema(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream)

        async def scenario():
            history = await svc.get_coin_history("bitcoin", 365)
            calm = await svc.get_calm_price("bitcoin", 365)
            return history, calm

        history, calm = asyncio.run(scenario())
        assert calm.calm_price == history[-1].ema
        assert len(upstream.chart_requests()) == 1

    def test_concurrent_requests_are_spaced(self, tmp_path):
        upstream = FakeCoinGecko()
        svc = _build_service(tmp_path, upstream, min_interval=0.05)

        async def scenario():
            await asyncio.gather(
                svc.get_coin_history("bitcoin", 30),
                svc.get_coin_history("ethereum", 30),
                svc.get_coin_history("solana", 30),
            )

        asyncio.run(scenario())
        assert [r.url.path.split("/")[-2] for r in upstream.chart_requests()] == [
            "bitcoin", "ethereum", "solana",
        ]
        assert svc.queue.stats()["total_wait_seconds"] > 0


# ─────────────────────────────────────────────────────────
# 2. HTTP 路由测试
# ─────────────────────────────────────────────────────────

@pytest.fixture
def upstream():
    return FakeCoinGecko()


@pytest.fixture
def client(tmp_path, upstream):
    svc = _build_service(tmp_path, upstream)
    with patch("trend_service.routers.coins.get_market_service", return_value=svc), \
         patch("trend_service.routers.cache.get_market_service", return_value=svc), \
         patch("trend_service.routers.health.get_market_service", return_value=svc):
        from trend_service.main import app
        with TestClient(app) as c:
            yield c


class TestRoutes:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "ok"

    def test_readyz(self, client, tmp_path):
        resp = client.get("/readyz")
        assert resp.status_code == 200
        assert resp.json() == {"ready": True}
        # 就绪检查不留下标记文件
        assert not any(name.endswith(".json") for name in os.listdir(tmp_path))

    def test_readyz_unavailable_cache(self, client, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")
        svc = _build_service(blocker, FakeCoinGecko())
        with patch("trend_service.routers.health.get_market_service", return_value=svc):
            resp = client.get("/readyz")
            assert resp.status_code == 503
            assert resp.json() == {"ready": False}
            body = client.get("/health").json()
        assert body["data"]["status"] == "degraded"
        assert body["data"]["cache_ready"] is False

    def test_root(self, client):
        body = client.get("/").json()
        assert "version" in body

    def test_list_coins(self, client):
        resp = client.get("/api/coins")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["count"] == 3
        assert body["data"]["coins"][0]["id"] == "bitcoin"

    def test_history(self, client, upstream):
        resp = client.get("/api/coins/bitcoin/history", params={"days": 365})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert len(data["history"]) == 365
        assert data["summary"]["count"] == 365
        assert data["history"][0]["ema"] == data["history"][0]["price"]
        client.get("/api/coins/bitcoin/history", params={"days": 365})
        assert len(upstream.chart_requests()) == 1

    def test_history_invalid_days(self, client):
        resp = client.get("/api/coins/bitcoin/history", params={"days": 0})
        assert resp.status_code == 422

    def test_history_rate_limited(self, client, upstream):
        upstream.failures["bitcoin"] = (429, b"")
        resp = client.get("/api/coins/bitcoin/history")
        assert resp.status_code == 429
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "RateLimited"

    def test_history_upstream_error(self, client, upstream):
        upstream.failures["bitcoin"] = (500, b"boom")
        resp = client.get("/api/coins/bitcoin/history")
        assert resp.status_code == 502
        assert resp.json()["error"] == "RequestFailed"

    def test_calm_price(self, client):
        resp = client.get("/api/coins/solana/calm-price")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["coin_id"] == "solana"
        assert data["calm_price"] is not None

    def test_calm_prices(self, client):
        resp = client.get("/api/coins/calm-prices")
        assert resp.status_code == 200
        ids = [p["coin_id"] for p in resp.json()["data"]["calm_prices"]]
        assert ids == ["bitcoin", "ethereum", "solana"]

    def test_cache_stats_and_clear(self, client, upstream):
        client.get("/api/coins")
        stats = client.get("/api/cache/stats").json()["data"]
        assert stats["entries"] == 1
        resp = client.post("/api/cache/clear", json={"key": "coins_list"})
        assert resp.status_code == 200
        client.get("/api/coins")
        assert len(upstream.requests) == 2

    def test_queue_stats(self, client):
        client.get("/api/coins")
        data = client.get("/api/queue/stats").json()["data"]
        assert data["ema_period"] == 30
        assert data["seed_policy"] == "first_price"
        assert data["queue"]["dispatched"] == 1
