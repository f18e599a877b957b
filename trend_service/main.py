"""
Calm Price 趋势数据服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn trend_service.main:app --host 0.0.0.0 --port 8001
    python -m trend_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trend_service import __version__
from trend_service.config import settings
from trend_service.db import init_redis, close_connections
from trend_service.layers.acquisition import get_coingecko_client
from trend_service.routers import health, coins, cache

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Calm Price TrendService v{__version__} 启动中")
    logger.info(f"   Upstream  : {settings.COINGECKO_BASE_URL}")
    logger.info(f"   Interval  : {settings.MIN_REQUEST_INTERVAL_MS}ms")
    logger.info(f"   EMA       : N={settings.EMA_PERIOD}, seed={settings.EMA_SEED_POLICY}")
    logger.info("=" * 60)

    # Redis 可选，失败不阻断启动
    if await init_redis():
        logger.info("✅ 缓存介质: Redis")
    else:
        logger.info(f"缓存介质: 本地文件 {settings.CACHE_DIR}")

    yield

    logger.info("🔄 趋势数据服务正在关闭...")
    await get_coingecko_client().aclose()
    await close_connections()
    logger.info("✅ 趋势数据服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Calm Price 趋势数据服务",
    description=(
        "从 CoinGecko 获取市值前列币种的价格序列，计算 30 日 EMA 趋势：\n"
        "- 📊 币种列表与历史价格\n"
        "- 📈 EMA 平滑（Calm Price）\n"
        "- 🚦 FIFO 限流队列，避免触发上游 429\n"
        "- 🗄️ 6 小时新鲜度缓存（Redis / 文件）\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 单次上游请求与响应分类\n"
        "Cache Layer        ← 带新鲜度窗口的缓存\n"
        "Rate Limiter       ← 串行派发，最小请求间隔\n"
        "Processing Layer   ← JSON 解析与校验\n"
        "Analysis Layer     ← EMA 趋势平滑\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(coins.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Calm Price TrendService",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "trend_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
