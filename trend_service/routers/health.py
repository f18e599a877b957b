"""健康检查路由：/health 汇总状态，/healthz 存活，/readyz 就绪（缓存介质可用）"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from trend_service import __version__
from trend_service.db import check_health
from trend_service.services.market_service import get_market_service

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health():
    svc = get_market_service()
    cache_ready = await svc.cache.ready()
    return {
        "success": True,
        "data": {
            "status": "ok" if cache_ready else "degraded",
            "version": __version__,
            "timestamp": int(time.time()),
            "cache_ready": cache_ready,
            "queue_pending": svc.queue.pending,
            "databases": await check_health(),
        },
        "message": "服务运行正常" if cache_ready else "缓存介质不可用",
    }


@router.get("/healthz")
async def healthz():
    """进程存活即返回"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """缓存介质不可写时返回 503，负载均衡据此摘除实例"""
    ready = await get_market_service().cache.ready()
    if not ready:
        return JSONResponse(status_code=503, content={"ready": False})
    return {"ready": True}
