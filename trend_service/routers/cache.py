"""
缓存与队列管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 删除指定缓存键
GET  /api/queue/stats     - 限流队列状态
"""

from fastapi import APIRouter
from pydantic import BaseModel

from trend_service.models.response import ApiResponse
from trend_service.services.market_service import get_market_service

router = APIRouter(prefix="/api", tags=["缓存管理"])


class ClearRequest(BaseModel):
    key: str


@router.get("/cache/stats", response_model=ApiResponse)
async def cache_stats():
    """获取缓存统计信息"""
    stats = await get_market_service().cache.stats()
    return ApiResponse.ok(data=stats)


@router.post("/cache/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest):
    """删除指定键的缓存条目"""
    await get_market_service().cache.delete(body.key)
    return ApiResponse.ok(message=f"缓存已清理: {body.key}")


@router.get("/queue/stats", response_model=ApiResponse)
async def queue_stats():
    """限流队列与趋势参数"""
    return ApiResponse.ok(data=get_market_service().describe())
