"""
币种行情路由
GET /api/coins                          - 市值前 N 币种列表
GET /api/coins/calm-prices              - 所有币种的 Calm Price
GET /api/coins/{coin_id}/history        - 历史价格 + EMA 趋势
GET /api/coins/{coin_id}/calm-price     - 单币种 Calm Price
"""

from typing import Optional

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from trend_service.errors import FetchError, RateLimited
from trend_service.layers.processing import get_processing_layer
from trend_service.models.response import ApiResponse
from trend_service.services.market_service import get_market_service

router = APIRouter(prefix="/api/coins", tags=["币种行情"])


def _error_response(exc: FetchError) -> JSONResponse:
    """上游限流透传 429，其余获取失败视为网关错误"""
    if isinstance(exc, RateLimited):
        code = status.HTTP_429_TOO_MANY_REQUESTS
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=code, content=ApiResponse.from_error(exc).model_dump())


@router.get("", response_model=ApiResponse)
async def list_coins():
    """获取市值排名前 N 的币种"""
    try:
        coins = await get_market_service().get_coin_list()
    except FetchError as exc:
        return _error_response(exc)
    return ApiResponse.ok(
        data={"count": len(coins), "coins": [c.model_dump() for c in coins]},
    )


@router.get("/calm-prices", response_model=ApiResponse)
async def list_calm_prices():
    """依次获取所有币种的 Calm Price（单个失败时该项为 null）"""
    try:
        prices = await get_market_service().get_calm_prices()
    except FetchError as exc:
        return _error_response(exc)
    return ApiResponse.ok(data={"calm_prices": [p.model_dump() for p in prices]})


@router.get("/{coin_id}/history", response_model=ApiResponse)
async def coin_history(
    coin_id: str,
    days: Optional[int] = Query(default=None, ge=1, description="回溯天数，默认 365"),
):
    """获取历史价格与 EMA 趋势"""
    try:
        history = await get_market_service().get_coin_history(coin_id, days)
    except FetchError as exc:
        return _error_response(exc)
    return ApiResponse.ok(
        data={
            "coin_id": coin_id,
            "summary": get_processing_layer().summarize(history),
            "history": [p.model_dump() for p in history],
        },
    )


@router.get("/{coin_id}/calm-price", response_model=ApiResponse)
async def coin_calm_price(
    coin_id: str,
    days: Optional[int] = Query(default=None, ge=1),
):
    """获取单个币种的 Calm Price"""
    try:
        calm = await get_market_service().get_calm_price(coin_id, days)
    except FetchError as exc:
        return _error_response(exc)
    return ApiResponse.ok(data=calm.model_dump())
