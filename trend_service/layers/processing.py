"""
Layer 4 – 数据处理层
将上游原始 JSON 解析、校验为数据模型。结构不符一律抛出 ParseFailure，
不做排序、去重或补值：输出顺序与上游完全一致。
"""

import json
import logging
from typing import Any, List, Optional, Sequence

import pandas as pd
from pydantic import ValidationError

from trend_service.errors import ParseFailure
from trend_service.models.market import CoinSummary, PricePoint, TrendPoint

logger = logging.getLogger(__name__)


def _load_json(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, TypeError) as exc:
        raise ParseFailure(f"响应不是合法 JSON: {exc}") from exc


def _is_number(value: Any) -> bool:
    """JSON 数值（排除 bool，bool 是 int 的子类）"""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ProcessingLayer:
    """数据处理层：解析 + 校验"""

    def parse_coin_list(self, raw: bytes) -> List[CoinSummary]:
        """解析 /coins/markets 返回的 JSON 数组"""
        data = _load_json(raw)
        if not isinstance(data, list):
            raise ParseFailure(f"币种列表应为数组，实际为 {type(data).__name__}")
        try:
            return [CoinSummary.model_validate(item) for item in data]
        except ValidationError as exc:
            raise ParseFailure(f"币种列表字段不完整: {exc.error_count()} 处错误") from exc

    def parse_price_series(self, raw: bytes) -> List[PricePoint]:
        """
        解析 /coins/{id}/market_chart 返回的 prices 字段

        prices 形如 [[timestamp_ms, price], ...]
        """
        data = _load_json(raw)
        if not isinstance(data, dict) or "prices" not in data:
            raise ParseFailure("行情数据缺少 prices 字段")
        prices = data["prices"]
        if not isinstance(prices, list):
            raise ParseFailure("prices 字段应为数组")
        if not prices:
            return []
        if not all(isinstance(p, (list, tuple)) and len(p) == 2 for p in prices):
            raise ParseFailure("prices 元素应为 [timestamp, price] 二元组")
        if not all(_is_number(ts) and _is_number(price) for ts, price in prices):
            raise ParseFailure("prices 中的时间戳和价格必须为 JSON 数值")

        df = pd.DataFrame(prices, columns=["timestamp", "price"])
        for col in ("timestamp", "price"):
            df[col] = pd.to_numeric(df[col], errors="coerce")
        if df.isna().any().any():
            bad = int(df.isna().any(axis=1).sum())
            raise ParseFailure(f"prices 中有 {bad} 个无法解析的数据点")

        return [
            PricePoint(timestamp=int(ts), price=float(price))
            for ts, price in zip(df["timestamp"].tolist(), df["price"].tolist())
        ]

    def to_frame(self, points: Sequence[TrendPoint]) -> pd.DataFrame:
        """趋势点列表转换为 DataFrame，附加 UTC 日期列"""
        if not points:
            return pd.DataFrame(columns=["date", "timestamp", "price", "ema"])
        df = pd.DataFrame([p.model_dump() for p in points])
        df.insert(0, "date", pd.to_datetime(df["timestamp"], unit="ms", utc=True).dt.strftime("%Y-%m-%d"))
        return df

    def summarize(self, points: Sequence[TrendPoint]) -> Optional[dict]:
        """序列摘要：起止日期、点数、最新价格与 EMA"""
        if not points:
            return None
        df = self.to_frame(points)
        last = df.iloc[-1]
        return {
            "start_date": df["date"].iloc[0],
            "end_date": last["date"],
            "count": len(df),
            "latest_price": float(last["price"]),
            "latest_ema": None if pd.isna(last["ema"]) else float(last["ema"]),
        }


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
