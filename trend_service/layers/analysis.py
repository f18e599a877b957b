"""
Layer 5 – 趋势分析层
对价格序列做指数移动平均（EMA）平滑，输出与输入按下标一一对应。

  k = 2 / (N + 1)
  ema[i] = price[i] * k + ema[i-1] * (1 - k)

初始值策略（进程内统一配置，不可按调用切换）：
  first_price : ema[0] = price[0]，所有点均有 EMA；前期偏向首个价格，
                约数倍 N 个样本后收敛
  sma         : 前 N-1 个点 EMA 为空，ema[N-1] 取前 N 个价格的简单平均
"""

import logging
from typing import List, Optional, Sequence

from trend_service.config import settings
from trend_service.models.market import PricePoint, TrendPoint

logger = logging.getLogger(__name__)

SEED_FIRST_PRICE = "first_price"
SEED_SMA = "sma"
_SEED_POLICIES = (SEED_FIRST_PRICE, SEED_SMA)


class AnalysisLayer:
    """趋势分析层：纯函数式 EMA 平滑，无内部状态"""

    def __init__(self, period: Optional[int] = None, seed_policy: Optional[str] = None):
        self.period = period if period is not None else settings.EMA_PERIOD
        self.seed_policy = (seed_policy or settings.EMA_SEED_POLICY).lower()
        if self.period < 1:
            raise ValueError(f"EMA 周期必须为正整数: {self.period}")
        if self.seed_policy not in _SEED_POLICIES:
            raise ValueError(
                f"不支持的 EMA 初始值策略: {self.seed_policy}，可选: {_SEED_POLICIES}"
            )

    @property
    def smoothing(self) -> float:
        return 2 / (self.period + 1)

    def smooth(self, series: Sequence[PricePoint]) -> List[TrendPoint]:
        """将原始价格序列转换为趋势序列（长度、顺序不变）"""
        if not series:
            return []
        if self.seed_policy == SEED_SMA:
            return self._smooth_sma_seed(series)

        k = self.smoothing
        ema = series[0].price
        result = [TrendPoint(timestamp=series[0].timestamp, price=series[0].price, ema=ema)]
        for point in series[1:]:
            ema = point.price * k + ema * (1 - k)
            result.append(TrendPoint(timestamp=point.timestamp, price=point.price, ema=ema))
        return result

    def _smooth_sma_seed(self, series: Sequence[PricePoint]) -> List[TrendPoint]:
        k = self.smoothing
        n = self.period
        result: List[TrendPoint] = []
        ema: Optional[float] = None
        for i, point in enumerate(series):
            if i < n - 1:
                result.append(TrendPoint(timestamp=point.timestamp, price=point.price))
                continue
            if ema is None:
                ema = sum(p.price for p in series[:n]) / n
            else:
                ema = point.price * k + ema * (1 - k)
            result.append(TrendPoint(timestamp=point.timestamp, price=point.price, ema=ema))
        return result

    def calm_price(self, points: Sequence[TrendPoint]) -> Optional[float]:
        """最新的 EMA；EMA 尚不可用时回退为最新价格"""
        if not points:
            return None
        last = points[-1]
        return last.ema if last.ema is not None else last.price


# ── 模块级别单例 ──────────────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
