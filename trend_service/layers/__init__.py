"""
数据流分层架构
  Layer 1 – Acquisition  : 单次上游请求与响应分类
  Layer 2 – Cache        : 带新鲜度窗口的缓存（Redis → 文件）
  Layer 3 – Rate limiter : FIFO 串行派发，最小请求间隔
  Layer 4 – Processing   : JSON 解析与校验
  Layer 5 – Analysis     : EMA 趋势平滑
"""
