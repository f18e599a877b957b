"""
Calm Price 趋势数据服务
从限流的行情 API 拉取价格序列，平滑为长周期趋势信号，并缓存结果

架构分层：
  数据获取层 (Acquisition)  → 单次请求 CoinGecko，分类响应状态
  缓存层     (Cache)        → Redis / 本地文件，带新鲜度窗口
  限流队列   (Rate limiter) → FIFO 串行派发，保证最小请求间隔
  处理层     (Processing)   → JSON 解析与校验
  分析层     (Analysis)     → EMA 趋势平滑
"""

__version__ = "1.0.0"
