"""
数据获取错误类型

  FetchError
    ├── TransportError   网络层失败（DNS / 超时 / 连接重置）
    ├── RequestFailed    非 2xx 且非 429 的响应
    ├── RateLimited      上游返回 429
    └── ParseFailure     JSON 格式错误或结构不符
"""

from typing import Optional


class FetchError(Exception):
    """数据获取失败的基类"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class TransportError(FetchError):
    """网络层失败，未收到任何 HTTP 响应"""

    def __init__(self, message: str):
        super().__init__(message)


class RequestFailed(FetchError):
    """上游返回非成功状态码（429 除外）"""

    def __init__(self, status: int, message: str):
        super().__init__(message, status=status)

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.message}"


class RateLimited(FetchError):
    """上游限流（HTTP 429），由调用方决定是否稍后重试"""

    def __init__(self, status: int = 429, message: str = "Rate limit exceeded"):
        super().__init__(message, status=status)


class ParseFailure(FetchError):
    """响应体不是合法 JSON 或结构不符合预期"""

    def __init__(self, message: str):
        super().__init__(message)
