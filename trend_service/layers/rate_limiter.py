"""
Layer 3 – 限流队列
所有上游请求按提交顺序（FIFO）串行派发，相邻两次派发的开始时间
间隔不小于 min_interval。同一时刻只有一个请求在途。

运行于单个事件循环（协作式并发）：_dispatching 标志保证任意时刻
最多只有一个派发循环。若移植到抢占式线程模型，需要换成锁或专用工作线程。
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from trend_service.config import settings

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]


@dataclass
class QueuedTask:
    """排队中的请求：派发后结果写入 future（只写一次）"""
    id: int
    action: Action
    future: asyncio.Future = field(repr=False)


class RequestQueue:
    """带最小派发间隔的 FIFO 请求队列"""

    def __init__(
        self,
        min_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if min_interval is None:
            min_interval = settings.MIN_REQUEST_INTERVAL
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep

        self._queue: Deque[QueuedTask] = deque()
        self._ids = itertools.count(1)
        self._last_dispatch_at: Optional[float] = None
        self._dispatching = False
        self._loop_task: Optional[asyncio.Task] = None

        # 统计
        self._stats = {
            "submitted": 0,
            "dispatched": 0,
            "failed": 0,
            "total_wait_time": 0.0,
        }

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def dispatching(self) -> bool:
        return self._dispatching

    def submit(self, action: Action) -> asyncio.Future:
        """
        入队一个请求，立即返回 future，不阻塞调用方

        Args:
            action: 无参协程函数，派发时才被调用

        Returns:
            在该请求执行完成后恰好完成一次的 future
        """
        loop = asyncio.get_running_loop()
        task = QueuedTask(id=next(self._ids), action=action, future=loop.create_future())
        self._queue.append(task)
        self._stats["submitted"] += 1
        logger.debug(f"请求 #{task.id} 入队，当前排队 {len(self._queue)}")

        if not self._dispatching:
            self._dispatching = True
            self._loop_task = loop.create_task(self._dispatch_loop())
        return task.future

    async def run(self, action: Action) -> Any:
        """提交并等待结果"""
        return await self.submit(action)

    def _wait_time(self) -> float:
        if self._last_dispatch_at is None:
            return 0.0
        elapsed = self._clock() - self._last_dispatch_at
        return max(0.0, self.min_interval - elapsed)

    async def _dispatch_loop(self) -> None:
        try:
            while self._queue:
                wait = self._wait_time()
                if wait > 0:
                    logger.debug(f"限流等待 {wait:.3f}s")
                    self._stats["total_wait_time"] += wait
                    await self._sleep(wait)

                task = self._queue.popleft()
                self._last_dispatch_at = self._clock()
                self._stats["dispatched"] += 1

                try:
                    result = await task.action()
                except asyncio.CancelledError:
                    task.future.cancel()
                    raise
                except Exception as exc:
                    self._stats["failed"] += 1
                    logger.debug(f"请求 #{task.id} 失败: {exc!r}")
                    if not task.future.done():
                        task.future.set_exception(exc)
                else:
                    if not task.future.done():
                        task.future.set_result(result)
        except asyncio.CancelledError:
            self._cancel_pending()
            raise
        finally:
            self._dispatching = False

    def _cancel_pending(self) -> None:
        """派发循环被取消时，排队中的请求一并取消，避免 future 永久挂起"""
        while self._queue:
            task = self._queue.popleft()
            task.future.cancel()

    async def drain(self) -> None:
        """等待当前派发循环结束（主要用于关闭和测试）"""
        if self._loop_task is not None:
            await asyncio.shield(self._loop_task)

    def stats(self) -> Dict[str, Any]:
        return {
            "min_interval_seconds": self.min_interval,
            "pending": len(self._queue),
            "dispatching": self._dispatching,
            "submitted": self._stats["submitted"],
            "dispatched": self._stats["dispatched"],
            "failed": self._stats["failed"],
            "total_wait_seconds": round(self._stats["total_wait_time"], 3),
        }


# ── 模块级别单例（每进程一个队列） ────────────────────────
_queue: Optional[RequestQueue] = None


def get_request_queue() -> RequestQueue:
    global _queue
    if _queue is None:
        _queue = RequestQueue()
    return _queue
