"""
Layer 2 – 缓存层
每个键一条带时间戳的条目 {data, timestamp}，读取时检查新鲜度窗口，
过期条目在读取时删除。介质优先级：Redis（若已连接） → 本地文件。

缓存只是优化手段：读失败视为未命中，写失败记录日志后丢弃，均不向上抛出。
"""

import hashlib
import json
import logging
import os
import time
from typing import Any, Callable, Optional

from trend_service.config import settings
from trend_service.db import get_redis
from trend_service.models.market import CacheEntry

logger = logging.getLogger(__name__)

COINS_LIST_KEY = "coins_list"
_MAX_KEY_LENGTH = 200
_READY_MARKER_KEY = "_ready_check"


def make_history_key(coin_id: str, days: int) -> str:
    """历史序列缓存键：history_<coin_id>_<days>"""
    return f"history_{coin_id}_{days}"


def _storage_key(key: str) -> str:
    """超长键压缩为 md5，避免文件名超出系统限制"""
    if len(key) > _MAX_KEY_LENGTH:
        return "hashed_" + hashlib.md5(key.encode()).hexdigest()
    return key


# ── 缓存介质 ─────────────────────────────────────────────

class FileCacheMedium:
    """本地文件介质：每个键一个 JSON 文件"""

    def __init__(self, cache_dir: str):
        self.cache_dir = cache_dir

    def _path(self, key: str) -> str:
        safe = _storage_key(key).replace(":", "_").replace("/", "_")
        return os.path.join(self.cache_dir, f"{safe}.json")

    async def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()

    async def write(self, key: str, raw: str) -> None:
        os.makedirs(self.cache_dir, exist_ok=True)
        with open(self._path(key), "w", encoding="utf-8") as fh:
            fh.write(raw)

    async def remove(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)

    async def count(self) -> int:
        if not os.path.exists(self.cache_dir):
            return 0
        return len([f for f in os.listdir(self.cache_dir) if f.endswith(".json")])

    def describe(self) -> dict:
        return {"backend": "file", "dir": self.cache_dir}


class RedisCacheMedium:
    """Redis 介质：过期由读取方判断，不依赖 Redis TTL"""

    prefix = "trend:"

    def __init__(self, client):
        self.client = client

    async def read(self, key: str) -> Optional[str]:
        return await self.client.get(self.prefix + _storage_key(key))

    async def write(self, key: str, raw: str) -> None:
        await self.client.set(self.prefix + _storage_key(key), raw)

    async def remove(self, key: str) -> None:
        await self.client.delete(self.prefix + _storage_key(key))

    async def count(self) -> int:
        total = 0
        async for _ in self.client.scan_iter(match=self.prefix + "*"):
            total += 1
        return total

    def describe(self) -> dict:
        return {"backend": "redis"}


# ── 缓存层 ───────────────────────────────────────────────

class CacheLayer:
    """带新鲜度窗口的键值缓存"""

    def __init__(
        self,
        medium=None,
        freshness_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._medium = medium
        if freshness_seconds is None:
            freshness_seconds = settings.CACHE_FRESHNESS_SECONDS
        self.freshness_ms = freshness_seconds * 1000
        self._clock = clock
        self._file_medium = FileCacheMedium(settings.CACHE_DIR)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def medium(self):
        """当前使用的介质：显式注入 > Redis > 文件"""
        if self._medium is not None:
            return self._medium
        redis = get_redis()
        if redis:
            return RedisCacheMedium(redis)
        return self._file_medium

    async def get(self, key: str) -> Optional[Any]:
        """返回新鲜的缓存值；缺失、过期或无法解析时返回 None"""
        medium = self.medium()
        try:
            raw = await medium.read(key)
        except Exception as exc:
            logger.debug(f"缓存读取失败 {key}: {exc}")
            return None
        if raw is None:
            logger.debug(f"缓存未命中: {key}")
            return None

        try:
            entry = CacheEntry.model_validate(json.loads(raw))
        except Exception as exc:
            logger.debug(f"缓存条目无法解析，视为未命中 {key}: {exc}")
            return None

        if self._now_ms() - entry.timestamp > self.freshness_ms:
            logger.debug(f"缓存已过期，删除: {key}")
            try:
                await medium.remove(key)
            except Exception as exc:
                logger.debug(f"过期缓存删除失败 {key}: {exc}")
            return None

        logger.debug(f"缓存命中: {key}")
        return entry.data

    async def set(self, key: str, value: Any) -> None:
        """覆盖写入 {data: value, timestamp: now}；失败仅记录日志"""
        try:
            raw = json.dumps(
                {"data": value, "timestamp": self._now_ms()},
                ensure_ascii=False,
            )
            await self.medium().write(key, raw)
            logger.debug(f"缓存写入: {key}")
        except Exception as exc:
            logger.warning(f"缓存写入失败，已忽略 {key}: {exc}")

    async def delete(self, key: str) -> None:
        try:
            await self.medium().remove(key)
        except Exception as exc:
            logger.warning(f"缓存删除失败 {key}: {exc}")

    async def stats(self) -> dict:
        """返回当前介质统计信息"""
        medium = self.medium()
        result = dict(medium.describe())
        result["freshness_seconds"] = int(self.freshness_ms / 1000)
        try:
            result["entries"] = await medium.count()
            result["status"] = "healthy"
        except Exception as exc:
            result["status"] = "error"
            result["error"] = str(exc)
        return result

    async def ready(self) -> bool:
        """介质可写可删即视为就绪（写入并删除一个标记键）"""
        medium = self.medium()
        try:
            await medium.write(_READY_MARKER_KEY, "{}")
            await medium.remove(_READY_MARKER_KEY)
        except Exception as exc:
            logger.warning(f"缓存介质不可用: {exc}")
            return False
        return True


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[CacheLayer] = None


def get_cache_layer() -> CacheLayer:
    global _cache
    if _cache is None:
        _cache = CacheLayer()
    return _cache
