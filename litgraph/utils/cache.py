"""
缓存工具

TTLCache — 进程内 LRU-TTL 缓存，带逐条 TTL、正则批量失效、预热与命中统计。
在术语规范化（24h）与图分析结果缓存之间共享，单把 RLock 保证并发安全。
"""

from __future__ import annotations

import re
import time
from collections import OrderedDict
from threading import RLock
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple, TypeVar, Union

T = TypeVar("T")

_MISSING = object()

WarmEntry = Union[Tuple[str, Any], Tuple[str, Any, Optional[float]], Mapping[str, Any]]


class TTLCache:
    """
    线程安全的内存 TTL 缓存。
    - maxsize: 最大条目数，超过时淘汰最久未访问的（0 表示不限）。
    - ttl_seconds: 默认过期时间；set() 可逐条覆盖，0/None 表示不过期。
    - clock: 单调时钟，测试中可注入。
    过期条目在读取时视为不存在（惰性过期），正确性不依赖主动清理。
    """

    __slots__ = ("_store", "_maxsize", "_ttl", "_lock", "_clock", "_hits", "_misses")

    def __init__(
        self,
        maxsize: int = 1024,
        ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        # key -> (value, expires_at | None); OrderedDict 顺序即 LRU 顺序
        self._store: "OrderedDict[str, Tuple[Any, Optional[float]]]" = OrderedDict()
        self._maxsize = max(0, int(maxsize))
        self._ttl = max(0.0, float(ttl_seconds or 0))
        self._lock = RLock()
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def _expires_at(self, ttl: Optional[float]) -> Optional[float]:
        ttl = self._ttl if ttl is None else max(0.0, float(ttl))
        return self._clock() + ttl if ttl > 0 else None

    def _is_expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def _evict_if_needed(self) -> None:
        if not self._maxsize:
            return
        expired = [k for k, (_, exp) in self._store.items() if self._is_expired(exp)]
        for k in expired:
            del self._store[k]
        while len(self._store) > self._maxsize:
            self._store.popitem(last=False)

    # ── public API ───────────────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._store.get(key, _MISSING)
            if entry is _MISSING:
                self._misses += 1
                return default
            value, expires_at = entry
            if self._is_expired(expires_at):
                del self._store[key]
                self._misses += 1
                return default
            self._store.move_to_end(key)
            self._hits += 1
            return value

    def contains(self, key: str) -> bool:
        """不计入命中统计的存在性检查。"""
        with self._lock:
            entry = self._store.get(key, _MISSING)
            return entry is not _MISSING and not self._is_expired(entry[1])

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._store[key] = (value, self._expires_at(ttl))
            self._store.move_to_end(key)
            self._evict_if_needed()

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, _MISSING) is not _MISSING

    def delete_by_pattern(self, pattern: Union[str, "re.Pattern[str]"]) -> int:
        """按正则（re.search 语义）批量删除，返回删除条数。"""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            doomed = [k for k in self._store if regex.search(k)]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    def warm(self, entries: Iterable[WarmEntry]) -> int:
        """
        批量预填充。每个条目可以是 (key, value)、(key, value, ttl)
        或 {"key": ..., "value": ..., "ttl": ...}。返回写入条数。
        """
        count = 0
        with self._lock:
            for entry in entries:
                if isinstance(entry, Mapping):
                    key, value, ttl = entry["key"], entry["value"], entry.get("ttl")
                elif len(entry) == 3:
                    key, value, ttl = entry  # type: ignore[misc]
                else:
                    key, value = entry  # type: ignore[misc]
                    ttl = None
                self.set(key, value, ttl)
                count += 1
        return count

    def stats(self) -> dict:
        with self._lock:
            size = sum(1 for _, exp in self._store.values() if not self._is_expired(exp))
            lookups = self._hits + self._misses
            return {
                "size": size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / lookups) if lookups else 0.0,
                "maxsize": self._maxsize,
                "default_ttl_seconds": self._ttl,
            }

    def get_or_set(self, key: str, factory: Callable[[], T], ttl: Optional[float] = None) -> T:
        # factory 在锁外执行；并发未命中时可能重复计算，结果等价
        val = self.get(key, _MISSING)
        if val is not _MISSING:
            return val
        val = factory()
        self.set(key, val, ttl)
        return val

    def __len__(self) -> int:
        return self.stats()["size"]
