"""
Append-only per-job progress log with live fan-out.

Entries are persisted first (the store assigns the monotonic id), then pushed
to every open subscription of that job. A subscription is a bounded
asyncio.Queue; when a slow reader lets it fill up the oldest entry is dropped.
Closing a job pushes a sentinel so readers finish cleanly.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from litgraph.log import get_logger
from litgraph.research.job_store import SqlStore
from litgraph.research.records import JobLogEntry
from litgraph.research.states import LogLevel

logger = get_logger(__name__)

_CLOSED = None

_PY_LEVEL = {
    LogLevel.error.value: "warning",
    LogLevel.success.value: "info",
}


class _Subscription:
    __slots__ = ("job_id", "queue", "loop")

    def __init__(self, job_id: str, maxsize: int):
        self.job_id = job_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize))
        self.loop = asyncio.get_running_loop()

    def _offer(self, item: Optional[JobLogEntry]) -> None:
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(item)

    def push(self, item: Optional[JobLogEntry]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self._offer(item)
        elif not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._offer, item)


class JobLogger:
    def __init__(self, store: SqlStore, *, max_logs_per_job: int = 1000, channel_size: int = 256):
        self.store = store
        self.max_logs_per_job = int(max_logs_per_job)
        self.channel_size = int(channel_size)
        self._lock = threading.Lock()
        self._subs: Dict[str, List[_Subscription]] = {}

    def append(
        self,
        job_id: str,
        level: LogLevel,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> JobLogEntry:
        level_value = LogLevel(level).value
        with self._lock:
            entry = self.store.append_log(job_id, level_value, message, data, max_logs=self.max_logs_per_job)
            subs = list(self._subs.get(job_id, ()))
        getattr(logger, _PY_LEVEL.get(level_value, "info"))("[job %s] %s", job_id[:8], message)
        for sub in subs:
            sub.push(entry)
        return entry

    def history(self, job_id: str, after_id: int = 0, limit: Optional[int] = None) -> List[JobLogEntry]:
        return self.store.list_logs(job_id, after_id=after_id, limit=limit)

    def subscribe(self, job_id: str) -> _Subscription:
        sub = _Subscription(job_id, self.channel_size)
        with self._lock:
            self._subs.setdefault(job_id, []).append(sub)
        return sub

    def unsubscribe(self, sub: _Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.job_id)
            if subs and sub in subs:
                subs.remove(sub)
                if not subs:
                    self._subs.pop(sub.job_id, None)

    def close_job(self, job_id: str) -> None:
        """Finish every open stream of the job."""
        with self._lock:
            subs = self._subs.pop(job_id, [])
        for sub in subs:
            sub.push(_CLOSED)

    def close_all(self) -> None:
        with self._lock:
            pending: List[Tuple[str, List[_Subscription]]] = list(self._subs.items())
            self._subs.clear()
        for _, subs in pending:
            for sub in subs:
                sub.push(_CLOSED)

    async def stream(
        self,
        job_id: str,
        after_id: int = 0,
        *,
        is_closed: Optional[Callable[[], bool]] = None,
    ) -> AsyncIterator[JobLogEntry]:
        """
        Replay entries with id > after_id, then yield live entries until the job
        is closed. Ids are strictly increasing across the boundary.

        is_closed is consulted after subscribing: a job that already finished
        gets a final replay instead of a live tail.
        """
        sub = self.subscribe(job_id)
        last_id = int(after_id)
        try:
            for entry in self.history(job_id, after_id=last_id):
                last_id = entry.id
                yield entry
            if is_closed is not None and is_closed():
                for entry in self.history(job_id, after_id=last_id):
                    last_id = entry.id
                    yield entry
                return
            while True:
                item = await sub.queue.get()
                if item is _CLOSED:
                    return
                if item.id <= last_id:
                    continue
                last_id = item.id
                yield item
        finally:
            self.unsubscribe(sub)
