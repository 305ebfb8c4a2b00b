"""Per-job cooperative cancellation flag, checked between pipeline steps."""

from __future__ import annotations

import threading

from litgraph.errors import JobCancelled


class CancelToken:
    __slots__ = ("job_id", "_event")

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelled(f"job {self.job_id} cancelled", {"job_id": self.job_id})
