"""
Research job status machine.

pending -> searching -> awaiting_screening -> extracting -> building -> analyzing -> completed
failed / cancelled are reachable from any non-terminal status.

completed and failed accept one more move, back to extracting, when a reviewer
re-screens and triggers analysis again. extracting may finish directly in
completed when the included articles yield no entities.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class JobStatus(str, Enum):
    pending = "pending"
    searching = "searching"
    awaiting_screening = "awaiting_screening"
    extracting = "extracting"
    building = "building"
    analyzing = "analyzing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class ScreeningStatus(str, Enum):
    pending = "pending"
    included = "included"
    excluded = "excluded"


class ExtractionStatus(str, Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"
    skipped = "skipped"


class LogLevel(str, Enum):
    info = "info"
    search = "search"
    ai = "ai"
    error = "error"
    success = "success"


TERMINAL: FrozenSet[JobStatus] = frozenset({JobStatus.completed, JobStatus.failed, JobStatus.cancelled})

# states in which a pipeline task owns the job
RUNNING: FrozenSet[JobStatus] = frozenset({
    JobStatus.searching,
    JobStatus.extracting,
    JobStatus.building,
    JobStatus.analyzing,
})

SCREENING_EDITABLE: FrozenSet[JobStatus] = frozenset({
    JobStatus.pending,
    JobStatus.searching,
    JobStatus.awaiting_screening,
    JobStatus.extracting,
    JobStatus.completed,
    JobStatus.failed,
})

ANALYZABLE: FrozenSet[JobStatus] = frozenset({
    JobStatus.awaiting_screening,
    JobStatus.completed,
    JobStatus.failed,
})

_FORWARD: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.searching}),
    JobStatus.searching: frozenset({JobStatus.awaiting_screening}),
    JobStatus.awaiting_screening: frozenset({JobStatus.extracting}),
    JobStatus.extracting: frozenset({JobStatus.building, JobStatus.completed}),
    JobStatus.building: frozenset({JobStatus.analyzing}),
    JobStatus.analyzing: frozenset({JobStatus.completed}),
    JobStatus.completed: frozenset({JobStatus.extracting}),
    JobStatus.failed: frozenset({JobStatus.extracting}),
    JobStatus.cancelled: frozenset(),
}

# progress at the moment a status is entered; extraction fills 20..80 proportionally
STAGE_PROGRESS: Dict[JobStatus, float] = {
    JobStatus.pending: 0.0,
    JobStatus.searching: 0.0,
    JobStatus.awaiting_screening: 20.0,
    JobStatus.extracting: 20.0,
    JobStatus.building: 85.0,
    JobStatus.analyzing: 95.0,
    JobStatus.completed: 100.0,
}
EXTRACTION_SPAN = (20.0, 80.0)


def is_terminal(status: JobStatus) -> bool:
    return JobStatus(status) in TERMINAL


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    current, target = JobStatus(current), JobStatus(target)
    if target in (JobStatus.failed, JobStatus.cancelled):
        return current not in TERMINAL
    return target in _FORWARD[current]


def extraction_progress(done: int, total: int) -> float:
    lo, hi = EXTRACTION_SPAN
    if total <= 0:
        return hi
    return lo + (hi - lo) * min(done, total) / total
