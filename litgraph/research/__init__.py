"""
litgraph/research — research job pipeline.

Usage:
    from litgraph.research import JobOrchestrator, JobStatus
"""

from litgraph.research.orchestrator import JobOrchestrator
from litgraph.research.records import Article, JobLogEntry, ResearchJob
from litgraph.research.states import ExtractionStatus, JobStatus, LogLevel, ScreeningStatus

__all__ = [
    "JobOrchestrator",
    "ResearchJob",
    "Article",
    "JobLogEntry",
    "JobStatus",
    "ScreeningStatus",
    "ExtractionStatus",
    "LogLevel",
]
