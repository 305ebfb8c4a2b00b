"""
ScreeningStage: apply a reviewer's include/exclude decisions to a job's articles.

All ids are checked before anything is written, so a bad request leaves the
screening table untouched. Exclusion reasons only stick to excluded articles.
"""

from __future__ import annotations

from typing import Dict

from litgraph.errors import NotFoundError
from litgraph.log import get_logger
from litgraph.research.job_store import SqlStore
from litgraph.research.schemas import ScreeningUpdate

logger = get_logger(__name__)


class ScreeningStage:
    def __init__(self, store: SqlStore):
        self.store = store

    def check(self, job_id: str, update: ScreeningUpdate) -> None:
        known = self.store.article_ids(job_id)
        unknown = sorted((set(update.included_ids) | set(update.excluded_ids)) - known)
        if unknown:
            raise NotFoundError(
                f"unknown article ids for job {job_id}: {', '.join(unknown[:5])}"
                + (f" (+{len(unknown) - 5} more)" if len(unknown) > 5 else ""),
                {"resource": "article", "ids": unknown},
            )

    def apply(self, job_id: str, update: ScreeningUpdate) -> Dict[str, int]:
        """→ counts per screening status after the update."""
        self.check(job_id, update)
        excluded = set(update.excluded_ids)
        reasons = {k: v for k, v in update.exclusion_reasons.items() if k in excluded}
        counts = self.store.apply_screening(job_id, set(update.included_ids), excluded, reasons)
        logger.info(
            f"screening job={job_id[:8]} included={counts['included']} "
            f"excluded={counts['excluded']} pending={counts['pending']}"
        )
        return counts
