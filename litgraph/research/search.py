"""
SearchStage: topic → de-duplicated candidate articles.

Provider calls are retried with exponential backoff (backoff ** attempt,
capped). When the topic finds nothing, one broader query is tried: the first
two words of the topic without year limits. Articles without an abstract get
a single fetch_details round; its failure only costs the abstracts.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from litgraph.errors import JobCancelled, UpstreamError
from litgraph.log import get_logger
from litgraph.observability import metrics
from litgraph.providers.base import ArticleSearchProvider, CandidateArticle
from litgraph.research.cancellation import CancelToken

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class SearchQuery:
    topic: str
    max_results: int = 20
    year_from: Optional[int] = None
    year_to: Optional[int] = None


@dataclass
class SearchOutcome:
    articles: List[CandidateArticle]
    query_used: str
    broadened: bool = False
    raw_count: int = 0
    duplicates: int = 0


def broader_topic(topic: str) -> str:
    words = topic.split()
    return " ".join(words[:2])


def dedupe(articles: List[CandidateArticle]) -> List[CandidateArticle]:
    """Keep the first occurrence of each dedup key; untitled entries are dropped."""
    seen: Dict[str, CandidateArticle] = {}
    for a in articles:
        if not a.title or not a.title.strip():
            continue
        seen.setdefault(a.dedup_key(), a)
    return list(seen.values())


class SearchStage:
    def __init__(
        self,
        provider: ArticleSearchProvider,
        *,
        max_retries: int = 3,
        retry_backoff: float = 2.0,
        max_backoff_seconds: float = 10.0,
        broaden_on_empty: bool = True,
        fetch_missing_abstracts: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.max_retries = max(1, int(max_retries))
        self.retry_backoff = float(retry_backoff)
        self.max_backoff_seconds = float(max_backoff_seconds)
        self.broaden_on_empty = broaden_on_empty
        self.fetch_missing_abstracts = fetch_missing_abstracts
        self._sleep = sleep

    async def _with_retry(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        token: Optional[CancelToken] = None,
    ) -> T:
        last_exc: Optional[BaseException] = None
        for attempt in range(self.max_retries):
            if token is not None:
                token.raise_if_cancelled()
            try:
                return await call()
            except (JobCancelled, asyncio.CancelledError):
                raise
            except Exception as exc:
                last_exc = exc
                if attempt + 1 >= self.max_retries:
                    break
                delay = min(self.retry_backoff ** attempt, self.max_backoff_seconds)
                metrics.upstream_retries_total.labels(operation=operation).inc()
                logger.warning(
                    f"{operation} failed (attempt {attempt + 1}/{self.max_retries}), retry in {delay:.1f}s: {exc}"
                )
                await self._sleep(delay)
        raise UpstreamError(
            f"{operation} failed after {self.max_retries} attempts: {last_exc}",
            {"operation": operation, "provider": getattr(self.provider, "name", "search")},
        ) from last_exc

    async def _search(self, q: SearchQuery, token: Optional[CancelToken]) -> List[CandidateArticle]:
        return await self._with_retry(
            "search",
            lambda: self.provider.search(q.topic, q.max_results, q.year_from, q.year_to),
            token,
        )

    async def _fill_abstracts(self, articles: List[CandidateArticle]) -> int:
        missing = [a for a in articles if not a.abstract and a.source_id]
        if not missing or not self.fetch_missing_abstracts:
            return 0
        try:
            details = await self.provider.fetch_details([a.source_id for a in missing])
        except Exception as exc:
            logger.warning(f"fetch_details failed, keeping {len(missing)} articles without abstract: {exc}")
            return 0
        by_id = {d.source_id: d for d in details if d.source_id}
        filled = 0
        for a in missing:
            d = by_id.get(a.source_id)
            if d is not None and d.abstract:
                a.abstract = d.abstract
                filled += 1
        return filled

    async def run(self, query: SearchQuery, token: Optional[CancelToken] = None) -> SearchOutcome:
        t0 = time.perf_counter()
        raw = await self._search(query, token)
        used, broadened = query.topic, False

        if not raw and self.broaden_on_empty:
            wider = broader_topic(query.topic)
            if wider and wider != query.topic:
                logger.info(f"no results for {query.topic!r}, retrying with broader query {wider!r}")
                raw = await self._search(SearchQuery(wider, query.max_results), token)
                used, broadened = wider, True

        unique = dedupe(list(raw))
        articles = unique[: max(0, query.max_results)]
        if token is not None:
            token.raise_if_cancelled()
        await self._fill_abstracts(articles)
        metrics.stage_duration_seconds.labels(stage="search").observe(time.perf_counter() - t0)
        return SearchOutcome(
            articles=articles,
            query_used=used,
            broadened=broadened,
            raw_count=len(raw),
            duplicates=len(raw) - len(unique),
        )
