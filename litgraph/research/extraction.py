"""
ExtractionStage: included articles → entities/relations, a bounded pool at a time.

Per article:
  - the cancel flag is checked before any work and again before reporting;
    results that arrive after cancellation are dropped;
  - an empty title+abstract is `skipped`;
  - a provider error marks the article `failed` without payload, the rest
    of the batch continues (extraction is not retried);
  - entity names are looked up through the TermNormalizer so the payload
    carries vocabulary ids and, for untyped mentions, the vocabulary category.

Each finished article is handed to the `report` callback, which owns
persistence and progress accounting.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Optional

from litgraph.errors import JobCancelled
from litgraph.graph.normalizer import TermNormalizer
from litgraph.graph.types import DEFAULT_ENTITY_TYPE, Entity, ExtractionResult, Relation, coerce_entity_type
from litgraph.log import get_logger
from litgraph.observability import metrics
from litgraph.providers.base import ExtractionProvider
from litgraph.research.cancellation import CancelToken
from litgraph.research.records import Article
from litgraph.research.states import ExtractionStatus

logger = get_logger(__name__)


@dataclass
class ArticleExtraction:
    article_id: str
    status: ExtractionStatus
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    error: str = ""

    def as_result(self) -> ExtractionResult:
        return ExtractionResult(article_id=self.article_id, entities=self.entities, relations=self.relations)


@dataclass
class ExtractionSummary:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    discarded: int = 0
    entities: int = 0
    relations: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "discarded": self.discarded,
            "entities": self.entities,
            "relations": self.relations,
        }


Reporter = Callable[[ArticleExtraction], Awaitable[None]]


class ExtractionStage:
    def __init__(
        self,
        provider: ExtractionProvider,
        normalizer: Optional[TermNormalizer] = None,
        *,
        concurrency: int = 3,
        max_text_chars: int = 6000,
    ):
        self.provider = provider
        self.normalizer = normalizer
        self.concurrency = max(1, int(concurrency))
        self.max_text_chars = int(max_text_chars)

    async def _annotate(self, entities: List[Entity]) -> List[Entity]:
        if self.normalizer is None or not entities:
            return entities
        norms = await self.normalizer.normalize_many(e.name.strip() for e in entities)
        out = []
        for e in entities:
            norm = norms.get(e.name.strip())
            if norm is None or not self.normalizer.is_confident(norm):
                out.append(e)
                continue
            etype = e.type
            if etype == DEFAULT_ENTITY_TYPE:
                etype = TermNormalizer.entity_type_for(norm) or etype
            out.append(replace(e, type=etype, vocabulary_id=norm.id))
        return out

    async def extract_one(self, article: Article) -> ArticleExtraction:
        text = article.text
        if self.max_text_chars > 0:
            text = text[: self.max_text_chars]
        if not text.strip():
            return ArticleExtraction(article.id, ExtractionStatus.skipped, error="no title or abstract")
        try:
            raw_entities = await self.provider.extract_entities(text)
            raw_relations = await self.provider.extract_relations(text)
        except (JobCancelled, asyncio.CancelledError):
            raise
        except Exception as exc:
            logger.warning(f"extraction failed for article {article.id}: {exc}")
            return ArticleExtraction(article.id, ExtractionStatus.failed, error=str(exc) or type(exc).__name__)

        # provider objects may be shared (cached); never mutate them
        entities = [
            replace(e, name=" ".join(e.name.split()), type=coerce_entity_type(e.type), article_ids=[article.id])
            for e in raw_entities
            if e.name and e.name.strip()
        ]
        relations = [
            replace(r, article_ids=[article.id])
            for r in raw_relations
            if r.source and r.source.strip() and r.target and r.target.strip()
        ]
        entities = await self._annotate(entities)
        return ArticleExtraction(article.id, ExtractionStatus.processed, entities, relations)

    async def run(
        self,
        articles: List[Article],
        report: Reporter,
        token: Optional[CancelToken] = None,
    ) -> ExtractionSummary:
        summary = ExtractionSummary()
        sem = asyncio.Semaphore(self.concurrency)
        t0 = time.perf_counter()

        async def _worker(article: Article) -> None:
            async with sem:
                if token is not None and token.cancelled:
                    return
                outcome = await self.extract_one(article)
                if token is not None and token.cancelled:
                    summary.discarded += 1
                    metrics.articles_extracted_total.labels(outcome="discarded").inc()
                    return
                await report(outcome)
                metrics.articles_extracted_total.labels(outcome=outcome.status.value).inc()
                if outcome.status is ExtractionStatus.processed:
                    summary.processed += 1
                    summary.entities += len(outcome.entities)
                    summary.relations += len(outcome.relations)
                elif outcome.status is ExtractionStatus.failed:
                    summary.failed += 1
                else:
                    summary.skipped += 1

        await asyncio.gather(*(_worker(a) for a in articles))
        metrics.stage_duration_seconds.labels(stage="extraction").observe(time.perf_counter() - t0)
        if token is not None:
            token.raise_if_cancelled()
        return summary
