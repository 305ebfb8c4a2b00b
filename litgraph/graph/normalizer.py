"""
TermNormalizer: free-text term → canonical vocabulary entry, cached.

Cache entries live under "term:<casefolded term>" for 24h by default.
A broken cache never fails a lookup (warning + direct provider call), and a
failing provider yields the term verbatim with confidence 0, which is not
cached so the next lookup retries the provider.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, Optional

from litgraph.graph.types import ENTITY_TYPES
from litgraph.log import get_logger
from litgraph.observability import metrics
from litgraph.providers.base import NormalizedTerm, TermNormalizationProvider
from litgraph.utils.cache import TTLCache

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600
CACHE_PREFIX = "term:"


def cache_key(term: str) -> str:
    return CACHE_PREFIX + " ".join(term.split()).casefold()


class TermNormalizer:
    def __init__(
        self,
        provider: Optional[TermNormalizationProvider],
        cache: Optional[TTLCache] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        min_confidence: float = 0.5,
        concurrency: int = 5,
    ):
        self.provider = provider
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.min_confidence = min_confidence
        self.concurrency = max(1, concurrency)

    def _cache_get(self, key: str) -> Optional[NormalizedTerm]:
        if self.cache is None:
            return None
        try:
            cached = self.cache.get(key)
        except Exception as exc:
            logger.warning(f"normalization cache read failed, calling provider directly: {exc}")
            return None
        if isinstance(cached, dict):
            return NormalizedTerm.from_dict(cached)
        return cached

    def _cache_set(self, key: str, value: NormalizedTerm) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, value.to_dict(), self.ttl_seconds)
        except Exception as exc:
            logger.warning(f"normalization cache write failed: {exc}")

    async def normalize(self, term: str) -> NormalizedTerm:
        cleaned = " ".join((term or "").split())
        if not cleaned:
            return NormalizedTerm.verbatim("")
        key = cache_key(cleaned)
        cached = self._cache_get(key)
        if cached is not None:
            metrics.normalization_total.labels(source="cache").inc()
            return cached

        if self.provider is None:
            metrics.normalization_total.labels(source="fallback").inc()
            return NormalizedTerm.verbatim(cleaned)
        try:
            result = await self.provider.normalize(cleaned)
        except Exception as exc:
            logger.warning(f"normalization provider failed for {cleaned!r}, using verbatim term: {exc}")
            metrics.normalization_total.labels(source="fallback").inc()
            return NormalizedTerm.verbatim(cleaned)

        metrics.normalization_total.labels(source="provider").inc()
        self._cache_set(key, result)
        return result

    async def normalize_many(self, terms: Iterable[str]) -> Dict[str, NormalizedTerm]:
        """Normalize distinct terms concurrently; keys are the terms as given."""
        unique = sorted({t for t in terms if t and t.strip()})
        sem = asyncio.Semaphore(self.concurrency)

        async def _one(term: str) -> NormalizedTerm:
            async with sem:
                return await self.normalize(term)

        results = await asyncio.gather(*(_one(t) for t in unique))
        return dict(zip(unique, results))

    def is_confident(self, result: NormalizedTerm) -> bool:
        return result.confidence >= self.min_confidence and bool(result.normalized.strip())

    @staticmethod
    def entity_type_for(result: NormalizedTerm) -> Optional[str]:
        """Vocabulary category as an entity type, when it is one."""
        category = (result.category or "").lower()
        return category if category in ENTITY_TYPES else None
