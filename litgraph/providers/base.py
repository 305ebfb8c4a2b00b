"""
Collaborator contracts consumed by the pipeline.

Concrete network clients live next to this module (pubmed, mesh,
rule_extractor, llm_extractor); tests substitute in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from litgraph.graph.types import Entity, Relation


@dataclass
class CandidateArticle:
    """An article as returned by a search provider, before it belongs to a job."""

    title: str
    abstract: str = ""
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    doi: str = ""
    source: str = ""
    source_id: str = ""
    url: str = ""
    citation_count: int = 0
    relevance_score: float = 0.0

    def dedup_key(self) -> str:
        if self.doi:
            return f"doi:{self.doi.strip().lower()}"
        if self.source_id:
            return f"{self.source}:{self.source_id}"
        return f"title:{' '.join(self.title.lower().split())}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "abstract": self.abstract,
            "authors": list(self.authors),
            "year": self.year,
            "doi": self.doi,
            "source": self.source,
            "source_id": self.source_id,
            "url": self.url,
            "citation_count": self.citation_count,
            "relevance_score": self.relevance_score,
        }


@dataclass
class NormalizedTerm:
    """
    Vocabulary lookup result. confidence == 0 means no match and
    `normalized` is the input verbatim.
    """

    normalized: str
    id: Optional[str] = None
    category: Optional[str] = None
    confidence: float = 0.0

    @classmethod
    def verbatim(cls, term: str) -> "NormalizedTerm":
        return cls(normalized=term.strip(), confidence=0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normalized": self.normalized,
            "id": self.id,
            "category": self.category,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedTerm":
        return cls(
            normalized=str(data.get("normalized", "")),
            id=data.get("id"),
            category=data.get("category"),
            confidence=float(data.get("confidence", 0.0)),
        )


class ArticleSearchProvider(ABC):
    """Literature search. Both calls must be idempotent for the same input."""

    name: str = "search"

    @abstractmethod
    async def search(
        self,
        topic: str,
        max_results: int = 20,
        year_from: Optional[int] = None,
        year_to: Optional[int] = None,
    ) -> List[CandidateArticle]:
        ...

    @abstractmethod
    async def fetch_details(self, ids: List[str]) -> List[CandidateArticle]:
        ...

    async def close(self) -> None:
        return None


class ExtractionProvider(ABC):
    """Entity/relation extraction from free text. May raise per call."""

    name: str = "extraction"

    @abstractmethod
    async def extract_entities(self, text: str) -> List[Entity]:
        ...

    @abstractmethod
    async def extract_relations(self, text: str) -> List[Relation]:
        ...

    async def close(self) -> None:
        return None


class TermNormalizationProvider(ABC):
    name: str = "vocabulary"

    @abstractmethod
    async def normalize(self, term: str) -> NormalizedTerm:
        ...

    async def close(self) -> None:
        return None
