"""Typed views over persisted jobs, articles and log entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from litgraph.graph.types import Entity, Relation
from litgraph.research.states import ExtractionStatus, JobStatus, ScreeningStatus


@dataclass
class ResearchJob:
    id: str
    owner_id: str
    topic: str
    status: JobStatus = JobStatus.pending
    progress: float = 0.0
    articles_found: int = 0
    articles_processed: int = 0
    graph_id: Optional[str] = None
    error: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> ResearchJob:
        return cls(
            id=d["id"],
            owner_id=d["owner_id"],
            topic=d["topic"],
            status=JobStatus(d.get("status", "pending")),
            progress=float(d.get("progress") or 0.0),
            articles_found=int(d.get("articles_found") or 0),
            articles_processed=int(d.get("articles_processed") or 0),
            graph_id=d.get("graph_id"),
            error=d.get("error"),
            options=dict(d.get("options") or {}),
            created_at=float(d.get("created_at") or 0.0),
            updated_at=float(d.get("updated_at") or 0.0),
            completed_at=d.get("completed_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "topic": self.topic,
            "status": self.status.value,
            "progress": self.progress,
            "articles_found": self.articles_found,
            "articles_processed": self.articles_processed,
            "graph_id": self.graph_id,
            "error": self.error,
            "options": dict(self.options),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }


@dataclass
class Article:
    id: str
    job_id: str
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
    screening_status: ScreeningStatus = ScreeningStatus.pending
    screening_reason: str = ""
    extraction_status: ExtractionStatus = ExtractionStatus.pending
    extraction_error: str = ""
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    pdf_status: str = "none"
    pdf_path: Optional[str] = None
    position: int = 0

    @property
    def text(self) -> str:
        return "\n\n".join(p for p in (self.title.strip(), self.abstract.strip()) if p)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Article:
        return cls(
            id=d["id"],
            job_id=d["job_id"],
            title=d.get("title") or "",
            abstract=d.get("abstract") or "",
            authors=list(d.get("authors") or []),
            year=d.get("year"),
            doi=d.get("doi") or "",
            source=d.get("source") or "",
            source_id=d.get("source_id") or "",
            url=d.get("url") or "",
            citation_count=int(d.get("citation_count") or 0),
            relevance_score=float(d.get("relevance_score") or 0.0),
            screening_status=ScreeningStatus(d.get("screening_status") or "pending"),
            screening_reason=d.get("screening_reason") or "",
            extraction_status=ExtractionStatus(d.get("extraction_status") or "pending"),
            extraction_error=d.get("extraction_error") or "",
            entities=[Entity.from_dict(e) for e in d.get("entities") or []],
            relations=[Relation.from_dict(r) for r in d.get("relations") or []],
            pdf_status=d.get("pdf_status") or "none",
            pdf_path=d.get("pdf_path"),
            position=int(d.get("position") or 0),
        )

    def to_dict(self, include_payload: bool = True) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "job_id": self.job_id,
            "title": self.title,
            "abstract": self.abstract,
            "authors": list(self.authors),
            "year": self.year,
            "doi": self.doi,
            "source": self.source,
            "url": self.url,
            "citation_count": self.citation_count,
            "relevance_score": self.relevance_score,
            "screening_status": self.screening_status.value,
            "screening_reason": self.screening_reason,
            "extraction_status": self.extraction_status.value,
            "extraction_error": self.extraction_error,
            "pdf_status": self.pdf_status,
            "pdf_path": self.pdf_path,
        }
        if include_payload:
            d["entities"] = [e.to_dict() for e in self.entities]
            d["relations"] = [r.to_dict() for r in self.relations]
        return d


@dataclass
class JobLogEntry:
    id: int
    job_id: str
    level: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> JobLogEntry:
        return cls(
            id=int(d["id"]),
            job_id=d["job_id"],
            level=d.get("level") or "info",
            message=d.get("message") or "",
            data=dict(d.get("data") or {}),
            created_at=float(d.get("created_at") or 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "level": self.level,
            "message": self.message,
            "data": dict(self.data),
            "created_at": self.created_at,
        }
