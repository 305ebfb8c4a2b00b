"""
SQLModel table definitions for jobs, articles, job logs, graphs and graph snapshots.

Design rules for SQLModel compatibility:
  - primary_key=True and foreign_key="..." are set in Field() only, never
    combined with sa_column (SQLModel raises RuntimeError otherwise).
  - JSON list/dict columns stay as TEXT with Python-side serialization so
    SQLite and PostgreSQL are both supported transparently.
  - Articles and logs hang off their job with cascade="all, delete-orphan";
    graphs outlive the job that produced them.
"""

import json
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, Column, Float, Index, Integer, Text
from sqlmodel import Field, Relationship, SQLModel


def _now_ts() -> float:
    return time.time()


def _loads(raw: Optional[str], default: Any) -> Any:
    try:
        return json.loads(raw) if raw else default
    except (TypeError, ValueError):
        return default


# ──────────────────────────────────────────────────────────────────────────────
# 1. Research jobs, articles, logs
# ──────────────────────────────────────────────────────────────────────────────

class ResearchJobRow(SQLModel, table=True):
    __tablename__ = "research_jobs"
    __table_args__ = (
        Index("idx_research_jobs_owner_created", "owner_id", "created_at"),
    )

    id: str = Field(primary_key=True)
    owner_id: str = Field(sa_column=Column(Text, nullable=False))
    topic: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(default="pending", sa_column=Column(Text, nullable=False, server_default="pending"))
    progress: float = Field(default=0.0, sa_column=Column(Float, nullable=False, server_default="0"))
    articles_found: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    articles_processed: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    graph_id: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    options_json: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    updated_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    completed_at: Optional[float] = Field(default=None, sa_column=Column(Float, nullable=True))

    articles: List["ArticleRow"] = Relationship(
        back_populates="job",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )
    logs: List["JobLogRow"] = Relationship(
        back_populates="job",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["options"] = _loads(d.pop("options_json", "{}"), {})
        return d


class ArticleRow(SQLModel, table=True):
    __tablename__ = "articles"
    __table_args__ = (
        Index("idx_articles_job_screening", "job_id", "screening_status"),
    )

    id: str = Field(primary_key=True)
    job_id: str = Field(foreign_key="research_jobs.id")
    position: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    title: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    abstract: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    authors_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    year: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    doi: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    source: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    source_id: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    url: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    citation_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    relevance_score: float = Field(default=0.0, sa_column=Column(Float, nullable=False, server_default="0"))
    screening_status: str = Field(default="pending", sa_column=Column(Text, nullable=False, server_default="pending"))
    screening_reason: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    extraction_status: str = Field(default="pending", sa_column=Column(Text, nullable=False, server_default="pending"))
    extraction_error: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    entities_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    relations_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    pdf_status: str = Field(default="none", sa_column=Column(Text, nullable=False, server_default="none"))
    pdf_path: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    updated_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))

    job: Optional[ResearchJobRow] = Relationship(back_populates="articles")

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["authors"] = _loads(d.pop("authors_json", "[]"), [])
        d["entities"] = _loads(d.pop("entities_json", "[]"), [])
        d["relations"] = _loads(d.pop("relations_json", "[]"), [])
        return d


class JobLogRow(SQLModel, table=True):
    __tablename__ = "job_logs"
    __table_args__ = (
        Index("idx_job_logs_job_id_id", "job_id", "id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(foreign_key="research_jobs.id")
    level: str = Field(default="info", sa_column=Column(Text, nullable=False, server_default="info"))
    message: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    data_json: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))

    job: Optional[ResearchJobRow] = Relationship(back_populates="logs")

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["data"] = _loads(d.pop("data_json", "{}"), {})
        return d


# ──────────────────────────────────────────────────────────────────────────────
# 2. Graphs and immutable snapshots
# ──────────────────────────────────────────────────────────────────────────────

class GraphRow(SQLModel, table=True):
    __tablename__ = "graphs"
    __table_args__ = (
        Index("idx_graphs_owner", "owner_id"),
    )

    id: str = Field(primary_key=True)
    owner_id: str = Field(sa_column=Column(Text, nullable=False))
    job_id: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    name: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    directed: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default="0"))
    nodes_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    edges_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    metrics_json: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, server_default="1"))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    updated_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))

    snapshots: List["GraphSnapshotRow"] = Relationship(
        back_populates="graph",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["nodes"] = _loads(d.pop("nodes_json", "[]"), [])
        d["edges"] = _loads(d.pop("edges_json", "[]"), [])
        d["metrics"] = _loads(d.pop("metrics_json", None), None)
        return d


class GraphSnapshotRow(SQLModel, table=True):
    __tablename__ = "graph_snapshots"

    graph_id: str = Field(foreign_key="graphs.id", primary_key=True)
    version: int = Field(primary_key=True)
    nodes_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    edges_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    metrics_json: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))

    graph: Optional[GraphRow] = Relationship(back_populates="snapshots")

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["nodes"] = _loads(d.pop("nodes_json", "[]"), [])
        d["edges"] = _loads(d.pop("edges_json", "[]"), [])
        d["metrics"] = _loads(d.pop("metrics_json", None), None)
        return d
