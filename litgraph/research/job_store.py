"""
Research job persistence (jobs, articles, logs, graphs, snapshots) over SQLModel.

One SqlStore per process, constructed with an explicit engine. Every method
opens its own short Session; the orchestrator serialises writes per job, so
the store itself does no locking.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from litgraph.db.models import ArticleRow, GraphRow, GraphSnapshotRow, JobLogRow, ResearchJobRow
from litgraph.errors import NotFoundError, StateConflictError
from litgraph.graph.types import Entity, GraphEdge, GraphNode, GraphRecord, GraphSnapshot, Relation
from litgraph.providers.base import CandidateArticle
from litgraph.research.records import Article, JobLogEntry, ResearchJob
from litgraph.research.states import ExtractionStatus, ScreeningStatus

_PROCESSED = (ExtractionStatus.processed.value, ExtractionStatus.failed.value, ExtractionStatus.skipped.value)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _graph_from_row(d: Dict[str, Any]) -> GraphRecord:
    return GraphRecord(
        id=d["id"],
        owner_id=d["owner_id"],
        job_id=d.get("job_id"),
        name=d.get("name") or "",
        directed=bool(d.get("directed")),
        nodes=[GraphNode.from_dict(n) for n in d.get("nodes") or []],
        edges=[GraphEdge.from_dict(e) for e in d.get("edges") or []],
        metrics=d.get("metrics"),
        version=int(d.get("version") or 1),
        created_at=float(d.get("created_at") or 0.0),
        updated_at=float(d.get("updated_at") or 0.0),
    )


def _snapshot_from_row(d: Dict[str, Any]) -> GraphSnapshot:
    return GraphSnapshot(
        graph_id=d["graph_id"],
        version=int(d["version"]),
        nodes=tuple(GraphNode.from_dict(n) for n in d.get("nodes") or []),
        edges=tuple(GraphEdge.from_dict(e) for e in d.get("edges") or []),
        metrics=d.get("metrics"),
        created_at=float(d.get("created_at") or 0.0),
    )


class SqlStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    # ── Jobs ──────────────────────────────────────────────────────────────────

    def create_job(self, *, owner_id: str, topic: str, options: Optional[Dict[str, Any]] = None) -> ResearchJob:
        now = time.time()
        job_id = uuid.uuid4().hex
        with Session(self.engine) as session:
            row = ResearchJobRow(
                id=job_id,
                owner_id=owner_id,
                topic=topic,
                status="pending",
                options_json=_dumps(options or {}),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return ResearchJob.from_dict(row.to_dict())

    def get_job(self, job_id: str, owner_id: Optional[str] = None) -> Optional[ResearchJob]:
        with Session(self.engine) as session:
            row = session.get(ResearchJobRow, job_id)
            if not row or (owner_id is not None and row.owner_id != owner_id):
                return None
            return ResearchJob.from_dict(row.to_dict())

    def list_jobs(self, owner_id: str, limit: Optional[int] = None) -> List[ResearchJob]:
        stmt = (
            select(ResearchJobRow)
            .where(ResearchJobRow.owner_id == owner_id)
            .order_by(col(ResearchJobRow.created_at).desc(), col(ResearchJobRow.id).desc())
        )
        if limit:
            stmt = stmt.limit(max(1, int(limit)))
        with Session(self.engine) as session:
            rows = session.exec(stmt).all()
            return [ResearchJob.from_dict(r.to_dict()) for r in rows]

    def list_jobs_in_status(self, statuses: Iterable[str]) -> List[ResearchJob]:
        values = [getattr(s, "value", s) for s in statuses]
        stmt = select(ResearchJobRow).where(col(ResearchJobRow.status).in_(values))
        with Session(self.engine) as session:
            return [ResearchJob.from_dict(r.to_dict()) for r in session.exec(stmt).all()]

    def update_job(self, job_id: str, **fields: Any) -> ResearchJob:
        with Session(self.engine) as session:
            row = session.get(ResearchJobRow, job_id)
            if not row:
                raise NotFoundError.for_resource("job", job_id)
            for k, v in fields.items():
                if k == "options":
                    row.options_json = _dumps(v or {})
                    continue
                if not hasattr(row, k):
                    raise AttributeError(f"ResearchJobRow has no field {k!r}")
                setattr(row, k, getattr(v, "value", v))
            row.updated_at = time.time()
            session.add(row)
            session.commit()
            session.refresh(row)
            return ResearchJob.from_dict(row.to_dict())

    def delete_job(self, job_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(ResearchJobRow, job_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
        return True

    # ── Articles ──────────────────────────────────────────────────────────────

    def add_articles(self, job_id: str, candidates: Iterable[CandidateArticle]) -> List[Article]:
        now = time.time()
        with Session(self.engine) as session:
            start = session.exec(
                select(func.count()).select_from(ArticleRow).where(ArticleRow.job_id == job_id)
            ).one()
            for offset, c in enumerate(candidates):
                session.add(ArticleRow(
                    id=uuid.uuid4().hex,
                    job_id=job_id,
                    position=int(start) + offset,
                    title=c.title,
                    abstract=c.abstract or "",
                    authors_json=_dumps(list(c.authors)),
                    year=c.year,
                    doi=c.doi or "",
                    source=c.source or "",
                    source_id=c.source_id or "",
                    url=c.url or "",
                    citation_count=int(c.citation_count or 0),
                    relevance_score=float(c.relevance_score or 0.0),
                    created_at=now,
                    updated_at=now,
                ))
            session.commit()
        return self.list_articles(job_id)

    def list_articles(
        self,
        job_id: str,
        screening_status: Optional[ScreeningStatus] = None,
    ) -> List[Article]:
        stmt = select(ArticleRow).where(ArticleRow.job_id == job_id)
        if screening_status is not None:
            stmt = stmt.where(ArticleRow.screening_status == ScreeningStatus(screening_status).value)
        stmt = stmt.order_by(col(ArticleRow.position), col(ArticleRow.id))
        with Session(self.engine) as session:
            return [Article.from_dict(r.to_dict()) for r in session.exec(stmt).all()]

    def article_ids(self, job_id: str) -> Set[str]:
        with Session(self.engine) as session:
            return set(session.exec(select(ArticleRow.id).where(ArticleRow.job_id == job_id)).all())

    def apply_screening(
        self,
        job_id: str,
        included: Set[str],
        excluded: Set[str],
        reasons: Dict[str, str],
    ) -> Dict[str, int]:
        """Ids in neither set go back to pending. One transaction for the whole job."""
        counts = {s.value: 0 for s in ScreeningStatus}
        now = time.time()
        with Session(self.engine) as session:
            rows = session.exec(select(ArticleRow).where(ArticleRow.job_id == job_id)).all()
            for row in rows:
                if row.id in included:
                    row.screening_status, row.screening_reason = ScreeningStatus.included.value, ""
                elif row.id in excluded:
                    row.screening_status = ScreeningStatus.excluded.value
                    row.screening_reason = (reasons.get(row.id) or "").strip()
                else:
                    row.screening_status, row.screening_reason = ScreeningStatus.pending.value, ""
                row.updated_at = now
                counts[row.screening_status] += 1
                session.add(row)
            session.commit()
        return counts

    def save_extraction(
        self,
        article_id: str,
        status: ExtractionStatus,
        entities: Optional[List[Entity]] = None,
        relations: Optional[List[Relation]] = None,
        error: str = "",
    ) -> None:
        with Session(self.engine) as session:
            row = session.get(ArticleRow, article_id)
            if not row:
                raise NotFoundError.for_resource("article", article_id)
            row.extraction_status = ExtractionStatus(status).value
            row.entities_json = _dumps([e.to_dict() for e in entities or []])
            row.relations_json = _dumps([r.to_dict() for r in relations or []])
            row.extraction_error = error
            row.updated_at = time.time()
            session.add(row)
            session.commit()

    def count_processed(self, job_id: str) -> int:
        with Session(self.engine) as session:
            return int(session.exec(
                select(func.count())
                .select_from(ArticleRow)
                .where(ArticleRow.job_id == job_id, col(ArticleRow.extraction_status).in_(_PROCESSED))
            ).one())

    # ── Logs ──────────────────────────────────────────────────────────────────

    def append_log(
        self,
        job_id: str,
        level: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        max_logs: int = 0,
    ) -> JobLogEntry:
        with Session(self.engine) as session:
            row = JobLogRow(job_id=job_id, level=level, message=message, data_json=_dumps(data or {}))
            session.add(row)
            session.commit()
            session.refresh(row)
            entry = JobLogEntry.from_dict(row.to_dict())
            if max_logs > 0:
                keep_from = session.exec(
                    select(JobLogRow.id)
                    .where(JobLogRow.job_id == job_id)
                    .order_by(col(JobLogRow.id).desc())
                    .offset(max_logs - 1)
                    .limit(1)
                ).first()
                if keep_from is not None:
                    session.execute(
                        delete(JobLogRow).where(JobLogRow.job_id == job_id, col(JobLogRow.id) < keep_from)
                    )
                    session.commit()
        return entry

    def list_logs(self, job_id: str, after_id: int = 0, limit: Optional[int] = None) -> List[JobLogEntry]:
        stmt = (
            select(JobLogRow)
            .where(JobLogRow.job_id == job_id, col(JobLogRow.id) > int(after_id))
            .order_by(col(JobLogRow.id))
        )
        if limit:
            stmt = stmt.limit(int(limit))
        with Session(self.engine) as session:
            return [JobLogEntry.from_dict(r.to_dict()) for r in session.exec(stmt).all()]

    # ── Graphs ────────────────────────────────────────────────────────────────

    def get_graph(self, graph_id: str, owner_id: Optional[str] = None) -> Optional[GraphRecord]:
        with Session(self.engine) as session:
            row = session.get(GraphRow, graph_id)
            if not row or (owner_id is not None and row.owner_id != owner_id):
                return None
            return _graph_from_row(row.to_dict())

    def list_graphs(self, owner_id: str) -> List[GraphRecord]:
        stmt = select(GraphRow).where(GraphRow.owner_id == owner_id).order_by(col(GraphRow.created_at).desc())
        with Session(self.engine) as session:
            return [_graph_from_row(r.to_dict()) for r in session.exec(stmt).all()]

    def latest_version(self, graph_id: str) -> int:
        with Session(self.engine) as session:
            value = session.exec(
                select(func.max(GraphSnapshotRow.version)).where(GraphSnapshotRow.graph_id == graph_id)
            ).one()
        return int(value or 0)

    def persist_graph(self, record: GraphRecord) -> GraphSnapshot:
        """
        Upsert the graph head, append its snapshot and, the first time, attach the
        graph to its job. All three writes commit together or not at all.
        """
        now = time.time()
        nodes_json = _dumps([n.to_dict() for n in record.nodes])
        edges_json = _dumps([e.to_dict() for e in record.edges])
        metrics_json = _dumps(record.metrics) if record.metrics is not None else None
        with Session(self.engine) as session:
            head = session.get(GraphRow, record.id)
            if head is None:
                head = GraphRow(
                    id=record.id,
                    owner_id=record.owner_id,
                    job_id=record.job_id,
                    name=record.name,
                    directed=record.directed,
                    created_at=now,
                )
            elif record.version <= head.version:
                raise StateConflictError(
                    f"graph {record.id} is already at version {head.version}, refusing version {record.version}"
                )
            head.nodes_json, head.edges_json, head.metrics_json = nodes_json, edges_json, metrics_json
            head.version = record.version
            head.directed = record.directed
            head.updated_at = now
            session.add(head)
            snap = GraphSnapshotRow(
                graph_id=record.id,
                version=record.version,
                nodes_json=nodes_json,
                edges_json=edges_json,
                metrics_json=metrics_json,
                created_at=now,
            )
            session.add(snap)
            if record.job_id:
                job = session.get(ResearchJobRow, record.job_id)
                if job is not None and not job.graph_id:
                    job.graph_id = record.id
                    job.updated_at = now
                    session.add(job)
            session.commit()
            session.refresh(snap)
            return _snapshot_from_row(snap.to_dict())

    def list_snapshots(self, graph_id: str) -> List[GraphSnapshot]:
        stmt = (
            select(GraphSnapshotRow)
            .where(GraphSnapshotRow.graph_id == graph_id)
            .order_by(col(GraphSnapshotRow.version))
        )
        with Session(self.engine) as session:
            return [_snapshot_from_row(r.to_dict()) for r in session.exec(stmt).all()]

    def get_snapshot(self, graph_id: str, version: int) -> Optional[GraphSnapshot]:
        with Session(self.engine) as session:
            row = session.get(GraphSnapshotRow, (graph_id, int(version)))
            return _snapshot_from_row(row.to_dict()) if row else None
