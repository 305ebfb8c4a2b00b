"""
JobOrchestrator: owns the research job life cycle.

    create_job ──► searching ──► awaiting_screening ─(update_screening)─┐
                                                                        │
    analyze_job ──► extracting ──► building ──► analyzing ──► completed ◄┘

Every stage that talks to a collaborator runs in a background asyncio task;
the public coroutines only validate, move the state machine and return.

Locks:
  - one asyncio.Lock per job serialises every write to that job and its
    articles; it is never held across a collaborator call;
  - one asyncio.Lock per graph (graphs are 1:1 with jobs, keyed by job id)
    serialises version assignment. Order is always graph lock → job lock.

Cancellation is cooperative: the job's CancelToken is checked before each
unit of work and before every write, so nothing is persisted after it is set.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from litgraph.errors import JobCancelled, NotFoundError, StateConflictError
from litgraph.graph.analysis import AnalysisEngine
from litgraph.graph.builder import BuildConfig, BuiltGraph, GraphBuilder
from litgraph.graph.normalizer import TermNormalizer
from litgraph.graph.types import ExtractionResult, GraphRecord, GraphSnapshot
from litgraph.log import get_logger
from litgraph.observability import metrics
from litgraph.research.cancellation import CancelToken
from litgraph.research.extraction import ArticleExtraction, ExtractionStage
from litgraph.research.job_logger import JobLogger
from litgraph.research.job_store import SqlStore
from litgraph.research.records import Article, JobLogEntry, ResearchJob
from litgraph.research.schemas import AnalyzeRequest, CreateJobRequest, ScreeningUpdate, validate
from litgraph.research.screening import ScreeningStage
from litgraph.research.search import SearchQuery, SearchStage
from litgraph.research.states import (
    ANALYZABLE,
    RUNNING,
    SCREENING_EDITABLE,
    STAGE_PROGRESS,
    TERMINAL,
    ExtractionStatus,
    JobStatus,
    LogLevel,
    ScreeningStatus,
    can_transition,
    extraction_progress,
)

logger = get_logger(__name__)

_REEXTRACT = (ExtractionStatus.pending, ExtractionStatus.failed)


class JobOrchestrator:
    def __init__(
        self,
        store: SqlStore,
        *,
        search: SearchStage,
        extraction: ExtractionStage,
        analysis: AnalysisEngine,
        normalizer: Optional[TermNormalizer] = None,
        job_logger: Optional[JobLogger] = None,
        preview_entity_limit: int = 100,
        preview_relation_limit: int = 50,
    ):
        self.store = store
        self.search = search
        self.extraction = extraction
        self.analysis = analysis
        self.normalizer = normalizer
        self.logs = job_logger or JobLogger(store)
        self.screening = ScreeningStage(store)
        self.preview_entity_limit = preview_entity_limit
        self.preview_relation_limit = preview_relation_limit
        self._locks: Dict[str, asyncio.Lock] = {}
        self._graph_locks: Dict[str, asyncio.Lock] = {}
        self._tokens: Dict[str, CancelToken] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ── internals ────────────────────────────────────────────────────────────

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def _graph_lock(self, job_id: str) -> asyncio.Lock:
        lock = self._graph_locks.get(job_id)
        if lock is None:
            lock = self._graph_locks[job_id] = asyncio.Lock()
        return lock

    def _token(self, job_id: str) -> CancelToken:
        token = self._tokens.get(job_id)
        if token is None:
            token = self._tokens[job_id] = CancelToken(job_id)
        return token

    def _release(self, job_id: str) -> None:
        """Drop the cancel token once the job is gone or finished and nothing runs for it."""
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            return
        job = self.store.get_job(job_id)
        if job is None:
            self._locks.pop(job_id, None)
            self._graph_locks.pop(job_id, None)
        if job is None or job.status in TERMINAL:
            self._tokens.pop(job_id, None)

    def _require_job(self, job_id: str, owner_id: Optional[str]) -> ResearchJob:
        job = self.store.get_job(job_id, owner_id)
        if job is None:
            raise NotFoundError.for_resource("job", job_id)
        return job

    def _require_graph(self, graph_id: str, owner_id: Optional[str]) -> GraphRecord:
        graph = self.store.get_graph(graph_id, owner_id)
        if graph is None:
            raise NotFoundError.for_resource("graph", graph_id)
        return graph

    def _transition(self, job_id: str, target: JobStatus, **fields: Any) -> ResearchJob:
        """Caller holds the job lock."""
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError.for_resource("job", job_id)
        if not can_transition(job.status, target):
            raise StateConflictError(
                f"job {job_id} cannot move from {job.status.value} to {target.value}",
                {"job_id": job_id, "status": job.status.value, "target": target.value},
            )
        if "progress" not in fields and target in STAGE_PROGRESS:
            # progress is monotonic within one run; a re-analysis starts again at the extraction baseline
            if target is JobStatus.extracting:
                fields["progress"] = STAGE_PROGRESS[target]
            else:
                fields["progress"] = max(job.progress, STAGE_PROGRESS[target])
        if target is JobStatus.completed:
            fields["completed_at"] = time.time()
        updated = self.store.update_job(job_id, status=target, **fields)
        metrics.job_transitions_total.labels(status=target.value).inc()
        logger.info(f"job {job_id[:8]}: {job.status.value} -> {target.value} ({updated.progress:.0f}%)")
        return updated

    def _spawn(self, job_id: str, coro) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"research-job-{job_id[:8]}")
        self._tasks[job_id] = task
        metrics.jobs_running.inc()

        def _done(t: asyncio.Task) -> None:
            metrics.jobs_running.dec()
            if self._tasks.get(job_id) is t:
                self._tasks.pop(job_id, None)
            self._release(job_id)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"background task for job {job_id[:8]} crashed: {t.exception()!r}")

        task.add_done_callback(_done)
        return task

    async def _fail(self, job_id: str, token: CancelToken, exc: BaseException) -> None:
        async with self._lock(job_id):
            if token.cancelled:
                return
            job = self.store.get_job(job_id)
            if job is None or job.status in TERMINAL:
                return
            message = str(exc) or type(exc).__name__
            self._transition(job_id, JobStatus.failed, error=message)
            self.logs.append(job_id, LogLevel.error, f"Job failed: {message}", {"error_type": type(exc).__name__})
        self.logs.close_job(job_id)

    # ── create / read ────────────────────────────────────────────────────────

    async def create_job(
        self,
        topic: str,
        owner_id: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> ResearchJob:
        """Validate, store in pending, move to searching and start the search in the background."""
        req = validate(CreateJobRequest, {**(options or {}), "topic": topic})
        job = self.store.create_job(
            owner_id=owner_id,
            topic=req.topic,
            options=req.model_dump(exclude={"topic"}),
        )
        token = self._token(job.id)
        async with self._lock(job.id):
            job = self._transition(job.id, JobStatus.searching)
            self.logs.append(job.id, LogLevel.info, f"Research job created: {req.topic}", {"options": job.options})
        self._spawn(job.id, self._run_search(job.id, req, token))
        return job

    async def get_job(self, job_id: str, owner_id: Optional[str] = None) -> ResearchJob:
        return self._require_job(job_id, owner_id)

    async def list_jobs(self, owner_id: str, limit: Optional[int] = None) -> List[ResearchJob]:
        return self.store.list_jobs(owner_id, limit=limit)

    async def list_articles(
        self,
        job_id: str,
        owner_id: Optional[str] = None,
        status: Optional[ScreeningStatus] = None,
    ) -> List[Article]:
        self._require_job(job_id, owner_id)
        return self.store.list_articles(job_id, status)

    async def wait_for_job(self, job_id: str) -> ResearchJob:
        """Await the job's current background task, if any, and return the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._require_job(job_id, None)

    # ── search ───────────────────────────────────────────────────────────────

    async def _run_search(self, job_id: str, req: CreateJobRequest, token: CancelToken) -> None:
        try:
            self.logs.append(
                job_id, LogLevel.search, f"Searching literature for \"{req.topic}\"",
                {"max_results": req.max_results, "year_from": req.year_from, "year_to": req.year_to},
            )
            outcome = await self.search.run(
                SearchQuery(req.topic, req.max_results, req.year_from, req.year_to), token
            )
            async with self._lock(job_id):
                token.raise_if_cancelled()
                if outcome.broadened:
                    self.logs.append(
                        job_id, LogLevel.search,
                        f"No results for the full topic, broadened query to \"{outcome.query_used}\"",
                    )
                self.store.add_articles(job_id, outcome.articles)
                self._transition(job_id, JobStatus.awaiting_screening, articles_found=len(outcome.articles))
                self.logs.append(
                    job_id, LogLevel.success,
                    f"Found {len(outcome.articles)} articles, awaiting screening",
                    {"raw": outcome.raw_count, "duplicates": outcome.duplicates, "query": outcome.query_used},
                )
        except JobCancelled:
            logger.info(f"search for job {job_id[:8]} stopped: cancelled")
        except Exception as exc:
            logger.warning(f"search for job {job_id[:8]} failed: {exc}")
            await self._fail(job_id, token, exc)

    # ── screening ────────────────────────────────────────────────────────────

    async def update_screening(
        self,
        job_id: str,
        owner_id: Optional[str],
        update: Any,
    ) -> Dict[str, int]:
        """Apply include/exclude decisions. Does not start extraction."""
        req = validate(ScreeningUpdate, update)
        async with self._lock(job_id):
            job = self._require_job(job_id, owner_id)
            if job.status not in SCREENING_EDITABLE:
                raise StateConflictError(
                    f"screening cannot change while job is {job.status.value}",
                    {"job_id": job_id, "status": job.status.value},
                )
            counts = self.screening.apply(job_id, req)
            self.logs.append(
                job_id, LogLevel.info,
                f"Screening updated: {counts['included']} included, {counts['excluded']} excluded",
                counts,
            )
        return counts

    # ── analysis pipeline ────────────────────────────────────────────────────

    async def analyze_job(
        self,
        job_id: str,
        owner_id: Optional[str],
        config: Any = None,
    ) -> asyncio.Task:
        """
        Start extraction → build → analysis over the included articles and
        return the background task handle immediately.
        """
        cfg = validate(AnalyzeRequest, config)
        async with self._lock(job_id):
            job = self._require_job(job_id, owner_id)
            if job.status not in ANALYZABLE:
                raise StateConflictError(
                    f"job is {job.status.value}; analysis needs one of "
                    f"{', '.join(sorted(s.value for s in ANALYZABLE))}",
                    {"job_id": job_id, "status": job.status.value},
                )
            token = self._token(job_id)
            self._transition(job_id, JobStatus.extracting, error=None, completed_at=None)
        return self._spawn(job_id, self._run_analysis(job_id, cfg, token))

    async def _report_extraction(self, job_id: str, token: CancelToken, outcome: ArticleExtraction,
                                 done: List[int], total: int) -> None:
        async with self._lock(job_id):
            token.raise_if_cancelled()
            self.store.save_extraction(
                outcome.article_id, outcome.status, outcome.entities, outcome.relations, outcome.error
            )
            done[0] += 1
            job = self._require_job(job_id, None)
            processed = min(max(job.articles_processed, self.store.count_processed(job_id)), job.articles_found)
            self.store.update_job(
                job_id,
                articles_processed=processed,
                progress=max(job.progress, extraction_progress(done[0], total)),
            )
            if outcome.status is ExtractionStatus.processed:
                self.logs.append(
                    job_id, LogLevel.ai,
                    f"Extracted {len(outcome.entities)} entities and {len(outcome.relations)} relations",
                    {"article_id": outcome.article_id, "done": done[0], "total": total},
                )
            elif outcome.status is ExtractionStatus.failed:
                self.logs.append(
                    job_id, LogLevel.error, f"Extraction failed: {outcome.error}",
                    {"article_id": outcome.article_id, "done": done[0], "total": total},
                )
            else:
                self.logs.append(
                    job_id, LogLevel.info, f"Skipped article: {outcome.error}",
                    {"article_id": outcome.article_id, "done": done[0], "total": total},
                )

    def _stored_results(self, job_id: str) -> List[ExtractionResult]:
        return [
            ExtractionResult(article_id=a.id, entities=a.entities, relations=a.relations)
            for a in self.store.list_articles(job_id, ScreeningStatus.included)
            if a.extraction_status is ExtractionStatus.processed
        ]

    async def _run_analysis(self, job_id: str, cfg: AnalyzeRequest, token: CancelToken) -> None:
        try:
            included = self.store.list_articles(job_id, ScreeningStatus.included)
            todo = [a for a in included if a.extraction_status in _REEXTRACT]
            done = [len(included) - len(todo)]
            self.logs.append(
                job_id, LogLevel.ai,
                f"Extracting entities from {len(todo)} of {len(included)} included articles",
                {"reused": done[0]},
            )

            async def report(outcome: ArticleExtraction) -> None:
                await self._report_extraction(job_id, token, outcome, done, len(included))

            summary = await self.extraction.run(todo, report, token)
            results = self._stored_results(job_id)
            entity_count = sum(len(r.entities) for r in results)

            if entity_count == 0:
                async with self._lock(job_id):
                    token.raise_if_cancelled()
                    self._transition(job_id, JobStatus.completed)
                    self.logs.append(job_id, LogLevel.info, "No entities extracted; nothing to build",
                                     summary.to_dict())
                self.logs.close_job(job_id)
                return

            async with self._lock(job_id):
                token.raise_if_cancelled()
                self._transition(job_id, JobStatus.building)
                self.logs.append(job_id, LogLevel.info,
                                 f"Building graph from {entity_count} entities in {len(results)} articles",
                                 summary.to_dict())

            t0 = time.perf_counter()
            built = await self._builder(cfg).build(results)
            metrics.stage_duration_seconds.labels(stage="build").observe(time.perf_counter() - t0)

            async with self._lock(job_id):
                token.raise_if_cancelled()
                self._transition(job_id, JobStatus.analyzing)
                self.logs.append(job_id, LogLevel.info,
                                 f"Analyzing graph: {len(built.nodes)} nodes, {len(built.edges)} edges")

            async with self._graph_lock(job_id):
                record, _ = await self._persist_built(job_id, built, cfg, token)

            async with self._lock(job_id):
                token.raise_if_cancelled()
                self._transition(job_id, JobStatus.completed)
                self.logs.append(
                    job_id, LogLevel.success,
                    f"Knowledge graph ready (version {record.version})",
                    {"graph_id": record.id, "version": record.version,
                     "nodes": len(record.nodes), "edges": len(record.edges)},
                )
            self.logs.close_job(job_id)
        except JobCancelled:
            logger.info(f"analysis for job {job_id[:8]} stopped: cancelled")
        except Exception as exc:
            logger.warning(f"analysis for job {job_id[:8]} failed: {exc}")
            await self._fail(job_id, token, exc)

    def _builder(self, cfg: AnalyzeRequest) -> GraphBuilder:
        return GraphBuilder(
            self.normalizer,
            BuildConfig(
                directed=cfg.directed,
                node_types=cfg.node_types,
                min_entity_confidence=cfg.min_entity_confidence,
                min_relation_confidence=cfg.min_relation_confidence,
            ),
        )

    async def _persist_built(
        self,
        job_id: str,
        built: BuiltGraph,
        cfg: AnalyzeRequest,
        token: CancelToken,
    ) -> Tuple[GraphRecord, GraphSnapshot]:
        """
        Assign the next version, analyse and persist graph + snapshot together.
        A failure drops whatever was cached for the version that never landed.
        Caller holds the graph lock.
        """
        job = self._require_job(job_id, None)
        graph_id = job.graph_id or uuid.uuid4().hex
        version = self.store.latest_version(graph_id) + 1
        record = GraphRecord(
            id=graph_id,
            owner_id=job.owner_id,
            job_id=job_id,
            name=cfg.graph_name or job.topic,
            directed=built.directed,
            nodes=built.nodes,
            edges=built.edges,
            version=version,
        )
        try:
            t0 = time.perf_counter()
            bundle = await asyncio.to_thread(self.analysis.analyze, record)
            metrics.stage_duration_seconds.labels(stage="analysis").observe(time.perf_counter() - t0)
            record.metrics = {**bundle, "build": dict(built.stats)}
            async with self._lock(job_id):
                token.raise_if_cancelled()
                snapshot = self.store.persist_graph(record)
        except BaseException:
            self.analysis.invalidate(graph_id, version)
            raise
        if version > 1:
            self.analysis.invalidate(graph_id, version - 1)
        metrics.graph_snapshots_total.inc()
        return record, snapshot

    async def build_graph_from_job(
        self,
        job_id: str,
        owner_id: Optional[str],
        config: Any = None,
    ) -> GraphRecord:
        """
        Return the job's graph, building it from stored extraction payloads the
        first time. Repeated calls return the same graph id and version.
        """
        cfg = validate(AnalyzeRequest, config)
        async with self._graph_lock(job_id):
            job = self._require_job(job_id, owner_id)
            if job.graph_id:
                existing = self.store.get_graph(job.graph_id)
                if existing is not None:
                    return existing
            if job.status is not JobStatus.completed:
                raise StateConflictError(
                    f"job is {job.status.value}; a graph can only be built from a completed job",
                    {"job_id": job_id, "status": job.status.value},
                )
        built = await self._builder(cfg).build(self._stored_results(job_id))
        async with self._graph_lock(job_id):
            job = self._require_job(job_id, owner_id)
            existing = self.store.get_graph(job.graph_id) if job.graph_id else None
            if existing is not None:
                return existing
            record, _ = await self._persist_built(job_id, built, cfg, self._token(job_id))
        self.logs.append(
            job_id, LogLevel.success, f"Graph built from stored extractions (version {record.version})",
            {"graph_id": record.id, "nodes": len(record.nodes), "edges": len(record.edges)},
        )
        return self._require_graph(record.id, None)

    # ── cancel / delete ──────────────────────────────────────────────────────

    async def cancel_job(self, job_id: str, owner_id: Optional[str] = None) -> ResearchJob:
        async with self._lock(job_id):
            job = self._require_job(job_id, owner_id)
            if job.status in TERMINAL:
                raise StateConflictError(
                    f"job is already {job.status.value}",
                    {"job_id": job_id, "status": job.status.value},
                )
            self._token(job_id).cancel()
            job = self._transition(job_id, JobStatus.cancelled)
            self.logs.append(job_id, LogLevel.info, "Job cancelled")
        self.logs.close_job(job_id)
        self._release(job_id)
        return job

    async def delete_job(self, job_id: str, owner_id: Optional[str] = None) -> bool:
        """Cancel any running work, then drop the job with its articles and logs. Graphs stay."""
        if self.store.get_job(job_id, owner_id) is None:
            return False
        self._token(job_id).cancel()
        async with self._lock(job_id):
            deleted = self.store.delete_job(job_id)
        self.logs.close_job(job_id)
        self._locks.pop(job_id, None)
        self._graph_locks.pop(job_id, None)
        self._tokens.pop(job_id, None)
        if deleted:
            logger.info(f"job {job_id[:8]} deleted")
        return deleted

    # ── logs ─────────────────────────────────────────────────────────────────

    async def get_job_logs(
        self,
        job_id: str,
        owner_id: Optional[str] = None,
        after_id: int = 0,
        limit: Optional[int] = None,
    ) -> List[JobLogEntry]:
        self._require_job(job_id, owner_id)
        return self.logs.history(job_id, after_id=after_id, limit=limit)

    async def stream_job_logs(
        self,
        job_id: str,
        owner_id: Optional[str] = None,
        after_id: int = 0,
    ) -> AsyncIterator[JobLogEntry]:
        """Backlog after `after_id`, then live entries until the job finishes."""
        self._require_job(job_id, owner_id)

        def _closed() -> bool:
            job = self.store.get_job(job_id)
            return job is None or job.status in TERMINAL

        async for entry in self.logs.stream(job_id, after_id, is_closed=_closed):
            yield entry

    # ── previews and graph access ────────────────────────────────────────────

    async def get_entity_preview(self, job_id: str, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Entities and relations aggregated over included, processed articles."""
        self._require_job(job_id, owner_id)
        entities: Dict[Tuple[str, str], Dict[str, Any]] = {}
        relations: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        for result in self._stored_results(job_id):
            for e in result.entities:
                key = (" ".join(e.name.split()).casefold(), e.type)
                item = entities.setdefault(key, {"name": e.name, "type": e.type, "confidence": 0.0, "articles": set()})
                item["confidence"] = max(item["confidence"], e.confidence)
                item["articles"].add(result.article_id)
            for r in result.relations:
                key = (r.source.casefold(), r.target.casefold(), r.relation_type)
                item = relations.setdefault(key, {"source": r.source, "target": r.target,
                                                  "relation_type": r.relation_type, "articles": set()})
                item["articles"].add(result.article_id)

        def _finish(item: Dict[str, Any]) -> Dict[str, Any]:
            out = {k: v for k, v in item.items() if k != "articles"}
            out["article_count"] = len(item["articles"])
            return out

        ranked_entities = sorted(entities.values(), key=lambda i: (-len(i["articles"]), i["name"].casefold(), i["type"]))
        ranked_relations = sorted(relations.values(), key=lambda i: (-len(i["articles"]), i["source"], i["target"]))
        stats: Dict[str, int] = {}
        for _, etype in entities:
            stats[etype] = stats.get(etype, 0) + 1
        return {
            "entities": [_finish(i) for i in ranked_entities[: self.preview_entity_limit]],
            "relations": [_finish(i) for i in ranked_relations[: self.preview_relation_limit]],
            "entity_stats": dict(sorted(stats.items())),
            "total_entities": len(entities),
            "total_relations": len(relations),
        }

    async def get_graph(self, graph_id: str, owner_id: Optional[str] = None) -> GraphRecord:
        return self._require_graph(graph_id, owner_id)

    async def list_snapshots(self, graph_id: str, owner_id: Optional[str] = None) -> List[GraphSnapshot]:
        self._require_graph(graph_id, owner_id)
        return self.store.list_snapshots(graph_id)

    async def analyze_graph(
        self,
        graph_id: str,
        owner_id: Optional[str] = None,
        kind: str = "summary",
        version: Optional[int] = None,
    ) -> Any:
        """One analysis kind for the current graph or a given snapshot version; served from cache when warm."""
        graph = self._require_graph(graph_id, owner_id)
        if version is not None and int(version) != graph.version:
            snap = self.store.get_snapshot(graph_id, int(version))
            if snap is None:
                raise NotFoundError(f"graph {graph_id} has no version {version}",
                                    {"resource": "graph_snapshot", "id": graph_id, "version": version})
            graph = GraphRecord(
                id=graph.id, owner_id=graph.owner_id, job_id=graph.job_id, name=graph.name,
                directed=graph.directed, nodes=list(snap.nodes), edges=list(snap.edges),
                metrics=snap.metrics, version=snap.version,
                created_at=snap.created_at, updated_at=snap.created_at,
            )
        return await asyncio.to_thread(self.analysis.run, graph, kind)

    # ── lifecycle ────────────────────────────────────────────────────────────

    def recover_interrupted_jobs(self) -> int:
        """Jobs left mid-stage by a previous process are marked failed."""
        stale = self.store.list_jobs_in_status(RUNNING)
        for job in stale:
            self.store.update_job(job.id, status=JobStatus.failed, error="interrupted by process restart")
            self.logs.append(job.id, LogLevel.error, "Job interrupted by process restart")
            metrics.job_transitions_total.labels(status=JobStatus.failed.value).inc()
        if stale:
            logger.warning(f"marked {len(stale)} interrupted job(s) as failed")
        return len(stale)

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.logs.close_all()
        logger.info(f"orchestrator stopped ({len(tasks)} background task(s) cancelled)")
