"""
进程级装配：由入口（脚本、上层服务）调用 build_runtime(settings)，
得到一组显式注入好的服务；shutdown() 负责按序释放。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from config.settings import Settings, load_settings
from litgraph.db import create_db_engine, init_db
from litgraph.graph.analysis import AnalysisConfig, AnalysisEngine
from litgraph.graph.normalizer import TermNormalizer
from litgraph.log import cleanup_logs, get_logger, init_logging, shutdown_logging
from litgraph.providers.base import ArticleSearchProvider, ExtractionProvider, TermNormalizationProvider
from litgraph.providers.llm_extractor import LLMExtractionProvider
from litgraph.providers.mesh import MeshNormalizationProvider
from litgraph.providers.pubmed import PubMedSearchProvider
from litgraph.providers.rule_extractor import RuleExtractionProvider, load_ontology
from litgraph.research.extraction import ExtractionStage
from litgraph.research.job_logger import JobLogger
from litgraph.research.job_store import SqlStore
from litgraph.research.orchestrator import JobOrchestrator
from litgraph.research.search import SearchStage
from litgraph.utils.cache import TTLCache

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    engine: Engine
    cache: TTLCache
    store: SqlStore
    normalizer: TermNormalizer
    analysis: AnalysisEngine
    search_provider: ArticleSearchProvider
    extraction_provider: ExtractionProvider
    normalization_provider: Optional[TermNormalizationProvider]
    orchestrator: JobOrchestrator

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        for provider in (self.search_provider, self.extraction_provider, self.normalization_provider):
            if provider is None:
                continue
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"closing provider {getattr(provider, 'name', provider)!r} failed: {e}")
        self.engine.dispose()
        logger.info("runtime stopped")
        shutdown_logging()


def build_extraction_provider(settings: Settings) -> ExtractionProvider:
    cfg = settings.extraction
    ontology = load_ontology(cfg.ontology_path)
    if cfg.strategy == "llm":
        if not cfg.llm_api_key:
            logger.warning("extraction strategy 'llm' has no API key configured, falling back to rule extraction")
            return RuleExtractionProvider(ontology)
        return LLMExtractionProvider(
            api_key=cfg.llm_api_key,
            base_url=cfg.llm_base_url,
            model=cfg.llm_model,
            timeout_seconds=cfg.llm_timeout_seconds,
            ontology=ontology,
        )
    if cfg.strategy != "rule":
        logger.warning(f"unknown extraction strategy {cfg.strategy!r}, using rule extraction")
    return RuleExtractionProvider(ontology)


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    search_provider: Optional[ArticleSearchProvider] = None,
    extraction_provider: Optional[ExtractionProvider] = None,
    normalization_provider: Optional[TermNormalizationProvider] = None,
    offline_vocabulary: bool = False,
) -> Runtime:
    """
    Wire every service from settings. Collaborators can be passed in to
    replace the network clients; offline_vocabulary skips the MeSH lookup.
    """
    settings = settings or load_settings()
    init_logging(settings.logging)
    report = cleanup_logs()
    if report["deleted_by_age"] or report["deleted_by_size"]:
        removed = len(report["deleted_by_age"]) + len(report["deleted_by_size"])
        logger.info(f"log cleanup: removed {removed} old files, {report['remaining_mb']:.1f} MB remain")

    engine = create_db_engine(settings.database.url, echo=settings.database.echo)
    init_db(engine)
    store = SqlStore(engine)

    cache = TTLCache(maxsize=settings.cache.maxsize, ttl_seconds=settings.cache.default_ttl_seconds)

    if normalization_provider is None and not offline_vocabulary:
        normalization_provider = MeshNormalizationProvider(timeout_seconds=settings.normalization.timeout_seconds)
    normalizer = TermNormalizer(
        normalization_provider,
        cache=cache,
        ttl_seconds=settings.normalization.ttl_seconds,
        min_confidence=settings.normalization.min_confidence,
    )

    a = settings.analysis
    analysis = AnalysisEngine(
        cache=cache,
        config=AnalysisConfig(
            cache_ttl_seconds=a.cache_ttl_seconds,
            eigenvector_max_iter=a.eigenvector_max_iter,
            eigenvector_tol=a.eigenvector_tol,
            community_seed=a.community_seed,
            community_resolution=a.community_resolution,
            gap_top_nodes=a.gap_top_nodes,
            gap_jaccard_threshold=a.gap_jaccard_threshold,
            gap_weak_link_ratio=a.gap_weak_link_ratio,
            gap_bridge_ratio=a.gap_bridge_ratio,
            gap_sparse_density=a.gap_sparse_density,
            max_gaps=a.max_gaps,
        ),
    )

    if search_provider is None:
        search_provider = PubMedSearchProvider(
            api_key=settings.search.ncbi_api_key,
            timeout_seconds=settings.search.timeout_seconds,
        )
    if extraction_provider is None:
        extraction_provider = build_extraction_provider(settings)

    s = settings.search
    search = SearchStage(
        search_provider,
        max_retries=s.max_retries,
        retry_backoff=s.retry_backoff,
        max_backoff_seconds=s.max_backoff_seconds,
        broaden_on_empty=s.broaden_on_empty,
        fetch_missing_abstracts=s.fetch_missing_abstracts,
    )
    extraction = ExtractionStage(
        extraction_provider,
        normalizer,
        concurrency=settings.pipeline.extraction_concurrency,
        max_text_chars=settings.extraction.max_text_chars,
    )
    job_logger = JobLogger(
        store,
        max_logs_per_job=settings.pipeline.max_logs_per_job,
        channel_size=settings.pipeline.log_channel_size,
    )
    orchestrator = JobOrchestrator(
        store,
        search=search,
        extraction=extraction,
        analysis=analysis,
        normalizer=normalizer,
        job_logger=job_logger,
        preview_entity_limit=settings.pipeline.preview_entity_limit,
        preview_relation_limit=settings.pipeline.preview_relation_limit,
    )
    orchestrator.recover_interrupted_jobs()

    logger.info(
        f"runtime ready: db={settings.database.url} search={search_provider.name} "
        f"extraction={extraction_provider.name} vocabulary={getattr(normalization_provider, 'name', 'none')}"
    )
    return Runtime(
        settings=settings,
        engine=engine,
        cache=cache,
        store=store,
        normalizer=normalizer,
        analysis=analysis,
        search_provider=search_provider,
        extraction_provider=extraction_provider,
        normalization_provider=normalization_provider,
        orchestrator=orchestrator,
    )
