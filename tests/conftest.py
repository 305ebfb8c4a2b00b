"""
共享 Fixtures: 内存 SQLite、共享缓存、编排器工厂（替身见 fakes.py）。
"""

from typing import Optional

import pytest

from litgraph.log import init_logging

init_logging({"level": "WARNING", "console_output": False, "file_output": False})

from fakes import P53_ARTICLES, P53_RELATIONS, P53_VOCABULARY, FakeExtractionProvider, FakeSearchProvider, no_sleep  # noqa: E402
from litgraph.db import create_db_engine, init_db  # noqa: E402
from litgraph.graph.analysis import AnalysisEngine  # noqa: E402
from litgraph.graph.normalizer import TermNormalizer  # noqa: E402
from litgraph.providers.base import ArticleSearchProvider, ExtractionProvider, TermNormalizationProvider  # noqa: E402
from litgraph.research.extraction import ExtractionStage  # noqa: E402
from litgraph.research.job_logger import JobLogger  # noqa: E402
from litgraph.research.job_store import SqlStore  # noqa: E402
from litgraph.research.orchestrator import JobOrchestrator  # noqa: E402
from litgraph.research.search import SearchStage  # noqa: E402
from litgraph.utils.cache import TTLCache  # noqa: E402


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return SqlStore(engine)


@pytest.fixture
def cache():
    return TTLCache(maxsize=1000, ttl_seconds=3600)


@pytest.fixture
def make_orchestrator(store, cache):
    """工厂：按需替换检索/抽取/术语库替身，其余使用内存实现。"""

    def _make(
        search_provider: Optional[ArticleSearchProvider] = None,
        extraction_provider: Optional[ExtractionProvider] = None,
        vocabulary: Optional[TermNormalizationProvider] = None,
        concurrency: int = 3,
        max_logs_per_job: int = 1000,
    ) -> JobOrchestrator:
        normalizer = TermNormalizer(vocabulary, cache=cache)
        search = SearchStage(
            search_provider or FakeSearchProvider(P53_ARTICLES),
            max_retries=3,
            retry_backoff=2.0,
            sleep=no_sleep,
        )
        extraction = ExtractionStage(
            extraction_provider or FakeExtractionProvider(P53_VOCABULARY, P53_RELATIONS),
            normalizer,
            concurrency=concurrency,
        )
        return JobOrchestrator(
            store,
            search=search,
            extraction=extraction,
            analysis=AnalysisEngine(cache=cache),
            normalizer=normalizer,
            job_logger=JobLogger(store, max_logs_per_job=max_logs_per_job, channel_size=16),
        )

    return _make
