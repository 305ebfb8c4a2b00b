"""
ExtractionStage：单篇失败不影响批次、空文本跳过、不修改提供方对象、取消后丢弃结果。
"""

import asyncio

import pytest

from fakes import P53_RELATIONS, P53_VOCABULARY, FakeExtractionProvider, FakeVocabulary
from litgraph.errors import JobCancelled
from litgraph.graph.normalizer import TermNormalizer
from litgraph.graph.types import Entity, Relation
from litgraph.providers.base import ExtractionProvider, NormalizedTerm
from litgraph.research.cancellation import CancelToken
from litgraph.research.extraction import ExtractionStage
from litgraph.research.records import Article
from litgraph.research.states import ExtractionStatus


def _article(article_id, title, abstract=""):
    return Article(id=article_id, job_id="job-1", title=title, abstract=abstract)


def _run(stage, articles, token=None):
    reported = []

    async def report(outcome):
        reported.append(outcome)

    summary = asyncio.run(stage.run(articles, report, token))
    return summary, {o.article_id: o for o in reported}


class SharedObjectsProvider(ExtractionProvider):
    """Returns the same Entity/Relation objects on every call, like a cached client."""

    name = "shared"

    def __init__(self):
        self.entity = Entity(name="  P53  ", type="Protein", confidence=0.8)
        self.relation = Relation(source="MDM2", target="P53", relation_type="inhibition")

    async def extract_entities(self, text):
        return [self.entity]

    async def extract_relations(self, text):
        return [self.relation]


class CancellingProvider(FakeExtractionProvider):
    def __init__(self, token):
        super().__init__(P53_VOCABULARY, P53_RELATIONS)
        self.token = token

    async def extract_entities(self, text):
        self.token.cancel()
        return await super().extract_entities(text)


def test_one_failure_does_not_stop_the_batch():
    stage = ExtractionStage(FakeExtractionProvider(P53_VOCABULARY, P53_RELATIONS), concurrency=2)
    articles = [
        _article("a1", "MDM2 inhibits P53"),
        _article("a2", "FAIL on purpose", "P53"),
        _article("a3", "BRCA1 screening"),
    ]

    summary, outcomes = _run(stage, articles)

    assert summary.to_dict() == {
        "processed": 2, "failed": 1, "skipped": 0, "discarded": 0, "entities": 3, "relations": 1,
    }
    assert outcomes["a2"].status is ExtractionStatus.failed
    assert outcomes["a2"].error == "extraction model unavailable"
    assert outcomes["a2"].entities == []
    assert {e.name for e in outcomes["a1"].entities} == {"MDM2", "P53"}
    assert outcomes["a1"].relations[0].article_ids == ["a1"]


def test_article_without_text_is_skipped():
    provider = FakeExtractionProvider(P53_VOCABULARY)
    stage = ExtractionStage(provider)

    summary, outcomes = _run(stage, [_article("a1", "   ", "")])

    assert summary.skipped == 1
    assert outcomes["a1"].status is ExtractionStatus.skipped
    assert provider.texts == []


def test_text_is_truncated():
    provider = FakeExtractionProvider(P53_VOCABULARY)
    stage = ExtractionStage(provider, max_text_chars=10)
    _run(stage, [_article("a1", "P53 " * 20)])
    assert len(provider.texts[0]) == 10


def test_provider_objects_are_not_mutated():
    provider = SharedObjectsProvider()
    stage = ExtractionStage(provider)

    _, outcomes = _run(stage, [_article("a1", "x"), _article("a2", "y")])

    assert provider.entity.name == "  P53  "
    assert provider.entity.article_ids == []
    assert provider.relation.article_ids == []
    assert outcomes["a1"].entities[0].name == "P53"
    assert outcomes["a1"].entities[0].type == "protein"
    assert outcomes["a2"].entities[0].article_ids == ["a2"]


def test_vocabulary_annotates_entities():
    term = NormalizedTerm(normalized="Tumor Suppressor Protein p53", id="D016159", category="protein", confidence=1.0)
    normalizer = TermNormalizer(FakeVocabulary({"p53": term}))
    stage = ExtractionStage(FakeExtractionProvider({"p53": "concept"}), normalizer)

    _, outcomes = _run(stage, [_article("a1", "p53 mutations")])

    entity = outcomes["a1"].entities[0]
    assert entity.vocabulary_id == "D016159"
    assert entity.type == "protein"
    assert entity.name == "p53"


def test_results_after_cancellation_are_discarded():
    token = CancelToken("job-1")
    stage = ExtractionStage(CancellingProvider(token), concurrency=1)
    articles = [_article(f"a{i}", "MDM2 inhibits P53") for i in range(3)]
    reported = []

    async def report(outcome):
        reported.append(outcome)

    with pytest.raises(JobCancelled):
        asyncio.run(stage.run(articles, report, token))
    assert reported == []
