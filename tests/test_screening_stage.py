"""
ScreeningStage / 请求模型：重叠拒绝、未知 id 不落库、未列出的文献回到 pending。
"""

import pytest

from fakes import P53_ARTICLES
from litgraph.errors import InvalidInputError, NotFoundError
from litgraph.research.schemas import AnalyzeRequest, CreateJobRequest, ScreeningUpdate, validate
from litgraph.research.screening import ScreeningStage
from litgraph.research.states import ScreeningStatus


@pytest.fixture
def seeded(store):
    job = store.create_job(owner_id="u1", topic="p53")
    articles = store.add_articles(job.id, P53_ARTICLES)
    return job, [a.id for a in articles]


def _statuses(store, job_id):
    return {a.id: a.screening_status for a in store.list_articles(job_id)}


class TestScreeningUpdate:
    def test_overlap_is_invalid_input(self):
        with pytest.raises(InvalidInputError) as exc_info:
            validate(ScreeningUpdate, {"included_ids": ["a", "b"], "excluded_ids": ["b"]})
        assert "b" in exc_info.value.message
        assert exc_info.value.details["errors"]

    def test_model_instance_passes_through(self):
        update = ScreeningUpdate(included_ids=["a"])
        assert validate(ScreeningUpdate, update) is update


class TestApply:
    def test_apply_and_read_back(self, store, seeded):
        job, (a, b, c) = seeded
        stage = ScreeningStage(store)
        update = ScreeningUpdate(
            included_ids=[a, b],
            excluded_ids=[c],
            exclusion_reasons={c: "not about p53", a: "ignored for included"},
        )

        counts = stage.apply(job.id, update)

        assert counts == {"pending": 0, "included": 2, "excluded": 1}
        rows = {x.id: x for x in store.list_articles(job.id)}
        assert rows[a].screening_reason == ""
        assert rows[c].screening_reason == "not about p53"

    def test_unlisted_articles_return_to_pending(self, store, seeded):
        job, (a, b, c) = seeded
        stage = ScreeningStage(store)
        stage.apply(job.id, ScreeningUpdate(included_ids=[a, b], excluded_ids=[c]))

        counts = stage.apply(job.id, ScreeningUpdate(included_ids=[b]))

        assert counts == {"pending": 2, "included": 1, "excluded": 0}
        assert _statuses(store, job.id) == {
            a: ScreeningStatus.pending,
            b: ScreeningStatus.included,
            c: ScreeningStatus.pending,
        }

    def test_unknown_ids_rejected_without_writes(self, store, seeded):
        job, (a, b, c) = seeded
        stage = ScreeningStage(store)
        before = _statuses(store, job.id)

        with pytest.raises(NotFoundError) as exc_info:
            stage.apply(job.id, ScreeningUpdate(included_ids=[a, "nope"], excluded_ids=["zzz"]))

        assert exc_info.value.details["ids"] == ["nope", "zzz"]
        assert _statuses(store, job.id) == before

    def test_ids_of_another_job_are_unknown(self, store, seeded):
        job, _ = seeded
        other = store.create_job(owner_id="u1", topic="brca1")
        foreign = store.add_articles(other.id, P53_ARTICLES[:1])[0].id
        with pytest.raises(NotFoundError):
            ScreeningStage(store).apply(job.id, ScreeningUpdate(included_ids=[foreign]))


class TestCreateJobRequest:
    def test_topic_whitespace_is_collapsed(self):
        req = validate(CreateJobRequest, {"topic": "  p53   regulation "})
        assert req.topic == "p53 regulation"
        assert req.max_results == 20
        assert req.sources == ["pubmed"]

    @pytest.mark.parametrize("payload", [
        {"topic": ""},
        {"topic": "   "},
        {"topic": "x" * 501},
        {"topic": "p53", "max_results": 0},
        {"topic": "p53", "max_results": 201},
        {"topic": "p53", "year_from": 2021, "year_to": 2020},
        {"topic": "p53", "year_from": 1700},
        {},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(InvalidInputError):
            validate(CreateJobRequest, payload)

    def test_analyze_request_bounds(self):
        assert validate(AnalyzeRequest, None).directed is False
        with pytest.raises(InvalidInputError):
            validate(AnalyzeRequest, {"min_relation_confidence": 1.5})
