"""
SqlStore：任务排序、筛选计数、抽取计数、日志裁剪、图版本与级联删除。
"""

import time

import pytest

from fakes import P53_ARTICLES
from litgraph.errors import NotFoundError, StateConflictError
from litgraph.graph.types import Entity, GraphEdge, GraphNode, GraphRecord, Relation
from litgraph.research.states import ExtractionStatus, JobStatus, ScreeningStatus


def _graph(job_id, version, owner="u1", graph_id="g1", nodes=("a", "b")):
    return GraphRecord(
        id=graph_id,
        owner_id=owner,
        job_id=job_id,
        name="p53 network",
        nodes=[GraphNode(id=n, label=n, name=n, data={"support": 1}) for n in nodes],
        edges=[GraphEdge(id="a--b", source="a", target="b", label="inhibition", data={"weight": 2})],
        metrics={"summary": {"node_count": len(nodes)}},
        version=version,
    )


class TestJobs:
    def test_create_and_get(self, store):
        job = store.create_job(owner_id="u1", topic="p53 regulation", options={"max_results": 5})
        assert job.status is JobStatus.pending
        assert job.options == {"max_results": 5}
        assert store.get_job(job.id).topic == "p53 regulation"
        assert store.get_job(job.id, owner_id="someone-else") is None
        assert store.get_job("missing") is None

    def test_list_is_newest_first_and_owner_scoped(self, store):
        first = store.create_job(owner_id="u1", topic="first")
        time.sleep(0.01)
        second = store.create_job(owner_id="u1", topic="second")
        store.create_job(owner_id="u2", topic="other")
        assert [j.id for j in store.list_jobs("u1")] == [second.id, first.id]
        assert [j.id for j in store.list_jobs("u1", limit=1)] == [second.id]

    def test_update_maps_enums_and_options(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        updated = store.update_job(job.id, status=JobStatus.searching, progress=5.0, options={"k": 1})
        assert updated.status is JobStatus.searching
        assert updated.progress == 5.0
        assert updated.options == {"k": 1}
        assert [j.id for j in store.list_jobs_in_status([JobStatus.searching])] == [job.id]

    def test_update_returns_the_whole_committed_row(self, store):
        job = store.create_job(owner_id="u1", topic="p53 regulation", options={"max_results": 5})
        updated = store.update_job(job.id, status=JobStatus.searching)
        assert updated.id == job.id
        assert updated.owner_id == "u1"
        assert updated.topic == "p53 regulation"
        assert updated.options == {"max_results": 5}
        assert updated.created_at == job.created_at
        assert updated.updated_at >= job.updated_at
        assert store.get_job(job.id) == updated

    def test_update_missing_job_raises(self, store):
        with pytest.raises(NotFoundError):
            store.update_job("missing", progress=1.0)

    def test_update_unknown_field_raises(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        with pytest.raises(AttributeError):
            store.update_job(job.id, colour="blue")


class TestArticles:
    def test_positions_follow_insert_order(self, store):
        job = store.create_job(owner_id="u1", topic="p53")
        articles = store.add_articles(job.id, P53_ARTICLES)
        assert [a.title for a in articles] == [c.title for c in P53_ARTICLES]
        assert [a.position for a in articles] == [0, 1, 2]
        assert store.article_ids(job.id) == {a.id for a in articles}

    def test_apply_screening_counts_and_resets(self, store):
        job = store.create_job(owner_id="u1", topic="p53")
        a, b, c = store.add_articles(job.id, P53_ARTICLES)

        counts = store.apply_screening(job.id, {a.id, b.id}, {c.id}, {c.id: " off topic "})
        assert counts == {"pending": 0, "included": 2, "excluded": 1}
        excluded = store.list_articles(job.id, ScreeningStatus.excluded)
        assert [(x.id, x.screening_reason) for x in excluded] == [(c.id, "off topic")]

        counts = store.apply_screening(job.id, {a.id}, set(), {})
        assert counts == {"pending": 2, "included": 1, "excluded": 0}
        assert store.list_articles(job.id, ScreeningStatus.pending)[1].screening_reason == ""

    def test_save_extraction_and_count_processed(self, store):
        job = store.create_job(owner_id="u1", topic="p53")
        a, b, c = store.add_articles(job.id, P53_ARTICLES)
        store.save_extraction(
            a.id,
            ExtractionStatus.processed,
            [Entity(name="P53", type="protein", confidence=0.9, article_ids=[a.id])],
            [Relation(source="MDM2", target="P53", relation_type="inhibition")],
        )
        store.save_extraction(b.id, ExtractionStatus.failed, error="model down")
        assert store.count_processed(job.id) == 2

        saved = {x.id: x for x in store.list_articles(job.id)}
        assert saved[a.id].entities[0].name == "P53"
        assert saved[a.id].relations[0].relation_type == "inhibition"
        assert saved[b.id].extraction_error == "model down"
        assert saved[c.id].extraction_status is ExtractionStatus.pending

    def test_save_extraction_unknown_article(self, store):
        with pytest.raises(NotFoundError):
            store.save_extraction("missing", ExtractionStatus.processed)


class TestLogs:
    def test_ids_increase_and_after_id_filters(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        entries = [store.append_log(job.id, "info", f"step {i}", {"i": i}) for i in range(3)]
        assert entries[0].id < entries[1].id < entries[2].id
        tail = store.list_logs(job.id, after_id=entries[0].id)
        assert [e.message for e in tail] == ["step 1", "step 2"]
        assert tail[0].data == {"i": 1}

    def test_oldest_entries_pruned_beyond_limit(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        for i in range(5):
            store.append_log(job.id, "info", f"step {i}", max_logs=3)
        assert [e.message for e in store.list_logs(job.id)] == ["step 2", "step 3", "step 4"]


class TestGraphs:
    def test_versions_and_snapshots(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        assert store.latest_version("g1") == 0

        store.persist_graph(_graph(job.id, 1))
        snap = store.persist_graph(_graph(job.id, 2, nodes=("a", "b", "c")))

        assert snap.version == 2
        assert store.latest_version("g1") == 2
        assert [s.version for s in store.list_snapshots("g1")] == [1, 2]
        assert len(store.get_snapshot("g1", 1).nodes) == 2
        head = store.get_graph("g1", owner_id="u1")
        assert head.version == 2
        assert len(head.nodes) == 3
        assert head.metrics == {"summary": {"node_count": 3}}
        assert store.get_graph("g1", owner_id="u2") is None

    def test_non_increasing_version_is_a_conflict(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        store.persist_graph(_graph(job.id, 1))
        with pytest.raises(StateConflictError):
            store.persist_graph(_graph(job.id, 1))
        assert [s.version for s in store.list_snapshots("g1")] == [1]

    def test_job_graph_id_is_set_once(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        store.persist_graph(_graph(job.id, 1))
        store.persist_graph(_graph(job.id, 1, graph_id="g2"))
        assert store.get_job(job.id).graph_id == "g1"

    def test_delete_cascades_to_articles_but_keeps_graphs(self, store):
        job = store.create_job(owner_id="u1", topic="t")
        store.add_articles(job.id, P53_ARTICLES)
        store.append_log(job.id, "info", "hello")
        store.persist_graph(_graph(job.id, 1))

        assert store.delete_job(job.id) is True
        assert store.delete_job(job.id) is False
        assert store.get_job(job.id) is None
        assert store.list_articles(job.id) == []
        assert store.list_logs(job.id) == []
        assert store.get_graph("g1") is not None
        assert [g.id for g in store.list_graphs("u1")] == ["g1"]
