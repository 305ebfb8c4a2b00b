"""
AnalysisEngine：中心性排序与并列处理、社区确定性、研究空白、按版本缓存失效。
"""

import pytest

from litgraph.errors import InvalidInputError
from litgraph.graph.analysis import AnalysisEngine, cache_key, priority_for
from litgraph.graph.types import GraphEdge, GraphNode, GraphRecord
from litgraph.utils.cache import TTLCache


def _graph(node_ids, pairs, *, directed=False, graph_id="g1", version=1, support=None):
    support = support or {}
    nodes = [GraphNode(id=n, label=n.upper(), name=n.upper(), data={"support": support.get(n, 1)}) for n in node_ids]
    sep = "->" if directed else "--"
    edges = [
        GraphEdge(id=f"{s}{sep}{t}", source=s, target=t, label="related_to", data={"weight": w})
        for s, t, w in ((p + (1,)) if len(p) == 2 else p for p in pairs)
    ]
    return GraphRecord(id=graph_id, owner_id="u1", directed=directed, nodes=nodes, edges=edges, version=version)


STAR = _graph(["a", "b", "c"], [("a", "b"), ("a", "c")])
TWO_TRIANGLES = _graph(
    ["a1", "a2", "a3", "b1", "b2", "b3"],
    [("a1", "a2"), ("a1", "a3"), ("a2", "a3"), ("b1", "b2"), ("b1", "b3"), ("b2", "b3"), ("a3", "b1")],
)


class TestCentrality:
    def test_degree_ranks_hub_first_and_breaks_ties_by_id(self):
        ranking = AnalysisEngine().degree(STAR)
        assert [(s.node_id, s.score, s.rank) for s in ranking] == [("a", 2.0, 1), ("b", 1.0, 2), ("c", 1.0, 3)]
        assert ranking[0].label == "A"

    def test_betweenness_of_star_centre(self):
        scores = {s.node_id: s.score for s in AnalysisEngine().betweenness(STAR)}
        assert scores == {"a": 1.0, "b": 0.0, "c": 0.0}

    def test_closeness_averages_reachable_nodes(self):
        scores = {s.node_id: s.score for s in AnalysisEngine().closeness(STAR)}
        assert scores["a"] == 1.0
        assert scores["b"] == pytest.approx(2 / 3, abs=1e-6)

    def test_eigenvector_is_max_normalized(self):
        ranking = AnalysisEngine().eigenvector(STAR)
        assert ranking[0].node_id == "a"
        assert ranking[0].score == 1.0
        assert ranking[1].score == ranking[2].score
        assert 0 < ranking[1].score < 1

    def test_directed_degree_reports_in_and_out(self):
        graph = _graph(["a", "b", "c"], [("a", "b"), ("c", "b")], directed=True)
        top = AnalysisEngine().degree(graph)[0]
        assert top.node_id == "b"
        assert (top.in_degree, top.out_degree) == (2, 0)
        assert "in_degree" in top.to_dict()
        assert "in_degree" not in AnalysisEngine().degree(STAR)[0].to_dict()

    def test_unknown_kind_is_invalid_input(self):
        with pytest.raises(InvalidInputError):
            AnalysisEngine().centrality(STAR, "pagerank")
        with pytest.raises(InvalidInputError):
            AnalysisEngine().run(STAR, "pagerank")

    def test_edge_to_missing_node_is_rejected(self):
        graph = _graph(["a"], [("a", "z")])
        with pytest.raises(InvalidInputError):
            AnalysisEngine().degree(graph)


class TestCommunities:
    def test_two_triangles_split_into_two_communities(self):
        result = AnalysisEngine().communities(TWO_TRIANGLES)
        a = {result.assignments[n] for n in ("a1", "a2", "a3")}
        b = {result.assignments[n] for n in ("b1", "b2", "b3")}
        assert len(a) == 1 and len(b) == 1 and a != b
        assert result.modularity > 0

    def test_repeated_runs_give_identical_assignments(self):
        first = AnalysisEngine().communities(TWO_TRIANGLES).to_dict()
        second = AnalysisEngine().communities(TWO_TRIANGLES).to_dict()
        assert first == second

    def test_edgeless_graph_gives_singletons(self):
        result = AnalysisEngine().communities(_graph(["x", "y"], []))
        assert result.communities == [["x"], ["y"]]
        assert result.modularity == 0.0


class TestGaps:
    def test_shared_neighbours_without_edge_is_missing_link(self):
        gaps = AnalysisEngine().gaps(_graph(["a", "b", "c"], [("a", "b"), ("a", "c")]))
        missing = [g for g in gaps if g.kind == "missing_link"]
        assert len(missing) == 1
        assert missing[0].node_ids == ["b", "c"]
        assert missing[0].details["shared_neighbors"] == ["a"]
        assert missing[0].priority == priority_for(missing[0].score)

    def test_isolated_entity_is_reported(self):
        gaps = AnalysisEngine().gaps(_graph(["a", "b", "d"], [("a", "b")], support={"d": 3}))
        isolated = [g for g in gaps if g.kind == "isolated"]
        assert [g.node_ids for g in isolated] == [["d"]]
        assert "3 article(s)" in isolated[0].description

    def test_gaps_sorted_by_score(self):
        gaps = AnalysisEngine().gaps(TWO_TRIANGLES)
        assert [g.score for g in gaps] == sorted((g.score for g in gaps), reverse=True)
        assert all(0.0 <= g.score <= 1.0 for g in gaps)

    def test_empty_graph_has_no_gaps(self):
        engine = AnalysisEngine()
        empty = _graph([], [])
        assert engine.gaps(empty) == []
        assert engine.summary(empty)["node_count"] == 0


def test_priority_bands():
    assert priority_for(0.9) == "high"
    assert priority_for(0.3) == "medium"
    assert priority_for(0.1) == "low"


class TestCaching:
    def test_result_cached_per_graph_version(self):
        cache = TTLCache()
        engine = AnalysisEngine(cache=cache)
        first = engine.degree(STAR)
        assert cache.contains(cache_key("g1", 1, "degree"))
        assert engine.degree(STAR) is first

    def test_invalidate_only_drops_one_version(self):
        cache = TTLCache()
        engine = AnalysisEngine(cache=cache)
        v1 = _graph(["a", "b"], [("a", "b")], version=1)
        v2 = _graph(["a", "b", "c"], [("a", "b"), ("b", "c")], version=2)
        engine.analyze(v1)
        engine.analyze(v2)

        removed = engine.invalidate("g1", 1)

        assert removed > 0
        assert not cache.contains(cache_key("g1", 1, "summary"))
        assert cache.contains(cache_key("g1", 2, "summary"))

    def test_new_version_is_not_served_stale_results(self):
        engine = AnalysisEngine(cache=TTLCache())
        v1 = _graph(["a", "b"], [("a", "b")], version=1)
        v2 = _graph(["a", "b", "c"], [("a", "b"), ("b", "c")], version=2)
        assert engine.summary(v1)["node_count"] == 2
        assert engine.summary(v2)["node_count"] == 3

    def test_analyze_bundle_has_every_section(self):
        bundle = AnalysisEngine().analyze(STAR)
        assert set(bundle) == {"summary", "centrality", "communities", "gaps"}
        assert set(bundle["centrality"]) == {"degree", "betweenness", "closeness", "eigenvector"}
        assert bundle["summary"]["edge_count"] == 2
        assert bundle["summary"]["top_nodes"][0]["node_id"] == "a"
