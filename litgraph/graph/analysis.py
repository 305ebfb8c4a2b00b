"""
AnalysisEngine: centrality, community structure and research-gap candidates
over a built graph, via networkx.

Every result is computed for one (graph id, version) and cached under
"analysis:<graph id>:v<version>:<kind>". Publishing a new version only drops
the keys of the version it replaces.

Ranked outputs sort by (-score, node id) so equal scores always come out in
the same order.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from itertools import combinations
from typing import Any, Callable, Dict, List, Optional, Tuple

import networkx as nx

from litgraph.errors import InvalidInputError
from litgraph.graph.types import GraphRecord
from litgraph.log import get_logger
from litgraph.observability import metrics
from litgraph.utils.cache import TTLCache

logger = get_logger(__name__)

CENTRALITY_KINDS = ("degree", "betweenness", "closeness", "eigenvector")
ANALYSIS_KINDS = CENTRALITY_KINDS + ("communities", "gaps", "summary")

GAP_KINDS = ("missing_link", "weak_link", "sparse_bridge", "sparse_community", "isolated")


def cache_key(graph_id: str, version: int, kind: str) -> str:
    return f"analysis:{graph_id}:v{version}:{kind}"


def priority_for(score: float) -> str:
    if score >= 0.5:
        return "high"
    if score >= 0.25:
        return "medium"
    return "low"


@dataclass
class AnalysisConfig:
    cache_ttl_seconds: float = 900
    eigenvector_max_iter: int = 100
    eigenvector_tol: float = 1e-6
    community_seed: int = 42
    community_resolution: float = 1.0
    gap_top_nodes: int = 10
    gap_jaccard_threshold: float = 0.3
    gap_weak_link_ratio: float = 0.5
    gap_bridge_ratio: float = 0.1
    gap_sparse_density: float = 0.3
    max_gaps: int = 20


@dataclass
class CentralityScore:
    node_id: str
    label: str
    score: float
    rank: int
    in_degree: Optional[int] = None
    out_degree: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.in_degree is None:
            d.pop("in_degree")
            d.pop("out_degree")
        return d


@dataclass
class CommunityResult:
    assignments: Dict[str, int]
    communities: List[List[str]]
    modularity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignments": dict(self.assignments),
            "communities": [list(c) for c in self.communities],
            "modularity": self.modularity,
            "count": len(self.communities),
        }


@dataclass
class GapCandidate:
    kind: str
    node_ids: List[str]
    labels: List[str]
    score: float
    evidence_score: float
    priority: str
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _ranked(graph: GraphRecord, scores: Dict[str, float], **extra: Dict[str, int]) -> List[CentralityScore]:
    labels = {n.id: n.label for n in graph.nodes}
    ordered = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
    out: List[CentralityScore] = []
    for rank, (node_id, score) in enumerate(ordered, start=1):
        item = CentralityScore(node_id=node_id, label=labels.get(node_id, node_id), score=round(score, 6), rank=rank)
        if extra:
            item.in_degree = extra["in_degree"].get(node_id, 0)
            item.out_degree = extra["out_degree"].get(node_id, 0)
        out.append(item)
    return out


class AnalysisEngine:
    def __init__(self, cache: Optional[TTLCache] = None, config: Optional[AnalysisConfig] = None):
        self.cache = cache
        self.config = config or AnalysisConfig()

    # ── graph views ──────────────────────────────────────────────────────────

    @staticmethod
    def to_networkx(graph: GraphRecord) -> nx.Graph:
        g: nx.Graph = nx.DiGraph() if graph.directed else nx.Graph()
        for node in sorted(graph.nodes, key=lambda n: n.id):
            g.add_node(node.id, label=node.label, support=node.support, type=node.type)
        for edge in sorted(graph.edges, key=lambda e: e.id):
            if edge.source not in g or edge.target not in g:
                raise InvalidInputError(f"edge {edge.id} references a node outside the graph")
            g.add_edge(edge.source, edge.target, weight=edge.weight)
        return g

    @staticmethod
    def undirected_view(graph: GraphRecord) -> nx.Graph:
        """Undirected graph; antiparallel directed edges collapse with summed weight."""
        g = nx.Graph()
        for node in sorted(graph.nodes, key=lambda n: n.id):
            g.add_node(node.id, label=node.label, support=node.support)
        for edge in sorted(graph.edges, key=lambda e: e.id):
            if g.has_edge(edge.source, edge.target):
                g[edge.source][edge.target]["weight"] += edge.weight
            else:
                g.add_edge(edge.source, edge.target, weight=edge.weight)
        return g

    # ── caching ──────────────────────────────────────────────────────────────

    def _cached(self, graph: GraphRecord, kind: str, compute: Callable[[], Any]) -> Any:
        if self.cache is None or not graph.id:
            return compute()
        key = cache_key(graph.id, graph.version, kind)
        hit = self.cache.get(key)
        if hit is not None:
            metrics.analysis_cache_total.labels(result="hit").inc()
            return hit
        metrics.analysis_cache_total.labels(result="miss").inc()
        value = compute()
        self.cache.set(key, value, self.config.cache_ttl_seconds)
        return value

    def invalidate(self, graph_id: str, version: int) -> int:
        """Drop cached results of one graph version; other versions and graphs are untouched."""
        if self.cache is None:
            return 0
        removed = self.cache.delete_by_pattern(rf"^analysis:{re.escape(graph_id)}:v{int(version)}:")
        logger.debug(f"invalidated {removed} cached analysis entries for {graph_id} v{version}")
        return removed

    # ── centrality ───────────────────────────────────────────────────────────

    def degree(self, graph: GraphRecord) -> List[CentralityScore]:
        def compute():
            g = self.to_networkx(graph)
            if graph.directed:
                ins = dict(g.in_degree())
                outs = dict(g.out_degree())
                total = {n: float(ins[n] + outs[n]) for n in g.nodes}
                return _ranked(graph, total, in_degree=ins, out_degree=outs)
            return _ranked(graph, {n: float(d) for n, d in g.degree()})

        return self._cached(graph, "degree", compute)

    def betweenness(self, graph: GraphRecord) -> List[CentralityScore]:
        def compute():
            g = self.to_networkx(graph)
            return _ranked(graph, nx.betweenness_centrality(g, normalized=True))

        return self._cached(graph, "betweenness", compute)

    def closeness(self, graph: GraphRecord) -> List[CentralityScore]:
        # wf_improved=False: average over reachable nodes only
        def compute():
            g = self.to_networkx(graph)
            return _ranked(graph, nx.closeness_centrality(g, wf_improved=False))

        return self._cached(graph, "closeness", compute)

    def eigenvector(self, graph: GraphRecord) -> List[CentralityScore]:
        return self._cached(graph, "eigenvector", lambda: _ranked(graph, self._eigenvector_scores(graph)))

    def _eigenvector_scores(self, graph: GraphRecord) -> Dict[str, float]:
        """
        Weighted power iteration on (A + I) of the undirected view, max-normalized
        each step; stops at tolerance or the iteration cap, whichever comes first.
        """
        g = self.undirected_view(graph)
        if g.number_of_nodes() == 0:
            return {}
        x = {n: 1.0 for n in g.nodes}
        tol = self.config.eigenvector_tol * g.number_of_nodes()
        for _ in range(max(1, self.config.eigenvector_max_iter)):
            nxt = {
                n: x[n] + sum(x[m] * data.get("weight", 1) for m, data in g[n].items())
                for n in g.nodes
            }
            peak = max(nxt.values()) or 1.0
            nxt = {n: v / peak for n, v in nxt.items()}
            delta = sum(abs(nxt[n] - x[n]) for n in g.nodes)
            x = nxt
            if delta < tol:
                break
        peak = max(x.values()) or 1.0
        return {n: v / peak for n, v in x.items()}

    def centrality(self, graph: GraphRecord, kind: str) -> List[CentralityScore]:
        if kind not in CENTRALITY_KINDS:
            raise InvalidInputError(f"unknown centrality kind: {kind}")
        return getattr(self, kind)(graph)

    # ── communities ──────────────────────────────────────────────────────────

    def communities(self, graph: GraphRecord) -> CommunityResult:
        return self._cached(graph, "communities", lambda: self._communities(graph))

    def _communities(self, graph: GraphRecord) -> CommunityResult:
        g = self.undirected_view(graph)
        if g.number_of_edges() == 0:
            parts = [{n} for n in g.nodes]
            modularity = 0.0
        else:
            parts = nx.community.louvain_communities(
                g,
                weight="weight",
                resolution=self.config.community_resolution,
                seed=self.config.community_seed,
            )
            modularity = nx.community.modularity(g, parts, weight="weight")
        ordered = sorted((sorted(p) for p in parts), key=lambda c: (-len(c), c[0]))
        assignments = {node: idx for idx, members in enumerate(ordered) for node in members}
        return CommunityResult(assignments=assignments, communities=ordered, modularity=round(modularity, 6))

    # ── gaps ─────────────────────────────────────────────────────────────────

    def gaps(self, graph: GraphRecord) -> List[GapCandidate]:
        return self._cached(graph, "gaps", lambda: self._gaps(graph))

    def _importance(self, graph: GraphRecord) -> Dict[str, float]:
        """Mean of max-normalized degree, betweenness and eigenvector scores, in [0, 1]."""
        parts: List[Dict[str, float]] = []
        for ranking in (self.degree(graph), self.betweenness(graph), self.eigenvector(graph)):
            scores = {s.node_id: s.score for s in ranking}
            peak = max(scores.values(), default=0.0)
            parts.append({n: (v / peak if peak > 0 else 0.0) for n, v in scores.items()})
        return {n: sum(p.get(n, 0.0) for p in parts) / len(parts) for n in graph.node_ids()}

    def _gaps(self, graph: GraphRecord) -> List[GapCandidate]:
        cfg = self.config
        g = self.undirected_view(graph)
        if g.number_of_nodes() == 0:
            return []
        importance = self._importance(graph)
        support = {n.id: n.support for n in graph.nodes}
        labels = {n.id: n.label for n in graph.nodes}
        max_support = max(support.values(), default=0) or 1

        def make(kind: str, nodes: List[str], strength: float, description: str, **details: Any) -> GapCandidate:
            nodes = sorted(nodes)
            imp = sum(importance[n] for n in nodes) / len(nodes)
            evidence = sum(support[n] / max_support for n in nodes) / len(nodes)
            score = round(max(0.0, min(1.0, strength)) * (0.6 * imp + 0.4 * evidence), 4)
            return GapCandidate(
                kind=kind,
                node_ids=nodes,
                labels=[labels[n] for n in nodes],
                score=score,
                evidence_score=round(min(1.0, evidence), 4),
                priority=priority_for(score),
                description=description,
                details={"importance": round(imp, 4), **details},
            )

        out: List[GapCandidate] = []
        top = sorted(importance, key=lambda n: (-importance[n], n))[: max(2, cfg.gap_top_nodes)]
        component_of = {n: i for i, comp in enumerate(nx.connected_components(g)) for n in comp}

        # important pairs without a direct edge
        for a, b in combinations(sorted(top), 2):
            if g.has_edge(a, b):
                continue
            na, nb = set(g[a]), set(g[b])
            union = na | nb
            jaccard = len(na & nb) / len(union) if union else 0.0
            if jaccard > cfg.gap_jaccard_threshold:
                out.append(make(
                    "missing_link", [a, b], 0.5 + 0.5 * jaccard,
                    f"{labels[a]} and {labels[b]} share {len(na & nb)} neighbours but are never linked",
                    jaccard=round(jaccard, 4), shared_neighbors=sorted(na & nb),
                ))
            elif component_of[a] != component_of[b] and na and nb:
                out.append(make(
                    "missing_link", [a, b], 0.5,
                    f"{labels[a]} and {labels[b]} sit in disconnected parts of the graph",
                    jaccard=round(jaccard, 4), shared_neighbors=[],
                ))

        # important pairs joined by a thin edge
        for a, b in combinations(sorted(top), 2):
            if not g.has_edge(a, b):
                continue
            expected = min(support[a], support[b]) or 1
            ratio = g[a][b]["weight"] / expected
            if ratio < cfg.gap_weak_link_ratio:
                out.append(make(
                    "weak_link", [a, b], 1.0 - ratio,
                    f"{labels[a]} and {labels[b]} co-occur in {g[a][b]['weight']} article(s) "
                    f"against {expected} expected",
                    weight=g[a][b]["weight"], expected=expected,
                ))

        communities = self.communities(graph).communities
        # community pairs with sparse cross-links
        cross: Dict[Tuple[int, int], int] = {}
        assignment = {n: i for i, members in enumerate(communities) for n in members}
        for u, v in g.edges:
            cu, cv = sorted((assignment[u], assignment[v]))
            if cu != cv:
                cross[(cu, cv)] = cross.get((cu, cv), 0) + 1
        for (i, ci), (j, cj) in combinations(enumerate(communities), 2):
            if len(ci) < 2 or len(cj) < 2:
                continue
            possible = len(ci) * len(cj)
            links = cross.get((i, j), 0)
            density = links / possible
            if density < cfg.gap_bridge_ratio:
                rep_i = sorted(ci, key=lambda n: (-g.degree(n), n))[0]
                rep_j = sorted(cj, key=lambda n: (-g.degree(n), n))[0]
                out.append(make(
                    "sparse_bridge", [rep_i, rep_j], 1.0 - density / cfg.gap_bridge_ratio,
                    f"communities {i} and {j} are linked by {links} of {possible} possible edges",
                    communities=[i, j], cross_edges=links,
                ))

        # internally sparse communities
        for i, members in enumerate(communities):
            if len(members) < 3:
                continue
            density = nx.density(g.subgraph(members))
            if density < cfg.gap_sparse_density:
                core = sorted(members, key=lambda n: (-importance[n], n))[:3]
                out.append(make(
                    "sparse_community", core, 1.0 - density / cfg.gap_sparse_density,
                    f"community {i} ({len(members)} nodes) has internal density {density:.2f}",
                    community=i, density=round(density, 4),
                ))

        # entities with evidence but no connections
        for n in sorted(g.nodes):
            if g.degree(n) == 0:
                out.append(make(
                    "isolated", [n], 1.0,
                    f"{labels[n]} is mentioned in {support[n]} article(s) but linked to nothing",
                ))

        out.sort(key=lambda c: (-c.score, c.kind, c.node_ids))
        return out[: cfg.max_gaps]

    # ── summary ──────────────────────────────────────────────────────────────

    def summary(self, graph: GraphRecord) -> Dict[str, Any]:
        def compute():
            g = self.to_networkx(graph)
            u = self.undirected_view(graph)
            return {
                "node_count": g.number_of_nodes(),
                "edge_count": g.number_of_edges(),
                "density": round(nx.density(g), 6) if g.number_of_nodes() > 1 else 0.0,
                "components": nx.number_connected_components(u) if u.number_of_nodes() else 0,
                "total_weight": sum(e.weight for e in graph.edges),
                "directed": graph.directed,
                "top_nodes": [s.to_dict() for s in self.degree(graph)[:10]],
            }

        return self._cached(graph, "summary", compute)

    def run(self, graph: GraphRecord, kind: str) -> Any:
        """One analysis kind in its serialisable form."""
        if kind in CENTRALITY_KINDS:
            return [s.to_dict() for s in self.centrality(graph, kind)]
        if kind == "communities":
            return self.communities(graph).to_dict()
        if kind == "gaps":
            return [gap.to_dict() for gap in self.gaps(graph)]
        if kind == "summary":
            return self.summary(graph)
        raise InvalidInputError(f"unknown analysis kind: {kind}")

    def analyze(self, graph: GraphRecord) -> Dict[str, Any]:
        """Full metrics bundle stored with each graph snapshot."""
        return {
            "summary": self.summary(graph),
            "centrality": {kind: self.run(graph, kind) for kind in CENTRALITY_KINDS},
            "communities": self.run(graph, "communities"),
            "gaps": self.run(graph, "gaps"),
        }
