"""
GraphBuilder: merge per-article entities/relations into one de-duplicated graph.

Identity of a node:
  - when the TermNormalizer resolves a name with enough confidence, the
    casefolded vocabulary name plus the entity type (the vocabulary category
    wins when it is itself an entity type);
  - otherwise the casefolded surface name plus the extracted type.

Every aggregate is a set union or a max, and every tie is broken by sorting,
so the result does not depend on article order and merging the same article
twice changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from litgraph.graph.normalizer import TermNormalizer
from litgraph.graph.types import (
    DEFAULT_ENTITY_TYPE,
    ExtractionResult,
    GraphEdge,
    GraphNode,
    coerce_entity_type,
)
from litgraph.log import get_logger
from litgraph.providers.base import NormalizedTerm

logger = get_logger(__name__)

NodeKey = Tuple[str, str]  # (canonical casefolded name, type)


def _fold(name: str) -> str:
    return " ".join(name.split()).casefold()


def node_id_for(key: NodeKey) -> str:
    name, etype = key
    return f"{etype}:{name.replace(' ', '_')}"


@dataclass
class BuildConfig:
    directed: bool = False
    node_types: Optional[List[str]] = None
    min_entity_confidence: float = 0.0
    min_relation_confidence: float = 0.0


@dataclass
class BuiltGraph:
    directed: bool
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)


@dataclass
class _NodeAcc:
    key: NodeKey
    names: Dict[str, float] = field(default_factory=dict)  # display candidate -> best confidence
    aliases: Set[str] = field(default_factory=set)
    article_ids: Set[str] = field(default_factory=set)
    confidence: float = 0.0
    vocabulary_ids: Set[str] = field(default_factory=set)

    def add(self, display: str, surface: str, confidence: float, article_ids: Iterable[str], vocab_id: Optional[str]):
        self.names[display] = max(confidence, self.names.get(display, 0.0))
        self.aliases.add(surface)
        self.article_ids.update(article_ids)
        self.confidence = max(self.confidence, confidence)
        if vocab_id:
            self.vocabulary_ids.add(vocab_id)

    def to_node(self) -> GraphNode:
        display = min(self.names.items(), key=lambda kv: (-kv[1], kv[0]))[0]
        return GraphNode(
            id=node_id_for(self.key),
            label=display,
            name=display,
            data={
                "type": self.key[1],
                "support": len(self.article_ids),
                "article_ids": sorted(self.article_ids),
                "confidence": round(self.confidence, 4),
                "aliases": sorted(self.aliases),
                "vocabulary_id": min(self.vocabulary_ids) if self.vocabulary_ids else None,
            },
        )


@dataclass
class _EdgeAcc:
    source: str
    target: str
    article_ids: Set[str] = field(default_factory=set)
    type_articles: Dict[str, Set[str]] = field(default_factory=dict)
    confidence: float = 0.0

    def to_edge(self, directed: bool) -> GraphEdge:
        types = sorted(self.type_articles, key=lambda t: (-len(self.type_articles[t]), t))
        sep = "->" if directed else "--"
        return GraphEdge(
            id=f"{self.source}{sep}{self.target}",
            source=self.source,
            target=self.target,
            label=types[0],
            data={
                "weight": len(self.article_ids),
                "relation_types": sorted(self.type_articles),
                "type_counts": {t: len(a) for t, a in sorted(self.type_articles.items())},
                "article_ids": sorted(self.article_ids),
                "confidence": round(self.confidence, 4),
            },
        )


class GraphBuilder:
    def __init__(self, normalizer: Optional[TermNormalizer] = None, config: Optional[BuildConfig] = None):
        self.normalizer = normalizer
        self.config = config or BuildConfig()

    def _allowed_type(self, etype: str) -> bool:
        types = self.config.node_types
        return not types or etype in {coerce_entity_type(t) for t in types}

    def _identity(self, name: str, etype: str, norm: Optional[NormalizedTerm]) -> Tuple[NodeKey, str, Optional[str]]:
        """→ (node key, display candidate, vocabulary id)."""
        if norm is not None and self.normalizer is not None and self.normalizer.is_confident(norm):
            resolved_type = TermNormalizer.entity_type_for(norm) or etype
            canonical = " ".join(norm.normalized.split())
            return (_fold(canonical), resolved_type), canonical, norm.id
        cleaned = " ".join(name.split())
        return (_fold(cleaned), etype), cleaned, None

    async def _normalize_all(self, names: Set[str]) -> Dict[str, NormalizedTerm]:
        if self.normalizer is None or not names:
            return {}
        return await self.normalizer.normalize_many(names)

    async def build(self, results: Iterable[ExtractionResult]) -> BuiltGraph:
        results = sorted(results, key=lambda r: r.article_id)
        stats = {
            "articles": len(results),
            "entities_in": 0,
            "relations_in": 0,
            "dropped_blank": 0,
            "dropped_low_confidence": 0,
            "dropped_type_filter": 0,
            "dropped_self_loops": 0,
        }

        names: Set[str] = set()
        for r in results:
            names.update(e.name.strip() for e in r.entities if e.name and e.name.strip())
            for rel in r.relations:
                names.update(n.strip() for n in (rel.source, rel.target) if n and n.strip())
        norms = await self._normalize_all(names)

        # global fallback for relation endpoints that the article itself did not tag
        global_types: Dict[str, Tuple[float, str]] = {}
        for r in results:
            for e in r.entities:
                if not e.name or not e.name.strip():
                    continue
                etype = coerce_entity_type(e.type)
                folded = _fold(e.name)
                best = global_types.get(folded)
                if best is None or (-e.confidence, etype) < (-best[0], best[1]):
                    global_types[folded] = (e.confidence, etype)

        nodes: Dict[NodeKey, _NodeAcc] = {}
        edges: Dict[Tuple[str, str], _EdgeAcc] = {}

        def _add_node(name: str, etype: str, confidence: float, article_ids: Set[str]) -> NodeKey:
            key, display, vocab_id = self._identity(name, etype, norms.get(name.strip()))
            acc = nodes.get(key)
            if acc is None:
                acc = nodes[key] = _NodeAcc(key=key)
            acc.add(display, " ".join(name.split()), confidence, article_ids, vocab_id)
            return key

        for r in results:
            local_types: Dict[str, str] = {}
            for e in r.entities:
                stats["entities_in"] += 1
                if not e.name or not e.name.strip():
                    stats["dropped_blank"] += 1
                    continue
                if e.confidence < self.config.min_entity_confidence:
                    stats["dropped_low_confidence"] += 1
                    continue
                etype = coerce_entity_type(e.type)
                if not self._allowed_type(etype):
                    stats["dropped_type_filter"] += 1
                    continue
                local_types.setdefault(_fold(e.name), etype)
                _add_node(e.name, etype, e.confidence, {r.article_id, *e.article_ids})

            for rel in r.relations:
                stats["relations_in"] += 1
                if not rel.source.strip() or not rel.target.strip():
                    stats["dropped_blank"] += 1
                    continue
                if rel.confidence < self.config.min_relation_confidence:
                    stats["dropped_low_confidence"] += 1
                    continue
                support = {r.article_id, *rel.article_ids}
                endpoint_keys: List[NodeKey] = []
                for name in (rel.source, rel.target):
                    folded = _fold(name)
                    etype = local_types.get(folded) or global_types.get(folded, (0.0, DEFAULT_ENTITY_TYPE))[1]
                    endpoint_keys.append(self._identity(name, etype, norms.get(name.strip()))[0])
                if endpoint_keys[0] == endpoint_keys[1]:
                    stats["dropped_self_loops"] += 1
                    continue
                if not all(self._allowed_type(k[1]) for k in endpoint_keys):
                    stats["dropped_type_filter"] += 1
                    continue
                src_key = _add_node(rel.source, endpoint_keys[0][1], rel.confidence, support)
                tgt_key = _add_node(rel.target, endpoint_keys[1][1], rel.confidence, support)
                src, tgt = node_id_for(src_key), node_id_for(tgt_key)
                if not self.config.directed and tgt < src:
                    src, tgt = tgt, src
                acc = edges.get((src, tgt))
                if acc is None:
                    acc = edges[(src, tgt)] = _EdgeAcc(source=src, target=tgt)
                rel_type = (rel.relation_type or "related_to").strip().lower()
                acc.article_ids.update(support)
                acc.type_articles.setdefault(rel_type, set()).update(support)
                acc.confidence = max(acc.confidence, rel.confidence)

        built = BuiltGraph(
            directed=self.config.directed,
            nodes=sorted((a.to_node() for a in nodes.values()), key=lambda n: n.id),
            edges=sorted((a.to_edge(self.config.directed) for a in edges.values()), key=lambda e: e.id),
            stats=stats,
        )
        stats["nodes"] = len(built.nodes)
        stats["edges"] = len(built.edges)
        logger.info(
            f"graph built: {stats['nodes']} nodes, {stats['edges']} edges from {stats['articles']} articles "
            f"(self-loops dropped={stats['dropped_self_loops']}, blank={stats['dropped_blank']})"
        )
        return built
