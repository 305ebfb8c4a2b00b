"""
Graph-side value types: extraction-local entities/relations and the
node/edge/graph records the builder produces and the analysis engine reads.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ENTITY_TYPES = ("protein", "gene", "disease", "drug", "pathway", "concept")
DEFAULT_ENTITY_TYPE = "concept"


def coerce_entity_type(value: Optional[str]) -> str:
    t = (value or "").strip().lower()
    return t if t in ENTITY_TYPES else DEFAULT_ENTITY_TYPE


# ── extraction-local ─────────────────────────────────────────

@dataclass
class Entity:
    name: str
    type: str = DEFAULT_ENTITY_TYPE
    confidence: float = 1.0
    article_ids: List[str] = field(default_factory=list)
    vocabulary_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "confidence": self.confidence,
            "article_ids": list(self.article_ids),
            "vocabulary_id": self.vocabulary_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Entity:
        return cls(
            name=str(data.get("name", "")),
            type=coerce_entity_type(data.get("type")),
            confidence=float(data.get("confidence", 1.0)),
            article_ids=[str(a) for a in data.get("article_ids") or []],
            vocabulary_id=data.get("vocabulary_id"),
        )


@dataclass
class Relation:
    source: str
    target: str
    relation_type: str = "related_to"
    confidence: float = 1.0
    article_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "relation_type": self.relation_type,
            "confidence": self.confidence,
            "article_ids": list(self.article_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Relation:
        return cls(
            source=str(data.get("source", "")),
            target=str(data.get("target", "")),
            relation_type=str(data.get("relation_type") or data.get("type") or "related_to"),
            confidence=float(data.get("confidence", 1.0)),
            article_ids=[str(a) for a in data.get("article_ids") or []],
        )


@dataclass
class ExtractionResult:
    """Entities and relations extracted from one article."""

    article_id: str
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)


# ── graph ────────────────────────────────────────────────────

@dataclass
class GraphNode:
    id: str
    label: str
    name: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.data.get("type", DEFAULT_ENTITY_TYPE)

    @property
    def support(self) -> int:
        return int(self.data.get("support", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "name": self.name, "data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GraphNode:
        return cls(
            id=data["id"],
            label=data.get("label") or data["id"],
            name=data.get("name") or data.get("label") or data["id"],
            data=dict(data.get("data") or {}),
        )


@dataclass
class GraphEdge:
    id: str
    source: str
    target: str
    label: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def weight(self) -> int:
        return int(self.data.get("weight", 1))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "label": self.label,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GraphEdge:
        return cls(
            id=data["id"],
            source=data["source"],
            target=data["target"],
            label=data.get("label", ""),
            data=dict(data.get("data") or {}),
        )


@dataclass
class GraphRecord:
    id: str
    owner_id: str
    job_id: Optional[str] = None
    name: str = ""
    directed: bool = False
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    metrics: Optional[Dict[str, Any]] = None
    version: int = 1
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "job_id": self.job_id,
            "name": self.name,
            "directed": self.directed,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "metrics": self.metrics,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class GraphSnapshot:
    graph_id: str
    version: int
    nodes: tuple
    edges: tuple
    metrics: Optional[Dict[str, Any]]
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "version": self.version,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "metrics": self.metrics,
            "created_at": self.created_at,
        }
