# 知识图谱：实体/关系类型、合并建图、图分析
# builder / analysis / normalizer 按需从子模块导入，避免与 providers 循环引用
from litgraph.graph.types import (
    ENTITY_TYPES,
    Entity,
    ExtractionResult,
    GraphEdge,
    GraphNode,
    GraphRecord,
    GraphSnapshot,
    Relation,
)

__all__ = [
    "ENTITY_TYPES",
    "Entity",
    "Relation",
    "ExtractionResult",
    "GraphNode",
    "GraphEdge",
    "GraphRecord",
    "GraphSnapshot",
]
