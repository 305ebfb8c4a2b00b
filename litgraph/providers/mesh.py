"""
MeSH 受控词表规范化（NLM id.nlm.nih.gov SPARQL 端点）。

按标签包含匹配取前 5 个 Descriptor：标签完全相同 → confidence 1.0，
否则取第一个 → 0.8；无结果 → confidence 0（原词返回）。
类别由 tree number 前缀映射，部分子树细化到实体类型（D12 → protein 等）。
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from litgraph.errors import UpstreamError
from litgraph.log import get_logger
from litgraph.providers.base import NormalizedTerm, TermNormalizationProvider

logger = get_logger(__name__)

MESH_SPARQL_URL = "https://id.nlm.nih.gov/mesh/sparql"

_SPARQL_TEMPLATE = """
PREFIX rdfs: <http://www.w3.org/2000/01/rdf-schema#>
PREFIX meshv: <http://id.nlm.nih.gov/mesh/vocab#>
SELECT ?d ?name ?treeNumber
WHERE {{
  ?d a meshv:Descriptor .
  ?d rdfs:label ?name .
  OPTIONAL {{ ?d meshv:treeNumber ?treeNumber }}
  FILTER(CONTAINS(LCASE(?name), LCASE("{term}")))
}}
LIMIT 5
"""

# 子树前缀优先于大类前缀
_SUBTREE_CATEGORIES = {
    "D12": "protein",
    "D08": "protein",
    "G05": "gene",
    "G02": "pathway",
    "G03": "pathway",
}

_TREE_CATEGORIES = {
    "A": "anatomy",
    "B": "organism",
    "C": "disease",
    "D": "drug",
    "E": "technique",
    "F": "psychiatry",
    "G": "biological",
    "H": "discipline",
    "I": "anthropology",
    "J": "technology",
    "K": "humanities",
    "L": "information",
    "M": "person",
    "N": "health_care",
    "V": "publication",
    "Z": "geographic",
}


def category_for_tree_numbers(tree_numbers: List[str]) -> Optional[str]:
    """tree number（可为完整 URI）→ 类别；空列表返回 None。"""
    codes = sorted(t.rstrip("/").rsplit("/", 1)[-1] for t in tree_numbers if t)
    if not codes:
        return None
    first = codes[0]
    for prefix, category in _SUBTREE_CATEGORIES.items():
        if first.startswith(prefix):
            return category
    return _TREE_CATEGORIES.get(first[:1].upper(), "unknown")


def parse_sparql_bindings(term: str, data: Dict[str, Any]) -> NormalizedTerm:
    bindings = (data.get("results") or {}).get("bindings") or []
    if not bindings:
        return NormalizedTerm.verbatim(term)

    wanted = term.strip().lower()
    exact = next((b for b in bindings if (b.get("name") or {}).get("value", "").lower() == wanted), None)
    best = exact or bindings[0]
    descriptor_uri = (best.get("d") or {}).get("value", "")
    tree_numbers = [
        b["treeNumber"]["value"]
        for b in bindings
        if (b.get("d") or {}).get("value") == descriptor_uri and (b.get("treeNumber") or {}).get("value")
    ]
    return NormalizedTerm(
        normalized=(best.get("name") or {}).get("value") or term.strip(),
        id=descriptor_uri.rsplit("/", 1)[-1] or None,
        category=category_for_tree_numbers(tree_numbers),
        confidence=1.0 if exact else 0.8,
    )


class MeshNormalizationProvider(TermNormalizationProvider):
    name = "mesh"

    def __init__(self, timeout_seconds: int = 15, sparql_url: str = MESH_SPARQL_URL):
        self.timeout_seconds = timeout_seconds
        self.sparql_url = sparql_url

    async def normalize(self, term: str) -> NormalizedTerm:
        cleaned = term.strip().replace('"', "").replace("\\", "")
        if not cleaned:
            return NormalizedTerm.verbatim(term)
        params = {"query": _SPARQL_TEMPLATE.format(term=cleaned), "format": "JSON"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    self.sparql_url,
                    params=params,
                    headers={"Accept": "application/sparql-results+json"},
                ) as resp:
                    resp.raise_for_status()
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise UpstreamError(f"MeSH lookup failed for {term!r}: {exc}") from exc
        result = parse_sparql_bindings(cleaned, data)
        logger.debug(f"MeSH {term!r} → {result.normalized!r} ({result.category}, {result.confidence})")
        return result
