"""
Ontology-driven rule extraction.

Entity types and their regex patterns come from config/ontology.json, so
switching research domains only requires editing that file. Relations are
read off single sentences: two entity mentions joined by one of the
ontology's relation cue phrases ("MDM2 inhibits p53" → inhibition).
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from litgraph.graph.types import Entity, Relation, coerce_entity_type
from litgraph.log import get_logger
from litgraph.providers.base import ExtractionProvider

logger = get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ONTOLOGY_PATH = _PROJECT_ROOT / "config" / "ontology.json"

RULE_ENTITY_CONFIDENCE = 0.6
RULE_RELATION_CONFIDENCE = 0.5

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?;])\s+")


# ── ontology ─────────────────────────────────────────────────

@dataclass
class EntityType:
    name: str
    label: str
    description: str
    patterns: List[str] = field(default_factory=list)


@dataclass
class Ontology:
    entity_types: Dict[str, EntityType] = field(default_factory=dict)
    relation_patterns: Dict[str, List[str]] = field(default_factory=dict)
    min_entity_length: int = 2

    @classmethod
    def from_json(cls, path: Path) -> "Ontology":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        types: Dict[str, EntityType] = {}
        for name, cfg in raw.get("entity_types", {}).items():
            types[name] = EntityType(
                name=coerce_entity_type(name),
                label=cfg.get("label", name.lower()),
                description=cfg.get("description", ""),
                patterns=cfg.get("patterns", []),
            )
        return cls(
            entity_types=types,
            relation_patterns={k: list(v) for k, v in (raw.get("relation_patterns") or {}).items()},
            min_entity_length=int(raw.get("min_entity_length", 2)),
        )

    @property
    def type_names(self) -> List[str]:
        return [et.name for et in self.entity_types.values()]

    def describe_for_prompt(self) -> str:
        """Render entity types as a bullet list for LLM prompts."""
        return "\n".join(f"- {et.name}: {et.description}" for et in self.entity_types.values())


def load_ontology(path: Optional[str | Path] = None) -> Ontology:
    ontology_path = Path(path) if path else DEFAULT_ONTOLOGY_PATH
    if not ontology_path.is_absolute():
        ontology_path = _PROJECT_ROOT / ontology_path
    if not ontology_path.exists():
        logger.warning("Ontology file not found: %s, using empty ontology", ontology_path)
        return Ontology()
    ontology = Ontology.from_json(ontology_path)
    logger.info("Loaded ontology with %d entity types from %s", len(ontology.entity_types), ontology_path)
    return ontology


# ── extractor ────────────────────────────────────────────────

class RuleExtractionProvider(ExtractionProvider):
    name = "rule"

    def __init__(self, ontology: Optional[Ontology] = None):
        self.ontology = ontology or load_ontology()
        self._entity_patterns: List[Tuple[str, re.Pattern]] = []
        for type_name, et in self.ontology.entity_types.items():
            for p in et.patterns:
                try:
                    self._entity_patterns.append((et.name, re.compile(p)))
                except re.error as exc:
                    logger.warning("Bad regex in ontology [%s]: %s (%s)", type_name, p, exc)
        self._relation_cues: List[Tuple[str, re.Pattern]] = []
        for rel_type, cues in self.ontology.relation_patterns.items():
            # longest cue first so "binds to" wins over "binds"
            for cue in sorted(cues, key=len, reverse=True):
                self._relation_cues.append((rel_type, re.compile(rf"\b{re.escape(cue)}\b", re.IGNORECASE)))

    def _mentions(self, text: str) -> List[Tuple[int, int, str, str]]:
        """(start, end, surface, type) for every non-overlapping entity match, leftmost-longest."""
        found: List[Tuple[int, int, str, str]] = []
        for type_name, pat in self._entity_patterns:
            for m in pat.finditer(text):
                surface = m.group(0).strip()
                if len(surface) >= self.ontology.min_entity_length:
                    found.append((m.start(), m.end(), surface, type_name))
        found.sort(key=lambda x: (x[0], -(x[1] - x[0])))
        kept: List[Tuple[int, int, str, str]] = []
        last_end = -1
        for item in found:
            if item[0] >= last_end:
                kept.append(item)
                last_end = item[1]
        return kept

    async def extract_entities(self, text: str) -> List[Entity]:
        seen: Dict[str, Entity] = {}
        for _, _, surface, type_name in self._mentions(text):
            key = surface.casefold()
            if key not in seen:
                seen[key] = Entity(name=surface, type=type_name, confidence=RULE_ENTITY_CONFIDENCE)
        return list(seen.values())

    async def extract_relations(self, text: str) -> List[Relation]:
        relations: Dict[Tuple[str, str, str], Relation] = {}
        for sentence in _SENTENCE_SPLIT.split(text):
            mentions = self._mentions(sentence)
            for left, right in zip(mentions, mentions[1:]):
                between = sentence[left[1]:right[0]]
                for rel_type, cue in self._relation_cues:
                    if cue.search(between):
                        key = (left[2].casefold(), right[2].casefold(), rel_type)
                        relations.setdefault(
                            key,
                            Relation(
                                source=left[2],
                                target=right[2],
                                relation_type=rel_type,
                                confidence=RULE_RELATION_CONFIDENCE,
                            ),
                        )
                        break
        return list(relations.values())
