"""
OpenAI 兼容 chat/completions 接口的实体/关系抽取。

一次调用同时返回 entities 与 relations（JSON），结果按文本缓存，
extract_entities / extract_relations 对同一段文本只打一次接口。
抽取失败不重试：异常直接抛给 ExtractionStage 记为该文章失败。
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from typing import Any, Dict, List, Tuple

import requests

from litgraph.errors import UpstreamError
from litgraph.graph.types import Entity, Relation, coerce_entity_type
from litgraph.log import get_logger
from litgraph.providers.base import ExtractionProvider
from litgraph.providers.rule_extractor import Ontology, load_ontology
from litgraph.utils.cache import TTLCache

logger = get_logger(__name__)

SYSTEM_PROMPT = "You are a biomedical information extraction assistant. Return ONLY valid JSON."

USER_PROMPT = """Extract biomedical entities and the relations between them from the text.

Entity types:
{entity_types}

Return JSON of the form:
{{"entities": [{{"name": "...", "type": "...", "confidence": 0.0-1.0}}],
  "relations": [{{"source": "...", "target": "...", "type": "...", "confidence": 0.0-1.0}}]}}

Text:
{text}
"""

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_extraction_payload(content: str) -> Tuple[List[Entity], List[Relation]]:
    """解析模型输出；容忍 ```json 围栏。非 JSON 抛 UpstreamError。"""
    cleaned = _FENCE.sub("", (content or "").strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise UpstreamError(f"LLM returned non-JSON extraction payload: {exc}") from exc
    if not isinstance(parsed, dict):
        raise UpstreamError("LLM extraction payload is not a JSON object")

    entities: List[Entity] = []
    for item in parsed.get("entities") or []:
        name = str(item.get("name", "")).strip()
        if not name:
            continue
        entities.append(
            Entity(
                name=name,
                type=coerce_entity_type(item.get("type")),
                confidence=float(item.get("confidence", 0.8)),
            )
        )
    relations: List[Relation] = []
    for item in parsed.get("relations") or []:
        source = str(item.get("source", "")).strip()
        target = str(item.get("target", "")).strip()
        if not source or not target:
            continue
        relations.append(
            Relation(
                source=source,
                target=target,
                relation_type=str(item.get("type") or item.get("relation_type") or "related_to").strip().lower(),
                confidence=float(item.get("confidence", 0.7)),
            )
        )
    return entities, relations


class LLMExtractionProvider(ExtractionProvider):
    name = "llm"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout_seconds: int = 60,
        ontology: Ontology | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.ontology = ontology or load_ontology()
        self._session = requests.Session()
        self._results = TTLCache(maxsize=128, ttl_seconds=600)

    def _request(self, text: str) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": USER_PROMPT.format(
                        entity_types=self.ontology.describe_for_prompt(),
                        text=text,
                    ),
                },
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            resp = self._session.post(
                f"{self.base_url}/chat/completions",
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise UpstreamError(f"LLM extraction request failed: {exc}") from exc
        return resp.json()

    async def _extract(self, text: str) -> Tuple[List[Entity], List[Relation]]:
        key = hashlib.sha256(text.encode("utf-8")).hexdigest()
        cached = self._results.get(key)
        if cached is not None:
            return cached
        data = await asyncio.to_thread(self._request, text)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamError(f"Unexpected LLM response shape: {exc}") from exc
        result = parse_extraction_payload(content)
        self._results.set(key, result)
        logger.debug(f"LLM 抽取: {len(result[0])} entities, {len(result[1])} relations")
        return result

    async def extract_entities(self, text: str) -> List[Entity]:
        entities, _ = await self._extract(text)
        return list(entities)

    async def extract_relations(self, text: str) -> List[Relation]:
        _, relations = await self._extract(text)
        return list(relations)

    async def close(self) -> None:
        self._session.close()
