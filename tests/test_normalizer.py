"""
TermNormalizer：缓存命中、提供方失败回退、缓存故障不致命。
"""

import asyncio
from unittest.mock import MagicMock

from fakes import FakeVocabulary
from litgraph.graph.normalizer import TermNormalizer, cache_key
from litgraph.providers.base import NormalizedTerm
from litgraph.utils.cache import TTLCache

P53 = NormalizedTerm(normalized="Tumor Suppressor Protein p53", id="D016159", category="protein", confidence=1.0)


def test_cache_key_is_case_and_space_insensitive():
    assert cache_key("  P53 ") == cache_key("p53")
    assert cache_key("tumor   suppressor") == "term:tumor suppressor"


def test_second_lookup_is_served_from_cache():
    vocab = FakeVocabulary({"p53": P53})
    cache = TTLCache()
    normalizer = TermNormalizer(vocab, cache=cache)

    first = asyncio.run(normalizer.normalize("P53"))
    second = asyncio.run(normalizer.normalize("p53"))

    assert first.normalized == second.normalized == "Tumor Suppressor Protein p53"
    assert second.id == "D016159"
    assert vocab.calls == ["P53"]


def test_cache_entry_expires_with_configured_ttl():
    now = [0.0]
    cache = TTLCache(clock=lambda: now[0])
    vocab = FakeVocabulary({"p53": P53})
    normalizer = TermNormalizer(vocab, cache=cache, ttl_seconds=86400)

    asyncio.run(normalizer.normalize("p53"))
    now[0] = 86399
    asyncio.run(normalizer.normalize("p53"))
    assert len(vocab.calls) == 1
    now[0] = 86400
    asyncio.run(normalizer.normalize("p53"))
    assert len(vocab.calls) == 2


def test_provider_failure_returns_verbatim_and_is_not_cached():
    vocab = FakeVocabulary(error=ConnectionError("MeSH down"))
    cache = TTLCache()
    normalizer = TermNormalizer(vocab, cache=cache)

    result = asyncio.run(normalizer.normalize(" MDM2 "))

    assert result.normalized == "MDM2"
    assert result.confidence == 0.0
    assert not cache.contains(cache_key("MDM2"))
    assert not normalizer.is_confident(result)


def test_broken_cache_falls_back_to_provider():
    broken = MagicMock()
    broken.get.side_effect = RuntimeError("cache backend gone")
    broken.set.side_effect = RuntimeError("cache backend gone")
    vocab = FakeVocabulary({"p53": P53})
    normalizer = TermNormalizer(vocab, cache=broken)

    result = asyncio.run(normalizer.normalize("p53"))

    assert result.id == "D016159"
    assert vocab.calls == ["p53"]


def test_without_provider_terms_pass_through():
    normalizer = TermNormalizer(None)
    result = asyncio.run(normalizer.normalize("BRCA1"))
    assert result == NormalizedTerm.verbatim("BRCA1")


def test_normalize_many_deduplicates_terms():
    vocab = FakeVocabulary({"p53": P53})
    normalizer = TermNormalizer(vocab, cache=TTLCache(), concurrency=2)

    results = asyncio.run(normalizer.normalize_many(["p53", "MDM2", "p53", "  "]))

    assert set(results) == {"p53", "MDM2"}
    assert sorted(vocab.calls) == ["MDM2", "p53"]


def test_entity_type_only_for_known_categories():
    assert TermNormalizer.entity_type_for(P53) == "protein"
    other = NormalizedTerm(normalized="Apoptosis", category="phenomenon", confidence=1.0)
    assert TermNormalizer.entity_type_for(other) is None
