"""Collaborator contracts and reference provider implementations."""

from litgraph.providers.base import (
    ArticleSearchProvider,
    CandidateArticle,
    ExtractionProvider,
    NormalizedTerm,
    TermNormalizationProvider,
)

__all__ = [
    "ArticleSearchProvider",
    "CandidateArticle",
    "ExtractionProvider",
    "NormalizedTerm",
    "TermNormalizationProvider",
]
