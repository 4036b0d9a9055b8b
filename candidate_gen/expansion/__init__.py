"""
Query expansion for candidate generation.

This module provides:
- normalize_query: Canonical query normalization (part of the cache key)
- QueryVariantSet: Ordered variants with the anchor query first
- QueryExpander: Cached, fail-open generative query rewriting
"""

from .query_expander import (
    EXPANSION_LOGIC_VERSION,
    ExpansionOutput,
    QueryExpander,
    QueryVariantSet,
    cache_key,
    normalize_query,
)

__all__ = [
    "EXPANSION_LOGIC_VERSION",
    "ExpansionOutput",
    "QueryExpander",
    "QueryVariantSet",
    "cache_key",
    "normalize_query",
]
