"""
Retrieval module for candidate generation.

This module provides:
- FAISSIndexBuilder: Build and publish FAISS index versions
- FAISSIndex: ANN index service bound to one IndexArtifact
- StaticPopularityStore: Deterministic fallback and tie-break source
- CandidateRetriever: Versioned, deadline-bound, fail-open retrieval
- MultiStrategyMerger: Concurrent fan-out with priority-ordered dedup
"""

from .ann_index import ANNIndex, FAISSIndex, load_indexes
from .config import FAISSConfig
from .fallback import PopularityStore, StaticPopularityStore
from .index_builder import FAISSIndexBuilder
from .merger import MergeResult, MultiStrategyMerger, StrategyKind, StrategyReport
from .retriever import CandidateRetriever
from .types import (
    Candidate,
    CandidateSet,
    RetrievalMode,
    RetrievalRequest,
    RetrievalResult,
)

__all__ = [
    "ANNIndex",
    "FAISSIndex",
    "load_indexes",
    "FAISSConfig",
    "PopularityStore",
    "StaticPopularityStore",
    "FAISSIndexBuilder",
    "MergeResult",
    "MultiStrategyMerger",
    "StrategyKind",
    "StrategyReport",
    "CandidateRetriever",
    "Candidate",
    "CandidateSet",
    "RetrievalMode",
    "RetrievalRequest",
    "RetrievalResult",
]
