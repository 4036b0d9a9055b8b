"""
Candidate retrieval over versioned ANN indexes, fail-open to popularity.

retrieve(embedding, k, index_version) -> RetrievalResult

1. Resolve the IndexArtifact for index_version (unknown version is a hard
   configuration error).
2. Check the embedding against the artifact; a dimension or embedding-version
   mismatch raises VersionMismatch before any search runs. Vectors are never
   padded or truncated.
3. Search with the runtime search budget under the request deadline.
4. Treat fewer than min_candidates results as unusable.
5. On timeout, error or unusable result, return the deterministic popularity
   fallback instead, logged with the reason and the failing index version.
"""

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Dict, Optional

import numpy as np

from common.config import RetrievalConfig
from common.errors import FailureKind, VersionMismatch
from common.timing import call_with_deadline
from ..artifacts import ArtifactRegistry, IndexArtifact
from .ann_index import ANNIndex
from .fallback import PopularityStore
from .types import (
    Candidate,
    CandidateSet,
    RetrievalMode,
    RetrievalRequest,
    RetrievalResult,
)

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback"


class CandidateRetriever:
    """
    Retrieve candidate items for one embedding from one index version.

    The retriever never returns more than k candidates and never returns an
    empty set because of an upstream problem: every failure after
    compatibility checking is converted into the popularity fallback.

    Example:
        retriever = CandidateRetriever(registry, indexes, popularity)
        result = retriever.retrieve(query_vec, k=100, index_version="content-v1")
        if result.is_fallback:
            print(f"Fell back: {result.failure.value}")
    """

    def __init__(
        self,
        registry: ArtifactRegistry,
        indexes: Dict[str, ANNIndex],
        fallback: PopularityStore,
        config: Optional[RetrievalConfig] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize the retriever.

        Args:
            registry: Resolves index versions to artifacts
            indexes: ANN index service per index version
            fallback: Popularity store used as the static fallback source
            config: Retrieval settings (deadline, min candidates, budget)
            executor: Pool for ANN calls. Created (and owned) if not given.
        """
        self.registry = registry
        self.indexes = indexes
        self.fallback = fallback
        self.config = config or RetrievalConfig()
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="ann"
        )

        logger.info(
            f"CandidateRetriever initialized: {len(indexes)} indexes, "
            f"deadline={self.config.deadline_ms}ms, min_candidates={self.config.min_candidates}"
        )

    def retrieve(
        self,
        embedding: np.ndarray,
        k: int,
        index_version: str,
        embedding_version: Optional[str] = None,
        source: str = "",
    ) -> RetrievalResult:
        """
        Retrieve up to k candidates for an embedding.

        Args:
            embedding: Query vector
            k: Maximum number of candidates
            index_version: Index version to search
            embedding_version: If given, must match the artifact's embedding version
            source: Label recorded on primary candidates (defaults to "ann:<version>")

        Returns:
            RetrievalResult in PRIMARY or FALLBACK mode

        Raises:
            UnknownIndexVersion: If index_version was never published
            VersionMismatch: If the embedding is incompatible with the index
        """
        start = time.perf_counter()
        artifact = self.registry.resolve(index_version)
        vector = self._check_compatibility(embedding, artifact, embedding_version)

        if k <= 0:
            return RetrievalResult(
                candidates=CandidateSet(width=0),
                mode=RetrievalMode.PRIMARY,
                index_version=index_version,
            )

        index = self.indexes.get(index_version)
        if index is None:
            return self._fallback(
                k, index_version, FailureKind.UPSTREAM_ERROR, "index not loaded", start
            )

        outcome = call_with_deadline(
            index.search,
            self.config.deadline_ms / 1000.0,
            self.executor,
            vector,
            k,
            self.config.search_budget,
        )
        if not outcome.ok:
            return self._fallback(k, index_version, outcome.failure, outcome.detail, start)

        item_ids, similarities = outcome.value
        label = source or f"ann:{index_version}"
        candidates = CandidateSet(
            (Candidate(item_id, sim, label) for item_id, sim in zip(item_ids, similarities)),
            width=k,
        )

        required = min(self.config.min_candidates, k)
        if len(candidates) < required:
            return self._fallback(
                k,
                index_version,
                FailureKind.INSUFFICIENT_RESULTS,
                f"{len(candidates)} < {required} candidates",
                start,
            )

        return RetrievalResult(
            candidates=candidates,
            mode=RetrievalMode.PRIMARY,
            index_version=index_version,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    def retrieve_request(self, request: RetrievalRequest) -> RetrievalResult:
        """Retrieve for a RetrievalRequest value."""
        return self.retrieve(
            request.embedding,
            request.k,
            request.index_version,
            embedding_version=request.embedding_version,
            source=request.source,
        )

    def fallback_candidates(self, k: int) -> CandidateSet:
        """The deterministic fallback set for width k."""
        n = min(k, self.config.fallback_size)
        return CandidateSet(
            (Candidate(item_id, 0.0, FALLBACK_SOURCE) for item_id in self.fallback.top_n(n)),
            width=k,
        )

    def _fallback(
        self,
        k: int,
        index_version: str,
        reason: FailureKind,
        detail: str,
        start: float,
    ) -> RetrievalResult:
        logger.warning(
            f"Retriever fallback: reason={reason.value} index_version={index_version} "
            f"detail={detail}"
        )
        return RetrievalResult(
            candidates=self.fallback_candidates(k),
            mode=RetrievalMode.FALLBACK,
            index_version=index_version,
            failure=reason,
            detail=detail,
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    @staticmethod
    def _check_compatibility(
        embedding: np.ndarray,
        artifact: IndexArtifact,
        embedding_version: Optional[str],
    ) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float32)
        if vector.ndim == 2 and vector.shape[0] == 1:
            vector = vector[0]
        if vector.ndim != 1:
            raise VersionMismatch(
                f"Expected a single embedding vector, got shape {vector.shape}"
            )
        if vector.shape[0] != artifact.dim:
            raise VersionMismatch(
                f"Embedding dim {vector.shape[0]} != index {artifact.index_version} "
                f"dim {artifact.dim}"
            )
        if embedding_version is not None and embedding_version != artifact.embedding_version:
            raise VersionMismatch(
                f"Embedding version {embedding_version} != index {artifact.index_version} "
                f"embedding version {artifact.embedding_version}"
            )
        return vector

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=False)
