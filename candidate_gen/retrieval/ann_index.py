"""
ANN index service contract and its FAISS implementation.

    search(vector, k, runtime_budget) -> (item_ids, similarities)

Each ANNIndex is bound to exactly one IndexArtifact. The runtime budget is the
search breadth used for this call (nprobe for IVF, efSearch for HNSW); it is
passed as FAISS search parameters per call so concurrent requests with
different budgets never race on shared index state.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import numpy as np

from ..artifacts import ArtifactRegistry, DistanceSpace, IndexArtifact
from .index_builder import FAISSIndexBuilder
from .types import SearchHits

logger = logging.getLogger(__name__)


class ANNIndex(ABC):
    """Interface for approximate nearest neighbor index services."""

    artifact: IndexArtifact

    @abstractmethod
    def search(self, vector: np.ndarray, k: int, runtime_budget: int) -> SearchHits:
        """
        Find approximate nearest items.

        Args:
            vector: Query vector of length artifact.dim
            k: Number of neighbors to return
            runtime_budget: Search breadth for this call

        Returns:
            (item_ids, similarities), best first. Similarities are ordering
            signals only, higher is better.
        """
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "index_version": self.artifact.index_version}


class FAISSIndex(ANNIndex):
    """
    FAISS-backed ANN index.

    Example:
        index = FAISSIndex.load("candidate_gen/artifacts/index/content-v1")
        ids, sims = index.search(query_vec, k=100, runtime_budget=64)
    """

    def __init__(self, index: faiss.Index, artifact: IndexArtifact):
        """
        Args:
            index: FAISS index whose ids are catalog item ids
            artifact: Metadata the index was published with
        """
        if index.d != artifact.dim:
            raise ValueError(
                f"FAISS index dim {index.d} does not match artifact dim {artifact.dim}"
            )
        self.index = index
        self.artifact = artifact
        self._ivf = faiss.try_extract_index_ivf(index)
        self._hnsw = self._extract_hnsw(index)

        kind = "ivf" if self._ivf is not None else "hnsw" if self._hnsw is not None else "flat"
        logger.info(
            f"FAISSIndex ready: {artifact.index_version} ({kind}, {index.ntotal:,} vectors)"
        )

    @staticmethod
    def _extract_hnsw(index: faiss.Index) -> Optional[faiss.Index]:
        base = index
        if isinstance(index, (faiss.IndexIDMap, faiss.IndexIDMap2)):
            base = faiss.downcast_index(index.index)
        return base if isinstance(base, faiss.IndexHNSW) else None

    def _search_params(self, runtime_budget: int) -> Optional[faiss.SearchParameters]:
        budget = max(1, int(runtime_budget))
        if self._ivf is not None:
            return faiss.SearchParametersIVF(nprobe=budget)
        if self._hnsw is not None:
            return faiss.SearchParametersHNSW(efSearch=budget)
        return None

    def search(self, vector: np.ndarray, k: int, runtime_budget: int) -> SearchHits:
        query = np.array(vector, dtype=np.float32).reshape(1, -1)
        if self.artifact.space is DistanceSpace.COSINE:
            faiss.normalize_L2(query)

        params = self._search_params(runtime_budget)
        if params is not None:
            distances, indices = self.index.search(query, k, params=params)
        else:
            distances, indices = self.index.search(query, k)

        item_ids: List[int] = []
        similarities: List[float] = []
        for idx, dist in zip(indices[0], distances[0]):
            if idx < 0:  # FAISS returns -1 for not found
                continue
            item_ids.append(int(idx))
            # L2 distances are flipped so that higher always means closer
            sim = float(dist) if self.artifact.space is DistanceSpace.COSINE else -float(dist)
            similarities.append(sim)

        return item_ids, similarities

    def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": self.index.ntotal > 0,
            "index_version": self.artifact.index_version,
            "num_vectors": int(self.index.ntotal),
        }

    @classmethod
    def load(cls, index_dir: Path) -> "FAISSIndex":
        index, artifact = FAISSIndexBuilder.load(index_dir)
        return cls(index, artifact)


def load_indexes(index_root: Path, registry: ArtifactRegistry) -> Dict[str, ANNIndex]:
    """
    Load a FAISSIndex for every version published in the registry.

    Args:
        index_root: Directory holding one sub-directory per index version
        registry: Registry whose versions should be loaded

    Returns:
        Dict mapping index_version to ANNIndex
    """
    indexes: Dict[str, ANNIndex] = {}
    for version in registry.versions():
        index = FAISSIndex.load(Path(index_root) / version)
        if index.artifact != registry.resolve(version):
            raise ValueError(f"Index files for {version} disagree with the registry")
        indexes[version] = index
    return indexes
