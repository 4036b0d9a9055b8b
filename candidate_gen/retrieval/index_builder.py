"""
FAISS index building for published index artifacts.

Provides:
- FAISSIndexBuilder: Build a FAISS index over item embeddings, keyed by
  catalog item id, and publish it with its IndexArtifact metadata
"""

import json
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

import faiss
import numpy as np
import pandas as pd

from ..artifacts import METADATA_FILENAME, DistanceSpace, IndexArtifact
from .config import FAISSConfig

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.faiss"


class FAISSIndexBuilder:
    """
    Build FAISS index from item embeddings.

    Supports multiple index types:
    - Flat: Exact search (default for small catalogs)
    - IVF: Approximate search (for medium catalogs)
    - HNSW: Fast approximate search (for large catalogs)

    The base index is wrapped in an IndexIDMap2 so search results are catalog
    item ids, not row positions.

    Example:
        builder = FAISSIndexBuilder(config=FAISSConfig(index_type="hnsw"))
        artifact = IndexArtifact("content-v2", "emb-2024-06", dim=64, space=DistanceSpace.COSINE)
        index = builder.build(item_embeddings, item_ids, artifact)
        builder.save(index, artifact, "candidate_gen/artifacts/index")
    """

    def __init__(self, config: Optional[FAISSConfig] = None):
        """
        Initialize the index builder.

        Args:
            config: FAISS configuration (defaults to flat index)
        """
        self.config = config or FAISSConfig()

    def build(
        self,
        embeddings: np.ndarray,
        item_ids: Sequence[int],
        artifact: IndexArtifact,
    ) -> faiss.Index:
        """
        Build FAISS index from embeddings.

        Args:
            embeddings: Item embeddings [num_items, dim]
            item_ids: Catalog id for each embedding row
            artifact: Metadata the index is published under

        Returns:
            FAISS index mapping vectors to item ids

        Raises:
            ValueError: If shapes disagree with each other or with the artifact
        """
        embeddings = np.ascontiguousarray(embeddings, dtype=np.float32)
        ids = np.asarray(item_ids, dtype=np.int64)
        num_vectors, dim = embeddings.shape

        if dim != artifact.dim:
            raise ValueError(f"Embeddings have dim {dim}, artifact declares {artifact.dim}")
        if len(ids) != num_vectors:
            raise ValueError(f"Got {len(ids)} item ids for {num_vectors} embeddings")
        if len(np.unique(ids)) != len(ids):
            raise ValueError("item_ids must be unique")

        logger.info(
            f"Building FAISS index: type={self.config.index_type}, space={artifact.space.value}"
        )
        logger.info(f"Vectors: {num_vectors:,}, Dimension: {dim}")

        if artifact.space is DistanceSpace.COSINE:
            faiss.normalize_L2(embeddings)

        if self.config.index_type == "flat":
            base = self._build_flat_index(dim, artifact.space)

        elif self.config.index_type == "ivf":
            base = self._build_ivf_index(dim, artifact.space, embeddings)

        elif self.config.index_type == "hnsw":
            base = self._build_hnsw_index(dim, artifact.space)

        else:
            raise ValueError(f"Unknown index type: {self.config.index_type}")

        index = faiss.IndexIDMap2(base)
        index.add_with_ids(embeddings, ids)
        logger.info(f"Index built with {index.ntotal:,} vectors")

        return index

    @staticmethod
    def _metric(space: DistanceSpace) -> int:
        if space is DistanceSpace.COSINE:
            return faiss.METRIC_INNER_PRODUCT
        return faiss.METRIC_L2

    def _build_flat_index(self, dim: int, space: DistanceSpace) -> faiss.Index:
        """Build flat (exact) index."""
        if space is DistanceSpace.COSINE:
            return faiss.IndexFlatIP(dim)
        return faiss.IndexFlatL2(dim)

    def _build_ivf_index(
        self, dim: int, space: DistanceSpace, embeddings: np.ndarray
    ) -> faiss.Index:
        """Build IVF (inverted file) index."""
        quantizer = self._build_flat_index(dim, space)
        index = faiss.IndexIVFFlat(quantizer, dim, self.config.nlist, self._metric(space))

        logger.info(f"Training IVF index with {self.config.nlist} clusters...")
        index.train(embeddings)

        return index

    def _build_hnsw_index(self, dim: int, space: DistanceSpace) -> faiss.Index:
        """Build HNSW (hierarchical navigable small world) index."""
        index = faiss.IndexHNSWFlat(dim, self.config.hnsw_m, self._metric(space))
        index.hnsw.efConstruction = self.config.ef_construction
        return index

    def save(self, index: faiss.Index, artifact: IndexArtifact, index_root: Path) -> Path:
        """
        Save FAISS index and its artifact metadata under index_root/<version>/.

        Args:
            index: FAISS index
            artifact: Metadata to publish alongside the index
            index_root: Directory holding all index versions

        Returns:
            Directory the version was written to

        Raises:
            FileExistsError: If this version was already written (artifacts are immutable)
        """
        out_dir = Path(index_root) / artifact.index_version
        if (out_dir / METADATA_FILENAME).exists():
            raise FileExistsError(
                f"Index version {artifact.index_version} already exists at {out_dir}"
            )
        out_dir.mkdir(parents=True, exist_ok=True)

        faiss.write_index(index, str(out_dir / INDEX_FILENAME))

        metadata = {
            **artifact.to_dict(),
            "index_type": self.config.index_type,
            "num_vectors": int(index.ntotal),
            "created_at": pd.Timestamp.now().isoformat(),
        }
        with open(out_dir / METADATA_FILENAME, "w") as f:
            json.dump(metadata, f, indent=2)

        logger.info(f"Index saved to: {out_dir}")
        return out_dir

    @staticmethod
    def load(index_dir: Path) -> Tuple[faiss.Index, IndexArtifact]:
        """
        Load a FAISS index and its artifact from disk.

        Args:
            index_dir: Directory of one index version

        Returns:
            (FAISS index, IndexArtifact)
        """
        index_dir = Path(index_dir)
        with open(index_dir / METADATA_FILENAME) as f:
            artifact = IndexArtifact.from_dict(json.load(f))
        index = faiss.read_index(str(index_dir / INDEX_FILENAME))
        return index, artifact
