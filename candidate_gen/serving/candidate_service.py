"""
Candidate generation service for real-time retrieval.

This module provides the CandidateGenerationService class that orchestrates
query expansion, per-variant embedding and multi-strategy ANN retrieval.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from common.config import PipelineConfig
from common.errors import PipelineError
from candidate_gen.embedding import EmbeddingService, UserEmbeddingTable
from candidate_gen.expansion import QueryExpander, QueryVariantSet
from candidate_gen.retrieval import (
    CandidateRetriever,
    CandidateSet,
    MergeResult,
    MultiStrategyMerger,
)
from candidate_gen.shared_utils import (
    load_ann_indexes,
    load_popularity_store,
    load_registry,
)

logger = logging.getLogger(__name__)

USER_EMBEDDINGS_FILENAME = "user_embeddings.npz"


@dataclass
class CandidateGenerationResult:
    """Merged candidates plus what happened on the way."""

    variants: QueryVariantSet
    merge: MergeResult
    embedding_failures: Dict[str, str] = field(default_factory=dict)

    @property
    def candidates(self) -> CandidateSet:
        return self.merge.candidates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variants": list(self.variants),
            "expansion_failure": self.variants.failure.value if self.variants.failure else None,
            "expansion_from_cache": self.variants.from_cache,
            "embedding_failures": self.embedding_failures,
            "merge": self.merge.to_dict(),
        }


class CandidateGenerationService:
    """
    Candidate generation service for retrieval.

    This service provides end-to-end candidate retrieval functionality:
    1. Expands the raw query into variants (anchor first)
    2. Embeds each variant with the embedding service
    3. Looks up the user's precomputed behavioral embedding
    4. Fans out ANN retrieval and merges by strategy priority

    Example:
        service = CandidateGenerationService(expander, embedder, merger, user_table)
        result = service.generate("running shoes", user_id=123, locale="en-US", surface="search")
        print(result.candidates.item_ids[:10])
    """

    def __init__(
        self,
        expander: QueryExpander,
        embedder: Optional[EmbeddingService],
        merger: MultiStrategyMerger,
        user_embeddings: Optional[UserEmbeddingTable] = None,
    ):
        self.expander = expander
        self.embedder = embedder
        self.merger = merger
        self.user_embeddings = user_embeddings

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        expander: QueryExpander,
        embedder: Optional[EmbeddingService],
        artifacts_dir: Optional[Path] = None,
    ) -> "CandidateGenerationService":
        """
        Load registry, indexes, popularity and user embeddings from disk.

        Raises:
            FileNotFoundError: If the index directory or popularity table is missing
        """
        logger.info("Initializing CandidateGenerationService...")
        artifacts_dir = Path(artifacts_dir or config.artifacts_dir)
        index_dir = artifacts_dir / "index"

        registry = load_registry(index_dir)
        indexes = load_ann_indexes(registry, index_dir)
        popularity = load_popularity_store(artifacts_dir / "popularity.parquet")

        user_path = artifacts_dir / USER_EMBEDDINGS_FILENAME
        user_embeddings = UserEmbeddingTable.from_npz(user_path) if user_path.exists() else None
        if user_embeddings is None:
            logger.info("No user embeddings found, behavioral strategy disabled")

        retriever = CandidateRetriever(registry, indexes, popularity, config.retrieval)
        merger = MultiStrategyMerger(retriever, config.merge)

        logger.info(
            f"CandidateGenerationService initialized: versions={registry.versions()}"
        )
        return cls(expander, embedder, merger, user_embeddings)

    @property
    def retriever(self) -> CandidateRetriever:
        return self.merger.retriever

    def generate(
        self,
        raw_query: str,
        user_id: Optional[int] = None,
        locale: str = "",
        surface: str = "",
        k: Optional[int] = None,
    ) -> CandidateGenerationResult:
        """
        Generate merged candidates for a query and (optionally) a user.

        Args:
            raw_query: Query as typed by the user
            user_id: Optional user for the behavioral strategy
            locale: Request locale
            surface: Product surface
            k: Candidate width (defaults to merge.candidate_width)

        Returns:
            CandidateGenerationResult. Never empty while popularity has items.

        Raises:
            UnknownIndexVersion: If a configured index version is not published
        """
        variants = self.expander.expand(raw_query, locale=locale, surface=surface)

        embeddings: List[np.ndarray] = []
        failures: Dict[str, str] = {}
        if self.embedder is not None:
            for variant in variants:
                try:
                    embeddings.append(self.embedder.embed(variant))
                except PipelineError as e:
                    kind = e.kind.value if e.kind else type(e).__name__
                    failures[variant] = f"{kind}: {e}"
                    logger.warning(f"Embedding failed for variant {variant!r}: {kind}")

        user_embedding = None
        user_version = None
        if user_id is not None and self.user_embeddings is not None:
            user_embedding = self.user_embeddings.get(user_id)
            user_version = self.user_embeddings.embedding_version

        merge = self.merger.merge(
            embeddings,
            user_embedding=user_embedding,
            k=k,
            embedding_version=getattr(self.embedder, "embedding_version", None),
            user_embedding_version=user_version,
        )
        return CandidateGenerationResult(
            variants=variants, merge=merge, embedding_failures=failures
        )

    def close(self) -> None:
        self.expander.close()
        self.merger.close()
        self.merger.retriever.close()
