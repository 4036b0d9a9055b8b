"""
Unified recommendation service that orchestrates the serving pipeline.

Architecture:
    Request(query, user_id, context)
        ↓
    QueryExpander.expand → variants (anchor first)
        ↓
    embed per variant → MultiStrategyMerger (Retriever × N, fail-open)
        ↓
    RankerService.rank (feature join, availability gate, deterministic sort)
        ↓
    BoundedReranker.rerank (optional, bounded blend, fail-open)
        ↓
    Final ordered list + diagnostics

Every stage converts its own failures into a local fallback, so the caller
always receives a valid ranked list annotated with a mode. Only configuration
errors (unknown index version, invalid config) propagate.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from candidate_gen.embedding import EmbeddingService, HTTPEmbeddingService
from candidate_gen.expansion import QueryExpander
from candidate_gen.retrieval import PopularityStore
from candidate_gen.serving import CandidateGenerationService
from common.cache import InMemoryTTLCache, RedisTTLCache, ResultCache
from common.config import PipelineConfig
from common.generative import GenerativeTextService, HTTPGenerativeService
from ranking.rerank import BoundedReranker, RerankResult
from ranking.serving import RankedItem, RankerService, RankResult, ServingFeatureBuilder
from ranking.serving.feature_store import (
    FeatureStore,
    SNAPSHOT_FILES,
    InMemoryFeatureStore,
    LayeredFeatureStore,
    RedisFeatureStore,
)
from ranking.serving.ranker_service import CandidateInput
from ranking.serving.scoring import XGBoostScoringModel
from ranking.shared_utils import FEATURES_DIR, MODELS_DIR

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """
    Final ranked list with per-stage diagnostics.

    Attributes:
        items: Final order, primary scores attached
        model_version: Version whose scores are reported
        mode: Ranking mode ("primary", "primary-degraded" or "fallback")
        diagnostics: Per-stage details (candidates, ranking, rerank, latency)
    """
    items: List[RankedItem]
    model_version: str
    mode: str
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def item_ids(self) -> List[int]:
        return [item.item_id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ranked": [item.to_dict() for item in self.items],
            "model_version": self.model_version,
            "diagnostics": {"mode": self.mode, **self.diagnostics},
        }


class RecommendationService:
    """
    Unified recommendation service orchestrating the whole pipeline.

    Usage:
        service = RecommendationService.from_config(load_config())
        result = service.recommend("running shoes", user_id=123, surface="search", locale="en-US")
        for item in result.items:
            print(item.item_id, item.score)

        # Boundary ranking of externally supplied candidates
        result = service.rank_candidates(123, [712, 45, 98], {"surface": "home"})
    """

    def __init__(
        self,
        candidate_service: Optional[CandidateGenerationService],
        ranker_service: RankerService,
        reranker: Optional[BoundedReranker] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.candidate_service = candidate_service
        self.ranker_service = ranker_service
        self.reranker = reranker
        self.config = config or PipelineConfig()

    # ------------------------------------------------------------------
    # Construction from configuration
    # ------------------------------------------------------------------

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "RecommendationService":
        """
        Build every component from configuration and on-disk artifacts.

        Raises:
            RuntimeError: If a service fails to initialize
        """
        logger.info("Initializing RecommendationService...")
        start_time = time.time()

        generator = cls._create_generator(config)
        embedder = cls._create_embedder(config)
        expander = QueryExpander(generator, cls._create_cache(config), config.expansion)

        try:
            candidate_service = CandidateGenerationService.from_config(config, expander, embedder)
        except FileNotFoundError as e:
            logger.error(f"Failed to initialize candidate generation service: {e}")
            raise RuntimeError(f"Candidate service initialization failed: {e}") from e

        try:
            model = XGBoostScoringModel.load(config.ranking.model_name, MODELS_DIR)
        except FileNotFoundError as e:
            logger.error(f"Failed to load ranking model: {e}")
            raise RuntimeError(f"Ranking service initialization failed: {e}") from e

        feature_builder = ServingFeatureBuilder(
            user_store=cls._create_feature_store(config, "user"),
            item_store=cls._create_feature_store(config, "item"),
            interaction_store=cls._create_feature_store(config, "interaction"),
        )
        popularity: PopularityStore = candidate_service.retriever.fallback
        ranker_service = RankerService(model, feature_builder, popularity, config.ranking)
        reranker = BoundedReranker(generator, config.rerank)

        logger.info(f"RecommendationService initialized in {time.time() - start_time:.2f}s")
        return cls(candidate_service, ranker_service, reranker, config)

    @staticmethod
    def _create_generator(config: PipelineConfig) -> Optional[GenerativeTextService]:
        gen = config.generative
        if not gen.endpoint:
            logger.info("No generative endpoint configured: expansion and rerank disabled")
            return None
        return HTTPGenerativeService(gen.endpoint, api_key=gen.api_key, model=gen.model)

    @staticmethod
    def _create_embedder(config: PipelineConfig) -> Optional[EmbeddingService]:
        emb = config.embedding
        if not emb.endpoint:
            logger.warning("No embedding endpoint configured: content strategy disabled")
            return None
        return HTTPEmbeddingService(
            emb.endpoint, timeout_ms=emb.timeout_ms, embedding_version=emb.embedding_version
        )

    @staticmethod
    def _create_cache(config: PipelineConfig) -> ResultCache:
        if config.cache.backend == "redis":
            fs = config.feature_store
            logger.info(f"Expansion cache: Redis at {fs.redis_host}:{fs.redis_port}")
            return RedisTTLCache(host=fs.redis_host, port=fs.redis_port)
        return InMemoryTTLCache(max_entries=config.cache.max_entries)

    @staticmethod
    def _create_feature_store(config: PipelineConfig, namespace: str) -> FeatureStore:
        """
        Create one namespace's feature store.

        memory: parquet snapshot only
        redis:  Redis primary, parquet snapshot secondary, circuit breaker
        """
        fs = config.feature_store
        snapshot_dir = Path(fs.snapshot_dir) if fs.snapshot_dir else FEATURES_DIR
        filename, key_columns = SNAPSHOT_FILES[namespace]
        path = snapshot_dir / filename
        if path.exists():
            snapshot = InMemoryFeatureStore.from_parquet(path, namespace, key_columns)
        else:
            logger.warning(f"No {namespace} feature snapshot at {path}, starting empty")
            snapshot = InMemoryFeatureStore(namespace)

        if fs.mode != "redis":
            return snapshot

        logger.info(f"Initializing Redis {namespace} feature store at {fs.redis_host}:{fs.redis_port}")
        primary = RedisFeatureStore(namespace, host=fs.redis_host, port=fs.redis_port)
        return LayeredFeatureStore(primary, snapshot)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def recommend(
        self,
        query: str,
        user_id: int,
        locale: str = "",
        surface: str = "",
        k: int = 10,
    ) -> PipelineResult:
        """
        Run the full pipeline for a query.

        Args:
            query: Raw user query
            user_id: User to recommend for
            locale: Request locale
            surface: Product surface
            k: Number of items to return

        Returns:
            PipelineResult with at most k items

        Raises:
            UnknownIndexVersion: If a configured index version is not published
        """
        if self.candidate_service is None:
            raise RuntimeError("Candidate generation is not configured")

        start_time = time.perf_counter()
        generation = self.candidate_service.generate(
            query, user_id=user_id, locale=locale, surface=surface
        )
        candidate_ms = (time.perf_counter() - start_time) * 1000

        result = self._rank_and_rerank(
            user_id,
            list(generation.candidates),
            {"surface": surface, "locale": locale},
            query=generation.variants.anchor,
            k=k,
        )
        result.diagnostics["candidates"] = generation.to_dict()
        result.diagnostics["latency_ms"]["candidates"] = candidate_ms
        result.diagnostics["latency_ms"]["total"] = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"Recommended {len(result.items)} items for user {user_id} "
            f"(mode={result.mode}, candidates={len(generation.candidates)}, "
            f"total={result.diagnostics['latency_ms']['total']:.1f}ms)"
        )
        return result

    def rank_candidates(
        self,
        user_id: int,
        candidates: Sequence[CandidateInput],
        context: Optional[Mapping[str, Any]] = None,
        query: Optional[str] = None,
        k: Optional[int] = None,
    ) -> PipelineResult:
        """
        Rank caller-supplied candidates (the /rank boundary).

        The reranker runs only when a query is given and the surface allows it.
        """
        start_time = time.perf_counter()
        result = self._rank_and_rerank(user_id, candidates, context or {}, query=query, k=k)
        result.diagnostics["latency_ms"]["total"] = (time.perf_counter() - start_time) * 1000
        return result

    def _rank_and_rerank(
        self,
        user_id: int,
        candidates: Sequence[CandidateInput],
        context: Mapping[str, Any],
        query: Optional[str],
        k: Optional[int],
    ) -> PipelineResult:
        rank_start = time.perf_counter()
        ranked: RankResult = self.ranker_service.rank(user_id, candidates, context)
        rank_ms = (time.perf_counter() - rank_start) * 1000

        items = ranked.items
        rerank: Optional[RerankResult] = None
        if self.reranker is not None and query:
            rerank = self.reranker.rerank(query, ranked.item_ids, surface=context.get("surface", ""))
            by_id = {item.item_id: item for item in items}
            items = [by_id[item_id] for item_id in rerank.item_ids]

        if k is not None:
            items = items[:k]

        diagnostics: Dict[str, Any] = {
            "ranking": ranked.diagnostics.to_dict(),
            "latency_ms": {"ranking": rank_ms},
        }
        if rerank is not None:
            diagnostics["rerank"] = rerank.to_dict()
            diagnostics["latency_ms"]["rerank"] = rerank.latency_ms

        return PipelineResult(items, ranked.model_version, ranked.mode.value, diagnostics)

    # ------------------------------------------------------------------
    # Guardrails and monitoring
    # ------------------------------------------------------------------

    def record_rerank_lift(self, lift: float) -> Dict[str, Any]:
        """Record the online lift of the reranker (non-positive disables it)."""
        if self.reranker is None:
            raise RuntimeError("Reranker is not configured")
        self.reranker.guardrails.record_lift(lift)
        return self.reranker.guardrails.to_dict()

    def rerank_guardrails(self) -> Dict[str, Any]:
        if self.reranker is None:
            return {"configured": False}
        return {"configured": True, **self.reranker.guardrails.to_dict()}

    def get_service_info(self) -> Dict[str, Any]:
        """Loaded versions and effective configuration."""
        info: Dict[str, Any] = {
            "ranking": {"model_version": self.ranker_service.model_version},
            "config": self.config.to_dict(),
        }
        if self.candidate_service is not None:
            info["candidate_generation"] = {
                "index_versions": self.candidate_service.retriever.registry.versions(),
                "behavioral_index": self.config.merge.behavioral_index_version,
                "content_index": self.config.merge.content_index_version,
            }
        else:
            info["candidate_generation"] = {}
        return info

    def health_check(self) -> Dict[str, Any]:
        """
        Aggregate component health.

        Feature stores and popularity may be degraded without the service
        being unhealthy: the ranker degrades instead of failing.
        """
        checks: Dict[str, Any] = {}
        ranking = self.ranker_service.health_check()
        checks["ranking_service"] = "healthy"
        features = ranking["features"]
        checks["feature_stores"] = "healthy" if features["healthy"] else "degraded"
        checks["popularity"] = "healthy" if ranking["popularity"].get("healthy") else "unhealthy"

        if self.candidate_service is not None:
            versions = self.candidate_service.retriever.registry.versions()
            checks["candidate_service"] = "healthy" if versions else "unhealthy: no index versions"

        core_healthy = checks["popularity"] == "healthy" and checks.get(
            "candidate_service", "healthy"
        ) == "healthy"
        return {"status": "healthy" if core_healthy else "unhealthy", "checks": checks}

    def close(self) -> None:
        if self.candidate_service is not None:
            self.candidate_service.close()
        if self.reranker is not None:
            self.reranker.close()
