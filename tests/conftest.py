"""Shared fixtures and deterministic stubs for the pipeline test suite."""

import hashlib
import json
import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
root_str = str(PROJECT_ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from candidate_gen.artifacts import ArtifactRegistry, DistanceSpace, IndexArtifact
from candidate_gen.embedding import EmbeddingService
from candidate_gen.retrieval import (
    ANNIndex,
    CandidateRetriever,
    MultiStrategyMerger,
    StaticPopularityStore,
)
from common.config import MergeConfig, RetrievalConfig
from common.errors import UpstreamError
from common.generative import GenerationRequest, GenerativeTextService
from ranking.features import FeatureField, FeatureSchema
from ranking.serving import ScoringModel

DIM = 4
CONTENT_VERSION = "content-v1"
BEHAVIORAL_VERSION = "behavioral-v1"
TEXT_EMBEDDING_VERSION = "text-emb-v1"
USER_EMBEDDING_VERSION = "user-emb-v1"

# Popularity: 1000 is the most popular, 1019 the least
POPULARITY = {1000 + i: float(100 - i) for i in range(20)}


class StubGenerator(GenerativeTextService):
    """
    Deterministic generator.

    ``response`` may be a string, a callable taking the request, or an
    exception instance to raise. ``delay_s`` simulates a slow backend.
    """

    def __init__(
        self,
        response: Union[str, Callable[[GenerationRequest], str], Exception] = "",
        delay_s: float = 0.0,
    ):
        self.response = response
        self.delay_s = delay_s
        self.requests: List[GenerationRequest] = []

    def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.delay_s:
            time.sleep(self.delay_s)
        if isinstance(self.response, Exception):
            raise self.response
        if callable(self.response):
            return self.response(request)
        return self.response


class StubEmbedder(EmbeddingService):
    """Hash-seeded unit vectors; texts in ``failing`` raise UpstreamError."""

    def __init__(self, dim: int = DIM, embedding_version: Optional[str] = TEXT_EMBEDDING_VERSION,
                 failing: Sequence[str] = ()):
        self.dim = dim
        self.embedding_version = embedding_version
        self.failing = set(failing)
        self.calls: List[str] = []

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if text in self.failing:
            raise UpstreamError(f"embedding backend rejected {text!r}")
        seed = int(hashlib.md5(text.encode("utf-8")).hexdigest()[:8], 16)
        vec = np.random.default_rng(seed).normal(size=self.dim).astype(np.float32)
        return vec / np.linalg.norm(vec)


class StubANNIndex(ANNIndex):
    """
    ANN index returning fixed hits.

    Attributes:
        calls: Number of search calls made
        budgets: Runtime budgets seen
    """

    def __init__(
        self,
        artifact: IndexArtifact,
        item_ids: Sequence[int],
        similarities: Optional[Sequence[float]] = None,
        delay_s: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.artifact = artifact
        self.item_ids = list(item_ids)
        self.similarities = (
            list(similarities) if similarities is not None
            else [1.0 - 0.01 * i for i in range(len(self.item_ids))]
        )
        self.delay_s = delay_s
        self.error = error
        self.calls = 0
        self.budgets: List[int] = []

    def search(self, vector, k, runtime_budget):
        self.calls += 1
        self.budgets.append(runtime_budget)
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.item_ids[:k], self.similarities[:k]


class FeatureScoreModel(ScoringModel):
    """Scores each row with one feature column (NaN stays NaN)."""

    def __init__(self, column: str = "item_score", model_version: str = "stub-v1",
                 error: Optional[Exception] = None):
        self.column = column
        self.model_version = model_version
        self.feature_columns = [column]
        self.error = error
        self.calls = 0

    def score(self, features: pd.DataFrame) -> np.ndarray:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return features[self.column].to_numpy(dtype=np.float64)


def make_artifact(version: str = CONTENT_VERSION, embedding_version: str = TEXT_EMBEDDING_VERSION,
                  dim: int = DIM) -> IndexArtifact:
    return IndexArtifact(version, embedding_version, dim, DistanceSpace.COSINE)


def rerank_response(item_ids: Sequence[int]) -> str:
    return json.dumps({"item_ids": list(item_ids)})


def rewrite_response(rewrites: Sequence[str]) -> str:
    return json.dumps({"rewrites": list(rewrites)})


@pytest.fixture
def popularity() -> StaticPopularityStore:
    return StaticPopularityStore(POPULARITY)


@pytest.fixture
def registry() -> ArtifactRegistry:
    registry = ArtifactRegistry()
    registry.publish(make_artifact(CONTENT_VERSION, TEXT_EMBEDDING_VERSION))
    registry.publish(make_artifact(BEHAVIORAL_VERSION, USER_EMBEDDING_VERSION))
    return registry


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(deadline_ms=200.0, min_candidates=3, fallback_size=50, max_workers=4)


@pytest.fixture
def make_retriever(registry, popularity, retrieval_config):
    """Factory: retriever over the given per-version stub indexes."""
    created: List[CandidateRetriever] = []

    def factory(indexes: Dict[str, ANNIndex], config: Optional[RetrievalConfig] = None):
        retriever = CandidateRetriever(registry, indexes, popularity, config or retrieval_config)
        created.append(retriever)
        return retriever

    yield factory
    for retriever in created:
        retriever.close()


@pytest.fixture
def make_merger(make_retriever):
    created: List[MultiStrategyMerger] = []

    def factory(indexes: Dict[str, ANNIndex], config: Optional[MergeConfig] = None):
        merger = MultiStrategyMerger(
            make_retriever(indexes),
            config or MergeConfig(
                candidate_width=10,
                content_index_version=CONTENT_VERSION,
                behavioral_index_version=BEHAVIORAL_VERSION,
                strategy_timeout_ms=1000.0,
            ),
        )
        created.append(merger)
        return merger

    yield factory
    for merger in created:
        merger.close()


@pytest.fixture
def score_schema() -> FeatureSchema:
    """Two required fields (availability steps of 0.5) plus one optional field."""
    return FeatureSchema([
        FeatureField("user_activity_count", "user"),
        FeatureField("item_score", "item"),
        FeatureField("recent_interaction_count", "interaction", required=False, default=0.0),
    ])


# Catalog used by the end-to-end fixtures: ANN hits 1..9 score item_id / 10,
# popularity items score 0.05 so they rank below every ANN hit.
ITEM_SCORES = {**{i: i / 10 for i in range(1, 10)}, **{item_id: 0.05 for item_id in POPULARITY}}
PIPELINE_USERS = {1: {"user_activity_count": 5.0}}


def pipeline_generator(request: GenerationRequest) -> str:
    """Rewrites for expansion requests, the reversed head for rerank requests."""
    payload = json.loads(request.user_payload)
    if "items" in payload:
        return rerank_response([item["item_id"] for item in reversed(payload["items"])])
    return rewrite_response([f"{payload['query']} sale", f"cheap {payload['query']}"])


@pytest.fixture
def make_service(registry, popularity, score_schema):
    """
    Factory: RecommendationService over stub generator, embedder and indexes.

    Content hits are items 1..6, behavioral hits 7..9 (user 1 only), and
    popularity fills the rest of the candidate width.
    """
    from candidate_gen.embedding import UserEmbeddingTable
    from candidate_gen.expansion import QueryExpander
    from candidate_gen.serving import CandidateGenerationService
    from common.cache import InMemoryTTLCache
    from common.config import ExpansionConfig, PipelineConfig, RankingConfig, RerankConfig
    from ranking.rerank import BoundedReranker
    from ranking.serving import RankerService, ServingFeatureBuilder
    from ranking.serving.feature_store import InMemoryFeatureStore
    from serving import RecommendationService

    created = []

    def factory(
        generator: Optional[GenerativeTextService] = None,
        embedder: Optional[EmbeddingService] = None,
        merge_config: Optional[MergeConfig] = None,
        rerank_config: Optional[RerankConfig] = None,
        ranking_config: Optional[RankingConfig] = None,
        model: Optional[ScoringModel] = None,
        content_error: Optional[Exception] = None,
    ):
        generator = generator or StubGenerator(pipeline_generator)
        config = PipelineConfig(
            expansion=ExpansionConfig(timeout_ms=1000.0),
            merge=merge_config or MergeConfig(
                candidate_width=12,
                content_index_version=CONTENT_VERSION,
                behavioral_index_version=BEHAVIORAL_VERSION,
                strategy_timeout_ms=1000.0,
            ),
            rerank=rerank_config or RerankConfig(enabled_surfaces=["search"], timeout_ms=1000.0),
            ranking=ranking_config or RankingConfig(),
        )
        indexes = {
            CONTENT_VERSION: StubANNIndex(
                make_artifact(CONTENT_VERSION), list(range(1, 7)), error=content_error
            ),
            BEHAVIORAL_VERSION: StubANNIndex(
                make_artifact(BEHAVIORAL_VERSION, USER_EMBEDDING_VERSION), [7, 8, 9]
            ),
        }
        retriever = CandidateRetriever(
            registry, indexes, popularity,
            RetrievalConfig(deadline_ms=500.0, min_candidates=3, max_workers=4),
        )
        candidate_service = CandidateGenerationService(
            QueryExpander(generator, InMemoryTTLCache(), config.expansion),
            embedder or StubEmbedder(),
            MultiStrategyMerger(retriever, config.merge),
            UserEmbeddingTable(np.array([1]), np.ones((1, DIM)), USER_EMBEDDING_VERSION),
        )
        builder = ServingFeatureBuilder(
            user_store=InMemoryFeatureStore("user", PIPELINE_USERS),
            item_store=InMemoryFeatureStore(
                "item", {item_id: {"item_score": s} for item_id, s in ITEM_SCORES.items()}
            ),
            schema=score_schema,
        )
        ranker = RankerService(model or FeatureScoreModel(), builder, popularity, config.ranking)
        service = RecommendationService(
            candidate_service, ranker, BoundedReranker(generator, config.rerank), config
        )
        created.append(service)
        return service

    yield factory
    for service in created:
        service.close()
