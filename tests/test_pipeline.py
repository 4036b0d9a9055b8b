import numpy as np
import pandas as pd
import pytest

from candidate_gen.expansion import QueryExpander
from candidate_gen.retrieval import FAISSConfig, FAISSIndexBuilder
from candidate_gen.serving import CandidateGenerationService
from common.config import MergeConfig, PipelineConfig, RankingConfig, RetrievalConfig
from common.errors import UnknownIndexVersion, UpstreamError
from serving import RecommendationService

from conftest import (
    BEHAVIORAL_VERSION,
    CONTENT_VERSION,
    DIM,
    USER_EMBEDDING_VERSION,
    StubEmbedder,
    StubGenerator,
    make_artifact,
    pipeline_generator,
)

PRIMARY_ORDER = [9, 8, 7, 6, 5, 4, 3, 2, 1, 1000, 1001, 1002]


def test_recommend_end_to_end(make_service):
    service = make_service()

    result = service.recommend("  running   shoes ", user_id=1, surface="home")

    assert result.item_ids == PRIMARY_ORDER[:10]
    assert result.mode == "primary"
    assert result.model_version == "stub-v1"
    candidates = result.diagnostics["candidates"]
    assert candidates["variants"] == ["running shoes", "running shoes sale", "cheap running shoes"]
    assert candidates["merge"]["count"] == 12
    assert result.diagnostics["rerank"]["bypass_reason"] == "surface_disabled"
    assert set(result.diagnostics["latency_ms"]) >= {"candidates", "ranking", "total"}


def test_recommend_applies_bounded_rerank_on_enabled_surface(make_service):
    generator = StubGenerator(pipeline_generator)
    service = make_service(generator=generator)

    result = service.recommend("running shoes", user_id=1, surface="search", k=12)

    # a full reversal at alpha=0.2 cannot move any item past its neighbor
    assert result.item_ids == PRIMARY_ORDER
    assert result.diagnostics["rerank"]["applied"] is True
    assert '"query": "running shoes"' in generator.requests[-1].user_payload


def test_recommend_truncates_to_k(make_service):
    result = make_service().recommend("running shoes", user_id=1, k=3)
    assert result.item_ids == [9, 8, 7]


def test_unknown_user_is_degraded_and_skips_behavioral(make_service):
    result = make_service().recommend("running shoes", user_id=2, surface="home", k=12)

    assert result.mode == "primary-degraded"
    assert result.item_ids[:6] == [6, 5, 4, 3, 2, 1]
    assert not {7, 8, 9} & set(result.item_ids)
    assert result.diagnostics["ranking"]["failure"] == "DegradedFeatures"


def test_generator_down_keeps_serving(make_service):
    service = make_service(generator=StubGenerator(UpstreamError("llm 503")))

    result = service.recommend("running shoes", user_id=1, surface="search")

    assert result.item_ids == PRIMARY_ORDER[:10]
    assert result.diagnostics["candidates"]["variants"] == ["running shoes"]
    assert result.diagnostics["candidates"]["expansion_failure"] == "UpstreamError"
    assert result.diagnostics["rerank"]["failure"] == "UpstreamError"


def test_failed_embeddings_leave_behavioral_and_popularity(make_service):
    embedder = StubEmbedder(failing=["running shoes", "running shoes sale", "cheap running shoes"])
    service = make_service(embedder=embedder)

    result = service.recommend("running shoes", user_id=1, k=12)

    assert result.item_ids[:3] == [9, 8, 7]
    assert not {1, 2, 3, 4, 5, 6} & set(result.item_ids)
    assert len(result.diagnostics["candidates"]["embedding_failures"]) == 3


def test_failing_content_index_contributes_nothing(make_service):
    service = make_service(content_error=RuntimeError("segment corrupted"))

    result = service.recommend("running shoes", user_id=1, k=12)

    assert result.item_ids == [9, 8, 7] + [1000 + i for i in range(9)]
    strategies = result.diagnostics["candidates"]["merge"]["strategies"]
    assert all(s["contributed"] == 0 for s in strategies if s["name"].startswith("content"))


def test_unknown_index_version_propagates(make_service):
    service = make_service(merge_config=MergeConfig(
        candidate_width=12,
        content_index_version="content-v9",
        behavioral_index_version=BEHAVIORAL_VERSION,
    ))

    with pytest.raises(UnknownIndexVersion):
        service.recommend("running shoes", user_id=1)


def test_rank_candidates_boundary(make_service):
    service = make_service()

    result = service.rank_candidates(1, [3, 1, 2], {"surface": "home"})

    assert result.item_ids == [3, 2, 1]
    assert "rerank" not in result.diagnostics
    assert result.to_dict()["diagnostics"]["mode"] == "primary"


def test_rank_candidates_popularity_only_fallback(make_service):
    service = make_service(ranking_config=RankingConfig(fallback_mode="popularity_only"))

    result = service.rank_candidates(2, [1002, 1000, 1001])

    assert result.mode == "fallback"
    assert result.model_version == "popularity"
    assert result.item_ids == [1000, 1001, 1002]


def test_rank_candidates_with_query_reranks(make_service):
    result = make_service().rank_candidates(1, [1, 2, 3], {"surface": "search"}, query="shoes")
    assert result.diagnostics["rerank"]["applied"] is True
    assert sorted(result.item_ids) == [1, 2, 3]


def test_non_positive_lift_bypasses_reranker(make_service):
    service = make_service()

    state = service.record_rerank_lift(-0.02)
    result = service.recommend("running shoes", user_id=1, surface="search")

    assert state["lift_disabled"] is True
    assert result.diagnostics["rerank"]["bypass_reason"] == "non_positive_lift"
    assert service.rerank_guardrails()["configured"] is True


def test_service_info_and_health(make_service):
    service = make_service()

    info = service.get_service_info()
    health = service.health_check()

    assert info["ranking"]["model_version"] == "stub-v1"
    assert info["candidate_generation"]["index_versions"] == [BEHAVIORAL_VERSION, CONTENT_VERSION]
    assert info["config"]["rerank"]["enabled_surfaces"] == ["search"]
    assert health["status"] == "healthy"
    assert health["checks"]["feature_stores"] == "healthy"


def test_record_lift_without_reranker_raises(make_service):
    service = make_service()
    bare = RecommendationService(service.candidate_service, service.ranker_service)

    with pytest.raises(RuntimeError):
        bare.record_rerank_lift(0.1)
    assert bare.rerank_guardrails() == {"configured": False}


def test_candidate_service_from_config_loads_artifacts(tmp_path):
    index_dir = tmp_path / "index"
    rng = np.random.default_rng(0)
    item_ids = np.arange(1, 21)
    for artifact in (
        make_artifact(CONTENT_VERSION),
        make_artifact(BEHAVIORAL_VERSION, USER_EMBEDDING_VERSION),
    ):
        builder = FAISSIndexBuilder(FAISSConfig(index_type="flat"))
        index = builder.build(rng.normal(size=(20, DIM)).astype(np.float32), item_ids, artifact)
        builder.save(index, artifact, index_dir)
    pd.DataFrame({"item_id": [100, 101], "popularity": [5.0, 9.0]}).to_parquet(
        tmp_path / "popularity.parquet"
    )
    np.savez(
        tmp_path / "user_embeddings.npz",
        user_ids=np.array([1]),
        embeddings=np.ones((1, DIM), dtype=np.float32),
        embedding_version=np.array(USER_EMBEDDING_VERSION),
    )

    config = PipelineConfig(
        retrieval=RetrievalConfig(deadline_ms=500.0),
        merge=MergeConfig(candidate_width=8, strategy_timeout_ms=1000.0),
    )
    service = CandidateGenerationService.from_config(
        config, QueryExpander(None), StubEmbedder(), artifacts_dir=tmp_path
    )
    try:
        result = service.generate("running shoes", user_id=1)
    finally:
        service.close()

    assert len(result.candidates) == 8
    assert result.merge.all_fallback is False
    assert set(result.candidates.item_ids) <= set(item_ids.tolist())
