import numpy as np
import pytest

from candidate_gen.retrieval import StrategyKind
from common.config import MergeConfig
from common.errors import FailureKind, UnknownIndexVersion

from conftest import (
    BEHAVIORAL_VERSION,
    CONTENT_VERSION,
    DIM,
    TEXT_EMBEDDING_VERSION,
    USER_EMBEDDING_VERSION,
    StubANNIndex,
    make_artifact,
)

VEC = np.ones(DIM, dtype=np.float32)


def _indexes(content_ids, behavioral_ids, content_sims=None, behavioral_sims=None, **content_kwargs):
    return {
        CONTENT_VERSION: StubANNIndex(
            make_artifact(CONTENT_VERSION, TEXT_EMBEDDING_VERSION),
            content_ids, content_sims, **content_kwargs,
        ),
        BEHAVIORAL_VERSION: StubANNIndex(
            make_artifact(BEHAVIORAL_VERSION, USER_EMBEDDING_VERSION),
            behavioral_ids, behavioral_sims,
        ),
    }


def test_dedup_keeps_behavioral_similarity(make_merger):
    merger = make_merger(_indexes(
        content_ids=[5, 6, 7, 8], content_sims=[0.9, 0.8, 0.7, 0.6],
        behavioral_ids=[7, 1, 2, 3], behavioral_sims=[0.3, 0.2, 0.1, 0.05],
    ))

    result = merger.merge([VEC], user_embedding=VEC)

    ids = result.candidates.item_ids
    assert ids[:7] == [7, 1, 2, 3, 5, 6, 8]
    seven = result.candidates[0]
    assert seven.similarity == pytest.approx(0.3)
    assert seven.source == "behavioral"


def test_variants_merge_in_given_order(make_merger):
    merger = make_merger(_indexes(content_ids=[11, 12, 13], behavioral_ids=[]))

    result = merger.merge([VEC, VEC * 2])

    # both variants hit the same stub, so the second contributes nothing new
    content_reports = [r for r in result.reports if r.kind is StrategyKind.CONTENT]
    assert [r.name for r in content_reports] == ["content:0", "content:1"]
    assert content_reports[0].contributed == 3
    assert content_reports[1].contributed == 0
    assert result.candidates.item_ids[:3] == [11, 12, 13]


def test_popularity_fills_remaining_width_once(make_merger, popularity):
    merger = make_merger(_indexes(content_ids=[11, 12, 13], behavioral_ids=[]))

    result = merger.merge([VEC])

    assert len(result.candidates) == 10
    assert result.candidates.item_ids[3:] == popularity.top_n(7)
    heuristic = result.reports[-1]
    assert heuristic.kind is StrategyKind.HEURISTIC
    assert heuristic.contributed == 7


def test_fallen_back_strategy_contributes_nothing_of_its_own(make_merger, popularity):
    # content returns too few results, so its own output is the fallback list
    merger = make_merger(_indexes(content_ids=[11], behavioral_ids=[21, 22, 23, 24]))

    result = merger.merge([VEC], user_embedding=VEC)

    content = next(r for r in result.reports if r.kind is StrategyKind.CONTENT)
    assert content.mode == "fallback"
    assert content.failure is FailureKind.INSUFFICIENT_RESULTS
    assert content.contributed == 0
    assert result.candidates.item_ids == [21, 22, 23, 24] + popularity.top_n(6)


def test_all_strategies_fail_serves_popularity(make_merger, popularity):
    merger = make_merger(_indexes(content_ids=[], behavioral_ids=[]))

    result = merger.merge([VEC], user_embedding=VEC)

    assert result.all_fallback
    assert result.candidates.item_ids == popularity.top_n(10)


def test_no_embeddings_still_returns_popularity(make_merger, popularity):
    merger = make_merger(_indexes(content_ids=[1, 2, 3], behavioral_ids=[]))

    result = merger.merge([])

    assert result.candidates.item_ids == popularity.top_n(10)
    assert [r.kind for r in result.reports] == [StrategyKind.HEURISTIC]


def test_width_truncates(make_merger):
    merger = make_merger(_indexes(content_ids=range(100, 130), behavioral_ids=[]))

    result = merger.merge([VEC], k=5)

    assert result.candidates.item_ids == [100, 101, 102, 103, 104]


def test_zero_width_returns_nothing(make_merger):
    merger = make_merger(_indexes(content_ids=[1, 2, 3, 4], behavioral_ids=[]))

    result = merger.merge([VEC], k=0)

    assert len(result.candidates) == 0
    assert result.candidates.item_ids == []


def test_version_mismatch_is_recorded_not_padded(make_merger, popularity):
    merger = make_merger(_indexes(content_ids=[1, 2, 3, 4], behavioral_ids=[]))

    result = merger.merge([np.ones(DIM + 2)])

    content = result.reports[0]
    assert content.failure is FailureKind.VERSION_MISMATCH
    assert content.contributed == 0
    assert result.candidates.item_ids == popularity.top_n(10)


def test_wrong_embedding_version_recorded(make_merger):
    merger = make_merger(_indexes(content_ids=[1, 2, 3, 4], behavioral_ids=[]))

    result = merger.merge([VEC], embedding_version="stale-emb")

    assert result.reports[0].failure is FailureKind.VERSION_MISMATCH


def test_slow_strategy_does_not_stall_merge(make_merger, popularity):
    merger = make_merger(
        _indexes(content_ids=[1, 2, 3, 4], behavioral_ids=[21, 22, 23], delay_s=0.5),
        MergeConfig(
            candidate_width=10,
            content_index_version=CONTENT_VERSION,
            behavioral_index_version=BEHAVIORAL_VERSION,
            strategy_timeout_ms=100.0,
        ),
    )

    result = merger.merge([VEC], user_embedding=VEC)

    content = next(r for r in result.reports if r.kind is StrategyKind.CONTENT)
    assert content.failure is FailureKind.UPSTREAM_TIMEOUT
    assert result.candidates.item_ids[:3] == [21, 22, 23]
    assert len(result.candidates) == 10


def test_unknown_index_version_propagates(make_merger):
    merger = make_merger(
        _indexes(content_ids=[1, 2, 3], behavioral_ids=[]),
        MergeConfig(content_index_version="content-v404", strategy_timeout_ms=1000.0),
    )

    with pytest.raises(UnknownIndexVersion):
        merger.merge([VEC])
