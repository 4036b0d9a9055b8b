import logging

import numpy as np
import pytest

from candidate_gen.retrieval import RetrievalMode, RetrievalRequest
from common.config import RetrievalConfig
from common.errors import FailureKind, UnknownIndexVersion, UpstreamError, VersionMismatch

from conftest import (
    CONTENT_VERSION,
    DIM,
    TEXT_EMBEDDING_VERSION,
    StubANNIndex,
    make_artifact,
)

QUERY = np.ones(DIM, dtype=np.float32)


def _index(**kwargs):
    return StubANNIndex(make_artifact(CONTENT_VERSION), **kwargs)


def test_primary_results_bounded_by_k(make_retriever):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=range(1, 30))})

    result = retriever.retrieve(QUERY, k=10, index_version=CONTENT_VERSION)

    assert result.mode is RetrievalMode.PRIMARY
    assert result.candidates.item_ids == list(range(1, 11))
    assert result.failure is None
    assert all(c.source == f"ann:{CONTENT_VERSION}" for c in result.candidates)


def test_runtime_budget_passed_per_call(make_retriever):
    index = _index(item_ids=range(1, 30))
    retriever = make_retriever({CONTENT_VERSION: index}, RetrievalConfig(search_budget=128))

    retriever.retrieve(QUERY, k=5, index_version=CONTENT_VERSION)

    assert index.budgets == [128]


def test_timeout_returns_fallback_of_length_k(make_retriever, popularity, caplog):
    retriever = make_retriever(
        {CONTENT_VERSION: _index(item_ids=range(1, 30), delay_s=0.5)},
        RetrievalConfig(deadline_ms=30.0, min_candidates=3),
    )

    with caplog.at_level(logging.WARNING):
        result = retriever.retrieve(QUERY, k=8, index_version=CONTENT_VERSION)

    assert result.mode is RetrievalMode.FALLBACK
    assert result.failure is FailureKind.UPSTREAM_TIMEOUT
    assert len(result.candidates) == 8
    assert result.candidates.item_ids == popularity.top_n(8)
    assert "reason=UpstreamTimeout" in caplog.text
    assert f"index_version={CONTENT_VERSION}" in caplog.text


def test_too_few_results_is_exactly_the_fallback_set(make_retriever, popularity):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=[1, 2])})

    result = retriever.retrieve(QUERY, k=10, index_version=CONTENT_VERSION)

    assert result.failure is FailureKind.INSUFFICIENT_RESULTS
    assert result.candidates.item_ids == popularity.top_n(10)
    assert all(c.source == "fallback" for c in result.candidates)


def test_index_error_falls_back(make_retriever):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=[1], error=UpstreamError("io"))})

    result = retriever.retrieve(QUERY, k=5, index_version=CONTENT_VERSION)

    assert result.is_fallback
    assert result.failure is FailureKind.UPSTREAM_ERROR


def test_unloaded_index_falls_back(make_retriever):
    retriever = make_retriever({})

    result = retriever.retrieve(QUERY, k=5, index_version=CONTENT_VERSION)

    assert result.is_fallback
    assert len(result.candidates) == 5


def test_fallback_size_caps_fallback(make_retriever):
    retriever = make_retriever(
        {CONTENT_VERSION: _index(item_ids=[])},
        RetrievalConfig(min_candidates=3, fallback_size=4),
    )

    result = retriever.retrieve(QUERY, k=10, index_version=CONTENT_VERSION)

    assert len(result.candidates) == 4


def test_dimension_mismatch_raises_before_search(make_retriever):
    index = _index(item_ids=range(1, 30))
    retriever = make_retriever({CONTENT_VERSION: index})

    with pytest.raises(VersionMismatch, match="dim"):
        retriever.retrieve(np.ones(DIM + 1), k=5, index_version=CONTENT_VERSION)
    assert index.calls == 0


def test_embedding_version_mismatch_raises(make_retriever):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=range(1, 30))})

    with pytest.raises(VersionMismatch, match="version"):
        retriever.retrieve(QUERY, k=5, index_version=CONTENT_VERSION, embedding_version="other")


def test_matching_embedding_version_accepted(make_retriever):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=range(1, 30))})

    request = RetrievalRequest(QUERY, 5, CONTENT_VERSION, TEXT_EMBEDDING_VERSION, source="content:0")
    result = retriever.retrieve_request(request)

    assert result.mode is RetrievalMode.PRIMARY
    assert result.candidates[0].source == "content:0"


def test_unknown_index_version_raises(make_retriever):
    retriever = make_retriever({})
    with pytest.raises(UnknownIndexVersion):
        retriever.retrieve(QUERY, k=5, index_version="content-v404")


def test_zero_k_returns_empty_primary(make_retriever):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=range(1, 30))})

    result = retriever.retrieve(QUERY, k=0, index_version=CONTENT_VERSION)

    assert len(result.candidates) == 0
    assert result.mode is RetrievalMode.PRIMARY


def test_duplicate_hits_are_collapsed(make_retriever):
    retriever = make_retriever({CONTENT_VERSION: _index(item_ids=[1, 1, 2, 3, 3, 4])})

    result = retriever.retrieve(QUERY, k=6, index_version=CONTENT_VERSION)

    assert result.candidates.item_ids == [1, 2, 3, 4]
