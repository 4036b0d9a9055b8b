import itertools
import json

import pytest

from common.config import RerankConfig
from common.errors import ConfigurationError, FailureKind, RerankSchemaViolation, UpstreamError
from ranking.rerank import BoundedReranker, RerankGuardrails, blend, position_scores, validate_permutation

from conftest import StubGenerator, rerank_response


def _reranker(generator, **config_kwargs):
    config_kwargs.setdefault("enabled_surfaces", ["search"])
    return BoundedReranker(generator, RerankConfig(**config_kwargs))


def test_length_mismatch_returns_original_order():
    reranker = _reranker(StubGenerator(rerank_response([98, 45])))

    result = reranker.rerank("shoes", [712, 45, 98], surface="search")

    assert result.item_ids == [712, 45, 98]
    assert not result.applied
    assert result.failure is FailureKind.RERANK_SCHEMA_VIOLATION
    reranker.close()


@pytest.mark.parametrize(
    "raw",
    [
        rerank_response([712, 712, 98]),
        rerank_response([712, 45, 99]),
        "I think 98 is best",
        json.dumps({"item_ids": [712, 45, 98], "reason": "because"}),
        json.dumps({"ids": [712, 45, 98]}),
        json.dumps({"item_ids": ["712", 45, 98]}),
        json.dumps({"item_ids": [712, True, 98]}),
    ],
)
def test_invalid_outputs_pass_through(raw):
    reranker = _reranker(StubGenerator(raw))

    result = reranker.rerank("shoes", [712, 45, 98], surface="search")

    assert result.item_ids == [712, 45, 98]
    assert result.failure is FailureKind.RERANK_SCHEMA_VIOLATION
    reranker.close()


@pytest.mark.parametrize(
    "generator, kind",
    [
        (StubGenerator(UpstreamError("503")), FailureKind.UPSTREAM_ERROR),
        (StubGenerator(rerank_response([98, 45, 712]), delay_s=0.5), FailureKind.UPSTREAM_TIMEOUT),
    ],
)
def test_generator_failures_pass_through(generator, kind):
    reranker = _reranker(generator, timeout_ms=100.0)

    result = reranker.rerank("shoes", [712, 45, 98], surface="search")

    assert result.item_ids == [712, 45, 98]
    assert result.failure is kind
    reranker.close()


def test_valid_permutation_is_blended_not_substituted():
    items = [1, 2, 3, 4, 5]
    reranker = _reranker(StubGenerator(rerank_response([5, 4, 3, 2, 1])))

    result = reranker.rerank("shoes", items, surface="search")

    assert result.applied
    assert result.reranker_order == [5, 4, 3, 2, 1]
    assert result.item_ids == [1, 2, 3, 4, 5]
    reranker.close()


def test_blend_can_swap_neighbors():
    # item 0 last in the reranker order lets item 1 overtake it
    primary = list(range(10))
    reranked = list(range(1, 10)) + [0]
    assert blend(primary, reranked, alpha=0.2)[:3] == [1, 0, 2]


def test_only_head_is_sent_and_tail_kept():
    def reverse(request):
        ids = [item["item_id"] for item in json.loads(request.user_payload)["items"]]
        return rerank_response(list(reversed(ids)))

    generator = StubGenerator(reverse)
    reranker = _reranker(generator, top_n=3)

    result = reranker.rerank("shoes", [10, 20, 30, 40, 50], surface="search")

    sent = [item["item_id"] for item in json.loads(generator.requests[0].user_payload)["items"]]
    assert sent == [10, 20, 30]
    assert sorted(result.item_ids[:3]) == [10, 20, 30]
    assert result.item_ids[3:] == [40, 50]
    assert generator.requests[0].temperature == 0.0
    reranker.close()


def test_disabled_surface_bypasses_generator():
    generator = StubGenerator(rerank_response([98, 45, 712]))
    reranker = _reranker(generator)

    result = reranker.rerank("shoes", [712, 45, 98], surface="home")

    assert result.bypass_reason == "surface_disabled"
    assert result.item_ids == [712, 45, 98]
    assert generator.requests == []
    reranker.close()


def test_disabled_by_default():
    reranker = BoundedReranker(StubGenerator(rerank_response([2, 1])))
    assert reranker.rerank("q", [1, 2], surface="search").bypass_reason == "surface_disabled"
    reranker.close()


def test_too_few_items_bypass():
    reranker = _reranker(StubGenerator(rerank_response([1])))
    assert reranker.rerank("q", [1], surface="search").bypass_reason == "too_few_items"
    reranker.close()


def test_alpha_above_bound_rejected():
    with pytest.raises(ConfigurationError):
        BoundedReranker(StubGenerator(), RerankConfig(alpha=0.5))
    with pytest.raises(ConfigurationError):
        blend([1, 2], [2, 1], alpha=0.21)


@pytest.mark.parametrize("n", [5, 6, 7])
def test_primary_last_never_reaches_top(n):
    primary = list(range(n))
    for perm in itertools.permutations(primary):
        final = blend(primary, list(perm), alpha=0.2)
        assert final[0] != primary[-1]


@pytest.mark.parametrize("n", [5, 8, 12])
def test_rise_is_bounded_by_alpha(n):
    alpha = 0.2
    primary = list(range(n))
    # put each item first in the reranker order and measure how far it rises
    for item in primary:
        reranked = [item] + [i for i in primary if i != item]
        final = blend(primary, reranked, alpha)
        rise = primary.index(item) - final.index(item)
        assert rise < alpha * (n - 1) + 1e-9


def test_position_scores():
    assert position_scores(4) == [1.0, 0.75, 0.5, 0.25]


def test_validate_permutation():
    validate_permutation([1, 2, 3], [3, 1, 2])
    with pytest.raises(RerankSchemaViolation):
        validate_permutation([1, 2, 3], [1, 2])
    with pytest.raises(RerankSchemaViolation):
        validate_permutation([1, 2, 3], [1, 1, 2])
    with pytest.raises(RerankSchemaViolation):
        validate_permutation([1, 2, 3], [1, 2, 4])


class TestGuardrails:
    def test_non_positive_lift_disables_and_positive_reenables(self):
        guardrails = RerankGuardrails(RerankConfig(enabled_surfaces=["search"]))

        guardrails.record_lift(0.0)
        assert guardrails.check("search") == (False, "non_positive_lift")

        guardrails.record_lift(0.03)
        assert guardrails.check("search") == (True, None)

    def test_latency_budget_bypass_with_periodic_probe(self):
        config = RerankConfig(enabled_surfaces=["search"], p95_budget_ms=100.0, min_latency_samples=5)
        guardrails = RerankGuardrails(config)
        for _ in range(5):
            guardrails.record_latency(500.0)

        decisions = [guardrails.check("search") for _ in range(10)]

        assert decisions.count((True, None)) == 2
        assert decisions[4] == (True, None)
        assert decisions[0] == (False, "latency_budget_exceeded")

    def test_latency_guardrail_waits_for_samples(self):
        config = RerankConfig(enabled_surfaces=["search"], p95_budget_ms=100.0, min_latency_samples=5)
        guardrails = RerankGuardrails(config)
        guardrails.record_latency(500.0)

        assert guardrails.check("search") == (True, None)

    def test_reranker_records_latency(self):
        reranker = _reranker(StubGenerator(rerank_response([2, 1])))

        reranker.rerank("q", [1, 2], surface="search")

        assert len(reranker.guardrails.latency) == 1
        reranker.close()

    def test_to_dict(self):
        guardrails = RerankGuardrails(RerankConfig(enabled_surfaces=["search"]))
        guardrails.record_lift(-0.1)

        state = guardrails.to_dict()

        assert state["lift_disabled"] is True
        assert state["enabled_surfaces"] == ["search"]
