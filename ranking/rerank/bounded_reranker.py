"""
Bounded, fail-open generative reranking of the top of a ranked list.

rerank(query, ranked_item_ids, surface) -> RerankResult

The generator may only permute the items it is given. Its output is accepted
only if it has the same length and exactly the same id set as the input.
Accepted output is not substituted for the primary order; it is blended:

    position_score(p) = 1 - p / N                       p = 0 .. N-1
    final(item)       = position_score(primary_pos)
                        + alpha * position_score(rerank_pos)

sorted descending, ties in primary order. An item can therefore rise at most
alpha * (N - 1) positions over its primary position; with alpha <= 0.2 the
primary last item can never reach the top for N >= 2.

Timeouts, errors and invalid output all pass the primary order through.
"""

import json
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from common.config import MAX_RERANK_ALPHA, RerankConfig
from common.errors import ConfigurationError, FailureKind, RerankSchemaViolation
from common.generative import GenerationRequest, GenerativeTextService, parse_structured_output
from common.timing import call_with_deadline
from .guardrails import RerankGuardrails

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTIONS = (
    "You reorder a list of recommended items for a user query. "
    "Return every input item_id exactly once, best first. "
    "Do not add, remove or repeat ids. Do not explain. "
    "Respond with JSON only: {\"item_ids\": [int, ...]}."
)


class RerankOutput(BaseModel):
    """Schema the reranking generator must return."""

    model_config = ConfigDict(extra="forbid", strict=True)

    item_ids: List[int]


@dataclass
class RerankResult:
    """
    Final order of the reranked list and how it was produced.

    Attributes:
        item_ids: Final order; always a permutation of the input
        applied: Whether a validated reranker order was blended in
        bypass_reason: Guardrail that skipped the stage, if any
        failure: Why a reranker output was discarded, if it was
        detail: Context for the failure
        reranker_order: The validated generator order (before blending)
        latency_ms: Time spent in the stage
    """

    item_ids: List[int]
    applied: bool = False
    bypass_reason: Optional[str] = None
    failure: Optional[FailureKind] = None
    detail: str = ""
    reranker_order: Optional[List[int]] = None
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "bypass_reason": self.bypass_reason,
            "failure": self.failure.value if self.failure else None,
            "detail": self.detail,
            "latency_ms": self.latency_ms,
        }


def position_scores(n: int) -> List[float]:
    """Linearly decaying position scores 1, 1 - 1/n, ..., 1/n."""
    return [1.0 - p / n for p in range(n)]


def validate_permutation(input_ids: Sequence[int], output_ids: Sequence[int]) -> None:
    """
    Raises:
        RerankSchemaViolation: Unless output_ids is a permutation of input_ids
    """
    if len(output_ids) != len(input_ids):
        raise RerankSchemaViolation(
            f"length mismatch: got {len(output_ids)} ids for {len(input_ids)} inputs"
        )
    if len(set(output_ids)) != len(output_ids):
        raise RerankSchemaViolation("duplicate ids in reranker output")
    if set(output_ids) != set(input_ids):
        unknown = sorted(set(output_ids) - set(input_ids))
        raise RerankSchemaViolation(f"id set mismatch, unknown ids: {unknown}")


def blend(primary_ids: Sequence[int], reranked_ids: Sequence[int], alpha: float) -> List[int]:
    """
    Combine primary and reranker positions with a bounded weight.

    Example:
        >>> blend([1, 2, 3, 4, 5], [5, 4, 3, 2, 1], alpha=0.2)
        [1, 2, 3, 4, 5]
    """
    if not 0.0 <= alpha <= MAX_RERANK_ALPHA:
        raise ConfigurationError(f"alpha must be within [0, {MAX_RERANK_ALPHA}], got {alpha}")
    n = len(primary_ids)
    scores = position_scores(n)
    rerank_pos = {item_id: p for p, item_id in enumerate(reranked_ids)}
    final = [scores[p] + alpha * scores[rerank_pos[item_id]] for p, item_id in enumerate(primary_ids)]
    order = sorted(range(n), key=lambda p: (-final[p], p))
    return [primary_ids[p] for p in order]


class BoundedReranker:
    """
    Optional generative refinement of the top-N ranked items.

    Example:
        reranker = BoundedReranker(generator, RerankConfig(enabled_surfaces=["search"]))
        result = reranker.rerank("wireless earbuds", [712, 45, 98], surface="search")
        result.item_ids  # always a permutation of [712, 45, 98]
    """

    def __init__(
        self,
        generator: Optional[GenerativeTextService],
        config: Optional[RerankConfig] = None,
        guardrails: Optional[RerankGuardrails] = None,
        executor: Optional[Executor] = None,
    ):
        self.generator = generator
        self.config = config or RerankConfig()
        if not 0.0 <= self.config.alpha <= MAX_RERANK_ALPHA:
            raise ConfigurationError(
                f"rerank alpha must be within [0, {MAX_RERANK_ALPHA}], got {self.config.alpha}"
            )
        self.guardrails = guardrails or RerankGuardrails(self.config)
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="rerank")

    def rerank(
        self,
        query: str,
        ranked_item_ids: Sequence[int],
        surface: str = "",
        item_texts: Optional[Mapping[int, str]] = None,
    ) -> RerankResult:
        """
        Rerank the head of a ranked list.

        Only the first top_n items are sent to the generator; the tail keeps
        its position after them.

        Args:
            query: Normalized user query
            ranked_item_ids: Primary ranked order
            surface: Product surface, checked against enabled_surfaces
            item_texts: Optional short item descriptions for the prompt

        Returns:
            RerankResult; never raises
        """
        start = time.perf_counter()
        ranked = list(ranked_item_ids)
        head, tail = ranked[: self.config.top_n], ranked[self.config.top_n:]

        if self.generator is None:
            return RerankResult(ranked, bypass_reason="no_generator")
        allowed, reason = self.guardrails.check(surface)
        if not allowed:
            logger.debug(f"Reranker bypassed on surface {surface!r}: {reason}")
            return RerankResult(ranked, bypass_reason=reason)
        if len(head) < 2:
            return RerankResult(ranked, bypass_reason="too_few_items")

        outcome = call_with_deadline(
            self._generate_order,
            self.config.timeout_ms / 1000.0,
            self.executor,
            query,
            head,
            item_texts or {},
        )
        latency_ms = (time.perf_counter() - start) * 1000
        self.guardrails.record_latency(latency_ms)

        if not outcome.ok:
            log = logger.warning if outcome.failure is FailureKind.UPSTREAM_TIMEOUT else logger.info
            log(f"Rerank output discarded: reason={outcome.failure.value} detail={outcome.detail}")
            return RerankResult(
                ranked, failure=outcome.failure, detail=outcome.detail, latency_ms=latency_ms
            )

        blended = blend(head, outcome.value, self.config.alpha)
        return RerankResult(
            blended + tail,
            applied=True,
            reranker_order=list(outcome.value),
            latency_ms=latency_ms,
        )

    def _generate_order(
        self,
        query: str,
        head: List[int],
        item_texts: Mapping[int, str],
    ) -> List[int]:
        payload = {
            "query": query,
            "items": [
                {"item_id": item_id, "text": item_texts[item_id]} if item_id in item_texts
                else {"item_id": item_id}
                for item_id in head
            ],
        }
        request = GenerationRequest(
            system_instructions=SYSTEM_INSTRUCTIONS,
            user_payload=json.dumps(payload),
            output_schema=RerankOutput,
            max_output_tokens=self.config.max_output_tokens,
            temperature=0.0,
            timeout_s=self.config.timeout_ms / 1000.0,
        )
        raw = self.generator.generate(request)
        try:
            output = parse_structured_output(raw, RerankOutput)
        except ValidationError as e:
            raise RerankSchemaViolation(f"malformed reranker output: {e.error_count()} errors") from e
        validate_permutation(head, output.item_ids)
        return output.item_ids

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=False)
