"""
Multi-strategy candidate fan-out and merge.

merge(variant_embeddings[], user_embedding?) -> MergeResult

Strategies run concurrently, one Retriever call each:
    BEHAVIORAL  user embedding against the behavioral index (if given)
    CONTENT     each query-variant embedding against the content index
    HEURISTIC   the popularity fallback, always last

Results are concatenated in strategy-priority order (behavioral, content,
heuristic; variants in their given order) and de-duplicated keeping the first
occurrence, then truncated to the candidate width. A strategy that fell back
contributes nothing of its own; the popularity list is taken exactly once, at
heuristic priority. The merge therefore never comes back empty while the
popularity store has items.
"""

import logging
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from common.config import MergeConfig
from common.errors import FailureKind, UnknownIndexVersion, VersionMismatch
from .retriever import FALLBACK_SOURCE, CandidateRetriever
from .types import CandidateSet, RetrievalRequest, RetrievalResult

logger = logging.getLogger(__name__)


class StrategyKind(Enum):
    """Retrieval strategies, in merge priority order (lower value wins)."""
    BEHAVIORAL = 0
    CONTENT = 1
    HEURISTIC = 2


@dataclass
class StrategyReport:
    """Per-strategy diagnostics for one merge."""

    name: str
    kind: StrategyKind
    mode: str
    returned: int = 0
    contributed: int = 0
    failure: Optional[FailureKind] = None
    detail: str = ""
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.name.lower(),
            "mode": self.mode,
            "returned": self.returned,
            "contributed": self.contributed,
            "failure": self.failure.value if self.failure else None,
            "detail": self.detail,
            "latency_ms": self.latency_ms,
        }


@dataclass
class MergeResult:
    """Merged candidates plus per-strategy diagnostics."""

    candidates: CandidateSet
    reports: List[StrategyReport] = field(default_factory=list)
    latency_ms: float = 0.0

    @property
    def all_fallback(self) -> bool:
        """True if no ANN strategy produced primary results."""
        return not any(
            r.mode == "primary" for r in self.reports if r.kind is not StrategyKind.HEURISTIC
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": len(self.candidates),
            "all_fallback": self.all_fallback,
            "latency_ms": self.latency_ms,
            "strategies": [r.to_dict() for r in self.reports],
        }


class MultiStrategyMerger:
    """
    Fan out retrieval across strategies and merge the results.

    Example:
        merger = MultiStrategyMerger(retriever, MergeConfig(candidate_width=200))
        result = merger.merge([anchor_vec, rewrite_vec], user_embedding=user_vec)
        print(result.candidates.item_ids[:10])
    """

    def __init__(
        self,
        retriever: CandidateRetriever,
        config: Optional[MergeConfig] = None,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            retriever: Retriever used for every ANN strategy
            config: Merge settings (width, index versions, timeouts)
            executor: Pool for strategy fan-out. Created (and owned) if not given.
                Must not be the retriever's own pool.
        """
        self.retriever = retriever
        self.config = config or MergeConfig()
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="merge"
        )

    def _plan(
        self,
        variant_embeddings: Sequence[np.ndarray],
        user_embedding: Optional[np.ndarray],
        per_strategy_k: int,
        embedding_version: Optional[str],
        user_embedding_version: Optional[str],
    ) -> List[Tuple[StrategyKind, RetrievalRequest]]:
        plan: List[Tuple[StrategyKind, RetrievalRequest]] = []
        if user_embedding is not None:
            plan.append((
                StrategyKind.BEHAVIORAL,
                RetrievalRequest(
                    embedding=user_embedding,
                    k=per_strategy_k,
                    index_version=self.config.behavioral_index_version,
                    embedding_version=user_embedding_version,
                    source="behavioral",
                ),
            ))
        for i, embedding in enumerate(variant_embeddings):
            plan.append((
                StrategyKind.CONTENT,
                RetrievalRequest(
                    embedding=embedding,
                    k=per_strategy_k,
                    index_version=self.config.content_index_version,
                    embedding_version=embedding_version,
                    source=f"content:{i}",
                ),
            ))
        return plan

    def merge(
        self,
        variant_embeddings: Sequence[np.ndarray],
        user_embedding: Optional[np.ndarray] = None,
        k: Optional[int] = None,
        embedding_version: Optional[str] = None,
        user_embedding_version: Optional[str] = None,
    ) -> MergeResult:
        """
        Retrieve with every strategy and merge by priority.

        Args:
            variant_embeddings: One embedding per query variant, anchor first
            user_embedding: Optional behavioral embedding
            k: Merged width (defaults to config.candidate_width)
            embedding_version: Expected embedding version for variant embeddings
            user_embedding_version: Expected embedding version for the user embedding

        Returns:
            MergeResult with at most k unique candidates

        Raises:
            UnknownIndexVersion: If a configured index version is not published
        """
        start = time.perf_counter()
        width = self.config.candidate_width if k is None else k
        per_strategy_k = self.config.per_strategy_k or width

        plan = self._plan(
            variant_embeddings, user_embedding, per_strategy_k,
            embedding_version, user_embedding_version,
        )
        futures: List[Future] = [
            self.executor.submit(self.retriever.retrieve_request, request)
            for _, request in plan
        ]

        deadline = time.monotonic() + self.config.strategy_timeout_ms / 1000.0
        merged = CandidateSet(width=width)
        reports: List[StrategyReport] = []

        # plan is already in priority order, so draining it in order is the merge
        for (kind, request), future in zip(plan, futures):
            report = StrategyReport(name=request.source, kind=kind, mode="fallback")
            result = self._collect(future, deadline, report)
            if result is not None:
                report.returned = len(result.candidates)
                report.latency_ms = result.latency_ms
                report.failure = result.failure
                report.detail = result.detail
                if not result.is_fallback:
                    report.mode = "primary"
                    report.contributed = merged.extend(result.candidates)
            reports.append(report)

        heuristic = StrategyReport(name=FALLBACK_SOURCE, kind=StrategyKind.HEURISTIC, mode="fallback")
        if not merged.is_full:
            fallback = self.retriever.fallback_candidates(width)
            heuristic.returned = len(fallback)
            heuristic.contributed = merged.extend(fallback)
        reports.append(heuristic)

        if len(merged) == 0:
            logger.error("Merge produced no candidates: popularity store is empty")

        result = MergeResult(
            candidates=merged,
            reports=reports,
            latency_ms=(time.perf_counter() - start) * 1000,
        )
        if result.all_fallback and plan:
            logger.warning(
                f"All {len(plan)} retrieval strategies fell back; "
                f"serving {len(merged)} popularity candidates"
            )
        return result

    def _collect(
        self,
        future: Future,
        deadline: float,
        report: StrategyReport,
    ) -> Optional[RetrievalResult]:
        try:
            return future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeoutError:
            future.cancel()
            report.failure = FailureKind.UPSTREAM_TIMEOUT
            report.detail = "strategy exceeded merge wait budget"
        except UnknownIndexVersion:
            raise
        except VersionMismatch as e:
            report.failure = FailureKind.VERSION_MISMATCH
            report.detail = str(e)
        except Exception as e:
            report.failure = FailureKind.UPSTREAM_ERROR
            report.detail = f"{type(e).__name__}: {e}"

        logger.warning(
            f"Strategy {report.name} dropped: reason={report.failure.value} detail={report.detail}"
        )
        return None

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=False)
