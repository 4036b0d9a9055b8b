"""
Ranking service for real-time candidate scoring.

rank(user_id, candidates, context) -> RankResult

1. Join features for every candidate (user, item, interaction stores + context).
2. Batch health = a low percentile (p5 by default) of row availability.
3. Health below threshold is handled by configuration, never guessed:
   - score_then_popularity: score anyway, mode=primary-degraded
   - popularity_only: skip the model, mode=fallback
4. Sort deterministically: score desc, popularity desc, original position.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from candidate_gen.retrieval import Candidate, PopularityStore
from common.config import RankingConfig
from common.errors import FailureKind
from .feature_builder import FeatureBatch, ServingFeatureBuilder
from .scoring import ScoringModel

logger = logging.getLogger(__name__)

POPULARITY_MODEL_VERSION = "popularity"

CandidateInput = Union[int, Candidate]


class RankMode(Enum):
    """How a ranked list was produced."""
    PRIMARY = "primary"
    PRIMARY_DEGRADED = "primary-degraded"
    FALLBACK = "fallback"


@dataclass
class RankedItem:
    """
    A ranked item.

    Attributes:
        item_id: Catalog item
        score: Model score (popularity in fallback mode); comparable only
            within one model_version
        tie_break_key: Popularity, the secondary sort key
    """

    item_id: int
    score: float
    tie_break_key: float

    def to_dict(self) -> Dict[str, Any]:
        # NaN is not valid JSON
        score = None if math.isnan(self.score) else self.score
        return {"item_id": self.item_id, "score": score}


@dataclass
class RankDiagnostics:
    """How the ranker arrived at its order."""

    batch_health: float = 1.0
    health_percentile: float = 5.0
    availability_threshold: float = 0.75
    mean_availability: float = 1.0
    failure: Optional[FailureKind] = None
    detail: str = ""
    source_failures: Dict[str, str] = field(default_factory=dict)
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_health": self.batch_health,
            "health_percentile": self.health_percentile,
            "availability_threshold": self.availability_threshold,
            "mean_availability": self.mean_availability,
            "failure": self.failure.value if self.failure else None,
            "detail": self.detail,
            "source_failures": self.source_failures,
            "latency_ms": self.latency_ms,
        }


@dataclass
class RankResult:
    """Ordered items, how they were produced, and which model produced them."""

    items: List[RankedItem]
    mode: RankMode
    model_version: str
    diagnostics: RankDiagnostics = field(default_factory=RankDiagnostics)

    @property
    def item_ids(self) -> List[int]:
        return [item.item_id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        diagnostics = self.diagnostics.to_dict()
        diagnostics["mode"] = self.mode.value
        return {
            "ranked": [item.to_dict() for item in self.items],
            "model_version": self.model_version,
            "diagnostics": diagnostics,
        }


def batch_health(availability: np.ndarray, percentile: float) -> float:
    """
    Conservative batch health: the given low percentile of row availability.

    Uses the "lower" method so the value is always an observed availability.
    """
    if len(availability) == 0:
        return 1.0
    return float(np.percentile(availability, percentile, method="lower"))


def deterministic_order(scores: Sequence[float], tie_breaks: Sequence[float]) -> List[int]:
    """
    Positions sorted by score desc, then tie-break desc, then original position.

    NaN scores sort last.

    Example:
        >>> deterministic_order([1.75, 1.75, 1.82], [10.0, 20.0, 0.0])
        [2, 1, 0]
    """
    def key(position: int) -> Tuple[float, float, int]:
        score = scores[position]
        if score is None or math.isnan(score):
            score = -math.inf
        return (-score, -tie_breaks[position], position)

    return sorted(range(len(scores)), key=key)


class RankerService:
    """
    Ranking service for candidate scoring.

    This service provides end-to-end ranking functionality:
    1. Joins features for user + candidate items
    2. Gates on batch feature availability
    3. Runs model inference (or the configured fallback)
    4. Returns a deterministically sorted RankResult

    Example:
        service = RankerService(XGBoostScoringModel.load("xgboost_pairwise"), builder, popularity)
        result = service.rank(user_id=1, candidates=[712, 45, 98], context={"surface": "search"})
        print(result.mode.value, result.item_ids)
    """

    def __init__(
        self,
        model: ScoringModel,
        feature_builder: ServingFeatureBuilder,
        popularity: PopularityStore,
        config: Optional[RankingConfig] = None,
    ):
        self.model = model
        self.feature_builder = feature_builder
        self.popularity = popularity
        self.config = config or RankingConfig()

        logger.info(
            f"RankerService initialized: model_version={model.model_version}, "
            f"threshold={self.config.availability_threshold}, "
            f"fallback_mode={self.config.fallback_mode}"
        )

    @property
    def model_version(self) -> str:
        return self.model.model_version

    def rank(
        self,
        user_id: int,
        candidates: Sequence[CandidateInput],
        context: Optional[Mapping[str, Any]] = None,
    ) -> RankResult:
        """
        Score and rank candidate items for a user.

        Args:
            user_id: User to rank for
            candidates: Item ids or Candidates, in retrieval order
            context: Request context (surface, locale)

        Returns:
            RankResult; never raises for feature or model problems
        """
        start = time.perf_counter()
        item_ids, similarities = self._unpack(candidates)
        diagnostics = RankDiagnostics(
            health_percentile=self.config.health_percentile,
            availability_threshold=self.config.availability_threshold,
        )
        if not item_ids:
            return RankResult([], RankMode.PRIMARY, self.model_version, diagnostics)

        batch = self.feature_builder.build(user_id, item_ids, context, similarities)
        availability = batch.availability
        diagnostics.batch_health = batch_health(availability, self.config.health_percentile)
        diagnostics.mean_availability = float(availability.mean())
        diagnostics.source_failures = batch.source_failures

        popularity = self.popularity.scores(item_ids)
        tie_breaks = [popularity.get(item_id, 0.0) for item_id in item_ids]

        mode = RankMode.PRIMARY
        if diagnostics.batch_health < self.config.availability_threshold:
            diagnostics.failure = FailureKind.DEGRADED_FEATURES
            diagnostics.detail = (
                f"p{self.config.health_percentile:g} availability "
                f"{diagnostics.batch_health:.3f} < {self.config.availability_threshold}"
            )
            logger.warning(
                f"Degraded features for user {user_id}: {diagnostics.detail} "
                f"(fallback_mode={self.config.fallback_mode})"
            )
            if self.config.fallback_mode == "popularity_only":
                return self._popularity_result(item_ids, tie_breaks, diagnostics, start)
            mode = RankMode.PRIMARY_DEGRADED

        scores = self._score(batch, diagnostics)
        if scores is None:
            return self._popularity_result(item_ids, tie_breaks, diagnostics, start)

        order = deterministic_order(scores, tie_breaks)
        items = [RankedItem(item_ids[i], float(scores[i]), tie_breaks[i]) for i in order]
        diagnostics.latency_ms = (time.perf_counter() - start) * 1000
        return RankResult(items, mode, self.model_version, diagnostics)

    def _score(self, batch: FeatureBatch, diagnostics: RankDiagnostics) -> Optional[List[float]]:
        try:
            scores = self.model.score(batch.to_frame())
        except Exception as e:
            diagnostics.failure = FailureKind.UPSTREAM_ERROR
            diagnostics.detail = f"scoring failed: {type(e).__name__}: {e}"
            logger.error(f"Scoring model {self.model_version} failed, using popularity order: {e}")
            return None
        if len(scores) != len(batch):
            diagnostics.failure = FailureKind.INSUFFICIENT_RESULTS
            diagnostics.detail = f"model returned {len(scores)} scores for {len(batch)} rows"
            logger.error(f"Scoring model {self.model_version}: {diagnostics.detail}")
            return None
        return [float(s) for s in scores]

    def _popularity_result(
        self,
        item_ids: List[int],
        tie_breaks: List[float],
        diagnostics: RankDiagnostics,
        start: float,
    ) -> RankResult:
        order = deterministic_order(tie_breaks, [0.0] * len(tie_breaks))
        items = [RankedItem(item_ids[i], tie_breaks[i], tie_breaks[i]) for i in order]
        diagnostics.latency_ms = (time.perf_counter() - start) * 1000
        return RankResult(items, RankMode.FALLBACK, POPULARITY_MODEL_VERSION, diagnostics)

    @staticmethod
    def _unpack(candidates: Sequence[CandidateInput]) -> Tuple[List[int], List[Optional[float]]]:
        item_ids: List[int] = []
        similarities: List[Optional[float]] = []
        seen = set()
        for candidate in candidates:
            if isinstance(candidate, Candidate):
                item_id, similarity = candidate.item_id, candidate.similarity
            else:
                item_id, similarity = int(candidate), None
            if item_id in seen:
                continue
            seen.add(item_id)
            item_ids.append(item_id)
            similarities.append(similarity)
        return item_ids, similarities

    def health_check(self) -> Dict[str, Any]:
        return {
            "model_version": self.model_version,
            "features": self.feature_builder.health_check(),
            "popularity": self.popularity.health_check(),
        }
