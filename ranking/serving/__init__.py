"""
Serving module for the ranking system.

This module provides real-time inference capabilities:
- ServingFeatureBuilder: Joins user/item/interaction features per candidate
- ScoringModel / XGBoostScoringModel: Versioned scoring model contract
- RankerService: Availability-gated, deterministic ranking
"""

from .feature_builder import FeatureBatch, FeatureRow, ServingFeatureBuilder
from .ranker_service import (
    RankDiagnostics,
    RankedItem,
    RankerService,
    RankMode,
    RankResult,
    batch_health,
    deterministic_order,
)
from .scoring import ScoringModel, XGBoostScoringModel

__all__ = [
    "FeatureBatch",
    "FeatureRow",
    "RankDiagnostics",
    "RankedItem",
    "RankerService",
    "RankMode",
    "RankResult",
    "ScoringModel",
    "ServingFeatureBuilder",
    "XGBoostScoringModel",
    "batch_health",
    "deterministic_order",
]
