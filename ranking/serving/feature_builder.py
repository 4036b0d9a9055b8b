"""
Feature join for real-time serving.

Builds one FeatureRow per (user, candidate item, context) from the user, item
and interaction stores plus the request context:

- Optional fields missing from their store get the schema default
  (e.g. recent_interaction_count → 0).
- Required fields missing from their store stay NaN and lower the row's
  availability = present required fields / all required fields.
- A store that fails is treated as holding nothing for this request; the
  failure is recorded, never raised.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from common.errors import FailureKind, PipelineError
from ranking.features import DEFAULT_SCHEMA, FeatureSchema
from .feature_store import FeatureStore, FeatureVector, interaction_key

logger = logging.getLogger(__name__)


@dataclass
class FeatureRow:
    """Feature values for one candidate plus its availability."""

    item_id: int
    values: Dict[str, float]
    availability: float
    missing_required: List[str] = field(default_factory=list)


@dataclass
class FeatureBatch:
    """Joined features for one rank request."""

    rows: List[FeatureRow]
    feature_columns: List[str]
    source_failures: Dict[str, str] = field(default_factory=dict)

    @property
    def availability(self) -> np.ndarray:
        return np.array([row.availability for row in self.rows], dtype=np.float64)

    def to_frame(self) -> pd.DataFrame:
        """Model input matrix, one row per candidate, columns in schema order."""
        return pd.DataFrame(
            [row.values for row in self.rows],
            columns=self.feature_columns,
            dtype=np.float64,
        )

    def __len__(self) -> int:
        return len(self.rows)


class ServingFeatureBuilder:
    """
    Builds features for real-time serving (single user, multiple candidates).

    Example:
        builder = ServingFeatureBuilder(user_store, item_store, interaction_store)
        batch = builder.build(user_id=123, item_ids=[712, 45, 98], context={"surface": "search"})
        batch.availability  # array([1.0, 0.857..., 1.0])
    """

    def __init__(
        self,
        user_store: FeatureStore,
        item_store: FeatureStore,
        interaction_store: Optional[FeatureStore] = None,
        schema: Optional[FeatureSchema] = None,
    ):
        self.user_store = user_store
        self.item_store = item_store
        self.interaction_store = interaction_store
        self.schema = schema or DEFAULT_SCHEMA
        logger.info(
            f"ServingFeatureBuilder initialized: {len(self.schema.feature_columns)} features, "
            f"{len(self.schema.required_fields)} required"
        )

    def build(
        self,
        user_id: int,
        item_ids: Sequence[int],
        context: Optional[Mapping[str, Any]] = None,
        similarities: Optional[Sequence[float]] = None,
    ) -> FeatureBatch:
        """
        Join features for one user and many candidate items.

        Args:
            user_id: User to build features for
            item_ids: Candidate items, in candidate order
            context: Request context (surface, locale)
            similarities: Retrieval similarity per candidate, if known

        Returns:
            FeatureBatch with one row per item, in the given order
        """
        context = context or {}
        failures: Dict[str, str] = {}

        user_rows = self._fetch("user", self.user_store, [user_id], failures)
        item_rows = self._fetch("item", self.item_store, list(item_ids), failures)
        interaction_keys = [interaction_key(user_id, item_id) for item_id in item_ids]
        interaction_rows = self._fetch(
            "interaction", self.interaction_store, interaction_keys, failures
        )

        user_features = self._features_of(user_rows.get(user_id))
        context_features = self._context_features(context)
        required = self.schema.required_fields

        rows: List[FeatureRow] = []
        for position, item_id in enumerate(item_ids):
            available: Dict[str, float] = {}
            available.update(user_features)
            available.update(self._features_of(item_rows.get(item_id)))
            available.update(self._features_of(interaction_rows.get(interaction_keys[position])))
            available.update(context_features)
            if similarities is not None and similarities[position] is not None:
                available["retrieval_similarity"] = float(similarities[position])

            values: Dict[str, float] = {}
            missing: List[str] = []
            for feature in self.schema.fields:
                value = available.get(feature.name)
                if value is not None and not math.isnan(value):
                    values[feature.name] = value
                elif feature.required:
                    values[feature.name] = math.nan
                    missing.append(feature.name)
                else:
                    values[feature.name] = feature.default

            availability = 1.0 if not required else (len(required) - len(missing)) / len(required)
            rows.append(FeatureRow(item_id, values, availability, missing))

        return FeatureBatch(rows, self.schema.feature_columns, failures)

    def _fetch(
        self,
        name: str,
        store: Optional[FeatureStore],
        keys: List[Any],
        failures: Dict[str, str],
    ) -> Dict[Any, Optional[FeatureVector]]:
        if store is None or not keys:
            return {}
        try:
            return store.get_batch(keys)
        except Exception as e:
            # anything a store raises is an upstream failure for this namespace
            kind = e.kind if isinstance(e, PipelineError) and e.kind else FailureKind.UPSTREAM_ERROR
            failures[name] = f"{kind.value}: {type(e).__name__}: {e}"
            logger.warning(f"{name} feature store failed, treating rows as absent: {e}")
            return {}

    @staticmethod
    def _features_of(vec: Optional[FeatureVector]) -> Dict[str, float]:
        return vec.features if vec is not None else {}

    @staticmethod
    def _context_features(context: Mapping[str, Any]) -> Dict[str, float]:
        features: Dict[str, float] = {}
        surface = context.get("surface")
        if surface:
            features["surface_is_search"] = 1.0 if surface == "search" else 0.0
        return features

    def health_check(self) -> Dict[str, Any]:
        stores = {"user": self.user_store, "item": self.item_store}
        if self.interaction_store is not None:
            stores["interaction"] = self.interaction_store
        checks = {name: store.health_check() for name, store in stores.items()}
        return {
            "healthy": all(c.get("healthy", False) for c in checks.values()),
            "stores": checks,
        }
