"""
In-memory feature store backed by a dict or a parquet snapshot.

Used as the secondary layer behind Redis and as the primary store for local
development and tests. NaN cells in a snapshot are treated as absent fields,
so a partially populated row keeps its partial availability.
"""

import logging
import math
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .interface import FeatureKey, FeatureStore, FeatureStoreStats, FeatureVector, interaction_key

logger = logging.getLogger(__name__)

# namespace -> (snapshot file name, key columns)
SNAPSHOT_FILES = {
    "user": ("users.parquet", ("user_id",)),
    "item": ("items.parquet", ("item_id",)),
    "interaction": ("interactions.parquet", ("user_id", "item_id")),
}


def read_snapshot(path: Path, key_columns: Sequence[str]) -> Dict[FeatureKey, Dict[str, float]]:
    """
    Read a parquet snapshot into {key: {feature: value}}.

    Two key columns produce interaction keys ("user:item").
    """
    df = pd.read_parquet(path)
    feature_cols = [c for c in df.columns if c not in key_columns]
    if len(key_columns) == 2:
        keys = [interaction_key(u, i) for u, i in zip(df[key_columns[0]], df[key_columns[1]])]
    else:
        keys = [int(k) for k in df[key_columns[0]]]
    return dict(zip(keys, df[feature_cols].to_dict("records")))


class InMemoryFeatureStore(FeatureStore):
    """
    Dictionary-backed feature store.

    Example:
        >>> store = InMemoryFeatureStore("user", {1: {"user_activity_count": 10.0}})
        >>> store.get(1).features
        {'user_activity_count': 10.0}
        >>> store.get(2) is None
        True
    """

    def __init__(
        self,
        namespace: str,
        rows: Optional[Dict[FeatureKey, Dict[str, float]]] = None,
        source: str = "memory",
    ):
        self.namespace = namespace
        self.source = source
        self._rows: Dict[FeatureKey, Dict[str, float]] = {}
        for key, features in (rows or {}).items():
            self._rows[key] = {
                name: float(value)
                for name, value in features.items()
                if value is not None and not (isinstance(value, float) and math.isnan(value))
            }
        self._stats = FeatureStoreStats()
        logger.info(f"InMemoryFeatureStore[{namespace}] loaded {len(self._rows):,} rows")

    @classmethod
    def from_parquet(
        cls,
        path: Path,
        namespace: str,
        key_columns: Sequence[str],
    ) -> "InMemoryFeatureStore":
        """
        Load a snapshot where each row is one entity.

        Args:
            path: Parquet file
            namespace: Store namespace
            key_columns: ["user_id"], ["item_id"] or ["user_id", "item_id"]
        """
        return cls(namespace, read_snapshot(path, key_columns), source="snapshot")

    def get_batch(self, keys: List[FeatureKey]) -> Dict[FeatureKey, Optional[FeatureVector]]:
        start_time = time.perf_counter()
        results: Dict[FeatureKey, Optional[FeatureVector]] = {}
        for key in keys:
            features = self._rows.get(key)
            if features is None:
                results[key] = None
                self._stats.misses += 1
                continue
            self._stats.hits += 1
            results[key] = FeatureVector(
                features=dict(features),
                source=self.source,
                latency_ms=0.0,
                namespace=self.namespace,
                key=key,
            )
        self._stats.total_requests += len(keys)
        self._stats.avg_latency_ms = (time.perf_counter() - start_time) * 1000
        return results

    def set_features(self, key: FeatureKey, features: Dict[str, float]) -> None:
        self._rows[key] = {name: float(value) for name, value in features.items()}

    def __len__(self) -> int:
        return len(self._rows)

    def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "latency_ms": 0.0,
            "message": f"In-memory {self.namespace} store with {len(self._rows):,} rows",
            "namespace": self.namespace,
        }

    def get_stats(self) -> FeatureStoreStats:
        return self._stats
