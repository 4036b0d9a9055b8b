"""
Feature store interface definition.

The ranker reads three external stores (user, item, interaction) through this
one narrow contract:

    get(key) -> FeatureVector or None

Design Principles:
1. Absence is a value: an unknown key returns None. Stores never fabricate
   defaults for missing entities; the feature join decides what a missing
   field means.

2. Errors are signals: a backend failure raises UpstreamError so a layered
   store can fail over and the feature join can record it. It is never
   disguised as absence.

3. Batch operations: ranking needs features for 100+ candidates, so every
   store supports fetching many keys in one call.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Optional

logger = logging.getLogger(__name__)

FeatureKey = Hashable


def interaction_key(user_id: int, item_id: int) -> str:
    """Key of the (user, item) row in an interaction store."""
    return f"{user_id}:{item_id}"


@dataclass
class FeatureVector:
    """
    Container for feature values with metadata.

    Attributes:
        features: Feature name to value. Only fields the store actually holds.
        source: Which store served this row ("redis", "memory", ...)
        latency_ms: Time taken to retrieve features in milliseconds
        namespace: Store namespace ("user", "item", "interaction")
        key: The key the row was fetched by

    Example:
        >>> vec = FeatureVector(
        ...     features={"user_activity_count": 42.0},
        ...     source="redis",
        ...     latency_ms=0.5,
        ...     namespace="user",
        ...     key=123,
        ... )
    """

    features: Dict[str, float]
    source: str
    latency_ms: float = 0.0
    namespace: str = ""
    key: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "features": self.features,
            "source": self.source,
            "latency_ms": self.latency_ms,
            "namespace": self.namespace,
            "key": self.key,
        }


@dataclass
class FeatureStoreStats:
    """
    Statistics about feature store operations.

    Attributes:
        total_requests: Total number of keys requested
        hits: Keys found
        misses: Keys absent from the store
        errors: Keys whose lookup failed
        avg_latency_ms: Average latency per request in milliseconds
    """

    total_requests: int = 0
    hits: int = 0
    misses: int = 0
    errors: int = 0
    avg_latency_ms: float = 0.0

    @property
    def hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_requests": self.total_requests,
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": self.hit_rate,
            "avg_latency_ms": self.avg_latency_ms,
        }


class FeatureStore(ABC):
    """
    Abstract interface for keyed feature storage backends.

    One instance serves one namespace (user, item or interaction).

    Example Implementation:
        >>> class MyFeatureStore(FeatureStore):
        ...     def get_batch(self, keys):
        ...         return {key: self._lookup(key) for key in keys}
    """

    namespace: str = ""

    def get(self, key: FeatureKey) -> Optional[FeatureVector]:
        """
        Get the feature row for one key.

        Returns:
            FeatureVector, or None if the key is absent

        Raises:
            UpstreamError: If the backend failed
        """
        return self.get_batch([key]).get(key)

    @abstractmethod
    def get_batch(self, keys: List[FeatureKey]) -> Dict[FeatureKey, Optional[FeatureVector]]:
        """
        Get feature rows for many keys in one call.

        Returns:
            Dictionary with every requested key; absent keys map to None

        Raises:
            UpstreamError: If the backend failed
        """
        pass

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """
        Check if the feature store is healthy and responsive.

        Returns:
            Dictionary with at least "healthy", "latency_ms" and "message"
        """
        pass

    def get_stats(self) -> FeatureStoreStats:
        return FeatureStoreStats()

    def close(self) -> None:
        pass
