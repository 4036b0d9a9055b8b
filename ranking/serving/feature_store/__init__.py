"""
Feature Store Package

Keyed feature storage for the user, item and interaction namespaces.

Components:
- FeatureStore: Abstract interface (get / get_batch, absence is None)
- FeatureVector: Data class for feature retrieval results
- RedisFeatureStore: Redis-backed implementation with connection pooling
- InMemoryFeatureStore: Dict or parquet snapshot implementation
- LayeredFeatureStore: Primary + secondary with circuit breaker pattern
"""

from .interface import FeatureStore, FeatureStoreStats, FeatureVector, interaction_key
from .layered_store import CircuitBreaker, CircuitBreakerConfig, CircuitState, LayeredFeatureStore
from .memory_store import SNAPSHOT_FILES, InMemoryFeatureStore, read_snapshot
from .redis_store import RedisFeatureStore

__all__ = [
    # Interface
    "FeatureStore",
    "FeatureVector",
    "FeatureStoreStats",
    "interaction_key",
    # Implementations
    "RedisFeatureStore",
    "InMemoryFeatureStore",
    "SNAPSHOT_FILES",
    "read_snapshot",
    "LayeredFeatureStore",
    # Circuit Breaker
    "CircuitBreakerConfig",
    "CircuitBreaker",
    "CircuitState",
]
