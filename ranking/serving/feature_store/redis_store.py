"""
Redis-based feature store implementation.

Redis Data Model:
    One hash per entity, namespaced by store:
    - features:user:{user_id}                  → {user_activity_count, ...}
    - features:item:{item_id}                  → {item_avg_rating, ...}
    - features:interaction:{user_id}:{item_id} → {recent_interaction_count, ...}

    A missing hash means the entity is absent. Fields missing from a hash are
    simply not returned.

Performance Considerations:
    - Connection pooling: Reuse connections across requests
    - Pipeline: Batch all HGETALLs into a single round-trip
    - Timeouts: Fail fast on slow responses
"""

import logging
import math
import threading
import time
from typing import Any, Dict, List, Optional

from redis import ConnectionPool, Redis, RedisError
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

from common.errors import UpstreamError
from .interface import FeatureKey, FeatureStore, FeatureStoreStats, FeatureVector

logger = logging.getLogger(__name__)


class RedisFeatureStore(FeatureStore):
    """
    Redis implementation of the feature store.

    Usage:
        >>> store = RedisFeatureStore("item", host="localhost", port=6379)
        >>> vec = store.get(712)
        >>> if vec:
        ...     print(vec.features["item_avg_rating"])

    Configuration:
        - namespace: "user", "item" or "interaction"
        - host / port / db / password: Redis connection
        - max_connections: Maximum pool connections (default: 50)
        - socket_timeout: Timeout for socket operations (default: 0.1s)
        - socket_connect_timeout: Timeout for connection (default: 0.5s)
    """

    KEY_TEMPLATE = "features:{namespace}:{key}"

    def __init__(
        self,
        namespace: str,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        max_connections: int = 50,
        socket_timeout: float = 0.1,
        socket_connect_timeout: float = 0.5,
        retry_on_error: bool = True,
        client: Optional[Redis] = None,
    ):
        self.namespace = namespace
        self.host = host
        self.port = port
        self.db = db
        self.pool: Optional[ConnectionPool] = None

        if client is not None:
            self.client = client
        else:
            self.pool = ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                max_connections=max_connections,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_connect_timeout,
                decode_responses=True,
            )
            if retry_on_error:
                retry = Retry(ExponentialBackoff(), retries=2)
                self.client = Redis(connection_pool=self.pool, retry=retry)
            else:
                self.client = Redis(connection_pool=self.pool)

        self._stats = FeatureStoreStats()
        self._total_latency_ms = 0.0
        self._lock = threading.RLock()

        logger.info(f"RedisFeatureStore[{namespace}] initialized: {host}:{port}/{db}")

    def _redis_key(self, key: FeatureKey) -> str:
        return self.KEY_TEMPLATE.format(namespace=self.namespace, key=key)

    def get_batch(self, keys: List[FeatureKey]) -> Dict[FeatureKey, Optional[FeatureVector]]:
        """
        Fetch many rows with one pipelined round-trip.

        Raises:
            UpstreamError: On any Redis error
        """
        if not keys:
            return {}

        start_time = time.perf_counter()
        try:
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.hgetall(self._redis_key(key))
            raw_results = pipe.execute()
        except RedisError as e:
            self._record(len(keys), hits=0, errors=len(keys), start_time=start_time)
            logger.warning(f"Redis error in {self.namespace} batch fetch: {e}")
            raise UpstreamError(f"Redis {self.namespace} store: {e}") from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        per_key_ms = latency_ms / len(keys)
        results: Dict[FeatureKey, Optional[FeatureVector]] = {}
        hits = 0
        for key, data in zip(keys, raw_results):
            if not data:
                results[key] = None
                continue
            hits += 1
            results[key] = FeatureVector(
                features=self._parse_features(key, data),
                source="redis",
                latency_ms=per_key_ms,
                namespace=self.namespace,
                key=key,
            )

        self._record(len(keys), hits=hits, errors=0, start_time=start_time)
        return results

    def _parse_features(self, key: FeatureKey, data: Dict[str, Any]) -> Dict[str, float]:
        """Non-numeric hash values are dropped, which reads as a missing feature."""
        features: Dict[str, float] = {}
        for name, value in data.items():
            try:
                features[name] = float(value)
            except (TypeError, ValueError):
                logger.warning(f"Dropping non-numeric {self.namespace} feature {name!r} for key {key}")
        return features

    def _record(self, requested: int, hits: int, errors: int, start_time: float) -> None:
        latency_ms = (time.perf_counter() - start_time) * 1000
        with self._lock:
            self._stats.total_requests += requested
            self._stats.hits += hits
            self._stats.errors += errors
            self._stats.misses += requested - hits - errors
            self._total_latency_ms += latency_ms
            self._stats.avg_latency_ms = self._total_latency_ms / self._stats.total_requests

    def health_check(self) -> Dict[str, Any]:
        """Check if Redis is responsive with a PING."""
        start_time = time.perf_counter()
        try:
            healthy = bool(self.client.ping())
            message = "Redis is responsive" if healthy else "Redis PING returned unexpected response"
        except RedisError as e:
            healthy = False
            message = f"Redis error: {e}"

        return {
            "healthy": healthy,
            "latency_ms": (time.perf_counter() - start_time) * 1000,
            "message": message,
            "namespace": self.namespace,
            "host": self.host,
            "port": self.port,
            "db": self.db,
        }

    def get_stats(self) -> FeatureStoreStats:
        return self._stats

    def set_features(self, key: FeatureKey, features: Dict[str, float]) -> bool:
        """
        Store one feature row (used by migration scripts and tests).

        Returns:
            True if successful, False otherwise
        """
        if not features:
            return False
        try:
            self.client.hset(self._redis_key(key), mapping=features)
            return True
        except RedisError as e:
            logger.error(f"Error setting {self.namespace} features for {key}: {e}")
            return False

    def set_batch(self, rows: Dict[FeatureKey, Dict[str, float]], batch_size: int = 500) -> int:
        """
        Write many rows with pipelined HSETs, batch_size commands per round-trip.

        NaN values are skipped so absent fields stay absent.

        Returns:
            Number of rows written
        """
        written = 0
        pipe = self.client.pipeline(transaction=False)
        pending = 0
        for key, features in rows.items():
            mapping = {
                name: float(value) for name, value in features.items()
                if value is not None and not math.isnan(float(value))
            }
            if not mapping:
                continue
            pipe.hset(self._redis_key(key), mapping=mapping)
            pending += 1
            if pending >= batch_size:
                pipe.execute()
                written += pending
                logger.debug(f"Wrote {written} {self.namespace} rows...")
                pipe = self.client.pipeline(transaction=False)
                pending = 0
        if pending:
            pipe.execute()
            written += pending
        return written

    def close(self) -> None:
        """Close the connection pool."""
        if self.pool is None:
            return
        try:
            self.pool.disconnect()
            logger.info(f"RedisFeatureStore[{self.namespace}] connection pool closed")
        except RedisError as e:
            logger.warning(f"Error closing connection pool: {e}")
