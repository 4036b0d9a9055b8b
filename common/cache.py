"""
Keyed, TTL-bound result caches.

Caches are the only cross-request mutable state in the pipeline. Two
backends share one interface:
- InMemoryTTLCache: bounded LRU with per-entry expiry (single process)
- RedisTTLCache: SETEX of JSON values (shared across replicas)

Both fail gracefully: a backend error is logged and treated as a miss, so a
cache outage can only cost latency, never correctness.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from redis import Redis, RedisError

logger = logging.getLogger(__name__)


class ResultCache(ABC):
    """Interface for JSON-serializable result caches."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on miss/expiry/error."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a value with a TTL. Errors are logged, never raised."""
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "message": "ok"}


class InMemoryTTLCache(ResultCache):
    """
    Thread-safe in-process cache with TTL and LRU eviction.

    Values are stored as JSON strings so callers always get an independent
    copy back; mutating a returned value never changes the cache.

    Example:
        >>> cache = InMemoryTTLCache(max_entries=2)
        >>> cache.set("a", ["x"], ttl_seconds=60)
        >>> cache.get("a")
        ['x']
    """

    def __init__(self, max_entries: int = 10000, clock=time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, payload = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, payload)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "message": "In-memory cache",
            "entries": len(self),
            "hits": self.hits,
            "misses": self.misses,
        }


class RedisTTLCache(ResultCache):
    """
    Redis-backed cache storing JSON values with SETEX.

    Socket timeouts are kept short: a slow cache must not eat the budget of
    the stage it serves.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        prefix: str = "cache:",
        socket_timeout: float = 0.05,
        client: Optional[Redis] = None,
    ):
        self.prefix = prefix
        self.client = client or Redis(
            host=host,
            port=port,
            db=db,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout * 5,
            decode_responses=True,
        )
        logger.info(f"RedisTTLCache initialized: {host}:{port}/{db} prefix={prefix}")

    def get(self, key: str) -> Optional[Any]:
        try:
            payload = self.client.get(self.prefix + key)
        except RedisError as e:
            logger.warning(f"Redis cache read failed for {key}: {e}")
            return None
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupt cache entry {key}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self.client.setex(self.prefix + key, ttl_seconds, json.dumps(value))
        except RedisError as e:
            logger.warning(f"Redis cache write failed for {key}: {e}")

    def health_check(self) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            self.client.ping()
            return {
                "healthy": True,
                "latency_ms": (time.perf_counter() - start) * 1000,
                "message": "Redis cache reachable",
            }
        except RedisError as e:
            return {"healthy": False, "latency_ms": 0.0, "message": f"Redis cache error: {e}"}
