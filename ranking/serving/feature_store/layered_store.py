"""
Layered feature store with circuit breaker pattern.

Combines a primary store (Redis) with a secondary store (an in-memory
snapshot of the same features). Keys the primary does not hold are looked up
in the secondary; keys neither holds stay absent (None). Nothing here invents
values.

Circuit Breaker Pattern:
========================

States:
1. CLOSED (normal): Requests go to primary store
   - If errors exceed threshold within the window → OPEN

2. OPEN (failing): Requests go directly to the secondary store
   - After timeout → HALF_OPEN

3. HALF_OPEN (recovery): Test requests go to primary
   - Enough successes → CLOSED
   - Any failure → OPEN

In ranking the feature join has a tight latency budget. With the breaker open
a failing Redis costs nothing; without it every request would wait for the
socket timeout.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .interface import FeatureKey, FeatureStore, FeatureStoreStats, FeatureVector

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """
    Configuration for circuit breaker behavior.

    Attributes:
        failure_threshold: Number of failures before opening circuit
        success_threshold: Successes needed in HALF_OPEN to close circuit
        timeout_seconds: How long to stay OPEN before trying HALF_OPEN
        failure_window_seconds: Time window for counting failures
    """
    failure_threshold: int = 5
    success_threshold: int = 3
    timeout_seconds: float = 30.0
    failure_window_seconds: float = 60.0


class CircuitBreaker:
    """
    Thread-safe circuit breaker.

    Example:
        >>> breaker = CircuitBreaker()
        >>> if breaker.allow_request():
        ...     try:
        ...         result = call_primary_store()
        ...         breaker.record_success()
        ...     except UpstreamError:
        ...         breaker.record_failure()
        ...         result = call_secondary_store()
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = 0.0
        self._opened_at = 0.0

        self._lock = threading.RLock()

        logger.info(f"CircuitBreaker initialized: {self.config}")

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def allow_request(self) -> bool:
        """
        Check if a request should go to the primary store.

        May transition from OPEN to HALF_OPEN if the timeout elapsed.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at >= self.config.timeout_seconds:
                    logger.info("Circuit breaker: OPEN → HALF_OPEN (testing recovery)")
                    self._state = CircuitState.HALF_OPEN
                    self._success_count = 0
                    return True
                return False

            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    logger.info(
                        f"Circuit breaker: HALF_OPEN → CLOSED "
                        f"(after {self._success_count} successes)"
                    )
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                logger.warning("Circuit breaker: HALF_OPEN → OPEN (failure during recovery)")
                self._state = CircuitState.OPEN
                self._opened_at = now
                return

            if now - self._last_failure_time > self.config.failure_window_seconds:
                self._failure_count = 0

            self._failure_count += 1
            self._last_failure_time = now

            if self._failure_count >= self.config.failure_threshold:
                logger.warning(
                    f"Circuit breaker: CLOSED → OPEN (after {self._failure_count} failures)"
                )
                self._state = CircuitState.OPEN
                self._opened_at = now

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "config": {
                    "failure_threshold": self.config.failure_threshold,
                    "success_threshold": self.config.success_threshold,
                    "timeout_seconds": self.config.timeout_seconds,
                },
            }


class LayeredFeatureStore(FeatureStore):
    """
    Primary + secondary feature store with a circuit breaker.

    Behavior:
        - Circuit CLOSED: Try primary; keys it lacks are looked up in secondary
        - Circuit OPEN: Skip primary, use secondary directly
        - Primary error: Record failure, serve the whole batch from secondary

    Example:
        >>> primary = RedisFeatureStore("item", host="localhost")
        >>> secondary = InMemoryFeatureStore.from_parquet(path, "item", ["item_id"])
        >>> store = LayeredFeatureStore(primary, secondary)
        >>> store.get(712).source  # "redis" or "snapshot"
    """

    def __init__(
        self,
        primary: FeatureStore,
        secondary: FeatureStore,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.primary = primary
        self.secondary = secondary
        self.namespace = primary.namespace or secondary.namespace
        self.circuit_breaker = circuit_breaker or CircuitBreaker(circuit_config)

        self._lock = threading.RLock()
        self._primary_requests = 0
        self._secondary_requests = 0
        self._primary_failures = 0

        logger.info(f"LayeredFeatureStore[{self.namespace}] initialized")

    def get_batch(self, keys: List[FeatureKey]) -> Dict[FeatureKey, Optional[FeatureVector]]:
        if not keys:
            return {}

        if self.circuit_breaker.allow_request():
            with self._lock:
                self._primary_requests += 1
            try:
                result = self.primary.get_batch(keys)
            except Exception as e:
                logger.warning(f"Primary {self.namespace} store error: {e}")
                with self._lock:
                    self._primary_failures += 1
                self.circuit_breaker.record_failure()
            else:
                self.circuit_breaker.record_success()
                missing = [key for key in keys if result.get(key) is None]
                if missing:
                    with self._lock:
                        self._secondary_requests += 1
                    result.update(self.secondary.get_batch(missing))
                return result

        with self._lock:
            self._secondary_requests += 1
        return self.secondary.get_batch(keys)

    def health_check(self) -> Dict[str, Any]:
        """Healthy if either store is healthy."""
        primary_health = self.primary.health_check()
        secondary_health = self.secondary.health_check()
        circuit_status = self.circuit_breaker.get_status()

        return {
            "healthy": primary_health.get("healthy", False) or secondary_health.get("healthy", False),
            "latency_ms": primary_health.get("latency_ms", 0.0),
            "message": self._build_health_message(primary_health, circuit_status),
            "type": "layered",
            "namespace": self.namespace,
            "primary": primary_health,
            "secondary": secondary_health,
            "circuit_breaker": circuit_status,
        }

    def _build_health_message(
        self,
        primary_health: Dict[str, Any],
        circuit_status: Dict[str, Any],
    ) -> str:
        if primary_health.get("healthy", False):
            return "Primary store healthy, operating normally"

        state = circuit_status.get("state", "unknown")
        if state == "open":
            return "Primary store unhealthy, circuit OPEN, using secondary"
        elif state == "half_open":
            return "Testing primary store recovery"
        return "Primary store unhealthy but circuit closed, will open soon"

    def get_stats(self) -> FeatureStoreStats:
        primary_stats = self.primary.get_stats()
        secondary_stats = self.secondary.get_stats()
        return FeatureStoreStats(
            total_requests=primary_stats.total_requests + secondary_stats.total_requests,
            hits=primary_stats.hits + secondary_stats.hits,
            misses=primary_stats.misses + secondary_stats.misses,
            errors=primary_stats.errors + secondary_stats.errors,
            avg_latency_ms=(primary_stats.avg_latency_ms + secondary_stats.avg_latency_ms) / 2,
        )

    def get_detailed_stats(self) -> Dict[str, Any]:
        with self._lock:
            primary_requests = self._primary_requests
            secondary_requests = self._secondary_requests
            primary_failures = self._primary_failures
        return {
            "primary_requests": primary_requests,
            "secondary_requests": secondary_requests,
            "primary_failures": primary_failures,
            "primary_failure_rate": (
                primary_failures / primary_requests if primary_requests > 0 else 0.0
            ),
            "circuit_breaker": self.circuit_breaker.get_status(),
        }

    def close(self) -> None:
        self.primary.close()
        self.secondary.close()
