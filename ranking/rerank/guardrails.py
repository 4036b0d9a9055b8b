"""
Operational guardrails for the bounded reranker.

These are policy switches, not part of the algorithm:
- Disabled by default: only surfaces listed in enabled_surfaces rerank.
- Latency bypass: when the rolling p95 of the stage exceeds its budget, the
  stage is skipped; every min_latency_samples-th skipped request runs as a
  probe so the window can recover.
- Lift kill switch: while the latest tracked online lift is non-positive the
  stage is skipped everywhere.
"""

import logging
import threading
from typing import Any, Dict, Optional, Tuple

from common.config import RerankConfig
from common.timing import RollingLatency

logger = logging.getLogger(__name__)


class RerankGuardrails:
    """
    Decide per request whether the reranker may run.

    Example:
        guardrails = RerankGuardrails(RerankConfig(enabled_surfaces=["search"]))
        allowed, reason = guardrails.check("search")
        guardrails.record_latency(120.0)
        guardrails.record_lift(-0.01)   # disables reranking
    """

    def __init__(self, config: Optional[RerankConfig] = None):
        self.config = config or RerankConfig()
        self.latency = RollingLatency(window=self.config.latency_window)
        self._lock = threading.RLock()
        self._last_lift: Optional[float] = None
        self._bypassed = 0

    def check(self, surface: str) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            (allowed, bypass_reason). bypass_reason is None when allowed.
        """
        if surface not in self.config.enabled_surfaces:
            return False, "surface_disabled"

        with self._lock:
            lift = self._last_lift
        if lift is not None and lift <= 0:
            return False, "non_positive_lift"

        if len(self.latency) >= self.config.min_latency_samples:
            p95 = self.latency.percentile(95)
            if p95 > self.config.p95_budget_ms:
                # let every min_latency_samples-th request through so p95 can recover
                with self._lock:
                    self._bypassed += 1
                    probe = self._bypassed % max(1, self.config.min_latency_samples) == 0
                if not probe:
                    return False, "latency_budget_exceeded"

        return True, None

    def record_latency(self, latency_ms: float) -> None:
        self.latency.record(latency_ms)

    def record_lift(self, lift: float) -> None:
        """Record the latest online lift measurement for the reranker."""
        with self._lock:
            previous = self._last_lift
            self._last_lift = float(lift)
        if lift <= 0 and (previous is None or previous > 0):
            logger.warning(f"Reranker disabled: online lift {lift:.4f} is non-positive")
        elif lift > 0 and previous is not None and previous <= 0:
            logger.info(f"Reranker re-enabled: online lift {lift:.4f}")

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            lift = self._last_lift
        return {
            "enabled_surfaces": list(self.config.enabled_surfaces),
            "last_lift": lift,
            "lift_disabled": lift is not None and lift <= 0,
            "p95_budget_ms": self.config.p95_budget_ms,
            "latency": self.latency.to_dict(),
        }
