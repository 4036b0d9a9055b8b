"""
Deadline and latency helpers shared by the pipeline stages.

External calls (ANN search, text generation, embedding) run on a thread pool
and are awaited with a hard timeout. When the deadline passes the future is
cancelled and its eventual result is discarded; the caller proceeds with its
fallback value, never with a partial result.
"""

import logging
import math
import threading
from collections import deque
from concurrent.futures import Executor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Deque, Dict

from .errors import FailureKind, Outcome, PipelineError

logger = logging.getLogger(__name__)


def call_with_deadline(
    fn: Callable[..., Any],
    timeout_s: float,
    executor: Executor,
    *args: Any,
    **kwargs: Any,
) -> Outcome:
    """
    Run ``fn(*args, **kwargs)`` on ``executor`` and wait at most ``timeout_s``.

    Returns:
        Outcome with the function result, or a failure kind:
        - UPSTREAM_TIMEOUT if the deadline passed
        - the error's own kind if fn raised a PipelineError
        - UPSTREAM_ERROR for any other exception
    """
    future = executor.submit(fn, *args, **kwargs)
    try:
        return Outcome.success(future.result(timeout=timeout_s))
    except FutureTimeoutError:
        future.cancel()
        return Outcome.failed(
            FailureKind.UPSTREAM_TIMEOUT,
            f"exceeded {timeout_s * 1000:.0f}ms budget",
        )
    except PipelineError as e:
        return Outcome.from_error(e)
    except Exception as e:
        return Outcome.failed(FailureKind.UPSTREAM_ERROR, f"{type(e).__name__}: {e}")


class RollingLatency:
    """
    Thread-safe rolling window of latency samples with percentile lookup.

    Keeps the most recent ``window`` samples only, so memory is bounded for
    long-running services.

    Example:
        >>> tracker = RollingLatency(window=100)
        >>> tracker.record(12.0)
        >>> tracker.percentile(95)
        12.0
    """

    def __init__(self, window: int = 200):
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        self.window = window
        self._samples: Deque[float] = deque(maxlen=window)
        self._lock = threading.RLock()

    def record(self, latency_ms: float) -> None:
        with self._lock:
            self._samples.append(float(latency_ms))

    def percentile(self, pct: float) -> float:
        """Nearest-rank percentile of the window (0.0 when empty)."""
        with self._lock:
            samples = sorted(self._samples)
        if not samples:
            return 0.0
        rank = max(1, math.ceil(pct / 100.0 * len(samples)))
        return samples[min(rank, len(samples)) - 1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "samples": len(self),
            "p50_ms": self.percentile(50),
            "p95_ms": self.percentile(95),
        }
