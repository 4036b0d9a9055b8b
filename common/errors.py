"""
Error taxonomy for the candidate serving pipeline.

Every stage isolates its own failures and converts them into a bounded local
fallback. The exceptions below are the typed signals stages use internally;
only the configuration errors (UnknownIndexVersion, ConfigurationError) are
allowed to reach the caller of the pipeline.

Failure kinds:
    VersionMismatch       embedding/index dimension or version incompatibility
    InsufficientResults   fewer results than required, or failed validation
    UpstreamTimeout       external call exceeded its budget
    UpstreamError         external call raised
    DegradedFeatures      batch feature availability below threshold
    RerankSchemaViolation malformed or non-permutation rerank output
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class FailureKind(Enum):
    """Named failure kinds carried by outcomes and diagnostics."""
    VERSION_MISMATCH = "VersionMismatch"
    INSUFFICIENT_RESULTS = "InsufficientResults"
    UPSTREAM_TIMEOUT = "UpstreamTimeout"
    UPSTREAM_ERROR = "UpstreamError"
    DEGRADED_FEATURES = "DegradedFeatures"
    RERANK_SCHEMA_VIOLATION = "RerankSchemaViolation"


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    kind: Optional[FailureKind] = None


class VersionMismatch(PipelineError):
    """Embedding is incompatible with the resolved index artifact."""

    kind = FailureKind.VERSION_MISMATCH


class InsufficientResults(PipelineError):
    """A call returned fewer usable results than required."""

    kind = FailureKind.INSUFFICIENT_RESULTS


class UpstreamTimeout(PipelineError):
    """An external call exceeded its time budget."""

    kind = FailureKind.UPSTREAM_TIMEOUT


class UpstreamError(PipelineError):
    """An external call failed."""

    kind = FailureKind.UPSTREAM_ERROR


class DegradedFeatures(PipelineError):
    """Batch feature availability fell below the configured threshold."""

    kind = FailureKind.DEGRADED_FEATURES


class RerankSchemaViolation(PipelineError):
    """Reranker output was malformed or not a permutation of its input."""

    kind = FailureKind.RERANK_SCHEMA_VIOLATION


class UnknownIndexVersion(PipelineError):
    """The requested index version was never published. Hard failure."""


class ConfigurationError(PipelineError):
    """Invalid pipeline configuration. Hard failure."""


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result of a fallible stage call: either a value or a failure kind.

    Callers branch on ``failure`` instead of catching exceptions:

        outcome = call_with_deadline(fn, timeout_s=0.03, executor=pool)
        if outcome.failure is FailureKind.UPSTREAM_TIMEOUT:
            ...

    Attributes:
        value: The success value (None when failed)
        failure: Failure kind, or None on success
        detail: Human-readable context for logs and diagnostics
    """

    value: Optional[T] = None
    failure: Optional[FailureKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Any) -> "Outcome":
        return cls(value=value)

    @classmethod
    def failed(cls, kind: FailureKind, detail: str = "") -> "Outcome":
        return cls(failure=kind, detail=detail)

    @classmethod
    def from_error(cls, error: PipelineError) -> "Outcome":
        return cls(failure=error.kind or FailureKind.UPSTREAM_ERROR, detail=str(error))
