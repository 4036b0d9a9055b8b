"""
Shared building blocks for the candidate serving pipeline.

This module provides:
- Error taxonomy and the Outcome result type
- PipelineConfig and its per-stage sections
- TTL result caches (in-memory and Redis)
- Generative text service contract and HTTP client
- Deadline helpers and rolling latency tracking
"""

from .cache import InMemoryTTLCache, RedisTTLCache, ResultCache
from .config import (
    CacheConfig,
    EmbeddingConfig,
    ExpansionConfig,
    FeatureStoreConfig,
    GenerativeConfig,
    MergeConfig,
    PipelineConfig,
    RankingConfig,
    RerankConfig,
    RetrievalConfig,
    load_config,
)
from .errors import (
    ConfigurationError,
    DegradedFeatures,
    FailureKind,
    InsufficientResults,
    Outcome,
    PipelineError,
    RerankSchemaViolation,
    UnknownIndexVersion,
    UpstreamError,
    UpstreamTimeout,
    VersionMismatch,
)
from .generative import (
    GenerationRequest,
    GenerativeTextService,
    HTTPGenerativeService,
    parse_structured_output,
)
from .timing import RollingLatency, call_with_deadline

__all__ = [
    # Errors
    "ConfigurationError",
    "DegradedFeatures",
    "FailureKind",
    "InsufficientResults",
    "Outcome",
    "PipelineError",
    "RerankSchemaViolation",
    "UnknownIndexVersion",
    "UpstreamError",
    "UpstreamTimeout",
    "VersionMismatch",
    # Config
    "CacheConfig",
    "EmbeddingConfig",
    "ExpansionConfig",
    "FeatureStoreConfig",
    "GenerativeConfig",
    "MergeConfig",
    "PipelineConfig",
    "RankingConfig",
    "RerankConfig",
    "RetrievalConfig",
    "load_config",
    # Caches
    "InMemoryTTLCache",
    "RedisTTLCache",
    "ResultCache",
    # Generative
    "GenerationRequest",
    "GenerativeTextService",
    "HTTPGenerativeService",
    "parse_structured_output",
    # Timing
    "RollingLatency",
    "call_with_deadline",
]
