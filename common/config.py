"""
Configuration dataclasses for the candidate serving pipeline.

Every tunable lives here so a deployment is described by one YAML file:

    expansion:
      max_variants: 3
      timeout_ms: 150
    retrieval:
      deadline_ms: 30
      min_candidates: 10
    ranking:
      availability_threshold: 0.75
      fallback_mode: score_then_popularity
    rerank:
      enabled_surfaces: [search]
      alpha: 0.2

Load with PipelineConfig.from_yaml(path) or load_config(), which also applies
environment overrides (REDIS_HOST, REDIS_PORT, FEATURE_STORE_MODE,
GENERATIVE_ENDPOINT, GENERATIVE_API_KEY, EMBEDDING_ENDPOINT).
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Upper bound on reranker blend weight. Above this the reranker could
# overturn the primary order.
MAX_RERANK_ALPHA = 0.2

FALLBACK_MODES = ("score_then_popularity", "popularity_only")


@dataclass
class ExpansionConfig:
    """
    Query expansion settings.

    Attributes:
        enabled: Whether to call the rewrite generator at all
        max_variants: Cap on variants including the anchor (default: 3)
        max_query_length: Normalized queries are truncated to this many chars
        timeout_ms: Hard timeout for the generator call
        max_output_tokens: Output token budget for the generator
        cache_ttl_seconds: TTL of cached expansions
    """
    enabled: bool = True
    max_variants: int = 3
    max_query_length: int = 256
    timeout_ms: float = 150.0
    max_output_tokens: int = 128
    cache_ttl_seconds: int = 3600


@dataclass
class RetrievalConfig:
    """
    ANN retrieval settings.

    Attributes:
        deadline_ms: Per-lookup request deadline (default: 30ms)
        min_candidates: Results below this count are treated as unusable
        search_budget: Runtime search breadth (nprobe / efSearch), distinct
            from build-time index parameters
        fallback_size: Upper bound on fallback candidate set size
        max_workers: Threads used for ANN calls
    """
    deadline_ms: float = 30.0
    min_candidates: int = 10
    search_budget: int = 64
    fallback_size: int = 500
    max_workers: int = 8


@dataclass
class MergeConfig:
    """
    Multi-strategy merge settings.

    Attributes:
        candidate_width: Maximum merged candidate count
        per_strategy_k: Candidates requested from each strategy (defaults to width)
        content_index_version: Index used for query-variant embeddings
        behavioral_index_version: Index used for the user embedding
        strategy_timeout_ms: Longest the merger waits for any single strategy
        max_workers: Threads used for strategy fan-out
    """
    candidate_width: int = 200
    per_strategy_k: Optional[int] = None
    content_index_version: str = "content-v1"
    behavioral_index_version: str = "behavioral-v1"
    strategy_timeout_ms: float = 60.0
    max_workers: int = 8


@dataclass
class RankingConfig:
    """
    Ranking settings.

    Attributes:
        model_name: Scoring model artifact name
        availability_threshold: Batch health below this triggers degradation
        health_percentile: Low percentile of row availability used as batch health
        fallback_mode: "score_then_popularity" or "popularity_only"
    """
    model_name: str = "xgboost_pairwise"
    availability_threshold: float = 0.75
    health_percentile: float = 5.0
    fallback_mode: str = "score_then_popularity"


@dataclass
class RerankConfig:
    """
    Bounded reranker settings.

    Attributes:
        enabled_surfaces: Surfaces where reranking runs (empty = disabled everywhere)
        top_n: Only the top N ranked items are sent to the reranker
        alpha: Blend weight of reranker positions (0 <= alpha <= 0.2)
        timeout_ms: Hard timeout for the generator call
        max_output_tokens: Output token budget for the generator
        p95_budget_ms: Auto-bypass when rolling p95 latency exceeds this
        latency_window: Number of samples in the rolling latency window
        min_latency_samples: Samples needed before the p95 guardrail applies
    """
    enabled_surfaces: List[str] = field(default_factory=list)
    top_n: int = 20
    alpha: float = 0.2
    timeout_ms: float = 400.0
    max_output_tokens: int = 256
    p95_budget_ms: float = 350.0
    latency_window: int = 200
    min_latency_samples: int = 20


@dataclass
class GenerativeConfig:
    """Generative text service endpoint settings."""
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"


@dataclass
class EmbeddingConfig:
    """Embedding service endpoint settings."""
    endpoint: Optional[str] = None
    timeout_ms: float = 100.0
    embedding_version: Optional[str] = None


@dataclass
class FeatureStoreConfig:
    """
    Feature store settings.

    Attributes:
        mode: "memory" (parquet snapshots) or "redis" (Redis + memory fallback)
        redis_host: Redis host
        redis_port: Redis port
        snapshot_dir: Directory with user/item/interaction parquet snapshots
    """
    mode: str = "memory"
    redis_host: str = "localhost"
    redis_port: int = 6379
    snapshot_dir: Optional[str] = None


@dataclass
class CacheConfig:
    """Expansion cache backend settings."""
    backend: str = "memory"
    max_entries: int = 10000


@dataclass
class PipelineConfig:
    """Root configuration for the whole serving pipeline."""
    expansion: ExpansionConfig = field(default_factory=ExpansionConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    ranking: RankingConfig = field(default_factory=RankingConfig)
    rerank: RerankConfig = field(default_factory=RerankConfig)
    generative: GenerativeConfig = field(default_factory=GenerativeConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    feature_store: FeatureStoreConfig = field(default_factory=FeatureStoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    artifacts_dir: str = "candidate_gen/artifacts"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Reject settings that would break pipeline invariants."""
        if not 0.0 <= self.rerank.alpha <= MAX_RERANK_ALPHA:
            raise ConfigurationError(
                f"rerank.alpha must be within [0, {MAX_RERANK_ALPHA}], got {self.rerank.alpha}"
            )
        if self.ranking.fallback_mode not in FALLBACK_MODES:
            raise ConfigurationError(
                f"ranking.fallback_mode must be one of {FALLBACK_MODES}, "
                f"got {self.ranking.fallback_mode!r}"
            )
        if self.expansion.max_variants < 1:
            raise ConfigurationError("expansion.max_variants must be >= 1")
        if self.retrieval.min_candidates < 0:
            raise ConfigurationError("retrieval.min_candidates must be >= 0")
        if self.merge.candidate_width <= 0:
            raise ConfigurationError("merge.candidate_width must be > 0")
        if self.feature_store.mode not in ("memory", "redis"):
            raise ConfigurationError(
                f"feature_store.mode must be 'memory' or 'redis', got {self.feature_store.mode!r}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "PipelineConfig":
        """Build a config from nested dicts, rejecting unknown keys."""
        sections = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in (config_dict or {}).items():
            if key not in sections:
                raise ConfigurationError(f"Unknown config section: {key}")
            section_type = sections[key].default_factory  # type: ignore[misc]
            if isinstance(value, dict) and isinstance(section_type, type):
                valid = {f.name for f in fields(section_type)}
                unknown = set(value) - valid
                if unknown:
                    raise ConfigurationError(
                        f"Unknown keys in '{key}': {sorted(unknown)}. Valid keys: {sorted(valid)}"
                    )
                kwargs[key] = section_type(**value)
            else:
                kwargs[key] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "PipelineConfig":
        """
        Load configuration from a YAML file.

        Args:
            yaml_path: Path to YAML config file

        Returns:
            PipelineConfig instance

        Raises:
            ConfigurationError: If the file has unknown keys or invalid values
        """
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f) or {}
        return cls.from_dict(config_dict)


def load_config(path: Optional[Path] = None) -> PipelineConfig:
    """
    Load pipeline configuration from YAML (if any) plus environment overrides.

    Args:
        path: Optional YAML path. Defaults to $PIPELINE_CONFIG when set.

    Returns:
        Validated PipelineConfig
    """
    path = path or os.getenv("PIPELINE_CONFIG")
    if path:
        logger.info(f"Loading pipeline config from {path}")
        config = PipelineConfig.from_yaml(Path(path))
    else:
        logger.info("No PIPELINE_CONFIG set, using default pipeline config")
        config = PipelineConfig()

    fs = config.feature_store
    fs.mode = os.getenv("FEATURE_STORE_MODE", fs.mode).lower()
    fs.redis_host = os.getenv("REDIS_HOST", fs.redis_host)
    fs.redis_port = int(os.getenv("REDIS_PORT", str(fs.redis_port)))

    config.generative.endpoint = os.getenv("GENERATIVE_ENDPOINT", config.generative.endpoint)
    config.generative.api_key = os.getenv("GENERATIVE_API_KEY", config.generative.api_key)
    config.embedding.endpoint = os.getenv("EMBEDDING_ENDPOINT", config.embedding.endpoint)

    config.validate()
    return config
