"""
Bounded generative reranking.

This module provides:
- BoundedReranker: Fail-open permutation of the top-N with bounded blending
- RerankGuardrails: Surface allow-list, p95 latency bypass, lift kill switch
- blend / validate_permutation: The blending rule and the output check
"""

from .bounded_reranker import (
    BoundedReranker,
    RerankOutput,
    RerankResult,
    blend,
    position_scores,
    validate_permutation,
)
from .guardrails import RerankGuardrails

__all__ = [
    "BoundedReranker",
    "RerankGuardrails",
    "RerankOutput",
    "RerankResult",
    "blend",
    "position_scores",
    "validate_permutation",
]
