"""
Serving module for the candidate generation system.

This module provides real-time candidate retrieval capabilities:
- CandidateGenerationService: Expansion, embedding and merged ANN retrieval
- CandidateGenerationResult: Merged candidates with per-stage diagnostics
"""

from .candidate_service import CandidateGenerationResult, CandidateGenerationService

__all__ = [
    "CandidateGenerationResult",
    "CandidateGenerationService",
]
