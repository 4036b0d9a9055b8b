"""
Shared utilities for the candidate generation system.

This module provides common utilities used across candidate generation components:
- Path constants for project directories
- Artifact loading utilities
"""

from .paths import (
    PROJECT_ROOT,
    CANDIDATE_GEN_DIR,
    ARTIFACTS_DIR,
    INDEX_DIR,
    POPULARITY_PATH,
)
from .artifact_utils import (
    load_registry,
    load_ann_indexes,
    load_popularity_store,
)

__all__ = [
    # Paths
    "PROJECT_ROOT",
    "CANDIDATE_GEN_DIR",
    "ARTIFACTS_DIR",
    "INDEX_DIR",
    "POPULARITY_PATH",
    # Artifact utilities
    "load_registry",
    "load_ann_indexes",
    "load_popularity_store",
]
