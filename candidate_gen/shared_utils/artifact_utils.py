"""
Utilities for loading serving artifacts for candidate generation.

This module provides functions to:
- Load the index artifact registry
- Load FAISS index services for every published version
- Load the popularity fallback store
"""

from pathlib import Path
from typing import Dict, Optional

from ..artifacts import ArtifactRegistry
from ..retrieval import ANNIndex, StaticPopularityStore, load_indexes
from .paths import INDEX_DIR, POPULARITY_PATH


def load_registry(index_dir: Optional[Path] = None) -> ArtifactRegistry:
    """
    Load every published IndexArtifact.

    Raises:
        FileNotFoundError: If the index directory doesn't exist
    """
    index_dir = Path(index_dir or INDEX_DIR)
    if not index_dir.exists():
        raise FileNotFoundError(f"Index directory not found at {index_dir}")
    return ArtifactRegistry.load(index_dir)


def load_ann_indexes(
    registry: ArtifactRegistry, index_dir: Optional[Path] = None
) -> Dict[str, ANNIndex]:
    """Load a FAISS index service for each version in the registry."""
    return load_indexes(Path(index_dir or INDEX_DIR), registry)


def load_popularity_store(path: Optional[Path] = None) -> StaticPopularityStore:
    """
    Load the popularity table used for fallback and tie-breaking.

    Raises:
        FileNotFoundError: If the popularity file doesn't exist
    """
    path = Path(path or POPULARITY_PATH)
    if not path.exists():
        raise FileNotFoundError(f"Popularity table not found at {path}")
    return StaticPopularityStore.from_parquet(path)
