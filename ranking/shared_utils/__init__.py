"""
Shared utilities for the ranking system.

This module provides common utilities used across ranking components:
- Path constants for project directories
- Model artifact loading utilities
"""

from .paths import (
    PROJECT_ROOT,
    RANKING_DIR,
    MODELS_DIR,
    FEATURES_DIR,
)
from .model_utils import (
    load_booster,
    load_feature_columns,
    load_model_info,
    get_available_models,
)

__all__ = [
    "PROJECT_ROOT",
    "RANKING_DIR",
    "MODELS_DIR",
    "FEATURES_DIR",
    "load_booster",
    "load_feature_columns",
    "load_model_info",
    "get_available_models",
]
