"""
Ranking features.

This module declares the feature contract shared by training and serving:
- FeatureField: One model input with its source and optional default
- FeatureSchema: Ordered feature fields
- DEFAULT_SCHEMA: The schema the current ranking model is trained on
"""

from .schema import DEFAULT_SCHEMA, FEATURE_SOURCES, FeatureField, FeatureSchema

__all__ = [
    "DEFAULT_SCHEMA",
    "FEATURE_SOURCES",
    "FeatureField",
    "FeatureSchema",
]
