"""
Centralized path definitions for the ranking system.

All path constants are defined here to avoid duplication and ensure
consistency across modules.
"""

from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Ranking directories
RANKING_DIR = PROJECT_ROOT / "ranking"
MODELS_DIR = RANKING_DIR / "models"

# Feature snapshots (user / item / interaction parquet tables)
FEATURES_DIR = PROJECT_ROOT / "data" / "features"
