"""
Centralized path definitions for the candidate generation system.

All path constants are defined here to avoid duplication and ensure
consistency across modules.
"""

from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Candidate generation directories
CANDIDATE_GEN_DIR = PROJECT_ROOT / "candidate_gen"
ARTIFACTS_DIR = CANDIDATE_GEN_DIR / "artifacts"

# Artifact subdirectories
INDEX_DIR = ARTIFACTS_DIR / "index"
POPULARITY_PATH = ARTIFACTS_DIR / "popularity.parquet"
