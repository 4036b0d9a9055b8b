"""
Utilities for loading trained ranking models and related artifacts.

A model directory holds:
- {model_name}.json      XGBoost booster
- feature_columns.json   ordered input columns (critical for inference)
- model_info.json        params, metrics and model_version
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

import xgboost as xgb

from .paths import MODELS_DIR


def load_booster(model_name: str, models_dir: Optional[Path] = None) -> xgb.Booster:
    """
    Load an XGBoost model from JSON format.

    Raises:
        FileNotFoundError: If model file doesn't exist
    """
    models_dir = Path(models_dir or MODELS_DIR)
    model_path = models_dir / f"{model_name}.json"
    if not model_path.exists():
        available = get_available_models(models_dir)
        raise FileNotFoundError(
            f"Model '{model_name}' not found at {model_path}. "
            f"Available models: {available}"
        )

    booster = xgb.Booster()
    booster.load_model(str(model_path))
    return booster


def load_feature_columns(models_dir: Optional[Path] = None) -> List[str]:
    """Load the ordered list of feature column names used in training."""
    path = Path(models_dir or MODELS_DIR) / "feature_columns.json"
    with open(path) as f:
        return json.load(f)


def load_model_info(models_dir: Optional[Path] = None) -> Dict:
    """Load model metadata (empty dict if not written)."""
    path = Path(models_dir or MODELS_DIR) / "model_info.json"
    if path.exists():
        with open(path) as f:
            return json.load(f)
    return {}


def get_available_models(models_dir: Optional[Path] = None) -> List[str]:
    """List model names (without .json extension)."""
    return sorted(f.stem for f in Path(models_dir or MODELS_DIR).glob("xgboost_*.json"))
