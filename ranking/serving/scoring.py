"""
Scoring model contract.

A scoring model maps a feature matrix to one float per row. Scores come from
a pairwise ordering objective: they are meaningful for ordering candidates
within one request and one model_version, never as probabilities and never
across versions.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
import xgboost as xgb

from ranking.shared_utils import load_booster, load_feature_columns, load_model_info

logger = logging.getLogger(__name__)


class ScoringModel(ABC):
    """Interface for versioned ranking models."""

    model_version: str = "unversioned"
    feature_columns: List[str] = []

    @abstractmethod
    def score(self, features: pd.DataFrame) -> np.ndarray:
        """
        Score every row of a feature matrix.

        Args:
            features: One row per candidate; missing values are NaN

        Returns:
            1-D float array with len(features) entries
        """
        pass


class XGBoostScoringModel(ScoringModel):
    """
    XGBoost booster trained with a pairwise ranking objective.

    Example:
        model = XGBoostScoringModel.load("xgboost_pairwise")
        scores = model.score(batch.to_frame())
    """

    def __init__(self, booster: xgb.Booster, feature_columns: List[str], model_version: str):
        self.booster = booster
        self.feature_columns = list(feature_columns)
        self.model_version = model_version

    @classmethod
    def load(cls, model_name: str, models_dir: Optional[Path] = None) -> "XGBoostScoringModel":
        booster = load_booster(model_name, models_dir)
        feature_columns = load_feature_columns(models_dir)
        info = load_model_info(models_dir)
        model_version = info.get("model_version", model_name)
        logger.info(
            f"Loaded scoring model {model_name} (version: {model_version}, "
            f"{len(feature_columns)} features)"
        )
        return cls(booster, feature_columns, model_version)

    def score(self, features: pd.DataFrame) -> np.ndarray:
        missing = [c for c in self.feature_columns if c not in features.columns]
        if missing:
            raise ValueError(f"Feature matrix is missing model columns: {missing}")
        dmatrix = xgb.DMatrix(features[self.feature_columns], missing=np.nan)
        return np.asarray(self.booster.predict(dmatrix), dtype=np.float64)
