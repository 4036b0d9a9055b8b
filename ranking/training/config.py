"""
Configuration dataclasses for ranking model training.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List


@dataclass
class TrainingConfig:
    """
    Configuration for the pairwise ranking model training pipeline.

    The features directory holds train/val/test parquet files with one row per
    (context, item): a context_id column grouping items shown together, a
    graded label column (higher = preferred), and the schema feature columns.

    Attributes:
        features_dir: Directory containing train/val/test feature parquet files
        models_dir: Directory to save trained models
        model_name: Name of the saved model artifact
        mlflow_tracking_uri: MLflow tracking URI (file-based by default)
        mlflow_experiment: Name of the MLflow experiment
        objective: XGBoost ranking objective (pairwise ordering loss)
        learning_rates: Learning rates to try, each with early stopping
        max_depth: Tree depth
        colsample_bytree: Feature sampling ratio
        n_estimators_max: Maximum trees for early stopping
        early_stopping_rounds: Rounds without improvement to stop
        random_seed: Random seed for reproducibility
    """
    features_dir: Path = field(default_factory=lambda: Path("data/features/training"))
    models_dir: Path = field(default_factory=lambda: Path("ranking/models"))
    model_name: str = "xgboost_pairwise"
    mlflow_tracking_uri: str = "file:./mlruns"
    mlflow_experiment: str = "ranking_model"

    objective: str = "rank:pairwise"
    learning_rates: List[float] = field(default_factory=lambda: [0.05, 0.1, 0.2])
    max_depth: int = 6
    colsample_bytree: float = 0.8
    n_estimators_max: int = 2000
    early_stopping_rounds: int = 50

    random_seed: int = 42

    def __post_init__(self):
        if isinstance(self.features_dir, str):
            self.features_dir = Path(self.features_dir)
        if isinstance(self.models_dir, str):
            self.models_dir = Path(self.models_dir)


@dataclass
class TuningResult:
    """
    Result from a single learning-rate run.

    Attributes:
        learning_rate: Learning rate used
        best_iteration: Best iteration from early stopping
        val_ndcg_10: Validation NDCG@10
        val_pairwise_accuracy: Validation pairwise accuracy
        model: Trained XGBRanker
    """
    learning_rate: float
    best_iteration: int
    val_ndcg_10: float
    val_pairwise_accuracy: float
    model: Any
