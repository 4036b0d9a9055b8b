"""
Ranking model training package.

Trains an XGBoost model with a pairwise ordering objective (rank:pairwise,
grouped by context) and MLflow experiment tracking.

Modules:
    config: Configuration dataclasses
    metrics: Per-context evaluation metrics (NDCG, pairwise accuracy)
    trainer: Main RankingModelTrainer class

CLI Usage:
    python -m ranking.training.train_ranking_model
"""

from .config import TrainingConfig, TuningResult
from .metrics import compute_ndcg_at_k, compute_pairwise_accuracy, evaluate_model
from .trainer import RankingModelTrainer

__all__ = [
    "TrainingConfig",
    "TuningResult",
    "RankingModelTrainer",
    "compute_ndcg_at_k",
    "compute_pairwise_accuracy",
    "evaluate_model",
]
