"""
Evaluation metrics for the pairwise ranking model.

Scores from a pairwise objective are only meaningful as an order within one
context, so every metric here is computed per context group and averaged:
- NDCG@K: graded ranking quality (primary metric)
- Pairwise accuracy: fraction of preferred/less-preferred pairs ordered correctly
"""

from typing import Dict, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import ndcg_score

GROUP_COL = "context_id"
LABEL_COL = "label"


def compute_ndcg_at_k(df: pd.DataFrame, predictions: np.ndarray, k: int = 10) -> float:
    """
    Average NDCG@K across context groups.

    Groups with fewer than 2 items, or with no positive label, carry no
    ordering signal and are skipped.

    Args:
        df: DataFrame with context_id and label columns
        predictions: Scores aligned with df rows
        k: Number of top items to consider

    Returns:
        Mean NDCG@K (0.0 if no group qualifies)
    """
    df_eval = df[[GROUP_COL, LABEL_COL]].copy()
    df_eval["prediction"] = predictions

    ndcg_scores = []
    for _, group in df_eval.groupby(GROUP_COL, sort=False):
        if len(group) < 2 or group[LABEL_COL].max() <= 0:
            continue
        ndcg_scores.append(
            ndcg_score([group[LABEL_COL].to_numpy()], [group["prediction"].to_numpy()], k=k)
        )

    return float(np.mean(ndcg_scores)) if ndcg_scores else 0.0


def compute_pairwise_accuracy(df: pd.DataFrame, predictions: np.ndarray) -> float:
    """
    Fraction of within-context pairs with different labels that the model
    orders correctly (ties in score count as half).
    """
    df_eval = df[[GROUP_COL, LABEL_COL]].copy()
    df_eval["prediction"] = predictions

    correct = 0.0
    total = 0
    for _, group in df_eval.groupby(GROUP_COL, sort=False):
        labels = group[LABEL_COL].to_numpy()
        scores = group["prediction"].to_numpy()
        label_diff = labels[:, None] - labels[None, :]
        score_diff = scores[:, None] - scores[None, :]
        preferred = label_diff > 0
        total += int(preferred.sum())
        correct += float((score_diff[preferred] > 0).sum()) + 0.5 * float((score_diff[preferred] == 0).sum())

    return correct / total if total else 0.0


def evaluate_model(
    model,
    X: pd.DataFrame,
    df: pd.DataFrame,
    prefix: str = "",
) -> Tuple[Dict[str, float], np.ndarray]:
    """
    Evaluate a ranking model on a dataset.

    Args:
        model: Trained model with predict()
        X: Feature DataFrame
        df: Original DataFrame with context_id and label columns
        prefix: Prefix for metric names (e.g., "val_", "test_")

    Returns:
        Tuple of (metrics dict, predictions)
    """
    predictions = model.predict(X)
    metrics = {
        f"{prefix}ndcg_10": compute_ndcg_at_k(df, predictions, k=10),
        f"{prefix}ndcg_20": compute_ndcg_at_k(df, predictions, k=20),
        f"{prefix}pairwise_accuracy": compute_pairwise_accuracy(df, predictions),
    }
    return metrics, predictions
