import json

import numpy as np
import pandas as pd
import pytest

from ranking.serving import XGBoostScoringModel
from ranking.shared_utils import get_available_models
from ranking.training import (
    RankingModelTrainer,
    TrainingConfig,
    compute_ndcg_at_k,
    compute_pairwise_accuracy,
)


def _frame(num_contexts, seed):
    rng = np.random.default_rng(seed)
    rows = []
    for context_id in range(num_contexts):
        scores = rng.uniform(size=6)
        labels = np.digitize(scores, [0.4, 0.8])
        for score, label in zip(scores, labels):
            rows.append({
                "context_id": context_id,
                "label": int(label),
                "user_activity_count": float(rng.integers(1, 50)),
                "item_score": float(score),
                "recent_interaction_count": np.nan,
            })
    return pd.DataFrame(rows)


def test_ndcg_perfect_and_reversed_order():
    df = pd.DataFrame({"context_id": [1, 1, 1], "label": [2, 1, 0]})

    assert compute_ndcg_at_k(df, np.array([3.0, 2.0, 1.0])) == pytest.approx(1.0)
    assert compute_ndcg_at_k(df, np.array([1.0, 2.0, 3.0])) < 1.0


def test_ndcg_skips_groups_without_signal():
    df = pd.DataFrame({"context_id": [1, 1, 2], "label": [0, 0, 1]})
    assert compute_ndcg_at_k(df, np.array([1.0, 2.0, 3.0])) == 0.0


def test_pairwise_accuracy_counts_ties_as_half():
    df = pd.DataFrame({"context_id": [1, 1, 1], "label": [2, 1, 0]})

    assert compute_pairwise_accuracy(df, np.array([3.0, 2.0, 1.0])) == 1.0
    assert compute_pairwise_accuracy(df, np.array([1.0, 1.0, 1.0])) == 0.5


def test_trainer_writes_artifacts_loadable_for_serving(tmp_path, score_schema):
    features_dir = tmp_path / "features"
    features_dir.mkdir()
    for split, seed in (("train", 0), ("val", 1), ("test", 2)):
        _frame(40 if split == "train" else 15, seed).to_parquet(features_dir / f"{split}_features.parquet")

    config = TrainingConfig(
        features_dir=features_dir,
        models_dir=tmp_path / "models",
        mlflow_tracking_uri=f"file:{tmp_path / 'mlruns'}",
        learning_rates=[0.1],
        max_depth=3,
        n_estimators_max=30,
        early_stopping_rounds=5,
    )
    trainer = RankingModelTrainer(config, schema=score_schema)
    trainer.run()

    info = json.loads((tmp_path / "models" / "model_info.json").read_text())
    assert info["model_version"] == trainer.model_version
    assert info["objective"] == "rank:pairwise"
    assert get_available_models(tmp_path / "models") == ["xgboost_pairwise"]

    model = XGBoostScoringModel.load("xgboost_pairwise", tmp_path / "models")
    assert model.model_version == trainer.model_version
    assert model.feature_columns == score_schema.feature_columns

    test_df = _frame(10, 3)
    scores = model.score(test_df[score_schema.feature_columns])
    assert scores.shape == (len(test_df),)
    assert compute_ndcg_at_k(test_df, scores) > 0.7


def test_scoring_model_load_missing_model(tmp_path):
    with pytest.raises(FileNotFoundError):
        XGBoostScoringModel.load("xgboost_missing", tmp_path)
