"""
Pairwise ranking model trainer.

The model is trained to minimize a pairwise ordering loss between a preferred
and a less-preferred item within the same context (XGBoost rank:pairwise,
grouped by context_id). Its scores are therefore calibrated for relative
ordering only.

Pipeline:
- Grid search over learning rates with early stopping on validation NDCG@10
- Refit the best configuration with its best iteration count
- Save model JSON, feature_columns.json and model_info.json (with model_version)
- Evaluate on the test split
"""

import json
import logging
from typing import List, Optional

import mlflow
import mlflow.xgboost
import numpy as np
import pandas as pd
import xgboost as xgb

from ranking.features import DEFAULT_SCHEMA, FeatureSchema
from .config import TrainingConfig, TuningResult
from .metrics import GROUP_COL, LABEL_COL, evaluate_model

logger = logging.getLogger(__name__)


class RankingModelTrainer:
    """
    Trains the XGBoost pairwise ranking model with MLflow tracking.

    Example:
        trainer = RankingModelTrainer(TrainingConfig(features_dir=Path("data/features/training")))
        model = trainer.run()
    """

    def __init__(self, config: TrainingConfig, schema: Optional[FeatureSchema] = None):
        self.config = config
        self.schema = schema or DEFAULT_SCHEMA

        self.train_df: Optional[pd.DataFrame] = None
        self.val_df: Optional[pd.DataFrame] = None
        self.test_df: Optional[pd.DataFrame] = None
        self.feature_cols: List[str] = self.schema.feature_columns

        self.best_model: Optional[xgb.XGBRanker] = None
        self.best_params: Optional[dict] = None
        self.results: List[TuningResult] = []
        self.model_version: Optional[str] = None
        self._final_val_metrics: dict = {}

    def run(self) -> xgb.XGBRanker:
        """
        Execute the training pipeline.

        Returns:
            Trained XGBRanker
        """
        mlflow.set_tracking_uri(self.config.mlflow_tracking_uri)
        mlflow.set_experiment(self.config.mlflow_experiment)

        self.load_data()
        best = self._tune_learning_rate()
        self.best_params = {
            "learning_rate": best.learning_rate,
            "max_depth": self.config.max_depth,
            "n_estimators": best.best_iteration + 1,
            "colsample_bytree": self.config.colsample_bytree,
        }
        self.best_model = self._fit_final(self.best_params)
        self._save_model()
        self._final_evaluation()
        return self.best_model

    def load_data(self) -> None:
        """Load train/val/test splits sorted by context so groups are contiguous."""
        features_dir = self.config.features_dir
        logger.info(f"Loading data from {features_dir}...")

        self.train_df = self._prepare(pd.read_parquet(features_dir / "train_features.parquet"))
        self.val_df = self._prepare(pd.read_parquet(features_dir / "val_features.parquet"))
        self.test_df = self._prepare(pd.read_parquet(features_dir / "test_features.parquet"))

        logger.info(
            f"Train: {len(self.train_df)} rows / {self.train_df[GROUP_COL].nunique()} contexts, "
            f"Val: {len(self.val_df)} rows, Test: {len(self.test_df)} rows"
        )
        logger.info(f"Features: {len(self.feature_cols)}")

    def _prepare(self, df: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in [GROUP_COL, LABEL_COL, *self.feature_cols] if c not in df.columns]
        if missing:
            raise ValueError(f"Training data is missing columns: {missing}")
        df = df.sort_values(GROUP_COL, kind="stable").reset_index(drop=True)
        # Same defaults as the serving feature join
        return df.fillna(value=self.schema.optional_defaults)

    def _qid(self, df: pd.DataFrame) -> np.ndarray:
        return pd.factorize(df[GROUP_COL])[0]

    def _ranker(self, **overrides) -> xgb.XGBRanker:
        params = {
            "objective": self.config.objective,
            "max_depth": self.config.max_depth,
            "colsample_bytree": self.config.colsample_bytree,
            "random_state": self.config.random_seed,
            "eval_metric": "ndcg@10",
            "n_jobs": -1,
        }
        params.update(overrides)
        return xgb.XGBRanker(**params)

    def _tune_learning_rate(self) -> TuningResult:
        logger.info("=" * 60)
        logger.info("LEARNING RATE SEARCH (pairwise objective, early stopping)")
        logger.info("=" * 60)

        X_train, y_train = self.train_df[self.feature_cols], self.train_df[LABEL_COL]
        X_val, y_val = self.val_df[self.feature_cols], self.val_df[LABEL_COL]

        for lr in self.config.learning_rates:
            with mlflow.start_run(run_name=f"pairwise_lr_{lr}"):
                model = self._ranker(
                    learning_rate=lr,
                    n_estimators=self.config.n_estimators_max,
                    early_stopping_rounds=self.config.early_stopping_rounds,
                )
                mlflow.log_params(model.get_params())

                model.fit(
                    X_train,
                    y_train,
                    qid=self._qid(self.train_df),
                    eval_set=[(X_val, y_val)],
                    eval_qid=[self._qid(self.val_df)],
                    verbose=False,
                )

                val_metrics, _ = evaluate_model(model, X_val, self.val_df, prefix="val_")
                mlflow.log_metrics(val_metrics)
                mlflow.log_param("best_iteration", model.best_iteration)

                self.results.append(TuningResult(
                    learning_rate=lr,
                    best_iteration=model.best_iteration,
                    val_ndcg_10=val_metrics["val_ndcg_10"],
                    val_pairwise_accuracy=val_metrics["val_pairwise_accuracy"],
                    model=model,
                ))
                logger.info(
                    f"lr={lr}: best_iteration={model.best_iteration}, "
                    f"val NDCG@10={val_metrics['val_ndcg_10']:.4f}, "
                    f"pairwise acc={val_metrics['val_pairwise_accuracy']:.4f}"
                )

        best = max(self.results, key=lambda r: r.val_ndcg_10)
        logger.info(f"Best learning rate: {best.learning_rate} (val NDCG@10 {best.val_ndcg_10:.4f})")
        return best

    def _fit_final(self, params: dict) -> xgb.XGBRanker:
        """Refit without early stopping so every saved tree is used at serving time."""
        with mlflow.start_run(run_name="pairwise_final"):
            mlflow.log_params(params)
            model = self._ranker(**params)
            model.fit(
                self.train_df[self.feature_cols],
                self.train_df[LABEL_COL],
                qid=self._qid(self.train_df),
                verbose=False,
            )
            val_metrics, _ = evaluate_model(
                model, self.val_df[self.feature_cols], self.val_df, prefix="val_"
            )
            mlflow.log_metrics(val_metrics)
            mlflow.xgboost.log_model(model, artifact_path="model")
        self._final_val_metrics = val_metrics
        return model

    def _save_model(self) -> None:
        """Save the model and the artifacts XGBoostScoringModel loads."""
        models_dir = self.config.models_dir
        models_dir.mkdir(parents=True, exist_ok=True)

        created_at = pd.Timestamp.now()
        self.model_version = f"{self.config.model_name}-{created_at.strftime('%Y%m%d%H%M%S')}"

        model_path = models_dir / f"{self.config.model_name}.json"
        self.best_model.save_model(model_path)
        logger.info(f"Model saved to {model_path}")

        with open(models_dir / "feature_columns.json", "w") as f:
            json.dump(self.feature_cols, f, indent=2)

        model_info = {
            "model_name": self.config.model_name,
            "model_version": self.model_version,
            "objective": self.config.objective,
            "created_at": created_at.isoformat(),
            "params": self.best_params,
            "metrics": {k: float(v) for k, v in self._final_val_metrics.items()},
            "num_features": len(self.feature_cols),
            "feature_schema": self.schema.to_dict(),
            "tuning_runs": len(self.results),
        }
        with open(models_dir / "model_info.json", "w") as f:
            json.dump(model_info, f, indent=2)
        logger.info(f"Model info saved (version {self.model_version})")

    def _final_evaluation(self) -> None:
        test_metrics, _ = evaluate_model(
            self.best_model, self.test_df[self.feature_cols], self.test_df, prefix="test_"
        )
        logger.info("=" * 60)
        logger.info("Test Set Performance:")
        logger.info(f"  NDCG@10:           {test_metrics['test_ndcg_10']:.4f}")
        logger.info(f"  NDCG@20:           {test_metrics['test_ndcg_20']:.4f}")
        logger.info(f"  Pairwise accuracy: {test_metrics['test_pairwise_accuracy']:.4f}")
        logger.info("=" * 60)
