#!/usr/bin/env python
"""
CLI entry point for ranking model training.

Usage:
    python -m ranking.training.train_ranking_model
    python -m ranking.training.train_ranking_model --features-dir data/features/training \
        --models-dir ranking/models
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import TrainingConfig
from .trainer import RankingModelTrainer


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the training script."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main() -> int:
    """Main entry point for the training script."""
    defaults = TrainingConfig()
    parser = argparse.ArgumentParser(
        description="Train the XGBoost pairwise ranking model.",
    )
    parser.add_argument(
        "--features-dir",
        type=Path,
        default=defaults.features_dir,
        help=f"Directory containing feature parquet files (default: {defaults.features_dir})",
    )
    parser.add_argument(
        "--models-dir",
        type=Path,
        default=defaults.models_dir,
        help=f"Directory to save trained models (default: {defaults.models_dir})",
    )
    parser.add_argument(
        "--experiment",
        type=str,
        default=defaults.mlflow_experiment,
        help=f"MLflow experiment name (default: {defaults.mlflow_experiment})",
    )
    parser.add_argument(
        "--learning-rates",
        type=float,
        nargs="+",
        default=defaults.learning_rates,
        help="Learning rates to search",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    args = parser.parse_args()

    setup_logging(verbose=args.verbose)
    logger = logging.getLogger(__name__)

    if not args.features_dir.exists():
        logger.error(f"Features directory not found: {args.features_dir}")
        return 1

    config = TrainingConfig(
        features_dir=args.features_dir,
        models_dir=args.models_dir,
        mlflow_experiment=args.experiment,
        learning_rates=args.learning_rates,
    )

    try:
        RankingModelTrainer(config).run()
        logger.info("Training completed successfully!")
        return 0
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Training failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
