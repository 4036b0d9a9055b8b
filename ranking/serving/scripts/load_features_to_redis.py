#!/usr/bin/env python
"""
Load feature snapshots from parquet into Redis.

Reads users.parquet, items.parquet and interactions.parquet from the snapshot
directory and writes one hash per entity under the RedisFeatureStore key
layout (features:{namespace}:{key}). Idempotent: existing hashes are
overwritten with the snapshot values.

Usage:
    # Start Redis first
    docker-compose up -d redis

    # Run from project root
    python -m ranking.serving.scripts.load_features_to_redis --verify

    # Inspect
    redis-cli HGETALL features:user:635
"""

import argparse
import logging
import math
import random
import sys
import time
from pathlib import Path
from typing import Dict, Optional

from ranking.serving.feature_store import SNAPSHOT_FILES, RedisFeatureStore, read_snapshot
from ranking.shared_utils import FEATURES_DIR

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_all(
    host: str,
    port: int,
    snapshot_dir: Path,
    verify_sample: Optional[int] = None,
) -> Dict[str, int]:
    """
    Write every available namespace snapshot to Redis.

    Returns:
        Rows written per namespace
    """
    start_time = time.time()
    counts: Dict[str, int] = {}

    for namespace, (filename, key_columns) in SNAPSHOT_FILES.items():
        path = snapshot_dir / filename
        if not path.exists():
            logger.warning(f"Skipping {namespace}: no snapshot at {path}")
            continue

        rows = read_snapshot(path, key_columns)
        logger.info(f"Loaded {len(rows):,} {namespace} rows from {path}")
        store = RedisFeatureStore(namespace, host=host, port=port, socket_timeout=5.0)
        try:
            counts[namespace] = store.set_batch(rows)
            logger.info(f"Wrote {counts[namespace]:,} {namespace} rows to Redis")
            if verify_sample and not _verify(store, rows, verify_sample):
                raise RuntimeError(f"Verification failed for {namespace}")
        finally:
            store.close()

    logger.info(f"Load complete: {counts} in {time.time() - start_time:.1f}s")
    return counts


def _verify(store: RedisFeatureStore, rows: Dict, sample_size: int) -> bool:
    """Spot-check that sampled rows round-trip through Redis."""
    keys = random.sample(list(rows), min(sample_size, len(rows)))
    fetched = store.get_batch(keys)
    for key in keys:
        vector = fetched.get(key)
        expected = {k: float(v) for k, v in rows[key].items() if not math.isnan(float(v))}
        if expected and vector is None:
            logger.error(f"{store.namespace} key {key} not found in Redis")
            return False
        for name, value in expected.items():
            if abs(vector.features.get(name, float("nan")) - value) > 1e-6:
                logger.error(f"{store.namespace} key {key}: {name} mismatch")
                return False
    logger.info(f"Verification passed for {store.namespace} ({len(keys)} keys)")
    return True


def main():
    parser = argparse.ArgumentParser(description="Load feature snapshots into Redis")
    parser.add_argument("--host", default="localhost", help="Redis host (default: localhost)")
    parser.add_argument("--port", type=int, default=6379, help="Redis port (default: 6379)")
    parser.add_argument(
        "--snapshot-dir", type=Path, default=FEATURES_DIR,
        help=f"Snapshot directory (default: {FEATURES_DIR})"
    )
    parser.add_argument(
        "--verify", action="store_true",
        help="Spot-check a sample of rows after loading"
    )
    args = parser.parse_args()

    try:
        load_all(args.host, args.port, args.snapshot_dir, verify_sample=5 if args.verify else None)
        return 0
    except Exception as e:
        logger.error(f"Load failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
