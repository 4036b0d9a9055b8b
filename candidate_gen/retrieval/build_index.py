"""
CLI entry point for publishing a FAISS index version.

Reads item embeddings (.npy, [num_items, dim]) and their catalog ids
(.npy, [num_items]) and writes a new, immutable index version.

Usage:
    python -m candidate_gen.retrieval.build_index \
        --embeddings item_embeddings.npy --item-ids item_ids.npy \
        --index-version content-v2 --embedding-version emb-2024-06 --space cosine
"""

import argparse
import logging
from pathlib import Path

import numpy as np

from ..artifacts import DistanceSpace, IndexArtifact
from ..shared_utils import INDEX_DIR
from .config import FAISSConfig
from .index_builder import FAISSIndexBuilder

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_index(
    embeddings_path: Path,
    item_ids_path: Path,
    index_version: str,
    embedding_version: str,
    space: DistanceSpace,
    output_dir: Path,
    faiss_config: FAISSConfig,
) -> Path:
    """
    Build and publish one index version.

    Args:
        embeddings_path: .npy file with item embeddings
        item_ids_path: .npy file with catalog item ids (same row order)
        index_version: New version id to publish
        embedding_version: Embedding model version the vectors came from
        space: Distance space of the index
        output_dir: Directory holding all index versions
        faiss_config: FAISS configuration

    Returns:
        Directory the version was written to
    """
    logger.info("=" * 60)
    logger.info(f"BUILDING INDEX VERSION {index_version}")
    logger.info("=" * 60)

    embeddings = np.load(embeddings_path)
    item_ids = np.load(item_ids_path)

    artifact = IndexArtifact(
        index_version=index_version,
        embedding_version=embedding_version,
        dim=int(embeddings.shape[1]),
        space=space,
    )

    builder = FAISSIndexBuilder(faiss_config)
    index = builder.build(embeddings, item_ids, artifact)
    return builder.save(index, artifact, output_dir)


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Publish a FAISS index version")
    parser.add_argument("--embeddings", type=Path, required=True, help="Item embeddings .npy")
    parser.add_argument("--item-ids", type=Path, required=True, help="Item ids .npy")
    parser.add_argument("--index-version", type=str, required=True, help="New index version id")
    parser.add_argument(
        "--embedding-version", type=str, required=True, help="Embedding model version"
    )
    parser.add_argument(
        "--space",
        type=str,
        default="cosine",
        choices=[s.value for s in DistanceSpace],
        help="Distance space (default: cosine)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=INDEX_DIR,
        help="Directory holding all index versions",
    )
    parser.add_argument(
        "--index-type",
        type=str,
        default="flat",
        choices=["flat", "ivf", "hnsw"],
        help="FAISS index type (default: flat)",
    )
    parser.add_argument("--nlist", type=int, default=100, help="IVF clusters (default: 100)")

    args = parser.parse_args()

    build_index(
        embeddings_path=args.embeddings,
        item_ids_path=args.item_ids,
        index_version=args.index_version,
        embedding_version=args.embedding_version,
        space=DistanceSpace(args.space),
        output_dir=args.output_dir,
        faiss_config=FAISSConfig(index_type=args.index_type, nlist=args.nlist),
    )


if __name__ == "__main__":
    main()
