import json

import numpy as np
import pytest

from candidate_gen.artifacts import ArtifactRegistry, DistanceSpace, IndexArtifact
from candidate_gen.retrieval import FAISSConfig, FAISSIndex, FAISSIndexBuilder, load_indexes
from common.errors import ConfigurationError, UnknownIndexVersion

from conftest import make_artifact


def test_resolve_returns_published_artifact(registry):
    artifact = registry.resolve("content-v1")
    assert artifact.dim == 4
    assert artifact.space is DistanceSpace.COSINE
    assert "content-v1" in registry
    assert registry.versions() == ["behavioral-v1", "content-v1"]


def test_resolve_unknown_version_is_hard_failure(registry):
    with pytest.raises(UnknownIndexVersion, match="content-v9"):
        registry.resolve("content-v9")


def test_republish_identical_is_noop(registry):
    registry.publish(make_artifact("content-v1"))
    assert registry.versions() == ["behavioral-v1", "content-v1"]


def test_republish_with_different_metadata_rejected(registry):
    with pytest.raises(ConfigurationError):
        registry.publish(make_artifact("content-v1", dim=8))


def test_artifact_round_trips_through_dict():
    artifact = IndexArtifact("v1", "emb-1", 16, "l2")
    assert artifact.space is DistanceSpace.L2
    assert IndexArtifact.from_dict(artifact.to_dict()) == artifact


def test_artifact_rejects_non_positive_dim():
    with pytest.raises(ConfigurationError):
        IndexArtifact("v1", "emb-1", 0, DistanceSpace.COSINE)


def test_registry_load_scans_metadata_files(tmp_path):
    for version in ("content-v1", "content-v2"):
        (tmp_path / version).mkdir()
        with open(tmp_path / version / "index_metadata.json", "w") as f:
            json.dump({**make_artifact(version).to_dict(), "num_vectors": 10}, f)

    registry = ArtifactRegistry.load(tmp_path)

    assert registry.versions() == ["content-v1", "content-v2"]


@pytest.mark.parametrize("index_type", ["flat", "hnsw"])
def test_faiss_index_build_save_load_search(tmp_path, index_type):
    rng = np.random.default_rng(7)
    embeddings = rng.normal(size=(50, 8)).astype(np.float32)
    item_ids = list(range(500, 550))
    artifact = IndexArtifact("content-v1", "emb-1", 8, DistanceSpace.COSINE)
    builder = FAISSIndexBuilder(FAISSConfig(index_type=index_type))

    index = builder.build(embeddings, item_ids, artifact)
    builder.save(index, artifact, tmp_path)
    loaded = FAISSIndex.load(tmp_path / "content-v1")

    ids, sims = loaded.search(embeddings[3], k=5, runtime_budget=64)
    assert ids[0] == 503
    assert len(ids) == 5
    assert sims == sorted(sims, reverse=True)
    assert loaded.artifact == artifact


def test_faiss_save_refuses_to_overwrite_version(tmp_path):
    embeddings = np.eye(4, dtype=np.float32)
    artifact = IndexArtifact("content-v1", "emb-1", 4, DistanceSpace.L2)
    builder = FAISSIndexBuilder()
    index = builder.build(embeddings, [1, 2, 3, 4], artifact)
    builder.save(index, artifact, tmp_path)

    with pytest.raises(FileExistsError):
        builder.save(index, artifact, tmp_path)


def test_faiss_build_rejects_dim_mismatch():
    artifact = IndexArtifact("content-v1", "emb-1", 8, DistanceSpace.COSINE)
    with pytest.raises(ValueError, match="dim"):
        FAISSIndexBuilder().build(np.zeros((3, 4), dtype=np.float32), [1, 2, 3], artifact)


def test_load_indexes_for_registry(tmp_path):
    artifact = IndexArtifact("content-v1", "emb-1", 4, DistanceSpace.L2)
    builder = FAISSIndexBuilder()
    builder.save(builder.build(np.eye(4, dtype=np.float32), [1, 2, 3, 4], artifact), artifact, tmp_path)
    registry = ArtifactRegistry.load(tmp_path)

    indexes = load_indexes(tmp_path, registry)

    ids, sims = indexes["content-v1"].search(np.array([0, 0, 1, 0], dtype=np.float32), 2, 8)
    assert ids[0] == 3
    assert sims[0] == pytest.approx(0.0)
