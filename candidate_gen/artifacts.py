"""
Versioned index artifacts and the registry that resolves them.

An IndexArtifact is published once by the offline index build and never
mutated; a new build is a new version. The serving pipeline resolves the
artifact for a version string once per request and passes the immutable value
down explicitly, so there is no process-wide "current index" state.
"""

import json
import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from common.errors import ConfigurationError, UnknownIndexVersion

logger = logging.getLogger(__name__)

METADATA_FILENAME = "index_metadata.json"


class DistanceSpace(Enum):
    """Distance space an index was built in."""
    COSINE = "cosine"
    L2 = "l2"


@dataclass(frozen=True)
class IndexArtifact:
    """
    Immutable metadata for one published ANN index.

    Attributes:
        index_version: Unique version id of the index build
        embedding_version: Version of the embedding model the index was built from
        dim: Embedding dimensionality
        space: Distance space ("cosine" or "l2")
    """

    index_version: str
    embedding_version: str
    dim: int
    space: DistanceSpace

    def __post_init__(self):
        if self.dim <= 0:
            raise ConfigurationError(f"Index {self.index_version}: dim must be positive")
        if not isinstance(self.space, DistanceSpace):
            object.__setattr__(self, "space", DistanceSpace(self.space))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["space"] = self.space.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexArtifact":
        return cls(
            index_version=str(data["index_version"]),
            embedding_version=str(data["embedding_version"]),
            dim=int(data["dim"]),
            space=DistanceSpace(data["space"]),
        )


class ArtifactRegistry:
    """
    Resolves index version ids to their immutable IndexArtifact.

    Publishing is append-only: re-publishing a version with identical metadata
    is a no-op, re-publishing it with different metadata is rejected.

    Example:
        registry = ArtifactRegistry.load("candidate_gen/artifacts/index")
        artifact = registry.resolve("content-v3")
        print(artifact.dim, artifact.space)
    """

    def __init__(self):
        self._artifacts: Dict[str, IndexArtifact] = {}
        self._lock = threading.RLock()

    def publish(self, artifact: IndexArtifact) -> IndexArtifact:
        """
        Register an artifact.

        Raises:
            ConfigurationError: If the version exists with different metadata
        """
        with self._lock:
            existing = self._artifacts.get(artifact.index_version)
            if existing is not None:
                if existing != artifact:
                    raise ConfigurationError(
                        f"Index version {artifact.index_version} is already published "
                        f"with different metadata; publish a new version instead"
                    )
                return existing
            self._artifacts[artifact.index_version] = artifact
        logger.info(
            f"Published index artifact {artifact.index_version} "
            f"(embedding={artifact.embedding_version}, dim={artifact.dim}, "
            f"space={artifact.space.value})"
        )
        return artifact

    def resolve(self, index_version: str) -> IndexArtifact:
        """
        Resolve a version id to its artifact.

        Raises:
            UnknownIndexVersion: If the version was never published
        """
        with self._lock:
            artifact = self._artifacts.get(index_version)
        if artifact is None:
            raise UnknownIndexVersion(
                f"Unknown index version '{index_version}'. "
                f"Published versions: {self.versions()}"
            )
        return artifact

    def versions(self) -> List[str]:
        with self._lock:
            return sorted(self._artifacts)

    def __contains__(self, index_version: str) -> bool:
        with self._lock:
            return index_version in self._artifacts

    @classmethod
    def load(cls, index_root: Path) -> "ArtifactRegistry":
        """
        Load every published artifact under ``index_root``.

        Expected directory structure:
            index_root/
            ├── content-v1/
            │   ├── index.faiss
            │   └── index_metadata.json
            └── behavioral-v1/
                ├── index.faiss
                └── index_metadata.json
        """
        registry = cls()
        index_root = Path(index_root)
        for metadata_path in sorted(index_root.glob(f"*/{METADATA_FILENAME}")):
            with open(metadata_path) as f:
                registry.publish(IndexArtifact.from_dict(json.load(f)))
        logger.info(f"Loaded {len(registry.versions())} index artifacts from {index_root}")
        return registry
