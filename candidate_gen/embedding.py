"""
Embedding collaborators for candidate generation.

Two sources feed the ANN strategies:
- EmbeddingService: embeds query text online (content strategy)
- UserEmbeddingTable: precomputed user-tower embeddings (behavioral strategy)

Embeddings are never recomputed or reshaped here. Compatibility with an index
is checked by the retriever against the IndexArtifact.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import requests

from common.errors import UpstreamError, UpstreamTimeout, VersionMismatch

logger = logging.getLogger(__name__)


class EmbeddingService(ABC):
    """Interface for text embedding backends."""

    #: Version of the embedding model, matched against IndexArtifact.embedding_version
    embedding_version: Optional[str] = None

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """
        Embed one text.

        Returns:
            1-D float32 vector

        Raises:
            UpstreamTimeout: If the backend exceeded its timeout
            UpstreamError: For any other backend failure
        """
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "message": "ok"}


class HTTPEmbeddingService(EmbeddingService):
    """
    Embedding service over an HTTP endpoint.

    Expects ``POST {endpoint}/embed`` with ``{"text": ...}`` returning
    ``{"embedding": [...], "embedding_version": "..."}``.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_ms: float = 100.0,
        embedding_version: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.timeout_s = timeout_ms / 1000.0
        self.embedding_version = embedding_version
        self.session = session or requests.Session()
        logger.info(f"HTTPEmbeddingService initialized: {self.endpoint}")

    def embed(self, text: str) -> np.ndarray:
        try:
            response = self.session.post(
                f"{self.endpoint}/embed",
                json={"text": text},
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.Timeout as e:
            raise UpstreamTimeout(f"Embedding service timed out: {e}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise UpstreamError(f"Embedding service call failed: {e}") from e

        served_version = body.get("embedding_version")
        if self.embedding_version and served_version and served_version != self.embedding_version:
            raise VersionMismatch(
                f"Embedding service returned version {served_version}, "
                f"expected {self.embedding_version}"
            )
        try:
            return np.asarray(body["embedding"], dtype=np.float32)
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Unexpected embedding response shape: {e}") from e

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "message": f"HTTP endpoint {self.endpoint}"}


class UserEmbeddingTable:
    """
    Precomputed user embeddings keyed by user id.

    Example:
        table = UserEmbeddingTable.from_npz("candidate_gen/artifacts/user_embeddings.npz")
        vec = table.get(123)  # None for unknown users
    """

    def __init__(
        self,
        user_ids: np.ndarray,
        embeddings: np.ndarray,
        embedding_version: Optional[str] = None,
    ):
        if len(user_ids) != len(embeddings):
            raise ValueError(
                f"user_ids ({len(user_ids)}) and embeddings ({len(embeddings)}) differ in length"
            )
        self.embeddings = np.asarray(embeddings, dtype=np.float32)
        self.embedding_version = embedding_version
        self._row_by_user = {int(uid): row for row, uid in enumerate(user_ids)}

    def get(self, user_id: int) -> Optional[np.ndarray]:
        row = self._row_by_user.get(int(user_id))
        if row is None:
            return None
        return self.embeddings[row]

    def __len__(self) -> int:
        return len(self._row_by_user)

    @classmethod
    def from_npz(cls, path: Path) -> "UserEmbeddingTable":
        """
        Load from an .npz archive with arrays ``user_ids`` and ``embeddings``
        and an optional scalar ``embedding_version``.
        """
        with np.load(path, allow_pickle=False) as data:
            version = str(data["embedding_version"]) if "embedding_version" in data else None
            table = cls(data["user_ids"], data["embeddings"], embedding_version=version)
        logger.info(f"Loaded {len(table):,} user embeddings from {path}")
        return table
