"""
Data types produced by candidate retrieval.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from common.errors import FailureKind


class RetrievalMode(Enum):
    """Whether a candidate set came from the ANN index or the fallback source."""
    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Candidate:
    """
    A retrieved item.

    Attributes:
        item_id: Catalog item identifier
        similarity: Ordering signal only; never a calibrated probability
        source: Strategy or source that produced the candidate
    """

    item_id: int
    similarity: float
    source: str = ""


class CandidateSet:
    """
    Ordered candidates with unique item_ids, bounded to a width.

    Duplicates keep their first occurrence, so whichever source was added
    first (highest priority) decides the surviving similarity value.
    """

    def __init__(self, candidates: Iterable[Candidate] = (), width: Optional[int] = None):
        self.width = width
        self._items: List[Candidate] = []
        self._seen = set()
        self.extend(candidates)

    def add(self, candidate: Candidate) -> bool:
        """Append a candidate. Returns False if it was a duplicate or the set is full."""
        if candidate.item_id in self._seen or self.is_full:
            return False
        self._seen.add(candidate.item_id)
        self._items.append(candidate)
        return True

    def extend(self, candidates: Iterable[Candidate]) -> int:
        added = 0
        for candidate in candidates:
            if self.is_full:
                break
            if self.add(candidate):
                added += 1
        return added

    @property
    def is_full(self) -> bool:
        return self.width is not None and len(self._items) >= self.width

    @property
    def item_ids(self) -> List[int]:
        return [c.item_id for c in self._items]

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, idx):
        return self._items[idx]

    def __contains__(self, item_id: int) -> bool:
        return item_id in self._seen

    def __repr__(self) -> str:
        return f"CandidateSet(n={len(self._items)}, width={self.width})"


@dataclass
class RetrievalResult:
    """
    Output of one Retriever call.

    Attributes:
        candidates: Candidate set (never more than k)
        mode: PRIMARY if served by the index, FALLBACK otherwise
        index_version: Index version that was requested
        failure: Why the fallback was used (None in PRIMARY mode)
        detail: Extra context for logs/diagnostics
        latency_ms: Wall time of the call
    """

    candidates: CandidateSet
    mode: RetrievalMode
    index_version: str
    failure: Optional[FailureKind] = None
    detail: str = ""
    latency_ms: float = 0.0

    @property
    def is_fallback(self) -> bool:
        return self.mode is RetrievalMode.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "index_version": self.index_version,
            "count": len(self.candidates),
            "failure": self.failure.value if self.failure else None,
            "detail": self.detail,
            "latency_ms": self.latency_ms,
        }


SearchHits = Tuple[List[int], List[float]]


@dataclass(frozen=True)
class RetrievalRequest:
    """
    One ANN lookup.

    Attributes:
        embedding: Query vector; its length must equal the artifact dim
        k: Maximum number of candidates
        index_version: Index to search
        embedding_version: Optional embedding model version; checked against
            the artifact when given
        source: Label recorded on returned candidates
    """

    embedding: Any
    k: int
    index_version: str
    embedding_version: Optional[str] = None
    source: str = ""
