"""
Popularity store: the last-resort candidate source and tie-break signal.

    top_n(n)          -> item_ids, most popular first
    scores(item_ids)  -> popularity per item (0.0 for unknown items)

The store is static and in-memory, so it cannot fail for network reasons.
Ordering is deterministic: popularity descending, then item_id ascending.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import pandas as pd

logger = logging.getLogger(__name__)


class PopularityStore(ABC):
    """Interface for popularity/fallback sources."""

    @abstractmethod
    def top_n(self, n: int) -> List[int]:
        """Return the n most popular item ids, most popular first."""
        pass

    @abstractmethod
    def scores(self, item_ids: Iterable[int]) -> Dict[int, float]:
        """Return popularity for each requested item (0.0 if unknown)."""
        pass

    def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "message": "ok"}


class StaticPopularityStore(PopularityStore):
    """
    In-memory popularity table loaded once at startup.

    Example:
        >>> store = StaticPopularityStore({10: 5.0, 20: 9.0, 30: 9.0})
        >>> store.top_n(2)
        [20, 30]
    """

    def __init__(self, popularity: Mapping[int, float]):
        self._popularity: Dict[int, float] = {int(k): float(v) for k, v in popularity.items()}
        self._ranked: List[int] = sorted(
            self._popularity, key=lambda item_id: (-self._popularity[item_id], item_id)
        )
        logger.info(f"StaticPopularityStore initialized with {len(self._ranked):,} items")

    def top_n(self, n: int) -> List[int]:
        if n <= 0:
            return []
        return self._ranked[:n]

    def scores(self, item_ids: Iterable[int]) -> Dict[int, float]:
        return {item_id: self._popularity.get(item_id, 0.0) for item_id in item_ids}

    def __len__(self) -> int:
        return len(self._ranked)

    def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": len(self._ranked) > 0,
            "message": f"{len(self._ranked)} items",
            "type": "static",
        }

    @classmethod
    def from_parquet(cls, path: Path) -> "StaticPopularityStore":
        """
        Load from a parquet file with columns item_id, popularity.
        """
        df = pd.read_parquet(path, columns=["item_id", "popularity"])
        return cls(dict(zip(df["item_id"].astype(int), df["popularity"].astype(float))))
