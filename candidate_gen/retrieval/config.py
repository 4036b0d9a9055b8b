"""
Build-time configuration for FAISS indexes.

Runtime search breadth (nprobe / efSearch) is deliberately NOT here: it is a
per-request search budget (RetrievalConfig.search_budget) so it can be tuned
without rebuilding.
"""

from dataclasses import dataclass


@dataclass
class FAISSConfig:
    """
    Configuration for FAISS index building.

    For small catalogs a Flat index (exact search) is fast enough. For larger
    catalogs use an approximate index:
    - IVF: Inverted file index (approximate, faster)
    - HNSW: Hierarchical navigable small world (approximate, very fast)

    Attributes:
        index_type: "flat", "ivf" or "hnsw"
        nlist: Number of clusters for IVF index (default: 100)
            Higher = more accurate but slower index building
        hnsw_m: Graph degree for HNSW (default: 32)
        ef_construction: HNSW construction parameter (default: 200)
    """

    index_type: str = "flat"

    # IVF parameters
    nlist: int = 100

    # HNSW parameters
    hnsw_m: int = 32
    ef_construction: int = 200
