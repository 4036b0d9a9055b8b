"""
Candidate Generation module for recommendation system.

This module turns a query/user context into a merged candidate set:
- ArtifactRegistry: Immutable, versioned index metadata
- QueryExpander: Anchor query plus cached generative rewrites
- CandidateRetriever: FAISS ANN search with popularity fallback
- MultiStrategyMerger: Behavioral/content/heuristic fan-out and merge

Usage:
    # 1. Build and publish an index version
    python -m candidate_gen.retrieval.build_index \\
        --embeddings item_embeddings.npy --item-ids item_ids.npy \\
        --index-version content-v1 --embedding-version text-emb-3

    # 2. Retrieve candidates
    from candidate_gen.retrieval import CandidateRetriever
    result = retriever.retrieve(query_vec, k=100, index_version="content-v1")
"""

__version__ = "1.0.0"
