"""
Ranking module for recommendation system.

Joins features, scores candidates with a pairwise-trained model and
optionally refines the head of the list with a bounded reranker.
"""
