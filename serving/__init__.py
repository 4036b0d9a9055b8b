"""
Unified recommendation serving module.

This module orchestrates query expansion, candidate generation, ranking and
bounded reranking behind one service and exposes it over HTTP.
"""

from serving.recommendation_service import PipelineResult, RecommendationService

__all__ = ['PipelineResult', 'RecommendationService']
