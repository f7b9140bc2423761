"""
Silhouette-based background ranking.

Exposes reusable primitives for tracing the dominant contour of a mask,
computing invariant shape descriptors, scoring shape similarity, and ranking
many candidate backgrounds in parallel.
"""

from .errors import DimensionMismatchError, InvalidImageError, RankingError, WorkerExecutionError
from .pipeline import CandidateImage
from .ranking import RankedEntry, rank_candidates, top_k

__all__ = [
    "CandidateImage",
    "DimensionMismatchError",
    "InvalidImageError",
    "RankedEntry",
    "RankingError",
    "WorkerExecutionError",
    "rank_candidates",
    "top_k",
]
