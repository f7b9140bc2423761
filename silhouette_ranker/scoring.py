"""
Composite silhouette similarity.

score = 0.7 * cosine(EFD_target, EFD_candidate)
      + 0.3 * 1 / (1 + ||unit(hu_target) - unit(hu_candidate)||)

The composite is deliberately left unclamped: the cosine term lives in
[-1, 1], so a strongly dissimilar outline can score slightly below zero.
"""

from __future__ import annotations

import math

import numpy as np

from .descriptors import ShapeDescriptor

EFD_WEIGHT = 0.7
HU_WEIGHT = 0.3


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of the angle between two vectors; 0 if either has zero magnitude."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    sim = float(np.dot(a, b)) / (norm_a * norm_b)
    if not math.isfinite(sim):
        return 0.0
    return max(-1.0, min(1.0, sim))


def unit_vector(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64)
    norm = float(np.linalg.norm(v))
    if norm == 0 or not math.isfinite(norm):
        return np.zeros_like(v)
    return v / norm


def hu_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """1 / (1 + distance) between unit-normalized Hu vectors, in (0, 1]."""
    distance = float(np.linalg.norm(unit_vector(a) - unit_vector(b)))
    return 1.0 / (1.0 + distance)


def similarity_score(target: ShapeDescriptor, candidate: ShapeDescriptor) -> float:
    """Composite score; exactly 0.0 when either side has no shape."""
    if target.empty or candidate.empty:
        return 0.0
    efd_sim = cosine_similarity(target.efd, candidate.efd)
    hu_sim = hu_similarity(target.hu, candidate.hu)
    return EFD_WEIGHT * efd_sim + HU_WEIGHT * hu_sim
