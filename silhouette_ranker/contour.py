"""Dominant-contour extraction and fixed-length resampling."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .backends import ImageBackend

logger = logging.getLogger(__name__)

CONTOUR_POINTS = 128
MIN_RAW_POINTS = 4


def empty_contour() -> np.ndarray:
    """The "no shape found" contour."""
    return np.zeros((0, 2), dtype=np.float64)


def _scan_key(points: np.ndarray) -> Tuple[int, int]:
    """Position of the contour's first pixel in top-to-bottom, left-to-right order."""
    ys = points[:, 1]
    top = ys.min()
    return int(top), int(points[ys == top, 0].min())


def select_largest_contour(
    contours: Sequence[np.ndarray], backend: ImageBackend
) -> Optional[np.ndarray]:
    """
    Pick the contour enclosing the largest area.

    Equal areas are resolved in favour of the contour met first in scan
    order, independent of the order the backend reported them in.
    """
    best = None
    best_key = None
    for contour in contours:
        points = np.asarray(contour).reshape(-1, 2)
        if len(points) == 0:
            continue
        area = abs(backend.moments(points)["m00"])
        scan = _scan_key(points)
        key = (-area, scan)
        if best_key is None or key < best_key:
            best, best_key = points, key
    return best


def resample_contour(points: np.ndarray, n_points: int = CONTOUR_POINTS) -> np.ndarray:
    """
    Index-proportional resampling to exactly `n_points` points.

    Point i is taken from raw index floor(i * M / n) mod M. This is not
    arc-length uniform: long straight runs get fewer samples than busy
    corners.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    m = len(pts)
    if m < MIN_RAW_POINTS:
        return empty_contour()
    indices = (np.arange(n_points) * m // n_points) % m
    return pts[indices].copy()


def extract_contour(
    edge_map: np.ndarray,
    backend: ImageBackend,
    n_points: int = CONTOUR_POINTS,
    margin: int = 0,
) -> np.ndarray:
    """
    Trace the dominant shape of an edge/binary image.

    `margin` is the padding the edge map carries on every side; it is
    subtracted so points are in the unpadded frame's coordinates.

    Returns an `(n_points, 2)` float array, or an empty `(0, 2)` array when no
    usable contour exists. Never raises for blank or degenerate input.
    """
    if edge_map is None or edge_map.size == 0 or not np.any(edge_map):
        return empty_contour()

    contours: List[np.ndarray] = backend.find_contours(edge_map)
    largest = select_largest_contour(contours, backend)
    if largest is None:
        return empty_contour()

    logger.debug(
        "contour: %d candidates, largest has %d raw points", len(contours), len(largest)
    )
    resampled = resample_contour(largest, n_points)
    if margin and len(resampled):
        resampled -= margin
    return resampled
