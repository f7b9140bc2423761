"""
Image-processing backends.

The ranking math only ever talks to an `ImageBackend`, so the native OpenCV
implementation can be swapped for the pure-numpy stand-in (tests, minimal
containers) without touching descriptor or score code.

Contours are returned as `(M, 2)` arrays of `(x, y)` pixel coordinates and
moments use OpenCV's key names (`m00`, `m10`, ... `m03`).
"""

from __future__ import annotations

import abc
from collections import deque
import math
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

MOMENT_KEYS = ("m00", "m10", "m01", "m20", "m11", "m02", "m30", "m21", "m12", "m03")

# 8-neighbourhood as (dx, dy), clockwise on screen starting from west.
_NEIGHBOURS = ((-1, 0), (-1, -1), (0, -1), (1, -1), (1, 0), (1, 1), (0, 1), (-1, 1))
_NEIGHBOUR_INDEX = {offset: i for i, offset in enumerate(_NEIGHBOURS)}


class ImageBackend(abc.ABC):
    """Primitives the preprocessing adapter and contour extractor rely on."""

    name = "abstract"

    @abc.abstractmethod
    def to_grayscale(self, image: np.ndarray) -> np.ndarray:
        """RGB/RGBA/gray uint8 image -> single-channel uint8 image."""

    @abc.abstractmethod
    def resize(self, image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
        """Resize a single-channel image to `size` given as (width, height)."""

    @abc.abstractmethod
    def pad(self, image: np.ndarray, margin: int, value: Optional[int] = None) -> np.ndarray:
        """
        Grow a single-channel image by `margin` pixels on every side.

        The border is filled with `value`, or replicates the outermost pixels
        when `value` is None.
        """

    @abc.abstractmethod
    def gaussian_blur(self, image: np.ndarray, ksize: int) -> np.ndarray:
        ...

    @abc.abstractmethod
    def detect_edges(self, image: np.ndarray, low: float, high: float) -> np.ndarray:
        """Binary (0/255) edge map with hysteresis thresholds `low`/`high`."""

    @abc.abstractmethod
    def find_contours(self, edge_map: np.ndarray) -> List[np.ndarray]:
        """Outer boundaries of the foreground regions, every boundary pixel kept."""

    @abc.abstractmethod
    def moments(self, points: np.ndarray) -> Dict[str, float]:
        """Raw moments up to third order of `points` treated as a filled polygon."""

    @abc.abstractmethod
    def hu_invariants(self, points: np.ndarray) -> np.ndarray:
        """The seven Hu invariants of the filled polygon; zeros when it has no area."""


def centre_points(points: np.ndarray, moments: Dict[str, float]) -> np.ndarray:
    """
    Shift `points` so the polygon centroid, rounded to a half pixel, sits at
    the origin.

    Half-pixel offsets keep pixel coordinates exact, so symmetric outlines
    cancel exactly in the odd-order moments and integer translations of one
    outline give bit-identical results.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    m00 = moments["m00"]
    if m00 == 0:
        return pts
    centroid = np.array([moments["m10"] / m00, moments["m01"] / m00])
    return pts - np.round(centroid * 2.0) / 2.0


class OpenCVBackend(ImageBackend):
    name = "opencv"

    def to_grayscale(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return image
        if image.shape[2] == 1:
            return image[..., 0]
        if image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)

    def resize(self, image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
        return cv2.resize(image, size, interpolation=cv2.INTER_AREA)

    def pad(self, image: np.ndarray, margin: int, value: Optional[int] = None) -> np.ndarray:
        if margin <= 0:
            return image
        if value is None:
            return cv2.copyMakeBorder(image, margin, margin, margin, margin, cv2.BORDER_REPLICATE)
        return cv2.copyMakeBorder(
            image, margin, margin, margin, margin, cv2.BORDER_CONSTANT, value=value
        )

    def gaussian_blur(self, image: np.ndarray, ksize: int) -> np.ndarray:
        if ksize <= 1:
            return image
        return cv2.GaussianBlur(image, (ksize, ksize), 0)

    def detect_edges(self, image: np.ndarray, low: float, high: float) -> np.ndarray:
        return cv2.Canny(image, low, high)

    def find_contours(self, edge_map: np.ndarray) -> List[np.ndarray]:
        contours, _ = cv2.findContours(
            edge_map, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE
        )
        return [c.reshape(-1, 2) for c in contours]

    def moments(self, points: np.ndarray) -> Dict[str, float]:
        m = cv2.moments(np.asarray(points, dtype=np.float32).reshape(-1, 1, 2))
        return {key: float(m[key]) for key in MOMENT_KEYS}

    def hu_invariants(self, points: np.ndarray) -> np.ndarray:
        centred = centre_points(points, self.moments(points))
        m = cv2.moments(centred.astype(np.float32).reshape(-1, 1, 2))
        if m["m00"] == 0:
            return np.zeros(7, dtype=np.float64)
        return cv2.HuMoments(m).ravel().astype(np.float64)


class NumpyBackend(ImageBackend):
    """
    Lightweight stand-in with no native image library behind it.

    Accuracy is below OpenCV's (nearest-neighbour resize, gradient-magnitude
    edges instead of non-maximum suppression) but every primitive is
    deterministic and fast enough for test-sized images. Unlike
    `RETR_EXTERNAL`, components nested inside another component's hole are
    reported too; the contour extractor only keeps the largest one anyway.
    """

    name = "numpy"

    def to_grayscale(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return image
        if image.shape[2] == 1:
            return image[..., 0]
        rgb = image[..., :3].astype(np.float64)
        gray = rgb @ np.array([0.299, 0.587, 0.114])
        return np.clip(np.rint(gray), 0, 255).astype(np.uint8)

    def resize(self, image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
        new_w, new_h = size
        h, w = image.shape[:2]
        rows = np.minimum((np.arange(new_h) * h) // new_h, h - 1)
        cols = np.minimum((np.arange(new_w) * w) // new_w, w - 1)
        return image[rows][:, cols]

    def pad(self, image: np.ndarray, margin: int, value: Optional[int] = None) -> np.ndarray:
        if margin <= 0:
            return image
        if value is None:
            return np.pad(image, margin, mode="edge")
        return np.pad(image, margin, mode="constant", constant_values=value)

    def gaussian_blur(self, image: np.ndarray, ksize: int) -> np.ndarray:
        if ksize <= 1:
            return image
        # Binomial weights approximate a Gaussian of the same support.
        kernel = np.array([math.comb(ksize - 1, i) for i in range(ksize)], dtype=np.float64)
        kernel /= kernel.sum()
        pad = ksize // 2
        out = image.astype(np.float64)
        for axis in (0, 1):
            pad_width = [(pad, pad) if a == axis else (0, 0) for a in range(2)]
            padded = np.pad(out, pad_width, mode="edge")
            acc = np.zeros_like(out)
            length = out.shape[axis]
            for i, weight in enumerate(kernel):
                acc += weight * np.take(padded, np.arange(i, i + length), axis=axis)
            out = acc
        return np.clip(np.rint(out), 0, 255).astype(np.uint8)

    def detect_edges(self, image: np.ndarray, low: float, high: float) -> np.ndarray:
        gy, gx = np.gradient(image.astype(np.float64))
        # Central differences scaled to the magnitude range of a 3x3 Sobel.
        magnitude = 8.0 * np.hypot(gx, gy)
        weak = magnitude >= low
        strong = magnitude >= high
        labels, _ = _label_components(weak)
        keep = np.unique(labels[strong & weak])
        keep = keep[keep > 0]
        edges = np.isin(labels, keep)
        return edges.astype(np.uint8) * 255

    def find_contours(self, edge_map: np.ndarray) -> List[np.ndarray]:
        foreground = edge_map > 0
        _, starts = _label_components(foreground)
        return [_trace_boundary(foreground, start) for start in starts]

    def moments(self, points: np.ndarray) -> Dict[str, float]:
        return polygon_moments(points)

    def hu_invariants(self, points: np.ndarray) -> np.ndarray:
        centred = centre_points(points, polygon_moments(points))
        return hu_from_moments(polygon_moments(centred))


def hu_from_moments(m: Dict[str, float]) -> np.ndarray:
    """Seven Hu invariants from raw moments; zeros for a zero-area shape."""
    m00 = m["m00"]
    if m00 == 0:
        return np.zeros(7, dtype=np.float64)
    cx = m["m10"] / m00
    cy = m["m01"] / m00

    mu20 = m["m20"] - cx * m["m10"]
    mu11 = m["m11"] - cx * m["m01"]
    mu02 = m["m02"] - cy * m["m01"]
    mu30 = m["m30"] - cx * (3 * mu20 + cx * m["m10"])
    mu21 = m["m21"] - cx * (2 * mu11 + cx * m["m01"]) - cy * mu20
    mu12 = m["m12"] - cy * (2 * mu11 + cy * m["m10"]) - cx * mu02
    mu03 = m["m03"] - cy * (3 * mu02 + cy * m["m01"])

    inv2 = 1.0 / (abs(m00) ** 2)
    inv3 = 1.0 / (abs(m00) ** 2.5)
    n20, n11, n02 = mu20 * inv2, mu11 * inv2, mu02 * inv2
    n30, n21, n12, n03 = mu30 * inv3, mu21 * inv3, mu12 * inv3, mu03 * inv3

    t0 = n30 + n12
    t1 = n21 + n03
    q0 = t0 * t0
    q1 = t1 * t1

    h1 = n20 + n02
    h2 = (n20 - n02) ** 2 + 4 * n11 * n11
    h3 = (n30 - 3 * n12) ** 2 + (3 * n21 - n03) ** 2
    h4 = q0 + q1
    h5 = (n30 - 3 * n12) * t0 * (q0 - 3 * q1) + (3 * n21 - n03) * t1 * (3 * q0 - q1)
    h6 = (n20 - n02) * (q0 - q1) + 4 * n11 * t0 * t1
    h7 = (3 * n21 - n03) * t0 * (q0 - 3 * q1) - (n30 - 3 * n12) * t1 * (3 * q0 - q1)
    return np.array([h1, h2, h3, h4, h5, h6, h7], dtype=np.float64)


def polygon_moments(points: np.ndarray) -> Dict[str, float]:
    """
    Green's-theorem moments of a closed polygon (same convention as cv2.moments).

    Orientation does not matter: a clockwise polygon yields the same, positive
    area as its counter-clockwise twin. Degenerate (zero-area) polygons give
    all-zero moments.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    zero = {key: 0.0 for key in MOMENT_KEYS}
    if len(pts) < 3:
        return zero

    xi, yi = pts[:, 0], pts[:, 1]
    xp, yp = np.roll(xi, 1), np.roll(yi, 1)
    cross = xp * yi - xi * yp
    xs = xp + xi
    ys = yp + yi

    a00 = cross.sum()
    if abs(a00) <= np.finfo(np.float32).eps:
        return zero
    sign = 1.0 if a00 > 0 else -1.0

    a10 = (cross * xs).sum()
    a01 = (cross * ys).sum()
    a20 = (cross * (xp * xs + xi * xi)).sum()
    a11 = (cross * (xp * (ys + yp) + xi * (ys + yi))).sum()
    a02 = (cross * (yp * ys + yi * yi)).sum()
    a30 = (cross * xs * (xp * xp + xi * xi)).sum()
    a03 = (cross * ys * (yp * yp + yi * yi)).sum()
    a21 = (cross * (xp * xp * (3 * yp + yi) + 2 * xi * xp * ys + xi * xi * (yp + 3 * yi))).sum()
    a12 = (cross * (yp * yp * (3 * xp + xi) + 2 * yi * yp * xs + yi * yi * (xp + 3 * xi))).sum()

    return {
        "m00": sign * a00 / 2.0,
        "m10": sign * a10 / 6.0,
        "m01": sign * a01 / 6.0,
        "m20": sign * a20 / 12.0,
        "m11": sign * a11 / 24.0,
        "m02": sign * a02 / 12.0,
        "m30": sign * a30 / 20.0,
        "m21": sign * a21 / 60.0,
        "m12": sign * a12 / 60.0,
        "m03": sign * a03 / 20.0,
    }


def _label_components(mask: np.ndarray) -> Tuple[np.ndarray, List[Tuple[int, int]]]:
    """
    8-connected component labelling.

    Returns the label image (0 = background) and, per label, the `(x, y)` of
    its first pixel in top-to-bottom, left-to-right scan order.
    """
    h, w = mask.shape
    labels = np.zeros((h, w), dtype=np.int32)
    starts: List[Tuple[int, int]] = []
    for y, x in np.argwhere(mask):
        if labels[y, x]:
            continue
        label = len(starts) + 1
        starts.append((int(x), int(y)))
        labels[y, x] = label
        queue = deque([(int(x), int(y))])
        while queue:
            cx, cy = queue.popleft()
            for dx, dy in _NEIGHBOURS:
                nx, ny = cx + dx, cy + dy
                if 0 <= nx < w and 0 <= ny < h and mask[ny, nx] and not labels[ny, nx]:
                    labels[ny, nx] = label
                    queue.append((nx, ny))
    return labels, starts


def _trace_boundary(mask: np.ndarray, start: Tuple[int, int]) -> np.ndarray:
    """Moore-neighbour tracing (clockwise) with Jacob's stopping criterion."""
    h, w = mask.shape
    contour = [start]
    current = start
    # The scan-order first pixel of a component always has background to its west.
    backtrack = 0
    second = None
    for _ in range(4 * mask.size + 8):
        found = None
        for k in range(1, 8):
            direction = (backtrack + k) % 8
            dx, dy = _NEIGHBOURS[direction]
            x, y = current[0] + dx, current[1] + dy
            if 0 <= x < w and 0 <= y < h and mask[y, x]:
                found = (x, y)
                break
        if found is None:
            break
        if second is None:
            second = found
        elif current == start and found == second:
            break
        pdx, pdy = _NEIGHBOURS[(direction - 1) % 8]
        previous = (current[0] + pdx, current[1] + pdy)
        backtrack = _NEIGHBOUR_INDEX[(previous[0] - found[0], previous[1] - found[1])]
        contour.append(found)
        current = found
    if len(contour) > 1 and contour[-1] == start:
        contour.pop()
    return np.array(contour, dtype=np.int32).reshape(-1, 2)


BACKENDS = {
    OpenCVBackend.name: OpenCVBackend,
    NumpyBackend.name: NumpyBackend,
}


def get_backend(name: str) -> ImageBackend:
    """Build a fresh backend instance; backends hold no state worth sharing."""
    try:
        return BACKENDS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unknown image backend: {name}") from None
