"""
Invariant shape descriptors for a resampled contour.

Two families are computed:
 - Hu moments: seven global invariants of the filled polygon, log-compressed.
 - Elliptic Fourier Descriptors (Kuhl & Giardina): per-harmonic ellipse
   coefficients of the closed outline, normalized for start point and scale.
"""

from __future__ import annotations

from dataclasses import dataclass
import math

import numpy as np

from .backends import ImageBackend

HU_COUNT = 7
DEFAULT_HARMONICS = 10


@dataclass(frozen=True)
class ShapeDescriptor:
    hu: np.ndarray  # (7,)
    efd: np.ndarray  # (4 * harmonics,)
    empty: bool = False

    @classmethod
    def zeros(cls, harmonics: int = DEFAULT_HARMONICS) -> "ShapeDescriptor":
        """Descriptor of an empty contour."""
        return cls(
            hu=np.zeros(HU_COUNT, dtype=np.float64),
            efd=np.zeros(4 * harmonics, dtype=np.float64),
            empty=True,
        )


def log_scale_hu(hu: np.ndarray) -> np.ndarray:
    """out_k = -sign(I_k) * ln|I_k|, with out_k = 0 where I_k == 0."""
    hu = np.asarray(hu, dtype=np.float64)
    out = np.zeros_like(hu)
    nonzero = hu != 0
    out[nonzero] = -np.sign(hu[nonzero]) * np.log(np.abs(hu[nonzero]))
    return out


def hu_moments(contour: np.ndarray, backend: ImageBackend) -> np.ndarray:
    """Log-scaled Hu moments of the contour treated as a filled polygon."""
    pts = np.asarray(contour, dtype=np.float64).reshape(-1, 2)
    if len(pts) < 3:
        return np.zeros(HU_COUNT, dtype=np.float64)
    return log_scale_hu(backend.hu_invariants(pts))


def elliptic_fourier_descriptors(contour: np.ndarray, harmonics: int = DEFAULT_HARMONICS) -> np.ndarray:
    """
    Normalized EFD coefficients as a flat `(A1, B1, C1, D1, A2, ...)` vector.

    The outline is the closed polygon through the contour points, parameterized
    by fractional arc length; each harmonic uses the exact per-segment line
    integrals. Coefficients of harmonic k are phase-rotated by -k * theta, with
    theta = atan2(A1, B1), and divided by L0 = hypot(A1, B1), which removes the
    dependence on start point and size.
    """
    size = 4 * harmonics
    pts = np.asarray(contour, dtype=np.float64).reshape(-1, 2)
    if len(pts) < 2:
        return np.zeros(size, dtype=np.float64)

    deltas = np.diff(np.vstack([pts, pts[:1]]), axis=0)
    lengths = np.hypot(deltas[:, 0], deltas[:, 1])
    moving = lengths > 0
    deltas = deltas[moving]
    lengths = lengths[moving]
    perimeter = lengths.sum()
    if perimeter <= 0:
        return np.zeros(size, dtype=np.float64)

    # Fractional arc length at each segment boundary, t in [0, 1].
    t = np.concatenate([[0.0], np.cumsum(lengths)]) / perimeter
    dt = lengths / perimeter
    dxdt = deltas[:, 0] / dt
    dydt = deltas[:, 1] / dt

    n = np.arange(1, harmonics + 1, dtype=np.float64)[:, None]
    phi = 2.0 * math.pi * n * t[None, :]
    d_cos = np.cos(phi[:, 1:]) - np.cos(phi[:, :-1])
    d_sin = np.sin(phi[:, 1:]) - np.sin(phi[:, :-1])
    const = 1.0 / (2.0 * n[:, 0] ** 2 * math.pi ** 2)

    a = const * (dxdt * d_cos).sum(axis=1)
    b = const * (dxdt * d_sin).sum(axis=1)
    c = const * (dydt * d_cos).sum(axis=1)
    d = const * (dydt * d_sin).sum(axis=1)

    l0 = math.hypot(a[0], b[0])
    if l0 == 0 or not math.isfinite(l0):
        return np.zeros(size, dtype=np.float64)
    theta = math.atan2(a[0], b[0])

    k_theta = n[:, 0] * theta
    cos_k = np.cos(k_theta)
    sin_k = np.sin(k_theta)
    # Rotating by -k * theta cancels the phase a shifted start point adds to
    # harmonic k, and maps harmonic 1 onto (A1', B1') = (0, 1).
    a_n = (a * cos_k - b * sin_k) / l0
    b_n = (a * sin_k + b * cos_k) / l0
    c_n = (c * cos_k - d * sin_k) / l0
    d_n = (c * sin_k + d * cos_k) / l0
    return np.column_stack([a_n, b_n, c_n, d_n]).ravel()


def describe_contour(
    contour: np.ndarray,
    backend: ImageBackend,
    harmonics: int = DEFAULT_HARMONICS,
) -> ShapeDescriptor:
    """Both descriptor families for one contour; all zeros for an empty one."""
    pts = np.asarray(contour, dtype=np.float64).reshape(-1, 2)
    if len(pts) == 0:
        return ShapeDescriptor.zeros(harmonics)
    return ShapeDescriptor(
        hu=hu_moments(pts, backend),
        efd=elliptic_fourier_descriptors(pts, harmonics),
        empty=False,
    )
