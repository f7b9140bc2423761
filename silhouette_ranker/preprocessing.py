"""
Preprocessing adapter: raw pixel/mask buffers -> edge maps.

This is the boundary where caller-supplied buffers are validated. Anything
past it only sees well-formed single-channel uint8 images, and the actual
image operations are delegated to an `ImageBackend`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

import numpy as np

from .backends import ImageBackend
from .config import ScoringParams
from .errors import DimensionMismatchError, InvalidImageError

logger = logging.getLogger(__name__)

SUPPORTED_CHANNELS = {1, 3, 4}


def as_image_array(buffer: Any, label: str = "image") -> np.ndarray:
    """
    Coerce a pixel buffer into a uint8 `(H, W)` or `(H, W, C)` array.

    Boolean buffers map to 0/255 and float buffers in [0, 1] are scaled to
    0..255; other float ranges are clipped.
    """
    if buffer is None:
        raise InvalidImageError(f"{label} is missing")
    try:
        arr = np.asarray(buffer)
    except (TypeError, ValueError) as exc:
        raise InvalidImageError(f"{label} is not an array-like pixel buffer") from exc

    if arr.dtype == object or not (
        arr.dtype == np.bool_ or np.issubdtype(arr.dtype, np.number)
    ):
        raise InvalidImageError(f"{label} has unsupported dtype {arr.dtype}")
    if arr.ndim not in (2, 3) or arr.size == 0:
        raise InvalidImageError(f"{label} must be a non-empty HxW or HxWxC array, got shape {arr.shape}")
    if arr.ndim == 3 and arr.shape[2] not in SUPPORTED_CHANNELS:
        raise InvalidImageError(f"{label} has unsupported channel count {arr.shape[2]}")

    if arr.dtype == np.bool_:
        return arr.astype(np.uint8) * 255
    if np.issubdtype(arr.dtype, np.floating):
        if not np.all(np.isfinite(arr)):
            raise InvalidImageError(f"{label} contains non-finite values")
        if arr.max(initial=0.0) <= 1.0:
            arr = arr * 255.0
        return np.clip(np.rint(arr), 0, 255).astype(np.uint8)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return arr


def image_size(arr: np.ndarray) -> Tuple[int, int]:
    """(width, height) of an image array."""
    return int(arr.shape[1]), int(arr.shape[0])


def validate_size(arr: np.ndarray, expected: Tuple[int, int], label: str, expected_label: str) -> None:
    """Fail fast when a buffer does not match the (width, height) of the frame it belongs to."""
    width, height = image_size(arr)
    if (width, height) != tuple(expected):
        raise DimensionMismatchError(
            f"{expected_label} is {expected[0]}x{expected[1]} but {label} is {width}x{height}"
        )


def validate_dimensions(first: np.ndarray, second: np.ndarray, first_label: str, second_label: str) -> None:
    validate_size(second, image_size(first), second_label, first_label)


def mask_to_binary(mask: Any, threshold: int = 128) -> np.ndarray:
    """
    Reduce a mask to a 0/255 single-channel image.

    RGBA masks use their alpha channel, RGB masks count any lit channel,
    single-channel masks use their value. Pixels at or above `threshold`
    are foreground.
    """
    arr = as_image_array(mask, label="mask")
    if arr.ndim == 3:
        if arr.shape[2] == 4:
            arr = arr[..., 3]
        elif arr.shape[2] == 1:
            arr = arr[..., 0]
        else:
            arr = arr.max(axis=2)
    return np.where(arr >= threshold, 255, 0).astype(np.uint8)


def compute_resize_dims(width: int, height: int, max_long_edge: int) -> Tuple[int, int]:
    """Preserve aspect ratio while constraining the longest edge."""
    if max_long_edge <= 0:
        return width, height
    long_edge = max(width, height)
    if long_edge <= max_long_edge:
        return width, height
    scale = max_long_edge / long_edge
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def edge_margin(params: ScoringParams) -> int:
    """
    Background margin added around every image before blurring.

    It must cover the blur spread plus the edge operator's own support, so a
    shape touching the frame still gets a closed outline. Edge maps come back
    that much larger on every side, and contour points are shifted back by it.
    """
    return params.blur_kernel_size // 2 + 3


def edge_map_from_gray(
    gray: np.ndarray,
    params: ScoringParams,
    backend: ImageBackend,
    fill: Optional[int] = None,
) -> np.ndarray:
    """
    Downscale, pad, blur and edge-detect a single-channel uint8 image.

    `fill` is the pad value; None replicates the outermost pixels, which adds
    no edges of its own when the background is unknown.
    """
    width, height = image_size(gray)
    new_w, new_h = compute_resize_dims(width, height, params.max_long_edge)
    if (new_w, new_h) != (width, height):
        gray = backend.resize(gray, (new_w, new_h))
    gray = np.ascontiguousarray(gray, dtype=np.uint8)
    padded = backend.pad(gray, edge_margin(params), fill)
    blurred = backend.gaussian_blur(padded, params.blur_kernel_size)
    edges = backend.detect_edges(
        blurred, params.canny_low_threshold, params.canny_high_threshold
    )
    logger.debug(
        "edge map %dx%d -> %dx%d, %d edge pixels",
        width,
        height,
        new_w,
        new_h,
        int(np.count_nonzero(edges)),
    )
    return edges


def edge_map_from_mask(mask: Any, params: ScoringParams, backend: ImageBackend) -> np.ndarray:
    # Outside the frame is background by definition for a mask.
    binary = mask_to_binary(mask, threshold=params.mask_threshold)
    return edge_map_from_gray(binary, params, backend, fill=0)


def edge_map_from_image(
    image: Any,
    params: ScoringParams,
    backend: ImageBackend,
    mask: Optional[Any] = None,
) -> np.ndarray:
    """
    Edge map for a candidate image.

    When the candidate carries its own mask, the silhouette is taken from the
    mask rather than the pixels.
    """
    arr = as_image_array(image)
    if mask is not None:
        mask_arr = as_image_array(mask, label="mask")
        validate_dimensions(arr, mask_arr, "image", "mask")
        return edge_map_from_mask(mask_arr, params, backend)
    gray = backend.to_grayscale(np.ascontiguousarray(arr))
    return edge_map_from_gray(gray, params, backend)
