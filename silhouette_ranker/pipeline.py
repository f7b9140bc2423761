"""
Per-candidate scoring pipeline.

`score_candidate` is the unit of work every ranking worker runs:
pixels -> edge map -> dominant contour -> descriptors -> composite score.
The target side runs once per request through `describe_target`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Optional

from .backends import get_backend
from .config import ScoringParams
from .contour import extract_contour
from .descriptors import ShapeDescriptor, describe_contour
from .preprocessing import (
    as_image_array,
    edge_map_from_image,
    edge_map_from_mask,
    edge_margin,
    image_size,
    validate_dimensions,
    validate_size,
)
from .scoring import similarity_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateImage:
    pixels: Any
    mask: Optional[Any] = None


@dataclass(frozen=True)
class TargetProfile:
    descriptor: ShapeDescriptor
    width: int
    height: int


# (target, candidate, params) -> score. Must be a module-level callable so it
# can be shipped to process workers.
ScoreFunction = Callable[[TargetProfile, CandidateImage, ScoringParams], float]


def describe_target(image: Any, mask: Any, params: ScoringParams) -> TargetProfile:
    """
    Validate the target image/mask pair and derive its descriptor.

    Raises:
        InvalidImageError: when either buffer is malformed.
        DimensionMismatchError: when image and mask sizes differ.
    """
    image_arr = as_image_array(image, label="target image")
    mask_arr = as_image_array(mask, label="target mask")
    validate_dimensions(image_arr, mask_arr, "target image", "target mask")

    backend = get_backend(params.backend)
    edges = edge_map_from_mask(mask_arr, params, backend)
    contour = extract_contour(edges, backend, margin=edge_margin(params))
    if len(contour) == 0:
        logger.warning("target mask has no traceable shape; every candidate will score 0")
    width, height = image_size(image_arr)
    return TargetProfile(
        descriptor=describe_contour(contour, backend, params.num_harmonics),
        width=width,
        height=height,
    )


def describe_candidate(candidate: CandidateImage, params: ScoringParams) -> ShapeDescriptor:
    backend = get_backend(params.backend)
    edges = edge_map_from_image(candidate.pixels, params, backend, mask=candidate.mask)
    contour = extract_contour(edges, backend, margin=edge_margin(params))
    return describe_contour(contour, backend, params.num_harmonics)


def score_candidate(target: TargetProfile, candidate: CandidateImage, params: ScoringParams) -> float:
    """
    Score one candidate against a described target.

    Raises:
        InvalidImageError: when the candidate buffer is malformed.
        DimensionMismatchError: when the candidate does not match the target
            frame, or its own mask.
    """
    pixels = as_image_array(candidate.pixels, label="candidate image")
    validate_size(pixels, (target.width, target.height), "candidate image", "target image")
    if target.descriptor.empty:
        return 0.0
    descriptor = describe_candidate(CandidateImage(pixels, candidate.mask), params)
    return similarity_score(target.descriptor, descriptor)
