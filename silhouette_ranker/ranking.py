"""
Parallel ranking of candidate backgrounds.

Candidates are split into contiguous chunks of ceil(C / W) items, one chunk
per worker. Each worker gets its slice plus the original indices, runs the
full pipeline sequentially and returns `(index, score)` pairs; nothing is
shared between workers. All chunks are awaited before results are merged,
and any failure fails the whole request: a ranking missing candidates is
never returned.
"""

from __future__ import annotations

from concurrent.futures import ALL_COMPLETED, Executor, ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
import math
import os
import time
from typing import Any, List, Optional, Sequence, Tuple, TypeVar

from . import config
from .config import ScoringParams, Settings
from .errors import RankingError, WorkerExecutionError
from .pipeline import CandidateImage, ScoreFunction, TargetProfile, describe_target, score_candidate

logger = logging.getLogger(__name__)

DEFAULT_WORKER_COUNT = 4

T = TypeVar("T")


@dataclass(frozen=True)
class RankedEntry:
    index: int
    score: float


@dataclass
class ChunkJob:
    """Everything one worker needs; shipped by value, never shared."""

    target: TargetProfile
    items: List[Tuple[int, CandidateImage]]
    params: ScoringParams
    score_fn: ScoreFunction


def resolve_worker_count(requested: Optional[int] = None) -> int:
    """Explicit request, else hardware concurrency, else a small constant."""
    if requested is not None:
        if requested < 1:
            raise ValueError("worker count must be >= 1")
        return requested
    return os.cpu_count() or DEFAULT_WORKER_COUNT


def partition(items: Sequence[T], workers: int) -> List[List[Tuple[int, T]]]:
    """Split into contiguous ceil(len / workers)-sized chunks of (original_index, item)."""
    if not items:
        return []
    size = math.ceil(len(items) / max(workers, 1))
    indexed = list(enumerate(items))
    return [indexed[i : i + size] for i in range(0, len(indexed), size)]


def _score_chunk(job: ChunkJob) -> List[Tuple[int, float]]:
    """Worker entry point: score a chunk in order."""
    results: List[Tuple[int, float]] = []
    for index, candidate in job.items:
        try:
            score = float(job.score_fn(job.target, candidate, job.params))
        except RankingError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise WorkerExecutionError(f"scoring candidate {index} failed: {exc}") from exc
        if not math.isfinite(score):
            raise WorkerExecutionError(f"scoring candidate {index} produced a non-finite score")
        results.append((index, score))
    return results


def _make_executor(kind: str, workers: int) -> Executor:
    if kind == "thread":
        return ThreadPoolExecutor(max_workers=workers)
    return ProcessPoolExecutor(max_workers=workers)


def _run_chunks(jobs: List[ChunkJob], total: int, executor: str) -> List[float]:
    with _make_executor(executor, len(jobs)) as pool:
        futures = [pool.submit(_score_chunk, job) for job in jobs]
        wait(futures, return_when=ALL_COMPLETED)

    scores: List[Optional[float]] = [None] * total
    for chunk_no, future in enumerate(futures):
        exc = future.exception()
        if exc is not None:
            logger.error("ranking: chunk %d failed: %s", chunk_no, exc)
            if isinstance(exc, RankingError):
                raise exc
            raise WorkerExecutionError(f"worker for chunk {chunk_no} failed: {exc}") from exc
        for index, score in future.result():
            scores[index] = score

    missing = [i for i, s in enumerate(scores) if s is None]
    if missing:
        raise WorkerExecutionError(f"workers returned no score for candidates {missing}")
    return scores  # type: ignore[return-value]


def rank_candidates(
    target_image: Any,
    target_mask: Any,
    candidates: Sequence[Any],
    *,
    settings: Optional[Settings] = None,
    score_fn: ScoreFunction = score_candidate,
    max_workers: Optional[int] = None,
) -> List[RankedEntry]:
    """
    Rank candidates by silhouette similarity to the target mask.

    `candidates` may hold `CandidateImage` values or bare pixel buffers.
    Returns one entry per candidate, sorted by score descending and by
    original index on ties.

    Raises:
        InvalidImageError / DimensionMismatchError: malformed or mismatched
            target or candidate buffers.
        WorkerExecutionError: any other failure inside a worker.
    """
    settings = settings or config.get_settings()
    params = ScoringParams.from_settings(settings)
    items = [c if isinstance(c, CandidateImage) else CandidateImage(c) for c in candidates]

    # Target problems are reported before any worker starts.
    target = describe_target(target_image, target_mask, params)
    if not items:
        return []

    workers = resolve_worker_count(max_workers if max_workers is not None else settings.max_workers)
    chunks = partition(items, workers)
    jobs = [ChunkJob(target=target, items=chunk, params=params, score_fn=score_fn) for chunk in chunks]
    logger.debug(
        "ranking: %d candidates over %d chunks of <= %d (%s pool)",
        len(items),
        len(jobs),
        len(chunks[0]),
        settings.executor,
    )

    started = time.perf_counter()
    scores = _run_chunks(jobs, len(items), settings.executor)
    ranked = sorted(
        (RankedEntry(index=i, score=s) for i, s in enumerate(scores)),
        key=lambda entry: (-entry.score, entry.index),
    )
    logger.info(
        "ranking: scored %d candidates with %d workers in %.3fs (best index=%d score=%.4f)",
        len(items),
        len(jobs),
        time.perf_counter() - started,
        ranked[0].index,
        ranked[0].score,
    )
    return ranked


def top_k(results: Sequence[RankedEntry], k: int = 1) -> List[RankedEntry]:
    """Leading `k` entries of a ranking, for callers that only need the best few."""
    if k < 0:
        raise ValueError("k must be >= 0")
    return list(results[:k])
