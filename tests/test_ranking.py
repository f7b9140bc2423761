"""Tests for the parallel ranking orchestrator."""

from __future__ import annotations

import dataclasses
import math
import time
import unittest
from unittest import mock

import numpy as np

from silhouette_ranker.config import ScoringParams, Settings
from silhouette_ranker.errors import DimensionMismatchError, InvalidImageError, WorkerExecutionError
from silhouette_ranker.pipeline import CandidateImage, TargetProfile, describe_target, score_candidate
from silhouette_ranker.ranking import (
    DEFAULT_WORKER_COUNT,
    RankedEntry,
    partition,
    rank_candidates,
    resolve_worker_count,
    top_k,
)

SIZE = 100
PER_ITEM_COST = 0.2
PROCESS_OVERHEAD = 3.0
THREAD_PER_ITEM_COST = 0.05
THREAD_OVERHEAD = 0.5


# Stub score functions live at module level so process workers can import them.
def fixed_half_score(target: TargetProfile, candidate: CandidateImage, params: ScoringParams) -> float:
    time.sleep(PER_ITEM_COST)
    return 0.5


def fast_fixed_half_score(target: TargetProfile, candidate: CandidateImage, params: ScoringParams) -> float:
    time.sleep(THREAD_PER_ITEM_COST)
    return 0.5


def score_from_pixel_value(target: TargetProfile, candidate: CandidateImage, params: ScoringParams) -> float:
    """Candidates encode their score in their first pixel, with deliberate ties."""
    return float(np.asarray(candidate.pixels).flat[0] % 3) / 2.0


def exploding_score(target: TargetProfile, candidate: CandidateImage, params: ScoringParams) -> float:
    if np.asarray(candidate.pixels).flat[0] == 13:
        raise RuntimeError("decoder blew up")
    return 0.1


def nan_score(target: TargetProfile, candidate: CandidateImage, params: ScoringParams) -> float:
    return float("nan")


def filled_rect(x0: int, y0: int, x1: int, y1: int, channels: int = 0) -> np.ndarray:
    """SIZE x SIZE uint8 image with [x0, x1) x [y0, y1) set to 255."""
    shape = (SIZE, SIZE, channels) if channels else (SIZE, SIZE)
    image = np.zeros(shape, dtype=np.uint8)
    image[y0:y1, x0:x1] = 255
    return image


def target_pair():
    image = np.full((SIZE, SIZE, 3), 90, dtype=np.uint8)
    mask = filled_rect(25, 25, 75, 75)
    return image, mask


def make_settings(**overrides) -> Settings:
    values = {"backend": "opencv", "executor": "thread", "max_workers": 4}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestWorkerCount(unittest.TestCase):
    def test_explicit(self) -> None:
        self.assertEqual(resolve_worker_count(3), 3)

    def test_hardware_concurrency(self) -> None:
        with mock.patch("silhouette_ranker.ranking.os.cpu_count", return_value=12):
            self.assertEqual(resolve_worker_count(), 12)

    def test_fallback_when_unknown(self) -> None:
        with mock.patch("silhouette_ranker.ranking.os.cpu_count", return_value=None):
            self.assertEqual(resolve_worker_count(), DEFAULT_WORKER_COUNT)

    def test_rejects_zero(self) -> None:
        with self.assertRaises(ValueError):
            resolve_worker_count(0)


class TestPartition(unittest.TestCase):
    def test_contiguous_chunks_keep_original_indices(self) -> None:
        chunks = partition(list("abcdefghij"), 4)
        self.assertEqual([len(c) for c in chunks], [3, 3, 3, 1])
        self.assertEqual(chunks[1], [(3, "d"), (4, "e"), (5, "f")])
        flattened = [index for chunk in chunks for index, _ in chunk]
        self.assertEqual(flattened, list(range(10)))

    def test_more_workers_than_items(self) -> None:
        self.assertEqual(partition(["x", "y", "z"], 8), [[(0, "x")], [(1, "y")], [(2, "z")]])

    def test_empty(self) -> None:
        self.assertEqual(partition([], 4), [])

    def test_chunk_size_is_ceiling(self) -> None:
        for count, workers in ((32, 4), (33, 4), (7, 3), (1, 16)):
            with self.subTest(count=count, workers=workers):
                chunks = partition(list(range(count)), workers)
                self.assertEqual(len(chunks[0]), math.ceil(count / workers))
                self.assertLessEqual(len(chunks), workers)


class TestPipeline(unittest.TestCase):
    def test_target_dimension_mismatch(self) -> None:
        with self.assertRaises(DimensionMismatchError):
            describe_target(np.zeros((SIZE, SIZE, 3)), np.zeros((SIZE, SIZE + 1)), ScoringParams())

    def test_blank_target_scores_zero(self) -> None:
        params = ScoringParams()
        target = describe_target(np.zeros((SIZE, SIZE, 3)), np.zeros((SIZE, SIZE)), params)
        self.assertTrue(target.descriptor.empty)
        candidate = CandidateImage(filled_rect(25, 25, 75, 75))
        self.assertEqual(score_candidate(target, candidate, params), 0.0)

    def test_candidate_without_shape_scores_zero(self) -> None:
        params = ScoringParams()
        image, mask = target_pair()
        target = describe_target(image, mask, params)
        blank = CandidateImage(np.zeros((SIZE, SIZE, 3), dtype=np.uint8))
        self.assertEqual(score_candidate(target, blank, params), 0.0)

    def test_candidate_dimension_mismatch(self) -> None:
        params = ScoringParams()
        image, mask = target_pair()
        target = describe_target(image, mask, params)
        with self.assertRaises(DimensionMismatchError):
            score_candidate(target, CandidateImage(np.zeros((SIZE, SIZE - 10, 3))), params)


class TestScenarioA(unittest.TestCase):
    """Square target, identical square and flatter rectangle as candidates."""

    def check(self, settings: Settings) -> None:
        image, mask = target_pair()
        candidates = [
            filled_rect(25, 25, 75, 75, channels=3),
            filled_rect(20, 40, 80, 60, channels=3),
        ]
        ranked = rank_candidates(image, mask, candidates, settings=settings)
        scores = {entry.index: entry.score for entry in ranked}
        self.assertGreater(scores[0], 0.99)
        self.assertGreater(scores[0], scores[1])
        self.assertEqual([entry.index for entry in ranked], [0, 1])

    def test_opencv_threads(self) -> None:
        self.check(make_settings(backend="opencv", executor="thread"))

    def test_numpy_threads(self) -> None:
        self.check(make_settings(backend="numpy", executor="thread"))

    def test_opencv_processes(self) -> None:
        self.check(make_settings(backend="opencv", executor="process", max_workers=2))

    def test_candidate_with_own_mask(self) -> None:
        image, mask = target_pair()
        noisy = np.random.default_rng(1).integers(0, 255, (SIZE, SIZE, 3), dtype=np.uint8)
        candidates = [
            CandidateImage(noisy, mask=filled_rect(20, 40, 80, 60)),
            CandidateImage(noisy, mask=filled_rect(25, 25, 75, 75)),
        ]
        ranked = rank_candidates(image, mask, candidates, settings=make_settings())
        self.assertEqual(ranked[0].index, 1)
        self.assertGreater(ranked[0].score, 0.99)


class TestFrameTouchingSilhouette(unittest.TestCase):
    """Portrait-style target whose silhouette runs off the bottom of the frame."""

    def check(self, settings: Settings) -> None:
        image = np.full((SIZE, SIZE, 3), 90, dtype=np.uint8)
        mask = filled_rect(30, 40, 70, 100)
        backdrop = np.full((SIZE, SIZE, 3), 90, dtype=np.uint8)
        candidates = [
            CandidateImage(backdrop, mask=filled_rect(10, 40, 90, 100)),
            CandidateImage(backdrop, mask=filled_rect(30, 40, 70, 99)),
            CandidateImage(backdrop, mask=filled_rect(30, 40, 70, 100)),
        ]
        ranked = rank_candidates(image, mask, candidates, settings=settings)
        scores = {entry.index: entry.score for entry in ranked}
        self.assertGreater(scores[2], 0.99)
        self.assertGreater(scores[1], scores[0])
        self.assertEqual([entry.index for entry in ranked], [2, 1, 0])

    def test_opencv(self) -> None:
        self.check(make_settings(backend="opencv"))

    def test_numpy(self) -> None:
        self.check(make_settings(backend="numpy"))


class TestCandidateImage(unittest.TestCase):
    def test_read_only(self) -> None:
        candidate = CandidateImage(filled_rect(25, 25, 75, 75))
        with self.assertRaises(dataclasses.FrozenInstanceError):
            candidate.mask = filled_rect(0, 0, 10, 10)


class TestRanking(unittest.TestCase):
    def test_permutation_with_stable_ties(self) -> None:
        image, mask = target_pair()
        values = [4, 9, 2, 7, 5, 0, 11, 8, 3, 6, 1]
        candidates = [np.full((SIZE, SIZE), v, dtype=np.uint8) for v in values]
        ranked = rank_candidates(
            image, mask, candidates, settings=make_settings(), score_fn=score_from_pixel_value
        )
        self.assertEqual(sorted(entry.index for entry in ranked), list(range(len(values))))
        for before, after in zip(ranked, ranked[1:]):
            self.assertGreaterEqual(before.score, after.score)
            if before.score == after.score:
                self.assertLess(before.index, after.index)
        self.assertEqual([e.index for e in ranked if e.score == 1.0], [2, 4, 6, 7])

    def test_no_candidates(self) -> None:
        image, mask = target_pair()
        self.assertEqual(rank_candidates(image, mask, [], settings=make_settings()), [])

    def test_blank_target_keeps_input_order(self) -> None:
        image = np.zeros((SIZE, SIZE, 3), dtype=np.uint8)
        mask = np.zeros((SIZE, SIZE), dtype=np.uint8)
        candidates = [filled_rect(10, 10, 20 + i, 50) for i in range(5)]
        ranked = rank_candidates(image, mask, candidates, settings=make_settings())
        self.assertEqual(ranked, [RankedEntry(index=i, score=0.0) for i in range(5)])

    def test_target_mismatch_fails_before_dispatch(self) -> None:
        image, _ = target_pair()
        with mock.patch("silhouette_ranker.ranking._run_chunks") as run:
            with self.assertRaises(DimensionMismatchError):
                rank_candidates(image, np.zeros((50, 50)), [image], settings=make_settings())
        run.assert_not_called()

    def test_candidate_mismatch_fails_whole_request(self) -> None:
        image, mask = target_pair()
        candidates = [filled_rect(25, 25, 75, 75)] * 5 + [np.zeros((SIZE // 2, SIZE), dtype=np.uint8)]
        for executor in ("thread", "process"):
            with self.subTest(executor=executor):
                with self.assertRaises(DimensionMismatchError):
                    rank_candidates(
                        image, mask, candidates, settings=make_settings(executor=executor, max_workers=2)
                    )

    def test_malformed_candidate(self) -> None:
        image, mask = target_pair()
        with self.assertRaises(InvalidImageError):
            rank_candidates(image, mask, [np.zeros(SIZE)], settings=make_settings())

    def test_unexpected_worker_error_is_wrapped(self) -> None:
        image, mask = target_pair()
        candidates = [np.full((SIZE, SIZE), v, dtype=np.uint8) for v in range(20)]
        for executor in ("thread", "process"):
            with self.subTest(executor=executor):
                with self.assertRaises(WorkerExecutionError) as ctx:
                    rank_candidates(
                        image,
                        mask,
                        candidates,
                        settings=make_settings(executor=executor),
                        score_fn=exploding_score,
                    )
                self.assertIn("candidate 13", str(ctx.exception))

    def test_non_finite_score_rejected(self) -> None:
        image, mask = target_pair()
        with self.assertRaises(WorkerExecutionError):
            rank_candidates(image, mask, [image], settings=make_settings(), score_fn=nan_score)

    def test_top_k(self) -> None:
        ranked = [RankedEntry(2, 0.9), RankedEntry(0, 0.5), RankedEntry(1, 0.1)]
        self.assertEqual(top_k(ranked), [RankedEntry(2, 0.9)])
        self.assertEqual(top_k(ranked, 5), ranked)
        self.assertEqual(top_k(ranked, 0), [])
        with self.assertRaises(ValueError):
            top_k(ranked, -1)


class TestScenarioB(unittest.TestCase):
    """32 uniform candidates, fixed 0.5 stub score, 4 workers: must run in parallel."""

    COUNT = 32
    WORKERS = 4

    def run_ranking(self, executor: str, score_fn) -> tuple:
        image, mask = target_pair()
        candidates = [np.zeros((SIZE, SIZE, 3), dtype=np.uint8) for _ in range(self.COUNT)]
        settings = make_settings(executor=executor, max_workers=self.WORKERS)
        started = time.perf_counter()
        ranked = rank_candidates(image, mask, candidates, settings=settings, score_fn=score_fn)
        return ranked, time.perf_counter() - started

    def check(self, ranked, elapsed: float, cost: float, overhead: float) -> None:
        self.assertEqual(len(ranked), self.COUNT)
        self.assertTrue(all(entry.score == 0.5 for entry in ranked))
        self.assertEqual([entry.index for entry in ranked], list(range(self.COUNT)))
        per_worker_items = math.ceil(self.COUNT / self.WORKERS)
        self.assertLess(elapsed, per_worker_items * cost + overhead)
        self.assertLess(elapsed, self.COUNT * cost)

    def test_process_pool(self) -> None:
        ranked, elapsed = self.run_ranking("process", fixed_half_score)
        self.check(ranked, elapsed, PER_ITEM_COST, PROCESS_OVERHEAD)

    def test_thread_pool(self) -> None:
        ranked, elapsed = self.run_ranking("thread", fast_fixed_half_score)
        self.check(ranked, elapsed, THREAD_PER_ITEM_COST, THREAD_OVERHEAD)


if __name__ == "__main__":
    unittest.main()
