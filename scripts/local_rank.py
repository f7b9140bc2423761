"""
Quick local ranking helper: scores every image in a directory against a
foreground mask and prints the ranking. This bypasses any search or
compositing layer; candidate images are resized to the mask's frame first.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Tuple

# Ensure project root is importable when running from scripts/
import sys

import numpy as np
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from silhouette_ranker import config
from silhouette_ranker.ranking import rank_candidates, top_k

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".bmp"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rank background images by silhouette similarity")
    parser.add_argument("--mask", required=True, help="Path to the foreground mask (alpha or grayscale)")
    parser.add_argument("--image", help="Path to the foreground image (defaults to the mask)")
    parser.add_argument("--candidates", required=True, help="Directory of candidate background images")
    parser.add_argument("--top", type=int, default=5, help="How many entries to print")
    parser.add_argument("--workers", type=int, default=None, help="Worker count override")
    return parser.parse_args()


def load_candidates(directory: Path, size: Tuple[int, int]) -> Tuple[List[Path], List[np.ndarray]]:
    paths = sorted(p for p in directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    arrays = [np.asarray(Image.open(p).convert("RGB").resize(size, Image.BILINEAR)) for p in paths]
    return paths, arrays


def main() -> None:
    args = parse_args()
    settings = config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    mask_path = Path(args.mask)
    candidate_dir = Path(args.candidates)
    if not mask_path.exists():
        raise FileNotFoundError(f"Mask file not found: {mask_path}")
    if not candidate_dir.is_dir():
        raise NotADirectoryError(f"Candidate directory not found: {candidate_dir}")

    mask_image = Image.open(mask_path)
    mask = np.asarray(mask_image.convert("RGBA" if "A" in mask_image.getbands() else "L"))
    image = np.asarray(Image.open(args.image).convert("RGB")) if args.image else mask
    size = (mask.shape[1], mask.shape[0])

    paths, candidates = load_candidates(candidate_dir, size)
    ranked = rank_candidates(image, mask, candidates, settings=settings, max_workers=args.workers)
    for entry in top_k(ranked, args.top):
        print(f"{entry.score:+.4f}  {paths[entry.index].name}")


if __name__ == "__main__":
    main()
