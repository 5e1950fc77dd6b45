from __future__ import annotations

import math
from typing import Optional

import cv2
import numpy as np

from logiaudit.config import BLUR_THRESHOLD, MIN_EDGES, NOISE_FLOOR, TOP_FRACTION


def laplacian_magnitude(gray: np.ndarray) -> np.ndarray:
    """
    |4*center - top - bottom - left - right| for every interior cell.
    Returns an (h-2, w-2) array, empty when the grid has no interior.
    """
    h, w = gray.shape[:2]
    if w < 3 or h < 3:
        return np.empty((0, 0), dtype=np.float64)
    # ksize=1 is the plain 4-neighbour stencil; border rows/cols are dropped below
    lap = cv2.Laplacian(gray.astype(np.float64, copy=False), cv2.CV_64F, ksize=1)
    return np.abs(lap[1:-1, 1:-1])


def edge_samples(gray: np.ndarray, noise_floor: float = NOISE_FLOOR) -> np.ndarray:
    """Flat array of edge strengths strictly above the noise floor."""
    mag = laplacian_magnitude(gray)
    return mag[mag > noise_floor].ravel()


def sharpness_score(
    samples: np.ndarray,
    min_edges: int = MIN_EDGES,
    top_fraction: float = TOP_FRACTION,
) -> Optional[int]:
    """
    Mean of the strongest `top_fraction` of edges, floored.
    Returns None when fewer than `min_edges` samples survived the noise gate.
    """
    n = int(samples.size)
    if n < min_edges:
        return None
    k = max(1, int(math.floor(n * top_fraction)))
    top = np.sort(samples)[::-1][:k]
    return int(math.floor(float(top.mean())))


def classify(score: int, threshold: int = BLUR_THRESHOLD) -> bool:
    """True when the score marks the image as blurry."""
    return score < threshold
