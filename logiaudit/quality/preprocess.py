from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from PIL import Image

from logiaudit.config import TARGET_WIDTH
from logiaudit.utils.logging import setup_logger


logger = setup_logger()

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def analysis_size(width: int, height: int, target_width: int = TARGET_WIDTH) -> Tuple[int, int]:
    """
    Size of the analysis grid for a `width` x `height` source.
    Wide sources are scaled down to `target_width`; narrower ones keep their size.
    Height is floored, but never below one row.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image must have non-zero size, got {width}x{height}")
    if width <= target_width:
        return width, height
    scale = target_width / float(width)
    return target_width, max(1, int(math.floor(height * scale)))


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    """HxWx3 (or 4, alpha ignored) uint8 -> HxW float64 luminance."""
    rgb = pixels[..., :3].astype(np.float64)
    return rgb @ LUMA_WEIGHTS


def prepare_grid(pixels: np.ndarray, target_width: int = TARGET_WIDTH) -> np.ndarray:
    h0, w0 = pixels.shape[:2]
    w, h = analysis_size(w0, h0, target_width)
    rgb = np.ascontiguousarray(pixels[..., :3])
    if (w, h) != (w0, h0):
        # LANCZOS low-pass filters while shrinking, so text strokes do not alias
        pil = Image.fromarray(rgb).resize((w, h), Image.LANCZOS)
        rgb = np.asarray(pil, dtype=np.uint8)
    else:
        # Thresholds were calibrated on downsampled grids; no upscaling to fake that.
        logger.debug(f"Source {w0}x{h0} is not wider than {target_width}px; analysing at native size")
    return to_grayscale(rgb)
