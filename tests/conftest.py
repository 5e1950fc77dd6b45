"""
Shared fixtures: synthetic document-like images built in memory.
"""

import importlib.util
import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from logiaudit.quality.gatekeeper import Gatekeeper


ROOT = Path(__file__).resolve().parents[1]


def checkerboard(width: int = 800, height: int = 600, square: int = 8) -> np.ndarray:
    ys, xs = np.mgrid[0:height, 0:width]
    board = (((xs // square) + (ys // square)) % 2 * 255).astype(np.uint8)
    return np.stack([board] * 3, axis=-1)


def text_page(width: int = 800, height: int = 1000, bar: int = 3, pitch: int = 9, line: int = 12, leading: int = 30) -> np.ndarray:
    """White page with rows of dark vertical strokes grouped into words, like printed text at a distance."""
    page = np.full((height, width, 3), 245, dtype=np.uint8)
    xs = np.arange(width)
    margin = width // 12
    strokes = ((xs % pitch) < bar) & ((xs // (pitch * 8)) % 5 != 4) & (xs >= margin) & (xs < width - margin)
    for y in range(height // 12, height - height // 12 - line, leading):
        page[y:y + line, strokes] = 20
    return page


def solid(width: int, height: int, value: int = 128) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


def png_bytes(pixels: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format="PNG")
    return buf.getvalue()


def load_script(name: str):
    path = ROOT / "scripts" / f"{name}.py"
    spec = importlib.util.spec_from_file_location(f"scripts_{name}", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def gatekeeper():
    gate = Gatekeeper()
    yield gate
    gate.shutdown()


@pytest.fixture
def sharp_png() -> bytes:
    return png_bytes(text_page())


@pytest.fixture
def black_png() -> bytes:
    return png_bytes(solid(1200, 1600, value=0))
