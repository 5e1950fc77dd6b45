from __future__ import annotations

import io
import mimetypes
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError


SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/bmp")
# non-standard names browsers and older clients still send
MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
    "image/x-ms-bmp": "image/bmp",
    "image/x-bmp": "image/bmp",
}


class DecodeError(Exception):
    """Raised when a payload cannot be turned into a pixel buffer."""


class ImageDecoder(Protocol):
    def decode(self, data: bytes, mime_type: Optional[str] = None) -> np.ndarray:
        """Return an HxWxC uint8 array (C = 3 or 4)."""
        ...


def _exif_transpose(pil_img: Image.Image) -> Image.Image:
    try:
        pil_img = ImageOps.exif_transpose(pil_img)
    except Exception:
        pass
    return pil_img


def _check_pixels(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        pixels = np.stack([pixels] * 3, axis=-1)
    if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
        raise DecodeError(f"Unsupported pixel layout {pixels.shape}")
    h, w = pixels.shape[:2]
    if w == 0 or h == 0:
        raise DecodeError(f"Image has zero area ({w}x{h})")
    return pixels


class PillowDecoder:
    """Default decoder backed by Pillow. Honors EXIF orientation, keeps alpha if present."""

    def decode(self, data: bytes, mime_type: Optional[str] = None) -> np.ndarray:
        if not data:
            raise DecodeError("Empty payload")
        try:
            with Image.open(io.BytesIO(data)) as pil:
                pil.load()
                pil = _exif_transpose(pil)
                mode = "RGBA" if "A" in pil.getbands() else "RGB"
                pixels = np.array(pil.convert(mode), dtype=np.uint8)
        except (UnidentifiedImageError, OSError, SyntaxError, EOFError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Cannot decode {mime_type or 'image'} payload: {e}") from e
        return _check_pixels(pixels)


class ArrayDecoder:
    """
    Serves an in-memory pixel grid instead of decoding bytes.
    Lets the pipeline run against synthetic images without touching a codec.
    """

    def __init__(self, pixels: np.ndarray) -> None:
        self._pixels = pixels

    def decode(self, data: bytes = b"", mime_type: Optional[str] = None) -> np.ndarray:
        pixels = np.asarray(self._pixels)
        if pixels.dtype != np.uint8:
            raise DecodeError(f"Expected uint8 pixels, got {pixels.dtype}")
        return _check_pixels(pixels)


def normalize_mime_type(mime_type: Optional[str]) -> str:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    return MIME_ALIASES.get(mime, mime)


def guess_mime_type(path: str | Path) -> Optional[str]:
    mime, _ = mimetypes.guess_type(str(path))
    return mime


def encode_image(pixels: np.ndarray, fmt: str = "PNG", **save_kwargs) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()
