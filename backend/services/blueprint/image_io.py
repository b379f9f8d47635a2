"""Image input validation, decoding and content hashing."""

from __future__ import annotations

import hashlib
import io
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from config import MAX_IMAGE_MB
from services.blueprint.errors import ImageDecodeError, ImageInputError

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"}

_MAGIC_PREFIXES = (
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
    b"GIF87a",
    b"GIF89a",
    b"BM",
)


def _looks_like_image(data: bytes) -> bool:
    if any(data.startswith(prefix) for prefix in _MAGIC_PREFIXES):
        return True
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def validate_image_bytes(data: bytes, max_mb: float = MAX_IMAGE_MB) -> None:
    """Reject missing, oversized or non-image payloads before any decoding."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ImageInputError(f"Expected image bytes, got {type(data).__name__}")
    if len(data) == 0:
        raise ImageInputError("No image data")
    if len(data) > max_mb * 1024 * 1024:
        raise ImageInputError(f"Image too large (> {max_mb:g}MB)")
    if not _looks_like_image(bytes(data[:16])):
        raise ImageInputError("File is not an image")


def content_hash(data: bytes) -> str:
    return hashlib.sha256(bytes(data)).hexdigest()


def decode_image(
    data: bytes,
    expected_size: Optional[Tuple[int, int]] = None,
    max_mb: float = MAX_IMAGE_MB,
) -> np.ndarray:
    """Decode image bytes into an ``H x W x 4`` uint8 RGBA array.

    ``expected_size`` is ``(width, height)``; a decoded image of any other
    size raises ``ImageDecodeError`` carrying both sizes.
    """
    validate_image_bytes(data, max_mb=max_mb)
    try:
        with Image.open(io.BytesIO(bytes(data))) as img:
            img.load()
            rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ImageDecodeError(f"Image decode failed: {exc}") from exc

    height, width = rgba.shape[:2]
    if width == 0 or height == 0:
        raise ImageInputError("Invalid image size")
    if expected_size is not None:
        exp_w, exp_h = int(expected_size[0]), int(expected_size[1])
        if (width, height) != (exp_w, exp_h):
            raise ImageDecodeError(
                f"Image size mismatch. natural={width}x{height} expected={exp_w}x{exp_h}",
                expected=(exp_w, exp_h),
                actual=(width, height),
            )
    return rgba


def as_rgba(pixels: np.ndarray) -> np.ndarray:
    """Normalise a gray, RGB or RGBA uint8 array to RGBA."""
    if not isinstance(pixels, np.ndarray):
        raise ImageInputError(f"Expected pixel array, got {type(pixels).__name__}")
    if pixels.ndim == 2:
        pixels = np.stack([pixels, pixels, pixels], axis=-1)
    if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
        raise ImageInputError(f"Unsupported pixel array shape {pixels.shape}")
    if pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise ImageInputError("Invalid image size")
    arr = pixels.astype(np.uint8, copy=False)
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return arr


def encode_png(rgba: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(as_rgba(rgba)).save(buf, format="PNG")
    return buf.getvalue()


def load_image_file(path: Path) -> bytes:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    if path.suffix.lower() not in IMAGE_SUFFIXES:
        raise ImageInputError(f"Invalid file type {path.suffix or '(none)'}. Expected an image")
    return path.read_bytes()
