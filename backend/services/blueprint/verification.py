"""Pixel and rectangle verification of a reconstructed blueprint.

The pixel comparison follows the pixelmatch approach: YIQ colour distance
per pixel, with optional detection of anti-aliased pixels so that edge
smoothing differences can be tolerated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

from config import DIFF_INCLUDE_AA, DIFF_THRESHOLD, MISMATCH_BUDGET, RECT_MAX_OFFSET_PX, RECT_MIN_IOU
from logging_config import get_pipeline_logger
from services.blueprint.geometry import iou, max_edge_offset
from services.blueprint.image_io import as_rgba, decode_image
from services.blueprint.models import DiffMetrics, Rect, RectVerification, UINode
from services.blueprint.overlay import paint_failure

logger = get_pipeline_logger()

# 35215 is the largest possible YIQ delta between two colours.
MAX_YIQ_DELTA = 35215.0
DIFF_ALPHA = 0.7
DIFF_COLOUR = (255, 0, 0)
AA_COLOUR = (255, 255, 0)

# Neighbour visiting order: x outer, y inner. Ties keep the first neighbour found.
_NEIGHBOUR_OFFSETS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]

ImageLike = Union[np.ndarray, bytes, bytearray]


@dataclass
class VerificationResult:
    metrics: DiffMetrics
    diff_image: np.ndarray


def _blend(channel: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    return 255.0 + (channel - 255.0) * alpha


def _yiq(rgba: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    px = rgba.astype(np.float64)
    a = px[:, :, 3] / 255.0
    r, g, b = _blend(px[:, :, 0], a), _blend(px[:, :, 1], a), _blend(px[:, :, 2], a)
    y = r * 0.29889531 + g * 0.58662247 + b * 0.11448223
    i = r * 0.59597799 - g * 0.27417610 - b * 0.32180189
    q = r * 0.21147017 - g * 0.52261711 + b * 0.31114694
    return y, i, q


def _packed(rgba: np.ndarray) -> np.ndarray:
    return rgba.astype(np.uint32) @ np.array([1 << 24, 1 << 16, 1 << 8, 1], dtype=np.uint32)


def _shift(padded: np.ndarray, dx: int, dy: int, h: int, w: int) -> np.ndarray:
    return padded[1 + dy:1 + dy + h, 1 + dx:1 + dx + w]


def _border_zeroes(h: int, w: int) -> np.ndarray:
    """pixelmatch counts one implicit equal neighbour for edge pixels."""
    out = np.zeros((h, w), dtype=np.int32)
    out[0, :] = 1
    out[-1, :] = 1
    out[:, 0] = 1
    out[:, -1] = 1
    return out


def _many_siblings(packed: np.ndarray) -> np.ndarray:
    h, w = packed.shape
    padded = np.pad(packed, 1, mode="edge")
    valid = np.pad(np.ones((h, w), dtype=bool), 1, constant_values=False)
    count = _border_zeroes(h, w)
    for dx, dy in _NEIGHBOUR_OFFSETS:
        same = (_shift(padded, dx, dy, h, w) == packed) & _shift(valid, dx, dy, h, w)
        count += same.astype(np.int32)
    return count > 2


def _antialiased(
    y_img: np.ndarray,
    packed_img: np.ndarray,
    siblings_img: np.ndarray,
    siblings_other: np.ndarray,
) -> np.ndarray:
    """Vectorised pixelmatch anti-aliasing test of every pixel of one image."""
    h, w = y_img.shape
    y_pad = np.pad(y_img, 1, mode="edge")
    p_pad = np.pad(packed_img, 1, mode="edge")
    valid = np.pad(np.ones((h, w), dtype=bool), 1, constant_values=False)

    zeroes = _border_zeroes(h, w)
    lo = np.zeros((h, w))
    hi = np.zeros((h, w))
    lo_x = np.zeros((h, w), dtype=np.intp)
    lo_y = np.zeros((h, w), dtype=np.intp)
    hi_x = np.zeros((h, w), dtype=np.intp)
    hi_y = np.zeros((h, w), dtype=np.intp)
    rows, cols = np.indices((h, w))

    for dx, dy in _NEIGHBOUR_OFFSETS:
        ok = _shift(valid, dx, dy, h, w)
        identical = _shift(p_pad, dx, dy, h, w) == packed_img
        delta = np.where(identical, 0.0, y_img - _shift(y_pad, dx, dy, h, w))
        zeroes += (ok & (delta == 0)).astype(np.int32)
        take_lo = ok & (delta != 0) & (delta < lo)
        take_hi = ok & (delta != 0) & ~take_lo & (delta > hi)
        lo = np.where(take_lo, delta, lo)
        hi = np.where(take_hi, delta, hi)
        lo_x = np.where(take_lo, cols + dx, lo_x)
        lo_y = np.where(take_lo, rows + dy, lo_y)
        hi_x = np.where(take_hi, cols + dx, hi_x)
        hi_y = np.where(take_hi, rows + dy, hi_y)

    candidate = (zeroes <= 2) & (lo < 0) & (hi > 0)
    via_lo = siblings_img[lo_y, lo_x] & siblings_other[lo_y, lo_x]
    via_hi = siblings_img[hi_y, hi_x] & siblings_other[hi_y, hi_x]
    return candidate & (via_lo | via_hi)


def pixel_diff(
    img1: np.ndarray,
    img2: np.ndarray,
    threshold: float = DIFF_THRESHOLD,
    include_aa: bool = DIFF_INCLUDE_AA,
    alpha: float = DIFF_ALPHA,
) -> Tuple[int, np.ndarray]:
    """Count perceptually different pixels and build an RGBA diff image.

    Unchanged pixels are drawn as faded grayscale of ``img1``, mismatches in
    red and (when ``include_aa`` is False) anti-aliased pixels in yellow.
    """
    a = as_rgba(img1)
    b = as_rgba(img2)
    if a.shape != b.shape:
        raise ValueError(f"Image sizes do not match: {a.shape[1]}x{a.shape[0]} vs {b.shape[1]}x{b.shape[0]}")
    h, w = a.shape[:2]

    raw = a.astype(np.float64)
    gray = raw[:, :, 0] * 0.29889531 + raw[:, :, 1] * 0.58662247 + raw[:, :, 2] * 0.11448223
    gray = _blend(gray, alpha * raw[:, :, 3] / 255.0)
    output = np.empty((h, w, 4), dtype=np.uint8)
    output[:, :, :3] = np.clip(gray, 0, 255).astype(np.uint8)[:, :, None]
    output[:, :, 3] = 255

    packed_a = _packed(a)
    packed_b = _packed(b)
    identical = packed_a == packed_b
    if identical.all():
        return 0, output

    y1, i1, q1 = _yiq(a)
    y2, i2, q2 = _yiq(b)
    dy, di, dq = y1 - y2, i1 - i2, q1 - q2
    delta = 0.5053 * dy * dy + 0.299 * di * di + 0.1957 * dq * dq
    delta[identical] = 0.0

    max_delta = MAX_YIQ_DELTA * threshold * threshold
    over = delta > max_delta

    if include_aa:
        aa = np.zeros_like(over)
    else:
        sib_a = _many_siblings(packed_a)
        sib_b = _many_siblings(packed_b)
        aa = _antialiased(y1, packed_a, sib_a, sib_b) | _antialiased(y2, packed_b, sib_b, sib_a)
        aa &= over

    mismatch = over & ~aa
    output[aa, :3] = AA_COLOUR
    output[mismatch, :3] = DIFF_COLOUR
    return int(mismatch.sum()), output


def _rendering_to_rgba(rendering: ImageLike) -> np.ndarray:
    if isinstance(rendering, (bytes, bytearray)):
        return decode_image(bytes(rendering))
    return as_rgba(rendering)


def verify_rendering(
    source_bytes: bytes,
    declared_size: Tuple[int, int],
    rendering: ImageLike,
    threshold: float = DIFF_THRESHOLD,
    include_aa: bool = DIFF_INCLUDE_AA,
    budget: float = MISMATCH_BUDGET,
) -> VerificationResult:
    """Compare a rendering of the tree with the locked source at 1:1 scale.

    A rendering of a different size is scored as a full failure without any
    scaled comparison. Decode problems with the source raise.
    """
    exp_w, exp_h = int(declared_size[0]), int(declared_size[1])
    if exp_w <= 0 or exp_h <= 0:
        raise ValueError(f"Invalid declared size {exp_w}x{exp_h}")
    live = _rendering_to_rgba(rendering)
    live_h, live_w = live.shape[:2]

    if (live_w, live_h) != (exp_w, exp_h):
        reason = f"SIZE_MISMATCH: {live_w}x{live_h}"
        logger.info("verify: %s against %dx%d source", reason, exp_w, exp_h)
        metrics = DiffMetrics(
            iou=0.0,
            mismatch_pct=1.0,
            max_offset_px=float(max(abs(live_w - exp_w), abs(live_h - exp_h))),
            passed=False,
            reason=reason,
        )
        return VerificationResult(metrics=metrics, diff_image=paint_failure(exp_w, exp_h, reason))

    source = decode_image(source_bytes, expected_size=(exp_w, exp_h))
    mismatched, diff_image = pixel_diff(source, live, threshold=threshold, include_aa=include_aa)

    total = exp_w * exp_h
    mismatch_pct = mismatched / total if total > 0 else 1.0
    metrics = DiffMetrics(
        iou=1.0 - mismatch_pct,
        mismatch_pct=mismatch_pct,
        max_offset_px=0.0,
        passed=mismatch_pct < budget,
        mismatched_pixels=mismatched,
    )
    logger.info("verify: %d/%d pixels differ (%.4f) pass=%s", mismatched, total, mismatch_pct, metrics.passed)
    return VerificationResult(metrics=metrics, diff_image=diff_image)


def _as_rect(item: Any) -> Rect:
    if isinstance(item, Rect):
        return item
    if isinstance(item, UINode):
        return item.rect
    return Rect.from_dict(item)


def verify_rect_pairs(
    expected: Sequence[Any],
    actual: Sequence[Any],
    min_iou: float = RECT_MIN_IOU,
    max_offset: float = RECT_MAX_OFFSET_PX,
) -> RectVerification:
    """Positional (index-paired) geometric check of two rect lists.

    Empty inputs never pass, and neither do lists of different lengths.
    """
    if not expected or not actual:
        return RectVerification(passed=False, min_iou=0.0, max_offset=math.inf, pairs=0)

    worst_iou = math.inf
    worst_offset = 0.0
    pairs = min(len(expected), len(actual))
    for exp_item, act_item in zip(expected, actual):
        exp_rect, act_rect = _as_rect(exp_item), _as_rect(act_item)
        worst_iou = min(worst_iou, iou(exp_rect, act_rect))
        worst_offset = max(worst_offset, max_edge_offset(exp_rect, act_rect))

    passed = (
        len(expected) == len(actual)
        and worst_iou >= min_iou
        and worst_offset <= max_offset
    )
    return RectVerification(passed=passed, min_iou=worst_iou, max_offset=worst_offset, pairs=pairs)


def verify_extraction_consistency(
    first: Sequence[UINode],
    second: Sequence[UINode],
    min_iou: Optional[float] = None,
    max_offset: Optional[float] = None,
) -> RectVerification:
    """Compare two extraction passes over the same pixels box by box."""
    return verify_rect_pairs(
        [n.rect for n in first],
        [n.rect for n in second],
        min_iou=RECT_MIN_IOU if min_iou is None else min_iou,
        max_offset=RECT_MAX_OFFSET_PX if max_offset is None else max_offset,
    )
