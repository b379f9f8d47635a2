"""Grid edge-energy box extraction from raw RGBA pixels."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional

import cv2
import numpy as np

from config import DEFAULT_STEP, MAX_STEP, MIN_STEP
from logging_config import get_pipeline_logger
from services.blueprint.image_io import as_rgba, decode_image
from services.blueprint.models import Rect, UINode
from services.blueprint.thresholds import DEFAULT_THRESHOLD, ThresholdStrategy

logger = get_pipeline_logger()

# Components below this many grid cells are noise.
MIN_COMPONENT_CELLS = 6
# Components spanning at least this share of both axes are the canvas itself.
WHOLE_CANVAS_RATIO = 0.98


@dataclass
class ExtractionResult:
    nodes: List[UINode]
    step: int
    threshold: float
    grid_size: tuple
    components: int = 0
    dropped_small: int = 0
    dropped_canvas: int = 0
    rects: List[Rect] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "step": self.step,
            "threshold": self.threshold,
            "gridSize": {"w": self.grid_size[0], "h": self.grid_size[1]},
            "components": self.components,
            "droppedSmall": self.dropped_small,
            "droppedCanvas": self.dropped_canvas,
            "boxCount": len(self.nodes),
        }


def clamp_step(step: Any) -> int:
    """Clamp a requested grid step to ``[MIN_STEP, MAX_STEP]``; falsy or bad values use the default."""
    try:
        value = float(step)
    except (TypeError, ValueError):
        value = float(DEFAULT_STEP)
    if not math.isfinite(value) or value == 0:
        value = float(DEFAULT_STEP)
    return int(max(MIN_STEP, min(MAX_STEP, math.floor(value))))


def edge_energy_grid(rgba: np.ndarray, step: int) -> np.ndarray:
    """Per-cell discrete gradient proxy: |right - here| + |below - here| summed over RGB."""
    h, w = rgba.shape[:2]
    cell_w = int(math.ceil(w / step))
    cell_h = int(math.ceil(h / step))

    xs = np.clip(np.arange(cell_w) * step + step // 2, 0, max(w - 2, 0))
    ys = np.clip(np.arange(cell_h) * step + step // 2, 0, max(h - 2, 0))
    xn = np.minimum(xs + 1, w - 1)
    yn = np.minimum(ys + 1, h - 1)

    rgb = rgba[:, :, :3].astype(np.int32)
    here = rgb[ys[:, None], xs[None, :]]
    right = rgb[ys[:, None], xn[None, :]]
    below = rgb[yn[:, None], xs[None, :]]

    dx = np.abs(here - right).sum(axis=2)
    dy = np.abs(here - below).sum(axis=2)
    return (dx + dy).astype(np.float32)


def _cells_to_rect(left: int, top: int, width: int, height: int, step: int, w: int, h: int) -> Rect:
    x = min(max(left * step, 0), w - 1)
    y = min(max(top * step, 0), h - 1)
    right = min((left + width) * step, w)
    bottom = min((top + height) * step, h)
    return Rect(int(x), int(y), int(max(1, right - x)), int(max(1, bottom - y)))


def extract(
    pixels: np.ndarray,
    step: Any = DEFAULT_STEP,
    threshold: Optional[ThresholdStrategy] = None,
) -> ExtractionResult:
    """Extract candidate boxes from pixels; returns boxes plus diagnostics."""
    rgba = as_rgba(pixels)
    h, w = rgba.shape[:2]
    step_px = clamp_step(step)
    strategy = threshold or DEFAULT_THRESHOLD

    scores = edge_energy_grid(rgba, step_px)
    thr = float(strategy(scores))
    mask = (scores >= thr).astype(np.uint8)

    num_labels, _labels, stats, _centroids = cv2.connectedComponentsWithStats(mask, connectivity=4)

    rects: List[Rect] = []
    dropped_small = 0
    dropped_canvas = 0
    for label in range(1, num_labels):
        count = int(stats[label, cv2.CC_STAT_AREA])
        if count < MIN_COMPONENT_CELLS:
            dropped_small += 1
            continue
        rect = _cells_to_rect(
            int(stats[label, cv2.CC_STAT_LEFT]),
            int(stats[label, cv2.CC_STAT_TOP]),
            int(stats[label, cv2.CC_STAT_WIDTH]),
            int(stats[label, cv2.CC_STAT_HEIGHT]),
            step_px,
            w,
            h,
        )
        if rect.w >= w * WHOLE_CANVAS_RATIO and rect.h >= h * WHOLE_CANVAS_RATIO:
            dropped_canvas += 1
            continue
        rects.append(rect)

    # Reading order: top-to-bottom, then left-to-right.
    rects.sort(key=lambda r: (r.y, r.x))
    nodes = [UINode(id=f"b_{idx}", rect=r, depth=0, role=None) for idx, r in enumerate(rects, start=1)]

    logger.info(
        "extract: %dx%d step=%d threshold=%.1f components=%d boxes=%d",
        w, h, step_px, thr, num_labels - 1, len(nodes),
    )
    return ExtractionResult(
        nodes=nodes,
        step=step_px,
        threshold=thr,
        grid_size=(int(scores.shape[1]), int(scores.shape[0])),
        components=num_labels - 1,
        dropped_small=dropped_small,
        dropped_canvas=dropped_canvas,
        rects=rects,
    )


def extract_boxes(
    pixels: np.ndarray,
    step: Any = DEFAULT_STEP,
    threshold: Optional[ThresholdStrategy] = None,
) -> List[UINode]:
    return extract(pixels, step=step, threshold=threshold).nodes


def extract_boxes_from_bytes(
    data: bytes,
    step: Any = DEFAULT_STEP,
    threshold: Optional[ThresholdStrategy] = None,
) -> List[UINode]:
    """Decode then extract; decode failures raise instead of yielding no boxes."""
    return extract_boxes(decode_image(data), step=step, threshold=threshold)
