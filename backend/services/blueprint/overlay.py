"""Debug rendering of boxes, scan traces and tree skeletons.

All images here are ``H x W x 4`` RGBA uint8 arrays; colours are RGBA.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

import cv2
import numpy as np

from services.blueprint.containment import ContainmentTree
from services.blueprint.image_io import as_rgba
from services.blueprint.models import ROOT_ID, ScanMark, UINode

TOP_LEVEL_COLOUR = (0, 200, 255, 255)
NESTED_COLOUR = (255, 120, 0, 255)
TRACE_COLOUR = (40, 220, 40, 255)
LABEL_COLOUR = (20, 20, 20, 255)
FAIL_COLOUR = (220, 30, 30, 255)


def _corners(node: UINode):
    r = node.rect
    p1 = (int(round(r.x)), int(round(r.y)))
    p2 = (int(round(r.right)) - 1, int(round(r.bottom)) - 1)
    return p1, p2


def draw_overlay(image: np.ndarray, nodes: Iterable[UINode], labels: bool = True) -> np.ndarray:
    """Stroke node rects over a copy of ``image``.

    Nodes directly under the root are drawn in one colour, nested nodes in
    another.
    """
    canvas = as_rgba(image).copy()
    for node in nodes:
        if node.id == ROOT_ID:
            continue
        top_level = node.parent_id in (None, ROOT_ID)
        colour = TOP_LEVEL_COLOUR if top_level else NESTED_COLOUR
        p1, p2 = _corners(node)
        cv2.rectangle(canvas, p1, p2, colour, 2 if top_level else 1, cv2.LINE_AA)
        if labels:
            org = (p1[0] + 3, p1[1] + 12)
            cv2.putText(canvas, node.id, org, cv2.FONT_HERSHEY_SIMPLEX, 0.35, colour, 1, cv2.LINE_AA)
    return canvas


def draw_scan_trace(image: np.ndarray, marks: Sequence[ScanMark], radius: int = 1) -> np.ndarray:
    canvas = as_rgba(image).copy()
    prev = None
    for mark in marks:
        pt = (int(mark.x), int(mark.y))
        if prev is not None and prev[1] == pt[1]:
            cv2.line(canvas, prev, pt, TRACE_COLOUR, 1)
        cv2.circle(canvas, pt, radius, TRACE_COLOUR, -1)
        prev = pt
    return canvas


def render_skeleton(
    tree: ContainmentTree,
    background: Sequence[int] = (255, 255, 255, 255),
    fill: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """Rasterise a tree as outlined boxes at its native 1:1 size."""
    w = int(round(tree.width))
    h = int(round(tree.height))
    canvas = np.zeros((h, w, 4), dtype=np.uint8)
    canvas[:] = background
    for node in tree.walk():
        if node.id == tree.root_id:
            continue
        p1, p2 = _corners(node)
        if fill is not None:
            cv2.rectangle(canvas, p1, p2, tuple(int(c) for c in fill), -1)
        cv2.rectangle(canvas, p1, p2, LABEL_COLOUR, 1)
    return canvas


def paint_failure(width: int, height: int, message: str) -> np.ndarray:
    """Solid failure image carrying a short message."""
    canvas = np.zeros((max(1, int(height)), max(1, int(width)), 4), dtype=np.uint8)
    canvas[:] = FAIL_COLOUR
    cv2.putText(canvas, message, (8, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255, 255), 1, cv2.LINE_AA)
    return canvas


def write_png(path: Path, rgba: np.ndarray) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    bgra = cv2.cvtColor(as_rgba(rgba), cv2.COLOR_RGBA2BGRA)
    if not cv2.imwrite(str(path), bgra):
        raise OSError(f"Failed to write image: {path}")
    return path
