"""Rectangle geometry used by extraction, containment and verification."""

from __future__ import annotations

from typing import Optional

from services.blueprint.models import Rect


def contains(a: Rect, b: Rect, tol: float = 0) -> bool:
    """True iff ``b`` lies inside ``a`` grown by ``tol`` on every side."""
    return (
        b.x >= a.x - tol
        and b.y >= a.y - tol
        and b.right <= a.right + tol
        and b.bottom <= a.bottom + tol
    )


def area(r: Rect) -> float:
    return r.w * r.h


def intersection(a: Rect, b: Rect) -> Optional[Rect]:
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.right, b.right)
    y2 = min(a.bottom, b.bottom)
    if x2 <= x1 or y2 <= y1:
        return None
    return Rect(x1, y1, x2 - x1, y2 - y1)


def iou(a: Rect, b: Rect) -> float:
    iw = max(0.0, min(a.right, b.right) - max(a.x, b.x))
    ih = max(0.0, min(a.bottom, b.bottom) - max(a.y, b.y))
    inter = iw * ih
    union = area(a) + area(b) - inter
    if union <= 0:
        return 0.0
    return float(inter / union)


def max_edge_offset(a: Rect, b: Rect) -> float:
    """Largest absolute shift among the left, top, right and bottom edges."""
    return float(max(
        abs(a.x - b.x),
        abs(a.y - b.y),
        abs(a.right - b.right),
        abs(a.bottom - b.bottom),
    ))


def clip_to(bounds: Rect, r: Rect) -> Optional[Rect]:
    """Clip ``r`` to ``bounds``; None when nothing of ``r`` remains inside."""
    if contains(bounds, r):
        return r
    return intersection(bounds, r)
