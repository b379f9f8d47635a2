"""Data model shared by the blueprint pipeline stages."""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

ROOT_ID = "root"


def _finite_or_none(value: float) -> Optional[float]:
    return float(value) if math.isfinite(value) else None


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in source image pixel space."""

    x: float
    y: float
    w: float
    h: float

    def __post_init__(self) -> None:
        for name in ("x", "y", "w", "h"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ValueError(f"Rect.{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"Rect.{name} must be finite, got {value!r}")
        if self.w <= 0 or self.h <= 0:
            raise ValueError(f"Rect must have positive size, got {self.w}x{self.h}")

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    @property
    def area(self) -> float:
        return self.w * self.h

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Rect":
        if not isinstance(raw, Mapping):
            raise ValueError(f"Expected rect object, got {type(raw).__name__}")
        try:
            return cls(x=raw["x"], y=raw["y"], w=raw["w"], h=raw["h"])
        except KeyError as exc:
            raise ValueError(f"Rect missing field {exc.args[0]!r}") from exc


class NodeKind(str, Enum):
    """Closed set of node kinds understood by the exporters."""

    CONTAINER = "container"
    SECTION = "section"
    CARD = "card"
    LAYER = "layer"
    BUTTON = "button"
    INPUT = "input"
    TEXT = "text"
    HEADING = "heading"
    IMAGE = "image"
    ICON = "icon"
    NAV_ITEM = "nav-item"
    DIV = "div"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "NodeKind":
        if isinstance(value, NodeKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class LayoutHint:
    role: str = "leaf"  # leaf | flow | grid | stack
    flow: str = "none"  # none | flex-col | flex-row | grid | absolute
    gap_px: float = 0
    padding_px: float = 0
    cols: Optional[int] = None
    requires_approval: bool = False
    approved: bool = True
    absolute_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "role": self.role,
            "flow": self.flow,
            "gapPx": self.gap_px,
            "paddingPx": self.padding_px,
            "requiresApproval": self.requires_approval,
            "approved": self.approved,
        }
        if self.cols is not None:
            payload["cols"] = self.cols
        if self.absolute_reason:
            payload["absoluteReason"] = self.absolute_reason
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "LayoutHint":
        return cls(
            role=str(raw.get("role", "leaf")),
            flow=str(raw.get("flow", "none")),
            gap_px=float(raw.get("gapPx", 0) or 0),
            padding_px=float(raw.get("paddingPx", 0) or 0),
            cols=int(raw["cols"]) if raw.get("cols") is not None else None,
            requires_approval=bool(raw.get("requiresApproval", False)),
            approved=bool(raw.get("approved", True)),
            absolute_reason=raw.get("absoluteReason"),
        )


@dataclass
class StyleHint:
    radius_px: Optional[float] = None
    shadow: Optional[str] = None  # none | sm | md | lg
    stroke: Optional[str] = None
    fill: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        raw = {
            "radiusPx": self.radius_px,
            "shadow": self.shadow,
            "stroke": self.stroke,
            "fill": self.fill,
        }
        return {k: v for k, v in raw.items() if v is not None}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "StyleHint":
        radius = raw.get("radiusPx")
        return cls(
            radius_px=float(radius) if radius is not None else None,
            shadow=raw.get("shadow"),
            stroke=raw.get("stroke"),
            fill=raw.get("fill"),
        )


@dataclass
class UINode:
    id: str
    rect: Rect
    depth: int = 0
    parent_id: Optional[str] = None
    role: Optional[str] = None  # container | leaf, derived by the tree builder
    kind: NodeKind = NodeKind.DIV
    semantic_name: Optional[str] = None
    layout_hint: Optional[LayoutHint] = None
    style_hint: Optional[StyleHint] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "rect": self.rect.to_dict(),
            "depth": self.depth,
            "role": self.role,
            "kind": self.kind.value,
        }
        if self.parent_id is not None:
            payload["parentId"] = self.parent_id
        if self.semantic_name:
            payload["semanticName"] = self.semantic_name
        if self.layout_hint is not None:
            payload["layoutHint"] = self.layout_hint.to_dict()
        if self.style_hint is not None:
            payload["styleHint"] = self.style_hint.to_dict()
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "UINode":
        """Parse a node record; raises ValueError for malformed ids or rects."""
        node_id = raw.get("id")
        if not isinstance(node_id, str) or not node_id:
            raise ValueError(f"Node id must be a non-empty string, got {node_id!r}")
        hint = raw.get("layoutHint")
        style = raw.get("styleHint")
        parent_id = raw.get("parentId")
        return cls(
            id=node_id,
            rect=Rect.from_dict(raw.get("rect")),
            depth=int(raw.get("depth", 0) or 0),
            parent_id=str(parent_id) if parent_id is not None else None,
            role=raw.get("role"),
            kind=NodeKind.parse(raw.get("kind", NodeKind.DIV.value)),
            semantic_name=raw.get("semanticName"),
            layout_hint=LayoutHint.from_dict(hint) if isinstance(hint, Mapping) else None,
            style_hint=StyleHint.from_dict(style) if isinstance(style, Mapping) else None,
        )


@dataclass(frozen=True)
class ScanMark:
    i: int
    x: int
    y: int

    def to_dict(self) -> Dict[str, int]:
        return {"i": self.i, "x": self.x, "y": self.y}


@dataclass
class DiffMetrics:
    iou: float
    mismatch_pct: float
    max_offset_px: float
    passed: bool
    mismatched_pixels: Optional[int] = None
    reason: Optional[str] = None
    # Geometry hash of the node set this diff was measured against
    tree_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "iou": self.iou,
            "mismatchPct": self.mismatch_pct,
            "maxOffsetPx": _finite_or_none(self.max_offset_px),
            "pass": self.passed,
        }
        if self.mismatched_pixels is not None:
            payload["mismatchedPixels"] = self.mismatched_pixels
        if self.reason:
            payload["reason"] = self.reason
        if self.tree_hash:
            payload["treeHash"] = self.tree_hash
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DiffMetrics":
        offset = raw.get("maxOffsetPx")
        return cls(
            iou=float(raw.get("iou", 0.0)),
            mismatch_pct=float(raw.get("mismatchPct", 1.0)),
            max_offset_px=float(offset) if offset is not None else math.inf,
            passed=bool(raw.get("pass", False)),
            mismatched_pixels=raw.get("mismatchedPixels"),
            reason=raw.get("reason"),
            tree_hash=raw.get("treeHash"),
        )


@dataclass
class RectVerification:
    passed: bool
    min_iou: float
    max_offset: float
    pairs: int = 0
    tree_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "pass": self.passed,
            "minIou": self.min_iou,
            "maxOffset": _finite_or_none(self.max_offset),
            "pairs": self.pairs,
        }
        if self.tree_hash:
            payload["treeHash"] = self.tree_hash
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RectVerification":
        offset = raw.get("maxOffset")
        return cls(
            passed=bool(raw.get("pass", False)),
            min_iou=float(raw.get("minIou", 0.0)),
            max_offset=float(offset) if offset is not None else math.inf,
            pairs=int(raw.get("pairs", 0) or 0),
            tree_hash=raw.get("treeHash"),
        )


@dataclass
class GateDecision:
    ok: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "reasons": list(self.reasons)}
