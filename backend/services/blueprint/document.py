"""Persisted blueprint document: locked source image, scan proof, nodes and diffs."""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from logging_config import get_pipeline_logger
from services.blueprint.containment import ContainmentTree, build_containment_tree
from services.blueprint.errors import DocumentLockedError
from services.blueprint.geometry import max_edge_offset
from services.blueprint.image_io import content_hash, decode_image
from services.blueprint.layout_hints import count_missing_hints
from services.blueprint.models import DiffMetrics, Rect, RectVerification, UINode

logger = get_pipeline_logger()

PIXEL_SPACE = "1:1"
SCAN_PATH = "serpentine"


def make_transform_hash(width: int, height: int, pixel_space: str = PIXEL_SPACE, no_normalize: bool = True) -> str:
    """Fingerprint of the coordinate frame nodes were extracted in."""
    stable = json.dumps(
        {"w": int(width), "h": int(height), "pixelSpace": pixel_space, "noNormalize": bool(no_normalize)},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(stable.encode("utf-8")).hexdigest()


def make_tree_hash(nodes: Iterable[UINode]) -> str:
    """Fingerprint of node ids and rects; kinds, names and hints do not count."""
    rows = sorted([n.id, float(n.rect.x), float(n.rect.y), float(n.rect.w), float(n.rect.h)] for n in nodes)
    stable = json.dumps(rows, separators=(",", ":"))
    return hashlib.sha256(stable.encode("utf-8")).hexdigest()


@dataclass
class ScanRecord:
    step_px: int = 0
    marks: int = 0
    trace_hash: Optional[str] = None
    transform_hash: Optional[str] = None
    drift_px: float = 0
    path: str = SCAN_PATH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "stepPx": self.step_px,
            "marks": self.marks,
            "traceHash": self.trace_hash,
            "transformHash": self.transform_hash,
            "driftPx": self.drift_px,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ScanRecord":
        return cls(
            step_px=int(raw.get("stepPx", 0) or 0),
            marks=int(raw.get("marks", 0) or 0),
            trace_hash=raw.get("traceHash"),
            transform_hash=raw.get("transformHash"),
            drift_px=float(raw.get("driftPx", 0) or 0),
            path=str(raw.get("path", SCAN_PATH)),
        )


@dataclass
class BlueprintDocument:
    id: str
    name: str
    width: int
    height: int
    hash: str
    locked: bool = False
    locked_at: Optional[str] = None
    scan: ScanRecord = field(default_factory=ScanRecord)
    boxes: List[Rect] = field(default_factory=list)
    nodes: List[UINode] = field(default_factory=list)
    diff_last: Optional[DiffMetrics] = None
    diff_history: List[DiffMetrics] = field(default_factory=list)
    rect_check: Optional[RectVerification] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def ingest(cls, data: bytes, name: str, doc_id: Optional[str] = None) -> "BlueprintDocument":
        """Create an unlocked document from source bytes; the bytes must decode."""
        rgba = decode_image(data)
        height, width = rgba.shape[:2]
        doc = cls(
            id=doc_id or uuid.uuid4().hex[:12],
            name=name,
            width=int(width),
            height=int(height),
            hash=content_hash(data),
        )
        logger.info("document %s: ingested %s (%dx%d)", doc.id, name, width, height)
        return doc

    # Lock & drift

    def lock(self) -> None:
        if self.locked:
            return
        self.locked = True
        self.locked_at = datetime.now().isoformat()
        self.scan.transform_hash = make_transform_hash(self.width, self.height)
        logger.info("document %s: locked at %s", self.id, self.locked_at)

    def replace_source(self, data: bytes, name: Optional[str] = None) -> None:
        if self.locked:
            raise DocumentLockedError(f"Blueprint {self.id} is locked; its source image cannot be replaced")
        rgba = decode_image(data)
        self.height, self.width = (int(v) for v in rgba.shape[:2])
        self.hash = content_hash(data)
        if name:
            self.name = name
        self.boxes = []
        self.nodes = []
        self.scan = ScanRecord()
        self.diff_last = None
        self.diff_history = []
        self.rect_check = None

    def detect_drift(self, current_bytes: Optional[bytes] = None) -> bool:
        """True when a locked document no longer matches its frame or source bytes."""
        if not self.locked:
            return False
        if self.scan.transform_hash and self.scan.transform_hash != make_transform_hash(self.width, self.height):
            return True
        if current_bytes is not None and content_hash(current_bytes) != self.hash:
            return True
        return self.scan.drift_px > 0

    def measure_drift(self, fresh_boxes: Iterable[Rect]) -> float:
        """Record how far a fresh extraction of the source sits from the stored boxes.

        Boxes are paired by position. A different box count counts as drift
        across the whole frame.
        """
        fresh = list(fresh_boxes)
        if len(fresh) != len(self.boxes):
            drift = float(max(self.width, self.height))
        else:
            drift = max((max_edge_offset(a, b) for a, b in zip(self.boxes, fresh)), default=0.0)
        self.scan.drift_px = float(drift)
        if drift > 0:
            logger.warning("document %s: drift of %gpx against stored boxes", self.id, drift)
        return self.scan.drift_px

    # Extraction results

    def set_extraction(self, boxes: List[Rect], step_px: int, marks: int, trace_hash: str) -> None:
        """Store new boxes; verification of the previous geometry no longer applies."""
        if self.locked and self.nodes:
            raise DocumentLockedError(f"Blueprint {self.id} is locked and already extracted")
        self.boxes = list(boxes)
        self.scan.step_px = int(step_px)
        self.scan.marks = int(marks)
        self.scan.trace_hash = trace_hash
        self.scan.drift_px = 0
        self.diff_last = None
        self.rect_check = None

    def set_tree(self, tree: ContainmentTree) -> None:
        nodes = tree.flat_nodes()
        if make_tree_hash(nodes) != self.tree_hash:
            self.diff_last = None
            self.rect_check = None
        self.nodes = nodes

    @property
    def tree_hash(self) -> str:
        return make_tree_hash(self.nodes)

    def tree(self) -> ContainmentTree:
        """Rebuild the containment tree from the stored flat nodes."""
        return build_containment_tree(self.nodes, (self.width, self.height))

    def missing_hints(self) -> int:
        return count_missing_hints(self.tree())

    # Verification

    def record_diff(self, metrics: DiffMetrics) -> DiffMetrics:
        stamped = replace(metrics, tree_hash=self.tree_hash)
        self.diff_last = stamped
        self.diff_history.append(stamped)
        return stamped

    def record_rect_check(self, result: RectVerification) -> RectVerification:
        self.rect_check = replace(result, tree_hash=self.tree_hash)
        return self.rect_check

    @property
    def verification_passed(self) -> bool:
        """Latest pixel diff when there is one, otherwise the rect self-check.

        Either result only counts while the node geometry it was measured
        against is unchanged.
        """
        current = self.tree_hash
        if self.diff_last is not None:
            return self.diff_last.passed and self.diff_last.tree_hash == current
        if self.rect_check is not None:
            return self.rect_check.passed and self.rect_check.tree_hash == current
        return False

    # Serialisation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "image": {"name": self.name, "width": self.width, "height": self.height, "hash": self.hash},
            "locked": self.locked,
            "lockedAt": self.locked_at,
            "locks": {"pixelSpace": PIXEL_SPACE, "noNormalize": True, "noSemanticOverride": True},
            "scan": self.scan.to_dict(),
            "boxes": [b.to_dict() for b in self.boxes],
            "nodes": [n.to_dict() for n in self.nodes],
            "diff": {
                "last": self.diff_last.to_dict() if self.diff_last is not None else None,
                "history": [m.to_dict() for m in self.diff_history],
            },
            "rectCheck": self.rect_check.to_dict() if self.rect_check is not None else None,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "BlueprintDocument":
        image = raw.get("image") or {}
        diff = raw.get("diff") or {}
        last = diff.get("last")
        rect_check = raw.get("rectCheck")
        return cls(
            id=str(raw["id"]),
            name=str(image.get("name", "")),
            width=int(image["width"]),
            height=int(image["height"]),
            hash=str(image.get("hash", "")),
            locked=bool(raw.get("locked", False)),
            locked_at=raw.get("lockedAt"),
            scan=ScanRecord.from_dict(raw.get("scan") or {}),
            boxes=[Rect.from_dict(b) for b in raw.get("boxes") or []],
            nodes=[UINode.from_dict(n) for n in raw.get("nodes") or []],
            diff_last=DiffMetrics.from_dict(last) if isinstance(last, Mapping) else None,
            diff_history=[DiffMetrics.from_dict(m) for m in diff.get("history") or []],
            rect_check=RectVerification.from_dict(rect_check) if isinstance(rect_check, Mapping) else None,
            created_at=str(raw.get("createdAt") or datetime.now().isoformat()),
        )
