"""Export gate: the single decision point for releasing a blueprint."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from services.blueprint.models import GateDecision

if TYPE_CHECKING:
    from services.blueprint.document import BlueprintDocument

NOT_LOCKED = "BLUEPRINT_NOT_LOCKED"
DRIFT_DETECTED = "DRIFT_DETECTED"
VERIFY_TRUTH_FAILED = "VERIFY_TRUTH_FAILED"
NO_BOXES = "NO_BOXES"
NO_NODES = "NO_NODES"
MISSING_LAYOUT_HINTS = "MISSING_LAYOUT_HINTS"

REASON_ORDER = (
    NOT_LOCKED,
    DRIFT_DETECTED,
    VERIFY_TRUTH_FAILED,
    NO_BOXES,
    NO_NODES,
    MISSING_LAYOUT_HINTS,
)


def can_export(
    locked: bool,
    drift_detected: bool,
    verification_pass: bool,
    boxes_len: int,
    nodes_len: int,
    missing_hints_count: int,
) -> GateDecision:
    """Collect every failing condition; reasons always come out in ``REASON_ORDER``."""
    reasons: List[str] = []
    if not locked:
        reasons.append(NOT_LOCKED)
    if drift_detected:
        reasons.append(DRIFT_DETECTED)
    if not verification_pass:
        reasons.append(VERIFY_TRUTH_FAILED)
    if not boxes_len or boxes_len <= 0:
        reasons.append(NO_BOXES)
    if not nodes_len or nodes_len <= 0:
        reasons.append(NO_NODES)
    if missing_hints_count and missing_hints_count > 0:
        reasons.append(MISSING_LAYOUT_HINTS)
    return GateDecision(ok=not reasons, reasons=reasons)


def gate_for_document(doc: "BlueprintDocument", current_bytes: Optional[bytes] = None) -> GateDecision:
    """Gate a persisted document, optionally re-hashing the current source bytes."""
    tree = doc.tree()
    return can_export(
        locked=doc.locked,
        drift_detected=doc.detect_drift(current_bytes),
        verification_pass=doc.verification_passed,
        boxes_len=len(doc.boxes),
        nodes_len=tree.node_count,
        missing_hints_count=doc.missing_hints(),
    )
