"""End-to-end truth run: lock, trace, extract, build, hint, check, gate, export."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import DEFAULT_STEP
from logging_config import get_pipeline_logger
from services.blueprint.box_extractor import ExtractionResult, clamp_step, extract
from services.blueprint.containment import ContainmentTree, build_containment_tree
from services.blueprint.document import BlueprintDocument
from services.blueprint.export_gate import can_export
from services.blueprint.exporters import export_absolute_react
from services.blueprint.image_io import decode_image
from services.blueprint.layout_hints import attach_layout_hints, count_missing_hints
from services.blueprint.models import GateDecision, Rect, RectVerification, ScanMark
from services.blueprint.scan import ScanRunResult, run_scan
from services.blueprint.thresholds import ThresholdStrategy
from services.blueprint.verification import verify_extraction_consistency, verify_rect_pairs

logger = get_pipeline_logger()

CompareRects = Callable[[List[Rect], List[Rect]], RectVerification]


@dataclass
class TruthRunResult:
    document: BlueprintDocument
    scan: ScanRunResult
    extraction: Optional[ExtractionResult]
    tree: ContainmentTree
    verification: RectVerification
    gate: GateDecision
    react: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return not self.scan.completed

    def to_dict(self, include_marks: bool = False) -> Dict[str, Any]:
        export: Dict[str, Any] = self.gate.to_dict()
        if self.react is not None:
            export["react"] = self.react
        return {
            "blueprint": self.document.to_dict(),
            "scanProof": {
                "invariants": {"transformHash": self.document.scan.transform_hash},
                **self.scan.to_dict(include_marks=include_marks),
            },
            "extraction": self.extraction.summary() if self.extraction is not None else None,
            "nodes": [n.to_dict() for n in self.tree.flat_nodes()],
            "export": export,
            "verification": self.verification.to_dict(),
            "cancelled": self.cancelled,
        }


def run_truth_pipeline(
    image_bytes: bytes,
    step: Any = DEFAULT_STEP,
    name: str = "blueprint",
    on_tick: Optional[Callable[[ScanMark], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    compare_rects: Optional[CompareRects] = None,
    threshold: Optional[ThresholdStrategy] = None,
    doc_id: Optional[str] = None,
) -> TruthRunResult:
    """Run every stage against one image and return the proof bundle.

    The document is locked before the scan starts. A stopped scan skips
    extraction, so the gate refuses export. The rect check compares a second
    extraction pass with the first.
    """
    rgba = decode_image(image_bytes)
    doc = BlueprintDocument.ingest(image_bytes, name=name, doc_id=doc_id)
    doc.lock()
    step_px = clamp_step(step)

    scan = run_scan(doc.width, doc.height, step_px, on_tick=on_tick, should_stop=should_stop)
    if not scan.completed:
        logger.info("pipeline %s: scan stopped after %d/%d marks", doc.id, len(scan.marks), scan.expected)
        tree = build_containment_tree([], (doc.width, doc.height))
        verification = verify_rect_pairs([], [])
        gate = can_export(doc.locked, doc.detect_drift(image_bytes), verification.passed, 0, 0, 0)
        return TruthRunResult(doc, scan, None, tree, verification, gate)

    extraction = extract(rgba, step=step_px, threshold=threshold)
    doc.set_extraction(extraction.rects, step_px, len(scan.marks), scan.trace_hash)

    tree = attach_layout_hints(build_containment_tree(extraction.nodes, (doc.width, doc.height)))
    doc.set_tree(tree)

    second = extract(rgba, step=step_px, threshold=threshold)
    if compare_rects is None:
        checked = verify_extraction_consistency(extraction.nodes, second.nodes)
    else:
        checked = compare_rects(extraction.rects, second.rects)
    verification = doc.record_rect_check(checked)
    doc.measure_drift(second.rects)

    gate = can_export(
        locked=doc.locked,
        drift_detected=doc.detect_drift(image_bytes),
        verification_pass=verification.passed,
        boxes_len=len(extraction.rects),
        nodes_len=tree.node_count,
        missing_hints_count=count_missing_hints(tree),
    )
    react = export_absolute_react(tree) if gate.ok else None
    logger.info(
        "pipeline %s: %d boxes, gate ok=%s reasons=%s",
        doc.id, len(extraction.rects), gate.ok, ",".join(gate.reasons) or "-",
    )
    return TruthRunResult(doc, scan, extraction, tree, verification, gate, react)
