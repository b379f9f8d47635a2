"""Blueprint service: async facade over the synchronous pipeline stages."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from config import DEFAULT_STEP, DIFF_INCLUDE_AA, DIFF_THRESHOLD, RECT_MAX_OFFSET_PX, RECT_MIN_IOU
from logging_config import get_pipeline_logger
from services.blueprint.box_extractor import clamp_step, extract
from services.blueprint.containment import build_containment_tree
from services.blueprint.document import BlueprintDocument
from services.blueprint.export_gate import gate_for_document
from services.blueprint.exporters import EXPORTERS
from services.blueprint.image_io import decode_image, load_image_file
from services.blueprint.layout_hints import (
    apply_semantic_hints,
    approve_layout_hint,
    attach_layout_hints,
    override_layout_hint,
)
from services.blueprint.models import GateDecision, Rect, ScanMark
from services.blueprint.overlay import draw_overlay, draw_scan_trace, render_skeleton, write_png
from services.blueprint.pipeline import run_truth_pipeline
from services.blueprint.scan import run_scan
from services.blueprint.storage import BlueprintStore
from services.blueprint.verification import verify_rect_pairs, verify_rendering

logger = get_pipeline_logger()

OnTick = Optional[Callable[[ScanMark], None]]


def resolve_verify_params(threshold: Any = None, include_aa: Any = None) -> Dict[str, Any]:
    t = DIFF_THRESHOLD if threshold is None else float(threshold)
    return {
        "threshold": float(max(0.0, min(1.0, t))),
        "includeAA": DIFF_INCLUDE_AA if include_aa is None else bool(include_aa),
    }


def resolve_rect_params(min_iou: Any = None, max_offset: Any = None) -> Dict[str, float]:
    m = RECT_MIN_IOU if min_iou is None else float(min_iou)
    o = RECT_MAX_OFFSET_PX if max_offset is None else float(max_offset)
    return {
        "minIou": float(max(0.0, min(1.0, m))),
        "maxOffset": float(max(0.0, o)),
    }


def _summary(doc: BlueprintDocument) -> Dict[str, Any]:
    return {
        "id": doc.id,
        "image": {"name": doc.name, "width": doc.width, "height": doc.height, "hash": doc.hash},
        "locked": doc.locked,
        "lockedAt": doc.locked_at,
        "boxCount": len(doc.boxes),
        "nodeCount": len(doc.nodes),
        "verified": doc.verification_passed,
    }


class BlueprintService:
    """Ingest, extract, verify and export blueprints stored under one data dir."""

    def __init__(self, store: Optional[BlueprintStore] = None) -> None:
        self.store = store or BlueprintStore()

    async def ingest(self, file_path: str, name: Optional[str] = None, step: Any = None) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._ingest_sync, file_path, name, step)

    async def extract(self, doc_id: str, step: Any = None, on_tick: OnTick = None) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._extract_sync, doc_id, step, on_tick)

    async def lock(self, doc_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._lock_sync, doc_id)

    async def apply_semantic_hints(self, doc_id: str, hints: Mapping[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._semantic_hints_sync, doc_id, hints)

    async def override_hint(self, doc_id: str, node_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._override_hint_sync, doc_id, node_id, fields)

    async def approve_hint(self, doc_id: str, node_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._approve_hint_sync, doc_id, node_id)

    async def render(self, doc_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._render_sync, doc_id)

    async def verify(
        self,
        doc_id: str,
        rendering_path: str,
        threshold: Optional[float] = None,
        include_aa: Optional[bool] = None,
    ) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._verify_sync, doc_id, rendering_path, threshold, include_aa)

    async def verify_rects(
        self,
        expected: List[Mapping[str, Any]],
        actual: List[Mapping[str, Any]],
        min_iou: Optional[float] = None,
        max_offset: Optional[float] = None,
    ) -> Dict[str, Any]:
        params = resolve_rect_params(min_iou, max_offset)
        result = verify_rect_pairs(
            [Rect.from_dict(r) for r in expected],
            [Rect.from_dict(r) for r in actual],
            min_iou=params["minIou"],
            max_offset=params["maxOffset"],
        )
        return result.to_dict()

    async def gate(self, doc_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._gate_sync, doc_id)

    async def export(self, doc_id: str, fmt: str = "react") -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._export_sync, doc_id, fmt)

    async def get_document(self, doc_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        doc = await loop.run_in_executor(None, self.store.load_document, doc_id)
        return doc.to_dict()

    async def list_documents(self) -> List[Dict[str, Any]]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.store.list_documents)

    async def run_pipeline(self, file_path: str, step: Any = None, on_tick: OnTick = None) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._run_pipeline_sync, file_path, step, on_tick)

    # Sync implementations

    def _ingest_sync(self, file_path: str, name: Optional[str], step: Any) -> Dict[str, Any]:
        path = Path(file_path)
        data = load_image_file(path)
        doc = BlueprintDocument.ingest(data, name=name or path.name)
        doc.scan.step_px = clamp_step(step if step is not None else DEFAULT_STEP)
        self.store.save_source(doc.id, data, path.suffix)
        self.store.save_document(doc)
        return _summary(doc)

    def _extract_sync(self, doc_id: str, step: Any, on_tick: OnTick) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        data = self.store.load_source(doc_id)
        rgba = decode_image(data, expected_size=(doc.width, doc.height))
        step_px = clamp_step(step if step is not None else (doc.scan.step_px or DEFAULT_STEP))

        scan = run_scan(doc.width, doc.height, step_px, on_tick=on_tick)
        extraction = extract(rgba, step=step_px)
        doc.set_extraction(extraction.rects, step_px, len(scan.marks), scan.trace_hash)
        tree = attach_layout_hints(build_containment_tree(extraction.nodes, (doc.width, doc.height)))
        doc.set_tree(tree)
        self.store.save_document(doc)

        overlays = self.store.subdir(doc_id, "overlays")
        boxes_path = write_png(overlays / "boxes.png", draw_overlay(rgba, tree.flat_nodes()))
        trace_path = write_png(overlays / "scan_trace.png", draw_scan_trace(rgba, scan.marks))

        return {
            "document": _summary(doc),
            "extraction": extraction.summary(),
            "scanProof": {"transformHash": doc.scan.transform_hash, **scan.to_dict(include_marks=False)},
            "nodes": [n.to_dict() for n in tree.flat_nodes()],
            "overlayPath": str(boxes_path),
            "traceOverlayPath": str(trace_path),
        }

    def _lock_sync(self, doc_id: str) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        doc.lock()
        self.store.save_document(doc)
        return {
            "id": doc.id,
            "locked": doc.locked,
            "lockedAt": doc.locked_at,
            "transformHash": doc.scan.transform_hash,
        }

    def _semantic_hints_sync(self, doc_id: str, hints: Mapping[str, Any]) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        doc.set_tree(apply_semantic_hints(doc.tree(), hints))
        self.store.save_document(doc)
        return {"id": doc.id, "nodes": [n.to_dict() for n in doc.nodes]}

    def _override_hint_sync(self, doc_id: str, node_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        tree = override_layout_hint(doc.tree(), node_id, **dict(fields))
        doc.set_tree(tree)
        self.store.save_document(doc)
        return tree.get(node_id).to_dict()

    def _approve_hint_sync(self, doc_id: str, node_id: str) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        tree = approve_layout_hint(doc.tree(), node_id)
        doc.set_tree(tree)
        self.store.save_document(doc)
        return tree.get(node_id).to_dict()

    def _render_sync(self, doc_id: str) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        path = write_png(self.store.subdir(doc_id, "renders") / "skeleton.png", render_skeleton(doc.tree()))
        return {"id": doc.id, "renderingPath": str(path), "width": doc.width, "height": doc.height}

    def _verify_sync(
        self,
        doc_id: str,
        rendering_path: str,
        threshold: Optional[float],
        include_aa: Optional[bool],
    ) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        params = resolve_verify_params(threshold, include_aa)
        source = self.store.load_source(doc_id)
        rendering = load_image_file(Path(rendering_path))

        result = verify_rendering(
            source,
            (doc.width, doc.height),
            rendering,
            threshold=params["threshold"],
            include_aa=params["includeAA"],
        )
        metrics = doc.record_diff(result.metrics)
        self.store.save_document(doc)

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        diff_path = write_png(self.store.subdir(doc_id, "diffs") / f"diff_{stamp}.png", result.diff_image)
        return {
            "metrics": metrics.to_dict(),
            "params": params,
            "diffImagePath": str(diff_path),
            "historyLength": len(doc.diff_history),
        }

    def _gate_decision(self, doc: BlueprintDocument) -> GateDecision:
        """Gate a document after re-extracting its locked source to measure drift."""
        source = self.store.load_source(doc.id)
        if doc.locked and doc.boxes:
            rgba = decode_image(source, expected_size=(doc.width, doc.height))
            doc.measure_drift(extract(rgba, step=doc.scan.step_px or DEFAULT_STEP).rects)
            self.store.save_document(doc)
        return gate_for_document(doc, source)

    def _gate_sync(self, doc_id: str) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        return self._gate_decision(doc).to_dict()

    def _export_sync(self, doc_id: str, fmt: str) -> Dict[str, Any]:
        exporter = EXPORTERS.get(fmt)
        if exporter is None:
            raise ValueError(f"Unknown export format {fmt!r}. Expected one of: {', '.join(sorted(EXPORTERS))}")
        doc = self.store.load_document(doc_id)
        decision = self._gate_decision(doc)
        if not decision.ok:
            logger.info("export %s (%s) refused: %s", doc_id, fmt, ",".join(decision.reasons))
            return {"ok": False, "reasons": decision.reasons, "format": fmt, "content": None}
        return {"ok": True, "reasons": [], "format": fmt, "content": exporter(doc.tree())}

    def _run_pipeline_sync(self, file_path: str, step: Any, on_tick: OnTick) -> Dict[str, Any]:
        path = Path(file_path)
        data = load_image_file(path)
        result = run_truth_pipeline(data, step=step if step is not None else DEFAULT_STEP, name=path.name, on_tick=on_tick)
        self.store.save_source(result.document.id, data, path.suffix)
        self.store.save_document(result.document)
        return result.to_dict()


_blueprint_service: Optional[BlueprintService] = None


def get_blueprint_service() -> BlueprintService:
    global _blueprint_service
    if _blueprint_service is None:
        _blueprint_service = BlueprintService()
    return _blueprint_service
