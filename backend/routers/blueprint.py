"""Blueprint router: ingest, extract, verify, gate and export endpoints."""

import asyncio
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from config import DEFAULT_STEP
from logging_config import get_api_logger
from services.blueprint import BlueprintService, EvidenceReportService, get_blueprint_service
from services.blueprint.box_extractor import clamp_step
from services.blueprint.errors import DocumentNotFoundError
from services.blueprint.exporters import EXPORT_MEDIA_TYPES, EXPORT_SUFFIXES
from services.blueprint.scan import SerpentineScan
from services.progress_manager import get_progress_manager

router = APIRouter()
logger = get_api_logger()

# Broadcast roughly this many marks per scan.
PROGRESS_TICKS = 100


class BlueprintResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class IngestRequest(BaseModel):
    filePath: str
    name: Optional[str] = None
    step: Optional[float] = None


class ExtractRequest(BaseModel):
    step: Optional[float] = None


class SemanticHintsRequest(BaseModel):
    hints: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class LayoutHintOverrideRequest(BaseModel):
    role: Optional[str] = None
    flow: Optional[str] = None
    gapPx: Optional[float] = None
    paddingPx: Optional[float] = None
    cols: Optional[int] = None
    absoluteReason: Optional[str] = None


class VerifyRequest(BaseModel):
    renderingPath: str
    threshold: Optional[float] = None
    includeAA: Optional[bool] = None


class RectModel(BaseModel):
    x: float
    y: float
    w: float
    h: float


class VerifyRectsRequest(BaseModel):
    expected: List[RectModel]
    actual: List[RectModel]
    minIou: Optional[float] = None
    maxOffset: Optional[float] = None


class PipelineRequest(BaseModel):
    filePath: str
    step: Optional[float] = None


def _not_found(e: DocumentNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


def _failure(action: str, e: Exception) -> BlueprintResponse:
    logger.warning("%s failed: %s", action, e)
    return BlueprintResponse(success=False, error=str(e))


@router.get("/", response_model=BlueprintResponse)
async def list_blueprints(service: BlueprintService = Depends(get_blueprint_service)):
    """List stored blueprint documents."""
    return BlueprintResponse(success=True, data=await service.list_documents())


@router.post("/ingest", response_model=BlueprintResponse)
async def ingest_blueprint(request: IngestRequest, service: BlueprintService = Depends(get_blueprint_service)):
    """Register a source image as a new, unlocked blueprint."""
    try:
        data = await service.ingest(request.filePath, name=request.name, step=request.step)
        logger.info("ingested %s as %s", request.filePath, data["id"])
        return BlueprintResponse(success=True, data=data)
    except Exception as e:
        return _failure("ingest", e)


@router.post("/pipeline", response_model=BlueprintResponse)
async def run_pipeline(request: PipelineRequest, service: BlueprintService = Depends(get_blueprint_service)):
    """Run the full truth pipeline over one image file."""
    manager = get_progress_manager()
    try:
        await manager.send_progress("pipeline", 0, f"Running truth pipeline on {request.filePath}")
        on_tick = manager.scan_tick_callback(asyncio.get_event_loop(), "pipeline", 0, every=PROGRESS_TICKS)
        data = await service.run_pipeline(request.filePath, step=request.step, on_tick=on_tick)
        await manager.send_complete("pipeline", {"id": data["blueprint"]["id"], "export": data["export"]})
        return BlueprintResponse(success=True, data=data)
    except Exception as e:
        await manager.send_error("pipeline", str(e))
        return _failure("pipeline", e)


@router.post("/verify/rects", response_model=BlueprintResponse)
async def verify_rects(request: VerifyRectsRequest, service: BlueprintService = Depends(get_blueprint_service)):
    """Positional geometric comparison of two rect lists."""
    try:
        data = await service.verify_rects(
            [r.dict() for r in request.expected],
            [r.dict() for r in request.actual],
            min_iou=request.minIou,
            max_offset=request.maxOffset,
        )
        return BlueprintResponse(success=True, data=data)
    except Exception as e:
        return _failure("verify rects", e)


@router.get("/{doc_id}", response_model=BlueprintResponse)
async def get_blueprint(doc_id: str, service: BlueprintService = Depends(get_blueprint_service)):
    """Return the persisted blueprint document."""
    try:
        return BlueprintResponse(success=True, data=await service.get_document(doc_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)


@router.post("/{doc_id}/extract", response_model=BlueprintResponse)
async def extract_blueprint(
    doc_id: str,
    request: ExtractRequest,
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Scan and extract boxes, then build the hinted node tree."""
    manager = get_progress_manager()
    try:
        doc = await service.get_document(doc_id)
        step_px = clamp_step(request.step if request.step is not None else (doc["scan"]["stepPx"] or DEFAULT_STEP))
        expected = len(SerpentineScan(doc["image"]["width"], doc["image"]["height"], step_px))
        on_tick = manager.scan_tick_callback(
            asyncio.get_event_loop(), doc_id, expected, every=max(1, expected // PROGRESS_TICKS)
        )
        await manager.send_progress(doc_id, 0, f"Scanning {expected} points at step {step_px}px")
        data = await service.extract(doc_id, step=step_px, on_tick=on_tick)
        await manager.send_complete(doc_id, data["scanProof"])
        return BlueprintResponse(success=True, data=data)
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        await manager.send_error(doc_id, str(e))
        return _failure("extract", e)


@router.post("/{doc_id}/lock", response_model=BlueprintResponse)
async def lock_blueprint(doc_id: str, service: BlueprintService = Depends(get_blueprint_service)):
    """Lock the source image and coordinate frame."""
    try:
        return BlueprintResponse(success=True, data=await service.lock(doc_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("lock", e)


@router.post("/{doc_id}/hints/semantic", response_model=BlueprintResponse)
async def apply_semantic_hints(
    doc_id: str,
    request: SemanticHintsRequest,
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Apply node kinds, names and style hints from a semantic provider."""
    try:
        return BlueprintResponse(success=True, data=await service.apply_semantic_hints(doc_id, request.hints))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("semantic hints", e)


@router.post("/{doc_id}/hints/layout/{node_id}", response_model=BlueprintResponse)
async def override_layout_hint(
    doc_id: str,
    node_id: str,
    request: LayoutHintOverrideRequest,
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Override a node's layout hint; the override awaits approval."""
    raw = request.dict(exclude_none=True)
    keys = {"gapPx": "gap_px", "paddingPx": "padding_px", "absoluteReason": "absolute_reason"}
    fields = {keys.get(k, k): v for k, v in raw.items()}
    try:
        return BlueprintResponse(success=True, data=await service.override_hint(doc_id, node_id, fields))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    except Exception as e:
        return _failure("override hint", e)


@router.post("/{doc_id}/hints/layout/{node_id}/approve", response_model=BlueprintResponse)
async def approve_layout_hint(
    doc_id: str,
    node_id: str,
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Approve a node's pending layout hint."""
    try:
        return BlueprintResponse(success=True, data=await service.approve_hint(doc_id, node_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    except Exception as e:
        return _failure("approve hint", e)


@router.post("/{doc_id}/render", response_model=BlueprintResponse)
async def render_blueprint(doc_id: str, service: BlueprintService = Depends(get_blueprint_service)):
    """Rasterise the node tree as an outline skeleton at 1:1 size."""
    try:
        return BlueprintResponse(success=True, data=await service.render(doc_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("render", e)


@router.post("/{doc_id}/verify", response_model=BlueprintResponse)
async def verify_blueprint(
    doc_id: str,
    request: VerifyRequest,
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Pixel-diff a rendering against the locked source image."""
    try:
        data = await service.verify(
            doc_id,
            request.renderingPath,
            threshold=request.threshold,
            include_aa=request.includeAA,
        )
        return BlueprintResponse(success=True, data=data)
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("verify", e)


@router.get("/{doc_id}/gate", response_model=BlueprintResponse)
async def get_export_gate(doc_id: str, service: BlueprintService = Depends(get_blueprint_service)):
    """Evaluate the export gate for a blueprint."""
    try:
        return BlueprintResponse(success=True, data=await service.gate(doc_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("gate", e)


@router.get("/{doc_id}/export", response_model=BlueprintResponse)
async def export_blueprint(
    doc_id: str,
    format: str = Query("react"),
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Export the node tree if the gate allows it."""
    try:
        data = await service.export(doc_id, format)
        if not data["ok"]:
            return BlueprintResponse(success=False, data=data, error="Export blocked: " + ", ".join(data["reasons"]))
        return BlueprintResponse(success=True, data=data)
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("export", e)


@router.get("/{doc_id}/export/file")
async def download_export(
    doc_id: str,
    format: str = Query("react"),
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Return the raw export artefact with its media type."""
    if format not in EXPORT_MEDIA_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown export format: {format}")
    try:
        data = await service.export(doc_id, format)
    except DocumentNotFoundError as e:
        raise _not_found(e)
    if not data["ok"]:
        raise HTTPException(status_code=409, detail={"reasons": data["reasons"]})

    content = data["content"]
    if not isinstance(content, str):
        content = json.dumps(content, indent=2)
    filename = f"{doc_id}.{EXPORT_SUFFIXES[format]}"
    return Response(
        content=content,
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{doc_id}/report", response_model=BlueprintResponse)
async def get_report_state(doc_id: str, service: BlueprintService = Depends(get_blueprint_service)):
    """Paths and summary of the last evidence report, if one was generated."""
    try:
        report = EvidenceReportService(store=service.store)
        return BlueprintResponse(success=True, data=await report.get_state(doc_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)


@router.post("/{doc_id}/report", response_model=BlueprintResponse)
async def generate_report(doc_id: str, service: BlueprintService = Depends(get_blueprint_service)):
    """Write the evidence report for a blueprint."""
    try:
        report = EvidenceReportService(store=service.store)
        return BlueprintResponse(success=True, data=await report.generate(doc_id))
    except DocumentNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        return _failure("report", e)
