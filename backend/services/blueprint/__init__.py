"""Blueprint services: pixel image to verified, exportable node tree."""

from services.blueprint.blueprint_service import BlueprintService, get_blueprint_service
from services.blueprint.evidence_report_service import EvidenceReportService
from services.blueprint.storage import BlueprintStore

__all__ = [
    "BlueprintService",
    "BlueprintStore",
    "EvidenceReportService",
    "get_blueprint_service",
]
