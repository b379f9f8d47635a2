"""Blueprint evidence report service."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from html import escape
from pathlib import Path
from typing import Any, Dict, Optional

from services.blueprint.document import BlueprintDocument
from services.blueprint.export_gate import gate_for_document
from services.blueprint.storage import BlueprintStore, load_json_object, write_json

SOFTWARE_VERSION = "1.0.0"


class EvidenceReportService:
    """Assemble evidence report artefacts for one blueprint document."""

    def __init__(self, store: Optional[BlueprintStore] = None) -> None:
        self.store = store or BlueprintStore()

    async def get_state(self, doc_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._get_state_sync, doc_id)

    async def generate(self, doc_id: str) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._generate_sync, doc_id)

    def _get_state_sync(self, doc_id: str) -> Dict[str, Any]:
        report_dir = self.store.subdir(doc_id, "report")
        state_path = report_dir / "state.json"
        report_json_path = report_dir / "evidence_report.json"
        report_html_path = report_dir / "evidence_report.html"

        state_payload: Dict[str, Any] = {
            "outputDir": str(report_dir),
            "statePath": str(state_path),
            "reportJsonPath": str(report_json_path) if report_json_path.exists() else None,
            "reportHtmlPath": str(report_html_path) if report_html_path.exists() else None,
            "lastGeneratedAt": None,
            "summary": None,
        }
        if state_path.exists():
            saved = load_json_object(state_path)
            state_payload["lastGeneratedAt"] = saved.get("lastGeneratedAt")
            state_payload["summary"] = saved.get("summary")

        return state_payload

    def _generate_sync(self, doc_id: str) -> Dict[str, Any]:
        doc = self.store.load_document(doc_id)
        project_dir = self.store.project_dir(doc_id)
        report_dir = self.store.subdir(doc_id, "report")
        report_payload = self._build_report_payload(doc, project_dir)
        report_html = self._render_report_html(report_payload)

        report_json_path = write_json(report_dir / "evidence_report.json", report_payload)
        report_html_path = report_dir / "evidence_report.html"
        report_html_path.write_text(report_html, encoding="utf-8")

        summary = {
            "ranAt": report_payload["ranAt"],
            "nodeCount": report_payload["tree"]["nodeCount"],
            "verified": report_payload["verification"]["pass"],
            "exportAllowed": report_payload["gate"]["ok"],
        }
        state_path = write_json(
            report_dir / "state.json",
            {
                "lastGeneratedAt": report_payload["ranAt"],
                "summary": summary,
                "updatedAt": datetime.now().isoformat(),
            },
        )

        return {
            "outputDir": str(report_dir),
            "statePath": str(state_path),
            "reportJsonPath": str(report_json_path),
            "reportHtmlPath": str(report_html_path),
            "summary": summary,
            "ranAt": report_payload["ranAt"],
        }

    def _build_report_payload(self, doc: BlueprintDocument, project_dir: Path) -> Dict[str, Any]:
        source_bytes = self.store.load_source(doc.id)
        tree = doc.tree()
        gate = gate_for_document(doc, source_bytes)
        depth = max((n.depth for n in tree.flat_nodes()), default=0)
        roles: Dict[str, int] = {}
        kinds: Dict[str, int] = {}
        for node in tree.flat_nodes():
            roles[node.role or "unknown"] = roles.get(node.role or "unknown", 0) + 1
            kinds[node.kind.value] = kinds.get(node.kind.value, 0) + 1

        return {
            "blueprintId": doc.id,
            "ranAt": datetime.now().isoformat(),
            "image": {"name": doc.name, "width": doc.width, "height": doc.height, "hash": doc.hash},
            "lock": {
                "locked": doc.locked,
                "lockedAt": doc.locked_at,
                "transformHash": doc.scan.transform_hash,
                "driftDetected": doc.detect_drift(source_bytes),
            },
            "scanProof": doc.scan.to_dict(),
            "tree": {
                "boxCount": len(doc.boxes),
                "nodeCount": tree.node_count,
                "maxDepth": depth,
                "roles": roles,
                "kinds": kinds,
            },
            "verification": {
                "pass": doc.verification_passed,
                "last": doc.diff_last.to_dict() if doc.diff_last is not None else None,
                "history": [m.to_dict() for m in doc.diff_history],
                "rectCheck": doc.rect_check.to_dict() if doc.rect_check is not None else None,
            },
            "gate": gate.to_dict(),
            "provenance": {
                "softwareVersion": SOFTWARE_VERSION,
                "generatedAt": datetime.now().isoformat(),
                "paths": {
                    "document": str(project_dir / "document.json"),
                    "source": str(self.store.source_path(doc.id)),
                    "diffs": str(project_dir / "diffs"),
                    "overlays": str(project_dir / "overlays"),
                },
            },
        }

    @staticmethod
    def _render_report_html(payload: Dict[str, Any]) -> str:
        def pp(value: Any) -> str:
            return escape(json.dumps(value, indent=2, ensure_ascii=False))

        return f"""<!doctype html>
<html lang=\"en-GB\">
<head>
  <meta charset=\"utf-8\" />
  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />
  <title>Blueprint Evidence Report</title>
  <style>
    body {{ font-family: Georgia, 'Times New Roman', serif; margin: 24px; color: #0f172a; }}
    h1 {{ margin: 0 0 8px; }}
    h2 {{ margin-top: 24px; border-bottom: 1px solid #cbd5e1; padding-bottom: 4px; }}
    .meta {{ color: #475569; margin-bottom: 12px; }}
    pre {{ background: #f8fafc; padding: 12px; border: 1px solid #e2e8f0; border-radius: 6px; overflow: auto; }}
    @media print {{ body {{ margin: 12mm; }} }}
  </style>
</head>
<body>
  <h1>Blueprint Evidence Report</h1>
  <div class=\"meta\">Blueprint {escape(str(payload.get('blueprintId', '')))} &middot; Generated: {escape(str(payload.get('ranAt', '')))}</div>

  <h2>Source Image</h2>
  <pre>{pp(payload.get('image', {}))}</pre>

  <h2>Lock &amp; Drift</h2>
  <pre>{pp(payload.get('lock', {}))}</pre>

  <h2>Scan Proof</h2>
  <pre>{pp(payload.get('scanProof', {}))}</pre>

  <h2>Node Tree</h2>
  <pre>{pp(payload.get('tree', {}))}</pre>

  <h2>Verification</h2>
  <pre>{pp(payload.get('verification', {}))}</pre>

  <h2>Export Gate</h2>
  <pre>{pp(payload.get('gate', {}))}</pre>

  <h2>Provenance</h2>
  <pre>{pp(payload.get('provenance', {}))}</pre>
</body>
</html>
"""
