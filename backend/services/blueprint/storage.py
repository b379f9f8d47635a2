"""On-disk layout of blueprint documents.

    <DATA_DIR>/blueprints/<id>/
        document.json      persisted document
        source<suffix>     locked source image bytes
        diffs/             diff images, one per verification
        overlays/          debug renders
        report/            evidence report artefacts
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import DATA_DIR
from services.blueprint.document import BlueprintDocument
from services.blueprint.errors import DocumentNotFoundError

DOCUMENT_FILE = "document.json"


def load_json_object(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Expected JSON object at {path}")
    return raw


def write_json(path: Path, payload: Dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return path


class BlueprintStore:
    def __init__(self, data_dir: Optional[Path] = None) -> None:
        self.root = Path(data_dir or DATA_DIR) / "blueprints"

    def project_dir(self, doc_id: str) -> Path:
        project_dir = self.root / doc_id
        if not (project_dir / DOCUMENT_FILE).exists():
            raise DocumentNotFoundError(f"Blueprint not found: {doc_id}")
        return project_dir

    def subdir(self, doc_id: str, name: str) -> Path:
        out = self.project_dir(doc_id) / name
        out.mkdir(parents=True, exist_ok=True)
        return out

    def exists(self, doc_id: str) -> bool:
        return (self.root / doc_id / DOCUMENT_FILE).exists()

    def save_document(self, doc: BlueprintDocument) -> Path:
        return write_json(self.root / doc.id / DOCUMENT_FILE, doc.to_dict())

    def load_document(self, doc_id: str) -> BlueprintDocument:
        return BlueprintDocument.from_dict(load_json_object(self.project_dir(doc_id) / DOCUMENT_FILE))

    def save_source(self, doc_id: str, data: bytes, suffix: str = ".png") -> Path:
        project_dir = self.root / doc_id
        project_dir.mkdir(parents=True, exist_ok=True)
        for old in project_dir.glob("source.*"):
            old.unlink()
        path = project_dir / f"source{suffix.lower() or '.png'}"
        path.write_bytes(bytes(data))
        return path

    def source_path(self, doc_id: str) -> Path:
        matches = sorted(self.project_dir(doc_id).glob("source.*"))
        if not matches:
            raise FileNotFoundError(f"Source image missing for blueprint {doc_id}")
        return matches[0]

    def load_source(self, doc_id: str) -> bytes:
        return self.source_path(doc_id).read_bytes()

    def list_documents(self) -> List[Dict[str, Any]]:
        if not self.root.exists():
            return []
        out: List[Dict[str, Any]] = []
        for project_dir in sorted(self.root.iterdir()):
            doc_path = project_dir / DOCUMENT_FILE
            if not doc_path.exists():
                continue
            try:
                raw = load_json_object(doc_path)
            except (OSError, ValueError):
                continue
            image = raw.get("image") or {}
            out.append({
                "id": raw.get("id", project_dir.name),
                "name": image.get("name"),
                "width": image.get("width"),
                "height": image.get("height"),
                "locked": bool(raw.get("locked", False)),
                "nodeCount": len(raw.get("nodes") or []),
            })
        return out
