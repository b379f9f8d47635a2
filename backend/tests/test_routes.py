"""API tests for the blueprint router and progress broadcasting."""

import asyncio
import json
import concurrent.futures
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from main import app
from services.blueprint import BlueprintService, get_blueprint_service
from services.blueprint.models import ScanMark
from services.progress_manager import ProgressManager, get_progress_manager, log_send_failure

API = "/api/blueprint"


@pytest.fixture
def client(store):
    app.dependency_overrides[get_blueprint_service] = lambda: BlueprintService(store=store)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _ok(response):
    assert response.status_code == 200
    body = response.json()
    assert body["success"], body.get("error")
    return body["data"]


def test_health_and_root(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/").json()["name"] == "Pixel Blueprint API"


def test_blueprint_lifecycle(client, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    assert _ok(client.get(f"{API}/"))[0]["id"] == doc_id
    assert _ok(client.get(f"{API}/{doc_id}"))["locked"] is False

    extracted = _ok(client.post(f"{API}/{doc_id}/extract", json={}))
    assert extracted["extraction"]["boxCount"] == 3
    assert _ok(client.get(f"{API}/{doc_id}/gate"))["reasons"] == ["BLUEPRINT_NOT_LOCKED", "VERIFY_TRUTH_FAILED"]

    blocked = client.get(f"{API}/{doc_id}/export").json()
    assert blocked["success"] is False
    assert blocked["error"].startswith("Export blocked: BLUEPRINT_NOT_LOCKED")

    assert _ok(client.post(f"{API}/{doc_id}/lock"))["locked"]
    verified = _ok(client.post(f"{API}/{doc_id}/verify", json={"renderingPath": str(ui_png_path)}))
    assert verified["metrics"]["pass"] is True

    assert _ok(client.get(f"{API}/{doc_id}/gate")) == {"ok": True, "reasons": []}
    exported = _ok(client.get(f"{API}/{doc_id}/export", params={"format": "react"}))
    assert "PixelTruth" in exported["content"]
    html = _ok(client.get(f"{API}/{doc_id}/export", params={"format": "html"}))
    assert html["content"].startswith("<!DOCTYPE html>")

    unknown = client.get(f"{API}/{doc_id}/export", params={"format": "pdf"}).json()
    assert unknown["success"] is False

    again = client.post(f"{API}/{doc_id}/extract", json={}).json()
    assert again["success"] is False
    assert "locked" in again["error"]


def test_hint_endpoints(client, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    _ok(client.post(f"{API}/{doc_id}/extract", json={"step": 8}))

    hinted = _ok(client.post(f"{API}/{doc_id}/hints/semantic", json={"hints": {"b_3": {"kind": "button"}}}))
    assert {n["id"]: n["kind"] for n in hinted["nodes"]}["b_3"] == "button"

    node = _ok(client.post(f"{API}/{doc_id}/hints/layout/b_1", json={"flow": "grid", "cols": 2, "gapPx": 8}))
    assert node["layoutHint"]["gapPx"] == 8
    assert node["layoutHint"]["approved"] is False
    assert "MISSING_LAYOUT_HINTS" in _ok(client.get(f"{API}/{doc_id}/gate"))["reasons"]

    assert _ok(client.post(f"{API}/{doc_id}/hints/layout/b_1/approve"))["layoutHint"]["approved"] is True
    assert client.post(f"{API}/{doc_id}/hints/layout/zz/approve").status_code == 404
    assert client.post(f"{API}/{doc_id}/hints/layout/zz", json={"flow": "grid"}).status_code == 404


def test_layout_hint_route_accepts_any_node_id(client, store, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    _ok(client.post(f"{API}/{doc_id}/extract", json={}))
    doc = store.load_document(doc_id)
    doc.nodes = [replace(n, id="semantic") if n.id == "b_2" else n for n in doc.nodes]
    store.save_document(doc)

    node = _ok(client.post(f"{API}/{doc_id}/hints/layout/semantic", json={"flow": "flex-col", "gapPx": 4}))
    assert node["id"] == "semantic"
    assert node["layoutHint"]["flow"] == "flex-col"
    approved = _ok(client.post(f"{API}/{doc_id}/hints/layout/semantic/approve"))
    assert approved["layoutHint"]["approved"] is True


def test_render_and_report(client, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    _ok(client.post(f"{API}/{doc_id}/extract", json={}))
    rendered = _ok(client.post(f"{API}/{doc_id}/render"))
    assert (rendered["width"], rendered["height"]) == (400, 300)
    report = _ok(client.post(f"{API}/{doc_id}/report"))
    assert report["summary"]["nodeCount"] == 3
    assert report["summary"]["exportAllowed"] is False


def test_export_file_download(client, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    _ok(client.post(f"{API}/{doc_id}/extract", json={}))

    blocked = client.get(f"{API}/{doc_id}/export/file", params={"format": "react"})
    assert blocked.status_code == 409
    assert "BLUEPRINT_NOT_LOCKED" in blocked.json()["detail"]["reasons"]
    assert client.get(f"{API}/{doc_id}/export/file", params={"format": "pdf"}).status_code == 400
    assert client.get(f"{API}/nope/export/file").status_code == 404

    _ok(client.post(f"{API}/{doc_id}/lock"))
    _ok(client.post(f"{API}/{doc_id}/verify", json={"renderingPath": str(ui_png_path)}))
    react = client.get(f"{API}/{doc_id}/export/file", params={"format": "react"})
    assert react.status_code == 200
    assert react.headers["content-type"].startswith("text/plain")
    assert react.headers["content-disposition"] == f'attachment; filename="{doc_id}.jsx"'
    assert "PixelTruth" in react.text

    as_json = client.get(f"{API}/{doc_id}/export/file", params={"format": "json"})
    assert as_json.headers["content-type"].startswith("application/json")
    assert json.loads(as_json.text)


def test_report_state_endpoint(client, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    before = _ok(client.get(f"{API}/{doc_id}/report"))
    assert before["reportJsonPath"] is None
    assert before["lastGeneratedAt"] is None

    generated = _ok(client.post(f"{API}/{doc_id}/report"))
    after = _ok(client.get(f"{API}/{doc_id}/report"))
    assert after["reportJsonPath"] == generated["reportJsonPath"]
    assert after["summary"]["exportAllowed"] is False
    assert client.get(f"{API}/nope/report").status_code == 404


def test_extract_announces_progress_before_scanning(client, ui_png_path):
    doc_id = _ok(client.post(f"{API}/ingest", json={"filePath": str(ui_png_path)}))["id"]
    listener = FakeSocket()
    manager = get_progress_manager()
    manager.add_client(listener)
    try:
        _ok(client.post(f"{API}/{doc_id}/extract", json={}))
    finally:
        manager.remove_client(listener)

    messages = [json.loads(text) for text in listener.sent]
    assert messages[0]["type"] == "progress"
    assert messages[0]["step"] == doc_id
    assert messages[0]["message"].startswith("Scanning")
    assert any(m["type"] == "complete" for m in messages)


def test_pipeline_endpoint(client, ui_png_path):
    data = _ok(client.post(f"{API}/pipeline", json={"filePath": str(ui_png_path)}))
    assert data["export"]["ok"] is True
    assert data["scanProof"]["marks"] == 1900
    assert _ok(client.get(f"{API}/{data['blueprint']['id']}"))["locked"] is True


def test_verify_rects_endpoint(client):
    rect = {"x": 0, "y": 0, "w": 10, "h": 10}
    same = _ok(client.post(f"{API}/verify/rects", json={"expected": [rect], "actual": [rect]}))
    assert same == {"pass": True, "minIou": 1.0, "maxOffset": 0.0, "pairs": 1}
    empty = _ok(client.post(f"{API}/verify/rects", json={"expected": [], "actual": []}))
    assert empty["pass"] is False
    assert empty["maxOffset"] is None


def test_missing_documents_are_404(client):
    assert client.get(f"{API}/nope").status_code == 404
    assert client.get(f"{API}/nope/gate").status_code == 404
    assert client.post(f"{API}/nope/lock").status_code == 404


def test_bad_ingest_reports_failure(client, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    body = client.post(f"{API}/ingest", json={"filePath": str(path)}).json()
    assert body["success"] is False
    assert "Invalid file type" in body["error"]


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("closed")
        self.sent.append(text)


def test_broadcast_drops_dead_clients():
    manager = ProgressManager()
    good, bad = FakeSocket(), FakeSocket(fail=True)
    manager.add_client(good)
    manager.add_client(bad)
    asyncio.run(manager.send_scan_mark("doc", ScanMark(i=3, x=4, y=0), expected=0))
    assert manager.clients == [good]
    assert '"percent": null' in good.sent[0]


def test_tick_callback_needs_listeners():
    manager = ProgressManager()
    loop = asyncio.new_event_loop()
    try:
        assert manager.scan_tick_callback(loop, "doc", 10) is None
        manager.add_client(FakeSocket())
        assert manager.scan_tick_callback(loop, "doc", 10) is not None
    finally:
        loop.close()


class FakeLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, msg, *args):
        self.warnings.append(msg % args)


def test_failed_scheduled_send_is_logged(monkeypatch):
    recorder = FakeLogger()
    monkeypatch.setattr("services.progress_manager.logger", recorder)

    done = concurrent.futures.Future()
    done.set_result(None)
    log_send_failure(done)
    assert recorder.warnings == []

    failed = concurrent.futures.Future()
    failed.set_exception(RuntimeError("socket closed"))
    log_send_failure(failed)
    assert recorder.warnings == ["progress send failed: socket closed"]

    cancelled = concurrent.futures.Future()
    cancelled.cancel()
    log_send_failure(cancelled)
    assert recorder.warnings[-1] == "progress send cancelled"
