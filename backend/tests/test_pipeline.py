"""Tests for the end-to-end truth pipeline."""

from conftest import BUTTON_RECT, blank
from services.blueprint.image_io import encode_png
from services.blueprint.models import RectVerification
from services.blueprint.pipeline import run_truth_pipeline
from services.blueprint.scan import SerpentineScan


def test_full_run_exports_react(ui_png):
    ticks = []
    result = run_truth_pipeline(ui_png, step=8, name="ui.png", on_tick=ticks.append)

    assert result.document.locked
    assert result.scan.completed
    assert len(ticks) == len(SerpentineScan(400, 300, 8)) == 1900
    assert result.verification.passed
    assert result.verification.pairs == 3
    assert result.gate.ok
    assert result.react is not None
    assert "PixelTruth" in result.react
    assert result.tree.get("b_3").rect == BUTTON_RECT
    assert result.tree.get("b_3").parent_id == "b_1"
    assert result.verification.tree_hash == result.document.tree_hash
    assert result.document.rect_check.tree_hash == result.document.tree_hash
    assert result.document.scan.drift_px == 0


def test_result_dict_carries_proof(ui_png):
    payload = run_truth_pipeline(ui_png, doc_id="fixed").to_dict()
    assert payload["blueprint"]["id"] == "fixed"
    assert payload["blueprint"]["scan"]["traceHash"] == payload["scanProof"]["traceHash"]
    assert payload["scanProof"]["invariants"]["transformHash"]
    assert payload["export"]["ok"] is True
    assert "react" in payload["export"]
    assert "trace" not in payload["scanProof"]
    assert len(payload["nodes"]) == 3


def test_trace_hash_is_reproducible(ui_png):
    a = run_truth_pipeline(ui_png)
    b = run_truth_pipeline(ui_png)
    assert a.scan.trace_hash == b.scan.trace_hash
    assert a.document.scan.transform_hash == b.document.scan.transform_hash


def test_blank_image_is_refused():
    result = run_truth_pipeline(encode_png(blank(120, 80)))
    assert not result.gate.ok
    assert result.gate.reasons == ["VERIFY_TRUTH_FAILED", "NO_BOXES", "NO_NODES"]
    assert result.react is None


def test_stopped_scan_skips_extraction(ui_png):
    result = run_truth_pipeline(ui_png, should_stop=lambda: True)
    assert result.cancelled
    assert result.extraction is None
    assert result.scan.marks == []
    assert "BLUEPRINT_NOT_LOCKED" not in result.gate.reasons
    assert "NO_BOXES" in result.gate.reasons
    assert result.react is None


def test_custom_rect_comparison_is_used(ui_png):
    def always_fail(expected, actual):
        return RectVerification(passed=False, min_iou=0.0, max_offset=99.0, pairs=len(expected))

    result = run_truth_pipeline(ui_png, compare_rects=always_fail)
    assert result.gate.reasons == ["VERIFY_TRUTH_FAILED"]
    assert result.document.rect_check.max_offset == 99.0
