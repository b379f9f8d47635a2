"""Tests for the serpentine scan walk and its trace hash."""

import math

from services.blueprint.models import ScanMark
from services.blueprint.scan import SerpentineScan, run_scan, serpentine_points, trace_hash


def test_length_matches_grid():
    for w, h, step in [(10, 5, 2), (400, 300, 8), (7, 7, 3), (1, 1, 8)]:
        scan = SerpentineScan(w, h, step)
        assert len(scan) == math.ceil(h / step) * math.ceil(w / step)
        assert len(list(scan)) == len(scan)


def test_rows_alternate_direction():
    marks = list(serpentine_points(10, 5, 2))
    assert [m.x for m in marks[:5]] == [0, 2, 4, 6, 8]
    assert [m.x for m in marks[5:10]] == [9, 7, 5, 3, 1]
    assert {m.y for m in marks[5:10]} == {2}


def test_index_is_strictly_increasing_from_zero():
    marks = list(SerpentineScan(33, 17, 4))
    assert [m.i for m in marks] == list(range(len(marks)))


def test_scan_is_restartable():
    scan = SerpentineScan(20, 12, 3)
    first = list(scan)
    it = iter(scan)
    next(it)
    next(it)
    assert list(scan) == first


def test_step_rounds_and_never_drops_below_one():
    assert SerpentineScan(4, 4, 0.4).step == 1
    assert len(SerpentineScan(4, 4, 0.4)) == 16
    assert SerpentineScan(4, 4, 2.6).step == 3


def test_run_scan_records_every_tick():
    ticks = []
    result = run_scan(10, 5, 2, on_tick=ticks.append)
    assert result.completed
    assert result.expected == 15
    assert ticks == result.marks
    assert result.to_dict()["traceHash"] == trace_hash(result.marks)


def test_run_scan_stops_cooperatively():
    polls = {"n": 0}

    def should_stop():
        polls["n"] += 1
        return polls["n"] > 3

    result = run_scan(10, 5, 2, should_stop=should_stop)
    assert not result.completed
    assert len(result.marks) == 3
    assert [m.i for m in result.marks] == [0, 1, 2]


def test_trace_hash_is_stable_and_order_sensitive():
    marks = [ScanMark(0, 0, 0), ScanMark(1, 8, 0)]
    assert trace_hash(marks) == trace_hash(list(marks))
    assert trace_hash(marks) != trace_hash(marks[::-1])
    assert len(trace_hash([])) == 64
