"""Tests for rect primitives: containment, IoU, edge offsets and clipping."""

import math

import pytest

from services.blueprint.geometry import area, clip_to, contains, intersection, iou, max_edge_offset
from services.blueprint.models import Rect


def test_contains_is_reflexive():
    r = Rect(3, 4, 10, 20)
    assert contains(r, r)


def test_contains_with_tolerance():
    outer = Rect(10, 10, 100, 100)
    spill = Rect(8, 10, 50, 50)
    assert not contains(outer, spill)
    assert contains(outer, spill, tol=2)


def test_area():
    assert area(Rect(0, 0, 4, 2.5)) == 10


def test_iou_of_disjoint_rects_is_zero():
    assert iou(Rect(0, 0, 10, 10), Rect(20, 20, 5, 5)) == 0


def test_iou_of_touching_rects_is_zero():
    assert iou(Rect(0, 0, 10, 10), Rect(10, 0, 10, 10)) == 0


def test_iou_is_symmetric_and_bounded():
    a = Rect(0, 0, 10, 10)
    b = Rect(5, 5, 10, 10)
    assert iou(a, b) == pytest.approx(iou(b, a))
    assert iou(a, b) == pytest.approx(25 / 175)
    assert 0 <= iou(a, b) <= 1


def test_iou_identical_is_one():
    r = Rect(1, 2, 3, 4)
    assert iou(r, r) == 1


def test_max_edge_offset():
    a = Rect(0, 0, 10, 10)
    b = Rect(1, 0, 12, 10)
    # left differs by 1, right by 3
    assert max_edge_offset(a, b) == 3
    assert max_edge_offset(a, a) == 0


def test_intersection():
    assert intersection(Rect(0, 0, 10, 10), Rect(5, 5, 10, 10)) == Rect(5, 5, 5, 5)
    assert intersection(Rect(0, 0, 10, 10), Rect(10, 10, 5, 5)) is None


def test_clip_to_keeps_contained_rect():
    bounds = Rect(0, 0, 100, 100)
    inside = Rect(10, 10, 5, 5)
    assert clip_to(bounds, inside) is inside


def test_clip_to_trims_or_drops():
    bounds = Rect(0, 0, 100, 100)
    assert clip_to(bounds, Rect(90, 90, 20, 20)) == Rect(90, 90, 10, 10)
    assert clip_to(bounds, Rect(200, 200, 5, 5)) is None


@pytest.mark.parametrize("bad", [
    dict(x=0, y=0, w=0, h=1),
    dict(x=0, y=0, w=1, h=-1),
    dict(x=math.nan, y=0, w=1, h=1),
    dict(x=0, y=math.inf, w=1, h=1),
    dict(x="1", y=0, w=1, h=1),
])
def test_rect_rejects_invalid_values(bad):
    with pytest.raises(ValueError):
        Rect(**bad)
