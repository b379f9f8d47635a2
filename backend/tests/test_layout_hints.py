"""Tests for default layout hints, overrides/approval and semantic hints."""

import pytest

from conftest import node
from services.blueprint.containment import build_containment_tree
from services.blueprint.layout_hints import (
    apply_semantic_hints,
    approve_layout_hint,
    attach_layout_hints,
    count_missing_hints,
    override_layout_hint,
)
from services.blueprint.models import ROOT_ID, NodeKind, Rect


@pytest.fixture
def tree():
    return build_containment_tree(
        [node("outer", 0, 0, 100, 100), node("inner", 10, 10, 20, 20), node("side", 200, 0, 50, 50)],
        (300, 200),
    )


def test_attach_gives_leaf_and_container_defaults(tree):
    hinted = attach_layout_hints(tree)
    leaf = hinted.get("inner").layout_hint
    container = hinted.get("outer").layout_hint
    assert (leaf.role, leaf.flow) == ("leaf", "none")
    assert (container.role, container.flow) == ("flow", "flex-col")
    assert container.requires_approval is False
    assert container.approved is True


def test_attach_does_not_touch_input(tree):
    attach_layout_hints(tree)
    assert all(n.layout_hint is None for n in tree.nodes.values())


def test_missing_hint_count(tree):
    assert count_missing_hints(tree) == 3
    assert count_missing_hints(attach_layout_hints(tree)) == 0


def test_override_requires_approval(tree):
    hinted = attach_layout_hints(tree)
    overridden = override_layout_hint(hinted, "outer", flow="grid", cols=2, gap_px=8)
    hint = overridden.get("outer").layout_hint
    assert (hint.flow, hint.cols, hint.gap_px) == ("grid", 2, 8)
    assert hint.requires_approval and not hint.approved
    assert count_missing_hints(overridden) == 1
    assert hinted.get("outer").layout_hint.flow == "flex-col"

    approved = approve_layout_hint(overridden, "outer")
    assert approved.get("outer").layout_hint.approved
    assert count_missing_hints(approved) == 0


def test_override_rejects_unknown_node_and_field(tree):
    with pytest.raises(KeyError):
        override_layout_hint(tree, "nope", flow="grid")
    with pytest.raises(ValueError):
        override_layout_hint(tree, "outer", colour="red")
    with pytest.raises(KeyError):
        approve_layout_hint(tree, "nope")


def test_semantic_hints_set_kind_name_and_style(tree):
    hinted = apply_semantic_hints(tree, {
        "inner": {"kind": "button", "semanticName": "Submit", "styleHint": {"radiusPx": 6, "fill": "#000"}},
        "side": {"kind": "hologram"},
        "ghost": {"kind": "card"},
        ROOT_ID: {"kind": "card"},
    })
    inner = hinted.get("inner")
    assert inner.kind is NodeKind.BUTTON
    assert inner.semantic_name == "Submit"
    assert inner.style_hint.radius_px == 6
    assert inner.rect == Rect(10, 10, 20, 20)
    assert hinted.get("side").kind is NodeKind.UNKNOWN
    assert hinted.root.kind is NodeKind.CONTAINER
    assert "ghost" not in hinted.nodes
    assert tree.get("inner").kind is NodeKind.DIV
