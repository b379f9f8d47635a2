"""Tests for containment tree assembly, ordering and cycle fallback."""

from conftest import node
from services.blueprint.containment import build_containment_tree
from services.blueprint.geometry import contains
from services.blueprint.models import ROOT_ID, Rect


def _assert_well_formed(tree):
    for n in tree.flat_nodes():
        chain = tree.ancestors(n.id)
        assert chain[-1] == ROOT_ID
        assert n.id not in chain
        parent = tree.parent_of(n.id)
        assert contains(parent.rect, n.rect)
        assert n.depth == parent.depth + 1


def test_outer_inner_sibling_scenario():
    nodes = [
        node("outer", 0, 0, 100, 100),
        node("inner", 10, 10, 20, 20),
        node("sibling", 200, 0, 50, 50),
    ]
    tree = build_containment_tree(nodes, (300, 200))

    assert tree.get("inner").parent_id == "outer"
    assert tree.get("outer").parent_id == ROOT_ID
    assert tree.get("sibling").parent_id == ROOT_ID
    assert tree.children[ROOT_ID] == ["outer", "sibling"]
    assert [tree.get(i).depth for i in ("outer", "inner", "sibling")] == [1, 2, 1]
    assert tree.get("outer").role == "container"
    assert tree.get("inner").role == "leaf"
    assert tree.root.role == "container"
    assert tree.root.rect == Rect(0, 0, 300, 200)
    _assert_well_formed(tree)


def test_corner_touching_siblings_share_the_outer_parent():
    nodes = [
        node("outer", 0, 0, 100, 100),
        node("inner", 10, 10, 50, 50),
        node("sibling", 60, 60, 20, 20),
    ]
    tree = build_containment_tree(nodes, (100, 100))

    assert tree.get("inner").parent_id == "outer"
    assert tree.get("sibling").parent_id == "outer"
    assert tree.get("outer").parent_id == ROOT_ID
    assert tree.children["outer"] == ["inner", "sibling"]
    assert tree.children["inner"] == []
    assert tree.children["sibling"] == []
    _assert_well_formed(tree)


def test_smallest_enclosing_parent_wins():
    nodes = [
        node("big", 0, 0, 200, 200),
        node("mid", 10, 10, 100, 100),
        node("leaf", 20, 20, 10, 10),
    ]
    tree = build_containment_tree(nodes, (300, 300))
    assert tree.get("leaf").parent_id == "mid"
    assert tree.get("mid").parent_id == "big"
    assert tree.ancestors("leaf") == ["mid", "big", ROOT_ID]


def test_input_nodes_are_not_mutated():
    nodes = [node("outer", 0, 0, 100, 100), node("inner", 10, 10, 20, 20)]
    build_containment_tree(nodes, (300, 200))
    assert nodes[1].parent_id is None
    assert nodes[1].depth == 0
    assert nodes[1].role is None


def test_mutual_declared_parents_fall_back_to_root():
    nodes = [
        node("a", 0, 0, 50, 50, parent_id="b"),
        node("b", 0, 0, 50, 50, parent_id="a"),
    ]
    tree = build_containment_tree(nodes, (100, 100))
    assert tree.get("a").parent_id == ROOT_ID
    assert tree.get("b").parent_id == "a"
    _assert_well_formed(tree)


def test_declared_parent_that_does_not_contain_is_ignored():
    nodes = [
        node("box", 0, 0, 50, 50),
        node("other", 60, 0, 30, 30),
        node("child", 5, 5, 10, 10, parent_id="other"),
    ]
    tree = build_containment_tree(nodes, (100, 100))
    assert tree.get("child").parent_id == "box"


def test_invalid_nodes_are_dropped():
    raw = [
        {"id": "ok", "rect": {"x": 0, "y": 0, "w": 10, "h": 10}},
        {"id": "zero", "rect": {"x": 0, "y": 0, "w": 0, "h": 10}},
        {"id": "nan", "rect": {"x": float("nan"), "y": 0, "w": 1, "h": 1}},
        {"rect": {"x": 0, "y": 0, "w": 1, "h": 1}},
        {"id": "root", "rect": {"x": 0, "y": 0, "w": 1, "h": 1}},
        {"id": "ok", "rect": {"x": 5, "y": 5, "w": 1, "h": 1}},
        {"id": "far", "rect": {"x": 500, "y": 500, "w": 5, "h": 5}},
    ]
    tree = build_containment_tree(raw, {"w": 100, "h": 100})
    assert [n.id for n in tree.flat_nodes()] == ["ok"]
    assert tree.node_count == 1


def test_nodes_spilling_outside_root_are_clipped():
    tree = build_containment_tree([node("edge", 80, 90, 50, 50)], (100, 100))
    assert tree.get("edge").rect == Rect(80, 90, 20, 10)


def test_siblings_within_row_tolerance_order_by_x():
    nodes = [
        node("right", 100, 10, 20, 20),
        node("left", 20, 14, 20, 20),
        node("below", 0, 60, 20, 20),
    ]
    tree = build_containment_tree(nodes, (200, 200))
    assert tree.children[ROOT_ID] == ["left", "right", "below"]


def test_walk_is_preorder_in_sibling_order():
    nodes = [
        node("a", 0, 0, 100, 50),
        node("a1", 50, 10, 10, 10),
        node("a0", 10, 10, 10, 10),
        node("b", 0, 60, 100, 50),
    ]
    tree = build_containment_tree(nodes, (200, 200))
    assert [n.id for n in tree.walk()] == [ROOT_ID, "a", "a0", "a1", "b"]


def test_to_nested_shape():
    tree = build_containment_tree([node("outer", 0, 0, 100, 100), node("inner", 10, 10, 20, 20)], (300, 200))
    nested = tree.to_nested()
    assert nested["id"] == ROOT_ID
    assert nested["children"][0]["id"] == "outer"
    assert nested["children"][0]["children"][0]["parentId"] == "outer"


def test_empty_input_gives_root_only():
    tree = build_containment_tree([], (10, 10))
    assert tree.node_count == 0
    assert tree.root.role == "leaf"
    assert list(tree.walk()) == [tree.root]
