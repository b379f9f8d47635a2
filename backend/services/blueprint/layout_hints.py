"""Layout and semantic annotation of containment trees."""

from __future__ import annotations

from typing import Any, Mapping

from logging_config import get_pipeline_logger
from services.blueprint.containment import ContainmentTree
from services.blueprint.models import LayoutHint, NodeKind, StyleHint

logger = get_pipeline_logger()

_OVERRIDABLE = {"role", "flow", "gap_px", "padding_px", "cols", "absolute_reason"}


def default_hint(has_children: bool) -> LayoutHint:
    if not has_children:
        return LayoutHint(role="leaf", flow="none")
    return LayoutHint(role="flow", flow="flex-col", requires_approval=False, approved=True)


def attach_layout_hints(tree: ContainmentTree) -> ContainmentTree:
    """Return a copy of ``tree`` with every node carrying a layout hint."""
    out = tree.copy()
    for node_id, node in out.nodes.items():
        node.layout_hint = default_hint(bool(out.children.get(node_id)))
    return out


def count_missing_hints(tree: ContainmentTree) -> int:
    """Non-root nodes with no hint, plus overridden hints still awaiting approval."""
    missing = 0
    for node in tree.flat_nodes():
        hint = node.layout_hint
        if hint is None or (hint.requires_approval and not hint.approved):
            missing += 1
    return missing


def override_layout_hint(tree: ContainmentTree, node_id: str, **fields: Any) -> ContainmentTree:
    """Replace fields of one node's hint; the result needs human approval."""
    unknown = set(fields) - _OVERRIDABLE
    if unknown:
        raise ValueError(f"Unknown layout hint fields: {', '.join(sorted(unknown))}")
    if node_id not in tree.nodes:
        raise KeyError(node_id)
    out = tree.copy()
    node = out.nodes[node_id]
    hint = node.layout_hint or default_hint(bool(out.children.get(node_id)))
    for key, value in fields.items():
        setattr(hint, key, value)
    hint.requires_approval = True
    hint.approved = False
    node.layout_hint = hint
    return out


def approve_layout_hint(tree: ContainmentTree, node_id: str) -> ContainmentTree:
    if node_id not in tree.nodes:
        raise KeyError(node_id)
    out = tree.copy()
    node = out.nodes[node_id]
    if node.layout_hint is None:
        node.layout_hint = default_hint(bool(out.children.get(node_id)))
    node.layout_hint.approved = True
    return out


def apply_semantic_hints(tree: ContainmentTree, hints: Mapping[str, Mapping[str, Any]]) -> ContainmentTree:
    """Apply externally supplied node kinds, names and style hints.

    Hints for ids not in the tree are ignored; geometry is never touched.
    """
    out = tree.copy()
    applied = 0
    for node_id, hint in (hints or {}).items():
        node = out.nodes.get(node_id)
        if node is None or node_id == out.root_id or not isinstance(hint, Mapping):
            continue
        if "kind" in hint:
            node.kind = NodeKind.parse(hint["kind"])
        if hint.get("semanticName"):
            node.semantic_name = str(hint["semanticName"])
        style = hint.get("styleHint")
        if isinstance(style, Mapping):
            node.style_hint = StyleHint.from_dict(style)
        applied += 1
    logger.info("semantic hints: applied %d of %d", applied, len(hints or {}))
    return out
