"""Read-only exporters turning a containment tree into code artefacts.

Exporters never modify the tree they are given and produce identical output
for identical input.
"""

from __future__ import annotations

import html
import math
import re
from typing import Any, Callable, Dict, List

from services.blueprint.containment import ContainmentTree
from services.blueprint.models import NodeKind, UINode

# Every NodeKind has an entry; UNKNOWN renders as a plain div.
HTML_TAGS: Dict[NodeKind, str] = {
    NodeKind.CONTAINER: "div",
    NodeKind.SECTION: "section",
    NodeKind.CARD: "article",
    NodeKind.LAYER: "div",
    NodeKind.BUTTON: "button",
    NodeKind.INPUT: "input",
    NodeKind.TEXT: "p",
    NodeKind.HEADING: "h2",
    NodeKind.IMAGE: "img",
    NodeKind.ICON: "i",
    NodeKind.NAV_ITEM: "a",
    NodeKind.DIV: "div",
    NodeKind.UNKNOWN: "div",
}

VOID_TAGS = {"input", "img"}


def _num(value: float) -> str:
    """Render a coordinate without a trailing ``.0`` for whole numbers."""
    if not math.isfinite(value):
        return "0"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def _clamp_int(value: float) -> int:
    if not math.isfinite(value):
        return 0
    return max(0, int(round(value)))


def _sanitize_component_name(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_]", "", name or "Generated")
    cap = cleaned[0].upper() + cleaned[1:] if cleaned else "Generated"
    return cap if re.match(r"^[A-Z]", cap) else f"C{cap}"


def export_absolute_react(tree: ContainmentTree, component_name: str = "PixelTruth") -> str:
    """React component placing every node at its image-space position."""
    name = _sanitize_component_name(component_name)
    lines: List[str] = [
        'import React from "react";',
        "",
        f"export default function {name}(){{",
        f"  const W={_num(tree.width)}, H={_num(tree.height)};",
        "  return (",
        '    <div className="relative w-full overflow-hidden bg-white" style={{ aspectRatio: `${W}/${H}` }}>',
        '      <div className="absolute left-0 top-0" style={{ width: W, height: H }}>',
    ]
    for node in tree.flat_nodes():
        r = node.rect
        lines.append(
            f'        <div data-id="{html.escape(node.id)}" style={{{{ position:"absolute", '
            f"left:{_num(r.x)}, top:{_num(r.y)}, width:{_num(r.w)}, height:{_num(r.h)} }}}} />"
        )
    lines.extend(["      </div>", "    </div>", "  );", "}"])
    return "\n".join(lines)


def _emit_tsx(lines: List[str], tree: ContainmentTree, node: UINode, parent: UINode, indent: int, debug_ids: bool) -> None:
    pad = " " * indent
    left = _clamp_int(node.rect.x - parent.rect.x)
    top = _clamp_int(node.rect.y - parent.rect.y)
    width = _clamp_int(node.rect.w)
    height = _clamp_int(node.rect.h)
    attrs = ""
    if debug_ids:
        node_id = html.escape(node.id, quote=True)
        attrs = f' title="{node_id}" data-node="{node_id}"'
    lines.append(
        f'{pad}<div className="absolute rounded-md border border-zinc-700/60 bg-zinc-800/10" '
        f"style={{{{ left: {left}, top: {top}, width: {width}, height: {height} }}}}{attrs}>"
    )
    for child in tree.children_of(node.id):
        _emit_tsx(lines, tree, child, node, indent + 2, debug_ids)
    lines.append(f"{pad}</div>")


def generate_tsx_from_tree(
    tree: ContainmentTree,
    component_name: str = "GeneratedFromBlueprint",
    include_debug_ids: bool = False,
) -> str:
    """Nested TSX where each child is positioned relative to its parent."""
    name = _sanitize_component_name(component_name)
    root = tree.root
    lines: List[str] = [
        '"use client";',
        'import React from "react";',
        "",
        f"export default function {name}() {{",
        "  return (",
        '    <div className="overflow-auto">',
        f'      <div className="relative bg-zinc-950" style={{{{ width: {_num(root.rect.w)}, height: {_num(root.rect.h)} }}}}>',
    ]
    for child in tree.children_of(root.id):
        _emit_tsx(lines, tree, child, root, 8, include_debug_ids)
    lines.extend(["      </div>", "    </div>", "  );", "}", ""])
    return "\n".join(lines)


def html_tag(kind: NodeKind) -> str:
    return HTML_TAGS[kind]


def _emit_html(lines: List[str], tree: ContainmentTree, node: UINode, parent: UINode, indent: int) -> None:
    pad = " " * indent
    tag = html_tag(node.kind)
    style = (
        f"position:absolute;left:{_num(node.rect.x - parent.rect.x)}px;top:{_num(node.rect.y - parent.rect.y)}px;"
        f"width:{_num(node.rect.w)}px;height:{_num(node.rect.h)}px"
    )
    if node.style_hint is not None:
        if node.style_hint.radius_px is not None:
            style += f";border-radius:{_num(node.style_hint.radius_px)}px"
        if node.style_hint.fill:
            style += f";background:{node.style_hint.fill}"
        if node.style_hint.stroke:
            style += f";border:1px solid {node.style_hint.stroke}"
    attrs = f'id="{html.escape(node.id)}" data-kind="{node.kind.value}" style="{html.escape(style)}"'
    if node.semantic_name:
        attrs += f' aria-label="{html.escape(node.semantic_name)}"'
    if tag in VOID_TAGS:
        lines.append(f"{pad}<{tag} {attrs}>")
        return
    kids = tree.children_of(node.id)
    if not kids:
        lines.append(f"{pad}<{tag} {attrs}></{tag}>")
        return
    lines.append(f"{pad}<{tag} {attrs}>")
    for child in kids:
        _emit_html(lines, tree, child, node, indent + 2)
    lines.append(f"{pad}</{tag}>")


def export_html(tree: ContainmentTree, title: str = "Blueprint Export") -> str:
    """Standalone HTML page reproducing the tree with positioned elements."""
    root = tree.root
    lines: List[str] = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '  <meta charset="UTF-8">',
        f"  <title>{html.escape(title)}</title>",
        "  <style>body { margin: 0; background: #ffffff; } [data-kind] { box-sizing: border-box; }</style>",
        "</head>",
        "<body>",
        f'  <div id="{html.escape(root.id)}" style="position:relative;width:{_num(root.rect.w)}px;height:{_num(root.rect.h)}px">',
    ]
    for child in tree.children_of(root.id):
        _emit_html(lines, tree, child, root, 4)
    lines.extend(["  </div>", "</body>", "</html>", ""])
    return "\n".join(lines)


def export_json(tree: ContainmentTree) -> Dict[str, Any]:
    return {
        "width": tree.width,
        "height": tree.height,
        "nodeCount": tree.node_count,
        "tree": tree.to_nested(),
    }


EXPORTERS: Dict[str, Callable[[ContainmentTree], Any]] = {
    "react": export_absolute_react,
    "tsx": generate_tsx_from_tree,
    "html": export_html,
    "json": export_json,
}

EXPORT_MEDIA_TYPES = {
    "react": "text/plain",
    "tsx": "text/plain",
    "html": "text/html",
    "json": "application/json",
}

EXPORT_SUFFIXES = {
    "react": "jsx",
    "tsx": "tsx",
    "html": "html",
    "json": "json",
}
