"""Containment tree assembly over extracted boxes.

Nodes live in a single arena keyed by id; parent and child relations are
plain id references. Building a tree never mutates the caller's nodes.

Invariant, cycle break by fallback to root: a proposed parent whose own
ancestor chain leads back to the child (or does not terminate within
``MAX_PARENT_HOPS``) is rejected and the child is attached to the root.
Malformed input therefore degrades to a flatter tree instead of raising.
"""

from __future__ import annotations

import copy
import functools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from config import SIBLING_Y_TOLERANCE_PX
from logging_config import get_pipeline_logger
from services.blueprint.geometry import area, clip_to, contains
from services.blueprint.models import ROOT_ID, NodeKind, Rect, UINode

logger = get_pipeline_logger()

MAX_PARENT_HOPS = 64

NodeInput = Union[UINode, Mapping[str, Any]]


@dataclass
class ContainmentTree:
    nodes: Dict[str, UINode]
    children: Dict[str, List[str]] = field(default_factory=dict)
    root_id: str = ROOT_ID

    @property
    def root(self) -> UINode:
        return self.nodes[self.root_id]

    @property
    def width(self) -> float:
        return self.root.rect.w

    @property
    def height(self) -> float:
        return self.root.rect.h

    @property
    def node_count(self) -> int:
        """Number of nodes excluding the synthetic root."""
        return len(self.nodes) - 1

    def get(self, node_id: str) -> UINode:
        return self.nodes[node_id]

    def children_of(self, node_id: str) -> List[UINode]:
        return [self.nodes[cid] for cid in self.children.get(node_id, [])]

    def parent_of(self, node_id: str) -> Optional[UINode]:
        parent_id = self.nodes[node_id].parent_id
        return self.nodes.get(parent_id) if parent_id is not None else None

    def ancestors(self, node_id: str) -> List[str]:
        out: List[str] = []
        cur = self.nodes[node_id].parent_id
        while cur is not None and len(out) <= len(self.nodes):
            out.append(cur)
            cur = self.nodes[cur].parent_id
        return out

    def walk(self, node_id: Optional[str] = None) -> Iterator[UINode]:
        """Pre-order traversal in sibling order."""
        stack = [node_id or self.root_id]
        while stack:
            cur = stack.pop()
            yield self.nodes[cur]
            stack.extend(reversed(self.children.get(cur, [])))

    def flat_nodes(self, include_root: bool = False) -> List[UINode]:
        return [n for n in self.walk() if include_root or n.id != self.root_id]

    def to_nested(self, node_id: Optional[str] = None) -> Dict[str, Any]:
        node = self.nodes[node_id or self.root_id]
        payload = node.to_dict()
        payload["children"] = [self.to_nested(cid) for cid in self.children.get(node.id, [])]
        return payload

    def copy(self) -> "ContainmentTree":
        return ContainmentTree(
            nodes={k: copy.deepcopy(v) for k, v in self.nodes.items()},
            children={k: list(v) for k, v in self.children.items()},
            root_id=self.root_id,
        )


def _root_dimensions(root_size: Any) -> Tuple[float, float]:
    if isinstance(root_size, Mapping):
        w, h = root_size.get("w"), root_size.get("h")
    else:
        w, h = root_size
    return float(w), float(h)


def _sanitize(nodes: Iterable[NodeInput], root_rect: Rect) -> List[UINode]:
    safe: List[UINode] = []
    seen: set = set()
    dropped = 0
    clipped = 0
    for raw in nodes or []:
        try:
            node = copy.deepcopy(raw) if isinstance(raw, UINode) else UINode.from_dict(raw)
        except (ValueError, TypeError, AttributeError):
            dropped += 1
            continue
        if node.id == ROOT_ID or node.id in seen:
            dropped += 1
            continue
        inside = clip_to(root_rect, node.rect)
        if inside is None:
            dropped += 1
            continue
        if inside is not node.rect:
            node.rect = inside
            clipped += 1
        seen.add(node.id)
        safe.append(node)
    if dropped or clipped:
        logger.debug("containment: dropped %d invalid nodes, clipped %d to root", dropped, clipped)
    return safe


def _reading_key(node: UINode) -> Tuple[float, float, float, str]:
    return (node.rect.y, node.rect.x, area(node.rect), node.id)


def _smallest_enclosing(node: UINode, candidates: List[UINode], tol: float) -> Optional[str]:
    best: Optional[UINode] = None
    for cand in candidates:
        if cand.id == node.id:
            continue
        if not contains(cand.rect, node.rect, tol):
            continue
        if best is None or area(cand.rect) < area(best.rect):
            best = cand
    return best.id if best is not None else None


def _would_cycle(child_id: str, parent_id: str, parent_of: Dict[str, Optional[str]]) -> bool:
    cur: Optional[str] = parent_id
    hops = 0
    while cur is not None:
        if cur == child_id:
            return True
        if hops >= MAX_PARENT_HOPS:
            return True
        cur = parent_of.get(cur)
        hops += 1
    return False


def _sibling_cmp(a: UINode, b: UINode, y_tol: float) -> int:
    dy = a.rect.y - b.rect.y
    if abs(dy) >= y_tol:
        return -1 if dy < 0 else 1
    dx = a.rect.x - b.rect.x
    if dx:
        return -1 if dx < 0 else 1
    da = area(a.rect) - area(b.rect)
    if da:
        return -1 if da < 0 else 1
    return (a.id > b.id) - (a.id < b.id)


def build_containment_tree(
    nodes: Iterable[NodeInput],
    root_size: Any,
    tol: float = 0,
    y_tolerance: float = SIBLING_Y_TOLERANCE_PX,
) -> ContainmentTree:
    """Assign every node the smallest rectangle that encloses it.

    ``root_size`` is ``(w, h)`` or ``{"w": .., "h": ..}``. Nodes with
    unusable rects are dropped; nodes with no container hang off the root.
    """
    root_w, root_h = _root_dimensions(root_size)
    root = UINode(
        id=ROOT_ID,
        rect=Rect(0, 0, root_w, root_h),
        depth=0,
        parent_id=None,
        role="container",
        kind=NodeKind.CONTAINER,
    )
    safe = _sanitize(nodes, root.rect)
    by_id = {n.id: n for n in safe}
    ordered = sorted(safe, key=_reading_key)

    # Declared parents seed the chain walk; unknown or self references are ignored.
    parent_of: Dict[str, Optional[str]] = {
        n.id: n.parent_id if n.parent_id in by_id and n.parent_id != n.id else None
        for n in safe
    }

    fallbacks = 0
    for node in ordered:
        parent: Optional[str] = None
        declared = node.parent_id
        if declared and declared != node.id and declared in by_id:
            if contains(by_id[declared].rect, node.rect, tol):
                parent = declared
        if parent is None:
            parent = _smallest_enclosing(node, ordered, tol)
        if parent is not None and _would_cycle(node.id, parent, parent_of):
            fallbacks += 1
            parent = None
        parent_of[node.id] = parent

    children: Dict[str, List[str]] = {ROOT_ID: []}
    for node in safe:
        children[node.id] = []
    for node in ordered:
        pid = parent_of[node.id] or ROOT_ID
        node.parent_id = pid
        children[pid].append(node.id)

    arena: Dict[str, UINode] = {ROOT_ID: root, **by_id}
    order = functools.cmp_to_key(lambda a, b: _sibling_cmp(a, b, y_tolerance))
    for pid, kids in children.items():
        kids.sort(key=lambda cid: order(arena[cid]))

    queue = deque([(ROOT_ID, 0)])
    while queue:
        cur, depth = queue.popleft()
        arena[cur].depth = depth
        arena[cur].role = "container" if children[cur] else "leaf"
        queue.extend((cid, depth + 1) for cid in children[cur])

    if fallbacks:
        logger.info("containment: %d cycle fallbacks to root", fallbacks)
    logger.info("containment: %d nodes under %gx%g root", len(safe), root_w, root_h)
    return ContainmentTree(nodes=arena, children=children, root_id=ROOT_ID)
