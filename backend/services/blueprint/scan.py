"""Serpentine scan traversal and the auditable scan trace."""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence

from services.blueprint.models import ScanMark


class SerpentineScan:
    """Lazy boustrophedon walk over a ``w x h`` canvas.

    Even rows run left-to-right from x=0, odd rows right-to-left from x=w-1.
    Every ``iter()`` starts over from index 0; a running iterator cannot be
    resumed from the middle.
    """

    def __init__(self, w: int, h: int, step: float) -> None:
        self.w = max(0, int(w))
        self.h = max(0, int(h))
        self.step = max(1, int(round(step)))

    def __len__(self) -> int:
        return int(math.ceil(self.h / self.step)) * int(math.ceil(self.w / self.step))

    def __iter__(self) -> Iterator[ScanMark]:
        s = self.step
        i = 0
        for y in range(0, self.h, s):
            if (y // s) % 2 == 0:
                xs = range(0, self.w, s)
            else:
                xs = range(self.w - 1, -1, -s)
            for x in xs:
                yield ScanMark(i=i, x=x, y=y)
                i += 1


def serpentine_points(w: int, h: int, step: float) -> Iterator[ScanMark]:
    return iter(SerpentineScan(w, h, step))


def trace_hash(marks: Sequence[ScanMark]) -> str:
    """SHA-256 of the canonical JSON form of the trace."""
    payload = json.dumps([[m.i, m.x, m.y] for m in marks], separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class ScanRunResult:
    marks: List[ScanMark] = field(default_factory=list)
    expected: int = 0
    completed: bool = False

    @property
    def trace_hash(self) -> str:
        return trace_hash(self.marks)

    def to_dict(self, include_marks: bool = True) -> dict:
        payload = {
            "marks": len(self.marks),
            "expected": self.expected,
            "completed": self.completed,
            "traceHash": self.trace_hash,
        }
        if include_marks:
            payload["trace"] = [m.to_dict() for m in self.marks]
        return payload


def run_scan(
    w: int,
    h: int,
    step: float,
    on_tick: Optional[Callable[[ScanMark], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> ScanRunResult:
    """Walk the serpentine path, recording each mark and notifying ``on_tick``.

    ``should_stop`` is polled once per point before it is recorded; marks
    collected before a stop remain a valid partial trace.
    """
    scan = SerpentineScan(w, h, step)
    result = ScanRunResult(expected=len(scan))
    for mark in scan:
        if should_stop is not None and should_stop():
            return result
        result.marks.append(mark)
        if on_tick is not None:
            on_tick(mark)
    result.completed = True
    return result
