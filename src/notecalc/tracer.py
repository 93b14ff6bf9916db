# -----------------------------------------------------------------------------
# Tracing utility
# Purpose:
#   Append-only record of what one evaluation pass did to each line of a
#   block: recomputed or reused an assignment, hit or refilled the line cache,
#   failed, or pruned cache entries of lines that no longer exist.
#   Produces a JSON-friendly list for diagnostics and the HTTP surface.
# -----------------------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

StepKind = Literal["recompute", "reuse", "cache_hit", "cache_miss", "error", "prune"]

@dataclass
class TraceStep:
    # line: index inside the block; None for block-level steps (prune)
    kind: StepKind
    line: Optional[int]
    detail: Dict[str, Any]

class Tracer:
    def __init__(self, block_key: str):
        self.block_key = block_key
        self._steps: List[TraceStep] = []

    def add(self, kind: StepKind, line: Optional[int] = None, **detail: Any) -> None:
        self._steps.append(TraceStep(kind, line, detail))

    def for_line(self, line: int) -> List[TraceStep]:
        return [s for s in self._steps if s.line == line]

    def evaluated_lines(self) -> List[int]:
        """Lines whose value was computed this pass rather than reused."""
        return sorted({s.line for s in self._steps
                       if s.kind in ("recompute", "cache_miss") and s.line is not None})

    def steps(self) -> List[Dict[str, Any]]:
        # Export in plain dict form for easy JSON serialization.
        return [{"kind": s.kind, "block": self.block_key, "line": s.line, "detail": s.detail}
                for s in self._steps]
