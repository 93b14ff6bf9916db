# -----------------------------------------------------------------------------
# Note text helpers
# Purpose:
#   Work on the raw markdown of a note: find its calc blocks, tell whether a
#   line sits inside one, and rewrite a variable's assignment in place.
#   Pure text functions; no evaluation happens here.
# -----------------------------------------------------------------------------

# src/notecalc/notes.py
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional

from .errors import ValidationError
from .parsing import is_identifier

_FENCE = re.compile(r"^\s*(```|~~~)")
_CALC_FENCE = re.compile(r"^\s*(```|~~~)\s*calc\b", re.IGNORECASE)


@dataclass(frozen=True)
class CalcBlock:
    source: str
    start_line: int   # 0-based line of the opening fence


def extract_calc_blocks(note_text: str) -> List[CalcBlock]:
    """
    Collect fenced calc blocks in document order. The opening fence may carry
    extra words after 'calc'; the block ends at the next fence of the same kind.
    An unterminated block runs to the end of the note.
    """
    blocks: List[CalcBlock] = []
    lines = note_text.splitlines()
    i = 0
    while i < len(lines):
        m = _CALC_FENCE.match(lines[i])
        if not m:
            i += 1
            continue
        fence, start = m.group(1), i
        body: List[str] = []
        i += 1
        while i < len(lines) and not lines[i].strip().startswith(fence):
            body.append(lines[i])
            i += 1
        blocks.append(CalcBlock("\n".join(body), start))
        i += 1
    return blocks


def _body(line: str) -> str:
    # Line text without its terminator (any splitlines boundary)
    return (line.splitlines() or [""])[0]


def _calc_mask(lines: List[str]) -> List[bool]:
    # Per line: inside an open calc fence (the opening fence line included)
    in_calc = False
    mask: List[bool] = []
    for text in lines:
        if _FENCE.match(text):
            in_calc = False if in_calc else bool(_CALC_FENCE.match(text))
        mask.append(in_calc)
    return mask


def is_in_calc_block(document_text: str, line_number: int) -> bool:
    """True when 0-based `line_number` lies inside an open calc fence."""
    mask = _calc_mask(document_text.splitlines())
    return 0 <= line_number < len(mask) and mask[line_number]


def update_variable_assignment(
    note_text: str, name: str, magnitude: str, unit: str = "", source_line: Optional[int] = None
) -> Optional[str]:
    """
    Rewrite `name = ...` to `name = <magnitude> <unit>` inside a calc block.
    Targets `source_line` when it holds that assignment, else the first match.
    Returns the new note text, or None when no such assignment exists.
    """
    magnitude = (magnitude or "").strip()
    unit = (unit or "").strip()
    if not magnitude:
        raise ValidationError("Value cannot be empty.")
    if not is_identifier(name):
        raise ValidationError(f"Invalid identifier: {name}")

    pattern = re.compile(rf"^(?P<indent>\s*){re.escape(name)}\s*=\s*\S")
    # Same line numbering as extract_calc_blocks and is_in_calc_block
    lines = note_text.splitlines(keepends=True)
    bodies = [_body(line) for line in lines]
    mask = _calc_mask(bodies)
    candidates = [n for n, text in enumerate(bodies) if mask[n] and pattern.match(text)]
    if not candidates:
        return None
    target = source_line if source_line in candidates else candidates[0]

    ending = lines[target][len(bodies[target]):]
    indent = pattern.match(bodies[target]).group("indent")
    lines[target] = f"{indent}{name} = {magnitude} {unit}".rstrip() + ending
    return "".join(lines)
