# -----------------------------------------------------------------------------
# Types module: Shared dataclasses for the calculation engine
# Purpose:
#   Define the value variant (plain number vs. unit-bearing measure) and the
#   records a note scope and the global constant store keep per name/line.
# -----------------------------------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple, Union

# (unit system, decimal places) a display string was rendered under
FormatKey = Tuple[str, int]


@dataclass(frozen=True)
class Number:
    """A plain, dimensionless number."""
    magnitude: float

    @property
    def raw(self) -> Any:
        return self.magnitude


@dataclass(frozen=True)
class Measure:
    """
    A pint quantity carrying magnitude, units and dimensionality.
    - symbol: display label picked by the unit-system normalizer; when None
      the quantity's own units are rendered instead.
    """
    quantity: Any
    symbol: Optional[str] = None

    @property
    def raw(self) -> Any:
        return self.quantity

    @property
    def magnitude(self) -> float:
        return self.quantity.magnitude

    @property
    def dimensionality(self) -> Dict[str, float]:
        return dict(self.quantity.dimensionality)


Value = Union[Number, Measure]


def wrap(raw: Any) -> Value:
    # Evaluator output -> tagged variant; unit-free quantities collapse to numbers
    if isinstance(raw, (Number, Measure)):
        return raw
    if hasattr(raw, "units") and hasattr(raw, "magnitude"):
        if raw.unitless:
            return Number(raw.magnitude)
        return Measure(raw)
    return Number(raw)


@dataclass(frozen=True)
class DefiningLine:
    # Where an assignment lives: block identity, line index inside the block,
    # and the block's position in the note when the caller supplied one.
    block_key: str
    index: int
    position: Optional[int] = None

    @property
    def note_line(self) -> Optional[int]:
        # Fence line + 1 is the first source line of the block
        if self.position is None:
            return None
        return self.position + 1 + self.index


@dataclass
class Variable:
    name: str
    value: Value
    magnitude: str
    unit: str
    display: str
    defining_line: Optional[DefiningLine] = None
    inputs: Dict[str, Optional[str]] = field(default_factory=dict)  # dependency -> display seen at compute time
    format_key: Optional[FormatKey] = None


@dataclass
class LineCacheEntry:
    expr: str
    value: Value
    display: str
    dependencies: Set[str]
    kind: str                         # "expression" | "conversion"
    target_unit: Optional[str] = None
    inputs: Dict[str, Optional[str]] = field(default_factory=dict)
    format_key: Optional[FormatKey] = None


@dataclass
class GlobalConstant:
    """
    Named value shared by every note.
    value is None only when a persisted entry could neither be re-evaluated
    nor rebuilt; such constants keep their display but do not bind.
    """
    name: str
    value: Optional[Value]
    magnitude: str
    unit: str
    display: str
    source_expression: str = ""


@dataclass(frozen=True)
class UnitDefinition:
    """
    Entry of the unit picker library.
    Example: system "US", category "Force", name "pound-force", symbol "lbf"
    - insert: text that evaluates in a calc block (e.g. 'm^2' for 'm²')
    """
    system: str
    category: str
    name: str
    symbol: str
    insert: str
