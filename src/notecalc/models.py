from __future__ import annotations
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class EquationParts(BaseModel):
    # LaTeX pair: symbolic form, then "= result"
    symbolic: str
    result: str

class CommentResult(BaseModel):
    kind: Literal["comment"] = "comment"
    text: str

class AssignmentResult(BaseModel):
    kind: Literal["assignment"] = "assignment"
    name: str
    expr: str
    display: str
    equation: Optional[EquationParts] = None

class ConversionResult(BaseModel):
    kind: Literal["conversion"] = "conversion"
    expr: str
    target: str
    display: str
    equation: Optional[EquationParts] = None

class ExpressionResult(BaseModel):
    kind: Literal["expression"] = "expression"
    expr: str
    display: str
    equation: Optional[EquationParts] = None

class ErrorResult(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    source: str = ""

LineResult = Annotated[
    Union[CommentResult, AssignmentResult, ConversionResult, ExpressionResult, ErrorResult],
    Field(discriminator="kind"),
]


class NoteReport(BaseModel):
    """Outcome of recalculating every calc block of one note."""
    blocks: List[List[LineResult]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        if not self.blocks:
            return "No calc blocks found in this note."
        if self.errors:
            n = len(self.errors)
            return f"Recalculated with {n} error{'' if n == 1 else 's'}. {self.errors[0]}"
        return "Calc blocks recalculated successfully."

class VariableRow(BaseModel):
    name: str
    group: Literal["local", "global"]
    magnitude: str
    unit: str
    display: str
    source_line: Optional[int] = None

class Completion(BaseModel):
    label: str
    detail: str
    group: Literal["local", "global"]

class ConstantView(BaseModel):
    name: str
    magnitude: str
    unit: str
    display: str
    source_expression: str

    @classmethod
    def of(cls, c: Any) -> "ConstantView":
        return cls(name=c.name, magnitude=c.magnitude, unit=c.unit,
                   display=c.display, source_expression=c.source_expression)

class TraceView(BaseModel):
    document_id: str
    steps: List[Dict[str, Any]] = Field(default_factory=list)
