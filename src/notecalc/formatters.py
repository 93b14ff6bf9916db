from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Optional

from sympy import Symbol, latex
from sympy.parsing.sympy_parser import parse_expr

from .deps import referenced_names
from .models import EquationParts
from .safe_eval import FUNCTION_NAMES, normalize_expression
from .systems import normalize
from .types import Measure, Value
from .units import UnitSession, display_symbol

logger = logging.getLogger(__name__)

# Decimal places, not significant digits: 0.000946 at 4 renders as 0.0009
DEFAULT_PRECISION = 4


def trim_zeros(text: str) -> str:
    text = re.sub(r"(\.\d*?[1-9])0+$", r"\1", text)
    return re.sub(r"\.0+$", "", text)


def format_number(x: float, precision: int = DEFAULT_PRECISION) -> str:
    text = trim_zeros(f"{x:.{precision}f}")
    return "0" if text == "-0" else text


def unit_text(value: Value, session: UnitSession) -> str:
    if not isinstance(value, Measure):
        return ""
    if value.symbol:
        return display_symbol(value.symbol)
    return session.unit_text(value.quantity.units)


def format_value(value: Value, session: UnitSession, precision: int = DEFAULT_PRECISION) -> str:
    """'11.0231 lb', '20', '0.0009 m^3/s'"""
    return f"{format_number(value.magnitude, precision)} {unit_text(value, session)}".strip()


@dataclass(frozen=True)
class Presentation:
    # What a reader sees for one computed value
    value: Value          # normalized for display; the computed value is kept elsewhere
    magnitude: str
    unit: str
    display: str


def present(value: Value, system: str, precision: int, session: UnitSession) -> Presentation:
    shown = normalize(value, system, session)
    magnitude = format_number(shown.magnitude, precision)
    unit = unit_text(shown, session)
    return Presentation(shown, magnitude, unit, f"{magnitude} {unit}".strip())


# --------------------------
# LaTeX (equation rendering)
# --------------------------

def escape_latex(value: str) -> str:
    return re.sub(r"([\\{}_^%$#&])", r"\\\1", value)


def units_to_latex(units: str) -> str:
    """'kg*m/s^2' -> '\\mathrm{kg}\\cdot\\mathrm{m}/\\mathrm{s}^{2}'"""
    out = []
    for token in re.split(r"([*/])", units.replace(" ", "")):
        if not token:
            continue
        if token == "/":
            out.append("/")
        elif token == "*":
            out.append("\\cdot")
        else:
            m = re.match(r"^(.+?)(?:\^\(?(-?[\d.]+)\)?)?$", token)
            base = f"\\mathrm{{{escape_latex(m.group(1))}}}"
            out.append(f"{base}^{{{m.group(2)}}}" if m.group(2) else base)
    return "".join(out)


def format_latex(value: Value, session: UnitSession, precision: int = DEFAULT_PRECISION) -> str:
    numeric = format_number(value.magnitude, precision)
    units = unit_text(value, session)
    return f"{numeric}\\,{units_to_latex(units)}" if units else numeric


def symbolic_latex(expr: str) -> str:
    """
    Typeset an expression as written (no simplification). Every name becomes
    a plain Symbol so units such as N or S never hit sympy built-ins.
    Falls back to the escaped source text when sympy cannot read it.
    """
    try:
        names = referenced_names(expr)
        local = {n: Symbol(n) for n in names if n not in FUNCTION_NAMES}
        return latex(parse_expr(normalize_expression(expr), local_dict=local, evaluate=False))
    except Exception as e:
        logger.debug("symbolic form unavailable for %r: %s", expr, e)
        return escape_latex(expr)


def equation_parts(kind: str, expr: str, value: Value, session: UnitSession, precision: int,
                   name: Optional[str] = None, target: Optional[str] = None) -> EquationParts:
    """Two-line rendering: symbolic form, then '= result'."""
    symbolic = symbolic_latex(expr)
    if kind == "assignment":
        symbolic = f"{escape_latex(name or '')} = {symbolic}"
    elif kind == "conversion":
        symbolic = f"{symbolic} \\to {units_to_latex(target or '')}"
    return EquationParts(symbolic=symbolic, result=f"= {format_latex(value, session, precision)}")
