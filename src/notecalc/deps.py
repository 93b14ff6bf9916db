# -----------------------------------------------------------------------------
# Dependency analysis
# Purpose:
#   Collect the free variable names an expression references, so the engine
#   can decide whether a line must be recomputed.
# Notes:
#   - Unit names ('kg', 'min') are not variables unless the note binds them;
#     a bound name always shadows the unit of the same name.
#   - Never raises: unparsable input yields an empty set.
# -----------------------------------------------------------------------------

# src/notecalc/deps.py
from __future__ import annotations
import ast
import logging
from typing import Container, Set

from .errors import ParseError
from .safe_eval import ALLOWED_CONSTS, parse_expression
from .units import UnitSession

logger = logging.getLogger(__name__)


def referenced_names(expr: str) -> Set[str]:
    """Every identifier used as a value (not as a called function) in `expr`."""
    tree = parse_expression(expr)
    called = {id(n.func) for n in ast.walk(tree) if isinstance(n, ast.Call)}
    return {n.id for n in ast.walk(tree) if isinstance(n, ast.Name) and id(n) not in called}


def free_variables(expr: str, session: UnitSession, bound: Container[str] = ()) -> Set[str]:
    try:
        names = referenced_names(expr)
    except ParseError as e:
        logger.debug("dependency analysis skipped for %r: %s", expr, e)
        return set()
    free = set()
    for name in names:
        if name in bound:
            free.add(name)
        elif name in ALLOWED_CONSTS or session.is_unit(name):
            continue
        else:
            free.add(name)
    return free
