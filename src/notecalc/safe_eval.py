# -----------------------------------------------------------------------------
# Safe unit-aware evaluator (controlled environment)
# Purpose:
#   Evaluate an engineering expression ("2 lb * g", "15 gal/min", "sqrt(a)")
#   against a caller-supplied binding, producing plain numbers or pint
#   quantities. Nothing is executed: the expression is parsed with `ast` and
#   walked under a whitelist.
# Safety:
#   - Only numbers, + - * / ** %, unary +/-, whitelisted function calls,
#     the constants pi/e, bound names, and unit names are accepted.
#   - Every failure surfaces as EvaluationError (or ParseError).
# -----------------------------------------------------------------------------

# src/notecalc/safe_eval.py
from __future__ import annotations
import ast
import math
from typing import Any, Callable, Dict, Mapping, Optional

from pint.errors import PintError
from pint.util import string_preprocessor

from .errors import EvaluationError, ParseError
from .types import Value, wrap
from .units import UnitSession

# Whitelisted math constants
ALLOWED_CONSTS = {
    "pi": math.pi,
    "e": math.e,
}

# Allowed AST operator node types
_ALLOWED_BINOPS = {ast.Add, ast.Sub, ast.Mult, ast.Div, ast.Mod, ast.Pow}
_ALLOWED_UNARYOPS = {ast.UAdd, ast.USub}


def _as_float(x: Any) -> float:
    # Angles and other dimensionless quantities reduce to plain radians/ratios
    if hasattr(x, "to") and hasattr(x, "magnitude"):
        return float(x.to("dimensionless").magnitude)
    return float(x)


def _sqrt(x: Any) -> Any:
    if getattr(x, "magnitude", x) < 0:
        raise ValueError("Square root of a negative is not real.")
    return x ** 0.5 if hasattr(x, "magnitude") else math.sqrt(x)


def _unary(fn: Callable[[float], float]) -> Callable[[Any], float]:
    return lambda x: fn(_as_float(x))


# Whitelisted functions; single-argument only (the unit preprocessor strips commas)
_ALLOWED_FUNCS: Dict[str, Callable[[Any], Any]] = {
    "sqrt": _sqrt,
    "abs": abs,
    "sin": _unary(math.sin),
    "cos": _unary(math.cos),
    "tan": _unary(math.tan),
    "asin": _unary(math.asin),
    "acos": _unary(math.acos),
    "atan": _unary(math.atan),
    "exp": _unary(math.exp),
    "log": _unary(math.log),    # natural log
    "ln": _unary(math.log),     # alias for natural log
    "log10": _unary(math.log10),
}

FUNCTION_NAMES = frozenset(_ALLOWED_FUNCS)


def normalize_expression(expr: str) -> str:
    """
    Rewrite engineering shorthand into Python syntax, the way pint's own
    parser does: '5 kg' -> '5*kg', '^' -> '**', 'm per s' -> 'm/s'.
    """
    return string_preprocessor(expr.strip())


def parse_expression(expr: str) -> ast.Expression:
    if not expr or not expr.strip():
        raise ParseError("Empty expression.")
    try:
        return ast.parse(normalize_expression(expr), mode="eval")
    except SyntaxError as e:
        raise ParseError(f"Invalid expression: {expr}") from e


class Evaluator:
    def __init__(self, session: UnitSession):
        self.units = session

    def evaluate(self, expr: str, binding: Optional[Mapping[str, Any]] = None) -> Value:
        """
        Evaluate `expr` with names resolved against `binding` (raw numbers or
        pint quantities), then constants, then the unit registry.

        Returns
        -------
        Value
            Number for unit-free results, Measure otherwise.
        """
        tree = parse_expression(expr)
        scope = dict(binding or {})
        try:
            raw = self._eval(tree, scope)
        except (EvaluationError, ParseError):
            raise
        except PintError as e:
            raise EvaluationError(str(e)) from e
        except ZeroDivisionError as e:
            raise EvaluationError("Division by zero.") from e
        except OverflowError as e:
            raise EvaluationError("Result is too large.") from e
        except (ArithmeticError, ValueError, TypeError) as e:
            raise EvaluationError(str(e)) from e
        except RecursionError as e:
            raise EvaluationError("Expression is nested too deeply.") from e
        if isinstance(raw, complex) or isinstance(getattr(raw, "magnitude", None), complex):
            raise EvaluationError("Result is not a real number.")
        return wrap(raw)

    def _name(self, name: str, scope: Mapping[str, Any]) -> Any:
        if name in scope:
            return scope[name]
        if name in ALLOWED_CONSTS:
            return ALLOWED_CONSTS[name]
        if self.units.is_unit(name):
            return self.units.q(1.0, name)
        raise EvaluationError(f"Undefined symbol: {name}")

    def _eval(self, node: ast.AST, scope: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.Expression):
            return self._eval(node.body, scope)
        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
                # Doubles, not bignums: overflow raises instead of running unbounded
                return float(node.value)
            raise EvaluationError("Unsupported constant type.")
        if isinstance(node, ast.Name):
            return self._name(node.id, scope)
        if isinstance(node, ast.BinOp):
            if type(node.op) not in _ALLOWED_BINOPS:
                raise EvaluationError("Unsupported operator.")
            left = self._eval(node.left, scope)
            # '20 degC': build the quantity directly so offset units survive
            if (isinstance(node.op, ast.Mult) and isinstance(node.right, ast.Name)
                    and isinstance(left, (int, float)) and node.right.id not in scope
                    and node.right.id not in ALLOWED_CONSTS and self.units.is_unit(node.right.id)):
                return self.units.q(left, node.right.id)
            right = self._eval(node.right, scope)
            if isinstance(node.op, ast.Add):   return left + right
            if isinstance(node.op, ast.Sub):   return left - right
            if isinstance(node.op, ast.Mult):  return left * right
            if isinstance(node.op, ast.Div):   return left / right
            if isinstance(node.op, ast.Mod):   return left % right
            if isinstance(right, float) and right.is_integer():
                # Integral exponents stay ints so unit powers read m^2, not m^2.0
                right = int(right)
            return left ** right
        if isinstance(node, ast.UnaryOp):
            if type(node.op) not in _ALLOWED_UNARYOPS:
                raise EvaluationError("Unsupported unary operator.")
            val = self._eval(node.operand, scope)
            return +val if isinstance(node.op, ast.UAdd) else -val
        if isinstance(node, ast.Call):
            # Only bare function names allowed; no attribute access or keywords
            if not isinstance(node.func, ast.Name):
                raise EvaluationError("Unsupported call.")
            name = node.func.id
            if name not in _ALLOWED_FUNCS:
                raise EvaluationError(f"Unsupported function: {name}")
            if node.keywords or len(node.args) != 1:
                raise EvaluationError(f"{name}() takes exactly one argument.")
            return _ALLOWED_FUNCS[name](self._eval(node.args[0], scope))
        # Anything else is rejected to preserve safety guarantees
        raise EvaluationError("Unsupported syntax.")
