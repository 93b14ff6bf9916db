# -----------------------------------------------------------------------------
# Error taxonomy for the calculation engine
# Purpose:
#   One root (CalcError) so the engine can recover every failure per line.
#   - ParseError: a line or expression does not fit the block grammar
#   - EvaluationError: unknown symbol, unit mismatch, arithmetic failure
#   - ValidationError: rejected input (constant names, empty expressions)
# -----------------------------------------------------------------------------

# src/notecalc/errors.py
from __future__ import annotations


class CalcError(Exception):
    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.__class__.__name__


class ParseError(CalcError): pass

class EvaluationError(CalcError): pass

class ValidationError(CalcError): pass

# Raised by the global constant store; surfaced to upsert/delete callers
class ConstantError(ValidationError): pass
