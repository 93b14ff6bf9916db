# -----------------------------------------------------------------------------
# Units & Conversion Utilities
# Purpose:
#   Thin session over a single pint UnitRegistry. Everything unit-related the
#   engine does (building quantities, converting, naming units for display,
#   listing the registry) goes through here.
# Scope:
#   - pint does the dimensional analysis; this module only adapts its API.
#   - Unit text is rendered compactly ("kg*m/s^2") with glyph substitutions
#     for the few symbols that read better as special characters.
# Safety:
#   - Raises UnitError on unknown or incompatible units.
# -----------------------------------------------------------------------------

# src/notecalc/units.py
from __future__ import annotations
import re
from typing import Any, List, Optional

from pint import UnitRegistry
from pint.errors import DimensionalityError, PintError, UndefinedUnitError

from .errors import EvaluationError

_UR = UnitRegistry(autoconvert_offset_to_baseunit=True)
_Q_ = _UR.Quantity


class UnitError(EvaluationError): pass


# Display glyphs for unit tokens (applied token by token to rendered unit text)
SYMBOL_GLYPHS = {
    "degC": "°C",
    "degF": "°F",
    "degK": "K",
    "delta_degC": "Δ°C",
    "delta_degF": "Δ°F",
    "deg": "°",
    "degree": "°",
    "ohm": "Ω",
    "Ohm": "Ω",
    "uohm": "µΩ",
    "kohm": "kΩ",
    "Mohm": "MΩ",
}

_TOKEN = re.compile(r"[A-Za-z_]+")


def display_symbol(unit_text: str) -> str:
    """Swap glyph-worthy tokens ('degC' -> '°C', 'ohm' -> 'Ω') in a unit string."""
    return _TOKEN.sub(lambda m: SYMBOL_GLYPHS.get(m.group(0), m.group(0)), unit_text)


class UnitSession:
    def __init__(self, registry: Optional[UnitRegistry] = None):
        self.ur = registry or _UR
        self._known: Optional[List[str]] = None

    def q(self, value: float, unit: str):
        try:
            return self.ur.Quantity(value, unit)
        except UndefinedUnitError as e:
            raise UnitError(f"Unknown unit: {unit}") from e

    def to(self, quantity, unit: str):
        try:
            return quantity.to(unit)
        except UndefinedUnitError as e:
            raise UnitError(f"Unknown unit: {unit}") from e
        except DimensionalityError as e:
            raise UnitError(f"Cannot convert {self.unit_text(quantity.units)} to {unit}") from e
        except PintError as e:
            raise UnitError(str(e)) from e

    def is_quantity(self, value: Any) -> bool:
        return isinstance(value, self.ur.Quantity)

    def is_unit(self, name: str) -> bool:
        # Registry lookup accepts prefixes and plurals ('ms', 'feet')
        return name in self.ur

    def unit_text(self, units) -> str:
        """
        Compact, abbreviated unit text: 'meter / second ** 2' -> 'm/s^2'.
        Empty string for dimensionless-without-units.
        """
        text = f"{units:~C}"
        if text == "dimensionless":
            return ""
        return display_symbol(text.replace("**", "^"))

    def known_units(self) -> List[str]:
        # Sorted, de-duplicated symbols for every unit the registry defines
        if self._known is None:
            symbols = set()
            for name in list(self.ur._units):
                try:
                    symbols.add(self.ur.get_symbol(name))
                except (PintError, KeyError):
                    continue
            self._known = sorted(s for s in symbols if s)
        return list(self._known)
