# -----------------------------------------------------------------------------
# Unit catalog loader & accessor
# Purpose: Parse a YAML unit library (systems → categories → units) into
# typed UnitDefinition entries for unit pickers and listings.
# - Depends on .types (UnitDefinition) for typed payloads.
# -----------------------------------------------------------------------------

from __future__ import annotations
import yaml
from dataclasses import dataclass
from typing import Any, Dict, List
from .types import UnitDefinition

# Domain-specific error to signal malformed catalog inputs, missing fields, etc.
class CatalogError(Exception): pass

# Built-in library. 'insert' is what gets typed into a calc block.
DEFAULT_UNITS_YAML = """
systems:
  SI:
    Length:
      - { name: meter, symbol: m }
      - { name: kilometer, symbol: km }
      - { name: millimeter, symbol: mm }
    Mass:
      - { name: kilogram, symbol: kg }
      - { name: gram, symbol: g }
    Time:
      - { name: second, symbol: s }
      - { name: minute, symbol: min }
    Temperature:
      - { name: kelvin, symbol: K }
      - { name: degree Celsius, symbol: "°C", insert: degC }
    Force:
      - { name: newton, symbol: N }
    Pressure:
      - { name: pascal, symbol: Pa }
    Energy:
      - { name: joule, symbol: J }
    Power:
      - { name: watt, symbol: W }
    Volume:
      - { name: liter, symbol: L }
    Area:
      - { name: square meter, symbol: "m²", insert: "m^2" }
  US:
    Length:
      - { name: inch, symbol: in }
      - { name: foot, symbol: ft }
      - { name: mile, symbol: mi }
    Mass:
      - { name: pound, symbol: lb }
      - { name: ounce, symbol: oz }
    Time:
      - { name: second, symbol: s }
      - { name: minute, symbol: min }
    Temperature:
      - { name: degree Fahrenheit, symbol: "°F", insert: degF }
    Force:
      - { name: pound-force, symbol: lbf }
    Pressure:
      - { name: pounds per square inch, symbol: psi }
    Energy:
      - { name: BTU, symbol: BTU }
    Power:
      - { name: horsepower, symbol: hp }
    Volume:
      - { name: gallon, symbol: gal }
    Area:
      - { name: square foot, symbol: "ft²", insert: "ft^2" }
"""


@dataclass
class UnitCatalog:
    # Flattened list of units across systems/categories, in file order
    units: List[UnitDefinition]

    @staticmethod
    def from_yaml_dict(d: Dict[str, Any]) -> "UnitCatalog":
        """
        Build a UnitCatalog from a pre-parsed YAML dictionary.
        Expected shape:
          systems:
            SI:
              Length:
                - { name: meter, symbol: m }
                - { name: square meter, symbol: "m²", insert: "m^2" }
        """
        units: List[UnitDefinition] = []
        systems = (d or {}).get("systems")
        if not isinstance(systems, dict):
            raise CatalogError("Unit catalog needs a 'systems' mapping.")
        for system, categories in systems.items():
            for category, entries in (categories or {}).items():
                for ud in entries or []:
                    try:
                        units.append(UnitDefinition(
                            system=str(system), category=str(category),
                            name=str(ud["name"]), symbol=str(ud["symbol"]),
                            insert=str(ud.get("insert") or ud["symbol"]),
                        ))
                    except (KeyError, TypeError) as e:
                        raise CatalogError(f"Bad unit entry under {system}/{category}: {ud!r}") from e
        return UnitCatalog(units=units)

    @staticmethod
    def from_yaml_text(text: str) -> "UnitCatalog":
        return UnitCatalog.from_yaml_dict(yaml.safe_load(text))

    @staticmethod
    def from_file(path: str) -> "UnitCatalog":
        with open(path, "r", encoding="utf-8") as f:
            return UnitCatalog.from_yaml_text(f.read())

    def systems(self) -> List[str]:
        return list(dict.fromkeys(u.system for u in self.units))

    def units_for_system(self, system: str) -> Dict[str, List[UnitDefinition]]:
        """Units of one system grouped by category, categories in file order."""
        grouped: Dict[str, List[UnitDefinition]] = {}
        for u in self.units:
            if u.system == system:
                grouped.setdefault(u.category, []).append(u)
        return grouped

    def list_units(self) -> List[Dict[str, Any]]:
        # UI-friendly rows for listings and the HTTP surface
        return [{"system": u.system, "category": u.category, "name": u.name,
                 "symbol": u.symbol, "insert": u.insert} for u in self.units]


def default_catalog() -> UnitCatalog:
    return UnitCatalog.from_yaml_text(DEFAULT_UNITS_YAML)
