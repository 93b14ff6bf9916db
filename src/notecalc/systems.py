# -----------------------------------------------------------------------------
# Unit system normalization
# Purpose:
#   Map a quantity's dimension signature to the unit a reader expects in the
#   configured system (SI or US) and convert for display. The computed value
#   itself is never replaced; callers keep the original and show the result.
# -----------------------------------------------------------------------------

# src/notecalc/systems.py
from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

from .types import Measure, Value
from .units import UnitError, UnitSession

logger = logging.getLogger(__name__)

UNIT_SYSTEMS = ("SI", "US")

Signature = Tuple[Tuple[str, float], ...]


def signature(**dims: float) -> Signature:
    """signature(length=1, time=-1) -> (('[length]', 1), ('[time]', -1))"""
    return tuple(sorted((f"[{k}]", v) for k, v in dims.items() if v))


def dimension_signature(value: Value) -> Signature:
    # Plain numbers have the empty signature
    if not isinstance(value, Measure):
        return ()
    return tuple(sorted((k, v) for k, v in value.quantity.dimensionality.items() if v))


_LENGTH = signature(length=1)
_AREA = signature(length=2)
_VOLUME = signature(length=3)
_MASS = signature(mass=1)
_TIME = signature(time=1)
_TEMPERATURE = signature(temperature=1)
_VELOCITY = signature(length=1, time=-1)
_ACCELERATION = signature(length=1, time=-2)
_FORCE = signature(mass=1, length=1, time=-2)
_PRESSURE = signature(mass=1, length=-1, time=-2)
_ENERGY = signature(mass=1, length=2, time=-2)
_POWER = signature(mass=1, length=2, time=-3)
_DENSITY = signature(mass=1, length=-3)
_VOLUME_FLOW = signature(length=3, time=-1)
_MASS_FLOW = signature(mass=1, time=-1)
_FREQUENCY = signature(time=-1)
_CURRENT = signature(current=1)
_CHARGE = signature(current=1, time=1)
_VOLTAGE = signature(mass=1, length=2, time=-3, current=-1)
_RESISTANCE = signature(mass=1, length=2, time=-3, current=-2)

# signature -> preferred display unit, per system
PREFERRED_UNITS: Dict[str, Dict[Signature, str]] = {
    "SI": {
        _LENGTH: "m",
        _AREA: "m^2",
        _VOLUME: "m^3",
        _MASS: "kg",
        _TIME: "s",
        _TEMPERATURE: "degC",
        _VELOCITY: "m/s",
        _ACCELERATION: "m/s^2",
        _FORCE: "N",
        _PRESSURE: "Pa",
        _ENERGY: "J",
        _POWER: "W",
        _DENSITY: "kg/m^3",
        _VOLUME_FLOW: "m^3/s",
        _MASS_FLOW: "kg/s",
        _FREQUENCY: "Hz",
        _CURRENT: "A",
        _CHARGE: "C",
        _VOLTAGE: "V",
        _RESISTANCE: "ohm",
    },
    "US": {
        _LENGTH: "ft",
        _AREA: "ft^2",
        _VOLUME: "gal",
        _MASS: "lb",
        _TIME: "s",
        _TEMPERATURE: "degF",
        _VELOCITY: "ft/s",
        _ACCELERATION: "ft/s^2",
        _FORCE: "lbf",
        _PRESSURE: "psi",
        _ENERGY: "BTU",
        _POWER: "hp",
        _DENSITY: "lb/ft^3",
        _VOLUME_FLOW: "ft^3/min",
        _MASS_FLOW: "lb/s",
        _FREQUENCY: "Hz",
        _CURRENT: "A",
        _CHARGE: "C",
        _VOLTAGE: "V",
        _RESISTANCE: "ohm",
    },
}


def preferred_unit(sig: Signature, system: str) -> Optional[str]:
    if system not in PREFERRED_UNITS:
        raise ValueError(f"Unknown unit system: {system}")
    return PREFERRED_UNITS[system].get(sig)


def normalize(value: Value, system: str, session: UnitSession) -> Value:
    """
    Convert a Measure to the system's preferred unit for its dimension.
    - Numbers and unmapped signatures pass through unchanged.
    - A failed conversion (e.g. temperature differences) keeps the value as is.
    """
    if not isinstance(value, Measure):
        return value
    target = preferred_unit(dimension_signature(value), system)
    if target is None:
        return value
    try:
        converted = session.to(value.quantity, target)
    except UnitError as e:
        logger.debug("kept native unit for %s: %s", value.quantity, e)
        return value
    return Measure(converted, symbol=target)
