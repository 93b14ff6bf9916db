# -----------------------------------------------------------------------------
# Global constant store
# Purpose:
#   Process-wide named values usable from every note when the feature is on.
#   Each constant keeps the expression it came from; on load, expressions are
#   re-evaluated against the other constants (never against themselves) so
#   constants can build on each other.
# Persistence:
#   A small file object with read()/write(); YAML on disk, or in memory.
#   Shape: name -> {value, magnitude, unit, display, sourceExpression}
# -----------------------------------------------------------------------------

# src/notecalc/constants.py
from __future__ import annotations
import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import CalcError, ConstantError
from .formatters import present
from .parsing import is_identifier
from .safe_eval import Evaluator
from .settings import EngineSettings
from .types import GlobalConstant, Measure, Value
from .units import UnitSession

logger = logging.getLogger(__name__)


class YamlConstantFile:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConstantError(f"Malformed constants file: {self.path}")
        return data

    def write(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=True, allow_unicode=True)


class InMemoryConstantFile:
    def __init__(self, data: Optional[Dict[str, Dict[str, Any]]] = None):
        self.data = copy.deepcopy(data or {})
        self.writes = 0

    def read(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self.data)

    def write(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.data = copy.deepcopy(data)
        self.writes += 1


def _value_text(value: Value) -> str:
    # Full-precision, parseable form ('0.90718474 kilogram') for rebuilding
    if isinstance(value, Measure):
        q = value.quantity
        return f"{q.magnitude!r} {q.units:C}"
    return repr(value.magnitude)


class GlobalConstantStore:
    def __init__(self, session: UnitSession, settings: Optional[EngineSettings] = None, file=None):
        self.units = session
        self.settings = settings or EngineSettings()
        self.file = file if file is not None else InMemoryConstantFile()
        self.evaluator = Evaluator(session)
        self._entries: Dict[str, GlobalConstant] = {}

    # ---------------- internal helpers ----------------

    def _binding(self, exclude: Optional[str] = None) -> Dict[str, Any]:
        return {n: c.value.raw for n, c in self._entries.items() if n != exclude and c.value is not None}

    def _make(self, name: str, value: Value, source: str) -> GlobalConstant:
        shown = present(value, self.settings.unit_system, self.settings.precision, self.units)
        return GlobalConstant(name=name, value=value, magnitude=shown.magnitude, unit=shown.unit,
                              display=shown.display, source_expression=source)

    def _restore(self, name: str, data: Dict[str, Any]) -> GlobalConstant:
        # Last-known state from the persisted entry, without re-evaluation
        value: Optional[Value] = None
        raw = data.get("value")
        if raw not in (None, ""):
            try:
                value = self.evaluator.evaluate(str(raw))
            except CalcError as e:
                logger.warning("could not rebuild constant %s from %r: %s", name, raw, e)
        return GlobalConstant(
            name=name, value=value,
            magnitude=str(data.get("magnitude", "")), unit=str(data.get("unit", "")),
            display=str(data.get("display", "")),
            source_expression=str(data.get("sourceExpression") or ""),
        )

    def _persist(self) -> None:
        try:
            self.file.write(self.to_persisted())
        except (OSError, yaml.YAMLError) as e:
            logger.warning("failed to persist global constants: %s", e)

    # ---------------- public API ----------------

    def load(self, persisted: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        """
        Replace the store with persisted entries.
        1) Restore every entry from its stored value/display.
        2) Re-evaluate each source expression (sorted by name) against the
           others; a failure keeps the restored entry.
        """
        if persisted is None:
            persisted = self.file.read()
        self._entries = {}
        for name, data in persisted.items():
            if is_identifier(name) and isinstance(data, dict):
                self._entries[name] = self._restore(name, data)
            else:
                logger.warning("skipping malformed constant entry %r", name)
        for name in sorted(self._entries):
            source = self._entries[name].source_expression
            if not source:
                continue
            try:
                value = self.evaluator.evaluate(source, self._binding(exclude=name))
            except CalcError as e:
                logger.warning("constant %s kept its stored value: %s", name, e)
                continue
            self._entries[name] = self._make(name, value, source)

    def upsert(self, name: str, expression: str) -> GlobalConstant:
        name = (name or "").strip()
        expression = (expression or "").strip()
        if not name:
            raise ConstantError("Name required")
        if not is_identifier(name):
            raise ConstantError(f"Invalid identifier: {name}")
        if not expression:
            raise ConstantError("Expression required")
        try:
            value = self.evaluator.evaluate(expression, self._binding(exclude=name))
        except CalcError as e:
            raise ConstantError(e.message) from e
        constant = self._make(name, value, expression)
        self._entries[name] = constant
        self._persist()
        return constant

    def delete(self, name: str) -> bool:
        name = (name or "").strip()
        if not name:
            raise ConstantError("Name required")
        removed = self._entries.pop(name, None) is not None
        self._persist()
        return removed

    def get(self, name: str) -> Optional[GlobalConstant]:
        return self._entries.get(name)

    def binding(self) -> Dict[str, Any]:
        return self._binding()

    def snapshot(self) -> List[GlobalConstant]:
        return [self._entries[n] for n in sorted(self._entries)]

    def to_persisted(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name, c in self._entries.items():
            out[name] = {
                "value": _value_text(c.value) if c.value is not None else "",
                "magnitude": c.magnitude,
                "unit": c.unit,
                "display": c.display,
                "sourceExpression": c.source_expression,
            }
        return out

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
