# -----------------------------------------------------------------------------
# CalcEngine: incremental, unit-aware evaluation of calc blocks
# Responsibilities:
#   • Resolve the note scope for a document id (optionally clearing it first)
#   • Classify each line and recompute only what changed since the last pass:
#       new name, changed formula, changed dependency set, dirty upstream,
#       or a display rendered under different formatting settings
#   • Keep the dependency graph and the line cache of the scope in step
#   • Normalize results to the configured unit system and precision
#   • Recover every failure per line; nothing escapes to the caller
#   • Global constants, unit introspection, note-level recalculation
# -----------------------------------------------------------------------------

# src/notecalc/engine.py
from __future__ import annotations
import hashlib
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set

from .catalog import UnitCatalog, default_catalog
from .constants import GlobalConstantStore, YamlConstantFile
from .deps import free_variables
from .errors import CalcError, EvaluationError
from .formatters import equation_parts, format_value, present
from .models import (
    AssignmentResult, CommentResult, Completion, ConversionResult, ErrorResult,
    ExpressionResult, LineResult, NoteReport, VariableRow,
)
from .notes import extract_calc_blocks
from .parsing import Assignment, Comment, Conversion, Statement, classify, iter_lines
from .safe_eval import Evaluator
from .scope import NoteScope, ScopeStore
from .settings import EngineSettings
from .tracer import Tracer
from .types import DefiningLine, GlobalConstant, LineCacheEntry, Measure, Value, Variable, wrap
from .units import UnitSession

logger = logging.getLogger(__name__)

ScopeListener = Callable[[str, Optional[NoteScope]], None]

# Cache partition of inline statements; block keys are "pos:N" or "hash:…"
INLINE_BLOCK_KEY = "inline"


def block_key_for(source: str, block_position: Optional[int] = None) -> str:
    """
    Stable identity of a block inside its note. Prefer the caller's position;
    otherwise hash the text (identical blocks then share a cache partition).
    """
    if block_position is not None:
        return f"pos:{block_position}"
    return "hash:" + hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


@dataclass
class _Pass:
    # Mutable state of one evaluation pass over one block
    document_id: str
    scope: NoteScope
    block_key: str
    block_position: Optional[int]
    trace: Tracer
    dirty: Set[str] = field(default_factory=set)
    touched: Set[str] = field(default_factory=set)


class CalcEngine:
    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        session: Optional[UnitSession] = None,
        scopes: Optional[ScopeStore] = None,
        constants: Optional[GlobalConstantStore] = None,
        catalog: Optional[UnitCatalog] = None,
    ):
        # Inject collaborators; everything defaults to an isolated instance
        self.settings = settings or EngineSettings()
        self.units = session or UnitSession()
        self.scopes = scopes or ScopeStore()
        if constants is None:
            file = YamlConstantFile(self.settings.constants_path) if self.settings.constants_path else None
            constants = GlobalConstantStore(self.units, self.settings, file=file)
            if file is not None:
                constants.load()
        self.constants = constants
        self.catalog = catalog or default_catalog()
        self.evaluator = Evaluator(self.units)
        self._listeners: List[ScopeListener] = []
        self._traces: Dict[str, List[Dict[str, Any]]] = {}

    # ---------------- change notification ----------------

    def subscribe(self, listener: ScopeListener) -> Callable[[], None]:
        """Register a scope-changed callback; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, document_id: str, scope: Optional[NoteScope]) -> None:
        for listener in list(self._listeners):
            try:
                listener(document_id, scope)
            except Exception:
                logger.exception("scope listener failed for %s", document_id)

    def last_trace(self, document_id: str) -> List[Dict[str, Any]]:
        return list(self._traces.get(document_id, []))

    # ---------------- internal helpers ----------------

    def _binding(self, scope: NoteScope) -> Dict[str, Any]:
        # Global constants (when enabled) overlaid by the note's variables
        binding: Dict[str, Any] = {}
        if self.settings.global_variables_enabled:
            binding.update(self.constants.binding())
        for name, var in scope.variables.items():
            binding[name] = var.value.raw
        return binding

    def _bound_names(self, scope: NoteScope) -> Set[str]:
        names = set(scope.variables)
        if self.settings.global_variables_enabled:
            names.update(c.name for c in self.constants.snapshot() if c.value is not None)
        return names

    def _seen_display(self, name: str, scope: NoteScope) -> Optional[str]:
        var = scope.variables.get(name)
        if var is not None:
            return var.display
        if self.settings.global_variables_enabled:
            c = self.constants.get(name)
            if c is not None and c.value is not None:
                return c.display
        return None

    def _inputs(self, deps: Set[str], scope: NoteScope) -> Dict[str, Optional[str]]:
        return {d: self._seen_display(d, scope) for d in sorted(deps)}

    def _convert(self, value: Value, target: str) -> Value:
        # Plain numbers carry no unit to convert; they pass through
        if not isinstance(value, Measure):
            return value
        return wrap(self.units.to(value.quantity, target))

    def _equation(self, kind: str, expr: str, value: Value, shown: Optional[Value] = None, **kw):
        if not self.settings.equation_rendering_enabled:
            return None
        if shown is None:
            shown = present(value, self.settings.unit_system, self.settings.precision, self.units).value
        return equation_parts(kind, expr, shown, self.units, self.settings.precision, **kw)

    def _error(self, ctx: _Pass, index: int, line: str, e: CalcError) -> ErrorResult:
        logger.debug("line %s:%d failed: %s", ctx.document_id, index, e.message)
        ctx.trace.add("error", index, message=e.message)
        return ErrorResult(message=e.message, source=line)

    # ---------------- per-line evaluation ----------------

    def _assign(self, stmt: Assignment, index: int, line: str, ctx: _Pass) -> LineResult:
        scope, name, expr = ctx.scope, stmt.name, stmt.expr
        deps = free_variables(expr, self.units, self._bound_names(scope)) - {name}
        inputs = self._inputs(deps, scope)
        fmt = self.settings.format_key
        current = scope.variables.get(name)

        reasons = []
        if current is None:
            reasons.append("new")
        if scope.formulas.get(name) != expr:
            reasons.append("formula changed")
        if scope.depends_on.get(name) != deps:
            reasons.append("deps changed")
        if deps & ctx.dirty or (current is not None and current.inputs != inputs):
            reasons.append("upstream changed")
        if current is not None and current.format_key != fmt:
            reasons.append("format changed")

        where = DefiningLine(ctx.block_key, index, ctx.block_position)
        if reasons:
            try:
                value = self.evaluator.evaluate(expr, self._binding(scope))
            except CalcError as e:
                # Keep the last good value; forget the formula so the next pass retries
                scope.formulas.pop(name, None)
                scope.set_dependencies(name, deps)
                return self._error(ctx, index, line, e)
            shown = present(value, self.settings.unit_system, self.settings.precision, self.units)
            var = Variable(name=name, value=value, magnitude=shown.magnitude, unit=shown.unit,
                           display=shown.display, defining_line=where, inputs=inputs, format_key=fmt)
            if current is None or current.display != var.display:
                ctx.dirty.add(name)
            scope.variables[name] = var
            ctx.trace.add("recompute", index, name=name, reasons=reasons, display=var.display)
            equation = self._equation("assignment", expr, value, shown.value, name=name)
        else:
            var = current
            if var.defining_line != where:
                var = scope.variables[name] = replace(var, defining_line=where)
            ctx.trace.add("reuse", index, name=name)
            equation = self._equation("assignment", expr, var.value, name=name)

        scope.set_dependencies(name, deps)
        scope.formulas[name] = expr
        return AssignmentResult(name=name, expr=expr, display=var.display, equation=equation)

    def _cached(self, stmt: Statement, index: int, line: str, ctx: _Pass) -> LineResult:
        # Plain expressions and conversions: no variable, results live in the line cache
        scope = ctx.scope
        is_conversion = isinstance(stmt, Conversion)
        kind = "conversion" if is_conversion else "expression"
        target = stmt.target if is_conversion else None
        key = f"{ctx.block_key}:{index}"
        ctx.touched.add(key)

        deps = free_variables(stmt.expr, self.units, self._bound_names(scope))
        inputs = self._inputs(deps, scope)
        fmt = self.settings.format_key
        entry = scope.line_cache.get(key)

        stale = (
            entry is None
            or entry.kind != kind
            or entry.expr != stmt.expr
            or entry.target_unit != target
            or entry.dependencies != deps
            or bool(deps & ctx.dirty)
            or entry.inputs != inputs
            or entry.format_key != fmt
        )
        if stale:
            try:
                value = self.evaluator.evaluate(stmt.expr, self._binding(scope))
                if is_conversion:
                    value = self._convert(value, target)
            except CalcError as e:
                scope.line_cache.pop(key, None)
                return self._error(ctx, index, line, e)
            if is_conversion:
                display = format_value(value, self.units, self.settings.precision)
            else:
                display = present(value, self.settings.unit_system, self.settings.precision, self.units).display
            entry = LineCacheEntry(expr=stmt.expr, value=value, display=display, dependencies=deps,
                                   kind=kind, target_unit=target, inputs=inputs, format_key=fmt)
            scope.line_cache[key] = entry
            ctx.trace.add("cache_miss", index, key=key, display=display)
        else:
            ctx.trace.add("cache_hit", index, key=key)

        if is_conversion:
            equation = self._equation("conversion", stmt.expr, entry.value, entry.value, target=target)
            return ConversionResult(expr=stmt.expr, target=target, display=entry.display, equation=equation)
        equation = self._equation("expression", stmt.expr, entry.value)
        return ExpressionResult(expr=stmt.expr, display=entry.display, equation=equation)

    def _line(self, line: str, index: int, ctx: _Pass) -> LineResult:
        try:
            stmt = classify(line)
        except CalcError as e:
            return self._error(ctx, index, line, e)
        if isinstance(stmt, Comment):
            return CommentResult(text=stmt.text)
        if isinstance(stmt, Assignment):
            return self._assign(stmt, index, line, ctx)
        return self._cached(stmt, index, line, ctx)

    # ---------------- main entry points ----------------

    def evaluate_block(
        self,
        source: str,
        document_id: str,
        block_position: Optional[int] = None,
        reset: Optional[bool] = None,
    ) -> List[LineResult]:
        """
        Evaluate every line of a calc block against the document's scope.

        Parameters
        ----------
        source : str
            Raw block text, one statement per line.
        document_id : str
            Note identity (usually its path); blocks of one note share a scope.
        block_position : int, optional
            Stable position of the block in the note (e.g. fence line).
        reset : bool, optional
            Clear the scope first. Defaults to `not settings.auto_recalculate`.

        Returns
        -------
        List[LineResult]
            One result per non-blank line, in source order.
        """
        document_id = document_id or "untitled"
        if reset is None:
            reset = not self.settings.auto_recalculate
        if reset:
            self.scopes.clear(document_id)
        scope = self.scopes.get(document_id)

        block_key = block_key_for(source, block_position)
        ctx = _Pass(document_id, scope, block_key, block_position, Tracer(block_key))
        results: List[LineResult] = []
        for index, line in iter_lines(source):
            try:
                results.append(self._line(line, index, ctx))
            except Exception as e:
                # Last-resort guard; evaluation errors are already CalcError
                logger.exception("unexpected failure on line %d of %s", index, document_id)
                results.append(self._error(ctx, index, line, EvaluationError(str(e) or e.__class__.__name__)))

        pruned = scope.prune_lines(ctx.block_key, ctx.touched)
        if pruned:
            ctx.trace.add("prune", keys=pruned)
        logger.debug("pass over %s %s evaluated lines %s", document_id, block_key, ctx.trace.evaluated_lines())
        self._traces[document_id] = ctx.trace.steps()
        self._notify(document_id, scope)
        return results

    def evaluate_inline(self, expression: str, document_id: str) -> LineResult:
        """Evaluate one free-standing statement against the document's scope."""
        statement = (expression or "").strip()
        document_id = document_id or "untitled"
        if not statement:
            return CommentResult(text="")
        scope = self.scopes.get(document_id)
        # One slot per document: each inline statement replaces the previous one
        ctx = _Pass(document_id, scope, INLINE_BLOCK_KEY, None, Tracer(INLINE_BLOCK_KEY))
        try:
            result = self._line(statement, 0, ctx)
        except Exception as e:
            logger.exception("unexpected failure evaluating inline %r", statement)
            result = self._error(ctx, 0, statement, EvaluationError(str(e) or e.__class__.__name__))
        scope.prune_lines(INLINE_BLOCK_KEY, ctx.touched)
        self._traces[document_id] = ctx.trace.steps()
        self._notify(document_id, scope)
        return result

    def recalculate_note(self, note_text: str, document_id: str) -> NoteReport:
        """
        Re-evaluate every calc block of a note from a clean scope, in order.
        The scope is cleared once up front; blocks are evaluated without the
        per-block reset so later blocks see earlier variables.
        """
        blocks = extract_calc_blocks(note_text)
        self.clear_scope(document_id)
        report = NoteReport()
        for block in blocks:
            results = self.evaluate_block(block.source, document_id, block_position=block.start_line, reset=False)
            report.blocks.append(results)
            report.errors.extend(f"Error: {r.message}" for r in results if isinstance(r, ErrorResult))
        return report

    # ---------------- scope lifecycle ----------------

    def clear_scope(self, document_id: str) -> None:
        self.scopes.clear(document_id)
        self._traces.pop(document_id, None)
        self._notify(document_id, None)

    def clear_all_scopes(self) -> None:
        ids = list(self.scopes)
        self.scopes.clear_all()
        self._traces.clear()
        for document_id in ids:
            self._notify(document_id, None)

    def peek_scope(self, document_id: str) -> Optional[NoteScope]:
        return self.scopes.peek(document_id)

    # ---------------- listings ----------------

    def list_variables(self, document_id: str, filter: str = "all") -> List[VariableRow]:
        if filter not in ("all", "local", "global"):
            raise ValueError(f"Unknown filter: {filter}")
        rows: List[VariableRow] = []
        scope = self.scopes.peek(document_id)
        if filter in ("all", "local") and scope is not None:
            for var in scope.variables.values():
                line = var.defining_line.note_line if var.defining_line else None
                rows.append(VariableRow(name=var.name, group="local", magnitude=var.magnitude,
                                        unit=var.unit, display=var.display, source_line=line))
        if filter in ("all", "global"):
            for c in self.constants.snapshot():
                rows.append(VariableRow(name=c.name, group="global", magnitude=c.magnitude,
                                        unit=c.unit, display=c.display))
        return sorted(rows, key=lambda r: (r.name.lower(), r.group))

    def scope_completions(self, document_id: str, prefix: str = "") -> List[Completion]:
        """
        Completion options for a calc block: local variables, then global
        constants when enabled (a local name hides the global one).
        An unmatched prefix falls back to the full list.
        """
        options: Dict[str, Completion] = {}
        if self.settings.global_variables_enabled:
            for c in self.constants.snapshot():
                options[c.name] = Completion(label=c.name, detail=c.display, group="global")
        scope = self.scopes.peek(document_id)
        if scope is not None:
            for var in scope.variables.values():
                options[var.name] = Completion(label=var.name, detail=var.display, group="local")
        ordered = sorted(options.values(), key=lambda o: o.label.lower())
        query = (prefix or "").lower()
        if not query:
            return ordered
        matched = [o for o in ordered if o.label.lower().startswith(query)]
        return matched or ordered

    def list_known_units(self) -> List[str]:
        return self.units.known_units()

    def unit_library(self, system: Optional[str] = None):
        # Picker entries for one system (default: the configured one), by category
        return self.catalog.units_for_system(system or self.settings.unit_system)

    # ---------------- global constants ----------------

    def get_global_variables(self) -> Dict[str, GlobalConstant]:
        return {c.name: c for c in self.constants.snapshot()}

    def list_global_vars(self) -> List[GlobalConstant]:
        return self.constants.snapshot()

    def upsert_global_var(self, name: str, expression: str) -> GlobalConstant:
        return self.constants.upsert(name, expression)

    def delete_global_var(self, name: str) -> bool:
        return self.constants.delete(name)
