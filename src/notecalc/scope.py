# -----------------------------------------------------------------------------
# Note scopes
# Purpose:
#   Per-document evaluation state: variables, the formula text that produced
#   each one, the forward/reverse dependency graph, and cached results for
#   lines that have no variable of their own (expressions, conversions).
# Lifecycle:
#   Created lazily on first evaluation of a document id; dropped by
#   ScopeStore.clear / clear_all. Blocks of one document share one scope.
# -----------------------------------------------------------------------------

# src/notecalc/scope.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .types import LineCacheEntry, Variable

logger = logging.getLogger(__name__)


@dataclass
class NoteScope:
    variables: Dict[str, Variable] = field(default_factory=dict)
    formulas: Dict[str, str] = field(default_factory=dict)
    depends_on: Dict[str, Set[str]] = field(default_factory=dict)
    dependents: Dict[str, Set[str]] = field(default_factory=dict)
    line_cache: Dict[str, LineCacheEntry] = field(default_factory=dict)

    def clear(self) -> None:
        self.variables.clear()
        self.formulas.clear()
        self.depends_on.clear()
        self.dependents.clear()
        self.line_cache.clear()

    def set_dependencies(self, name: str, deps: Iterable[str]) -> bool:
        """
        Replace `name`'s forward edges and keep the reverse map in step.
        Edges to dependencies no longer referenced are pruned.
        Returns True when the graph changed.
        """
        new = set(deps)
        old = self.depends_on.get(name)
        if old == new:
            return False
        old = old or set()
        for gone in old - new:
            users = self.dependents.get(gone)
            if users is not None:
                users.discard(name)
                if not users:
                    del self.dependents[gone]
        for added in new - old:
            self.dependents.setdefault(added, set()).add(name)
        self.depends_on[name] = new
        return True

    def downstream(self, name: str) -> Set[str]:
        # Transitive dependents of `name`
        seen: Set[str] = set()
        stack = list(self.dependents.get(name, ()))
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            stack.extend(self.dependents.get(cur, ()))
        return seen

    def is_consistent(self) -> bool:
        forward = {(a, b) for a, bs in self.depends_on.items() for b in bs}
        reverse = {(a, b) for b, users in self.dependents.items() for a in users}
        return forward == reverse

    def block_keys(self, block_key: str) -> List[str]:
        prefix = f"{block_key}:"
        return [k for k in self.line_cache if k.startswith(prefix)]

    def prune_lines(self, block_key: str, touched: Set[str]) -> List[str]:
        # Drop cache entries of this block that the last pass did not visit
        stale = [k for k in self.block_keys(block_key) if k not in touched]
        for k in stale:
            del self.line_cache[k]
        return stale


class ScopeStore:
    """Owns one NoteScope per document id."""

    def __init__(self):
        self._scopes: Dict[str, NoteScope] = {}

    def get(self, document_id: str) -> NoteScope:
        scope = self._scopes.get(document_id)
        if scope is None:
            logger.debug("creating scope for %s", document_id)
            scope = self._scopes[document_id] = NoteScope()
        return scope

    def peek(self, document_id: str) -> Optional[NoteScope]:
        return self._scopes.get(document_id)

    def clear(self, document_id: str) -> bool:
        scope = self._scopes.pop(document_id, None)
        if scope is None:
            return False
        scope.clear()
        logger.debug("cleared scope for %s", document_id)
        return True

    def clear_all(self) -> None:
        for scope in self._scopes.values():
            scope.clear()
        self._scopes.clear()

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._scopes

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._scopes))

    def __len__(self) -> int:
        return len(self._scopes)
