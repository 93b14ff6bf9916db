# -----------------------------------------------------------------------------
# Line classification for calc blocks
# Grammar (one statement per line, blank lines ignored):
#   comment     ::= ('//' | '#') REST
#   assignment  ::= IDENT '=' EXPR
#   conversion  ::= EXPR ('->' | 'to') UNIT
#   expression  ::= EXPR
# -----------------------------------------------------------------------------

# src/notecalc/parsing.py
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Iterator, Tuple, Union

from .errors import ParseError

IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_ASSIGN = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?P<expr>.+)$")
_HAS_CONVERT = re.compile(r"->|\sto\s")
# Greedy head: split at the last separator
_CONVERT = re.compile(r"^(?P<expr>.*)(?:->|\sto\s)(?P<target>.*)$")

BAD_CONVERT = "Bad convert syntax. Use: expr -> unit"


@dataclass(frozen=True)
class Comment:
    text: str

@dataclass(frozen=True)
class Assignment:
    name: str
    expr: str

@dataclass(frozen=True)
class Conversion:
    expr: str
    target: str

@dataclass(frozen=True)
class Expression:
    expr: str

Statement = Union[Comment, Assignment, Conversion, Expression]


def is_identifier(name: str) -> bool:
    return bool(IDENT.match(name or ""))


def classify(line: str) -> Statement:
    """
    Classify one trimmed, non-empty line. Rules are checked in order:
    comment, assignment, conversion, plain expression.
    Raises ParseError for a conversion without both sides.
    """
    if line.startswith("//") or line.startswith("#"):
        return Comment(line)
    m = _ASSIGN.match(line)
    if m:
        return Assignment(m.group("name"), m.group("expr").strip())
    if _HAS_CONVERT.search(line):
        m = _CONVERT.match(line)
        expr = m.group("expr").strip() if m else ""
        target = m.group("target").strip() if m else ""
        if not expr or not target:
            raise ParseError(BAD_CONVERT)
        return Conversion(expr, target)
    return Expression(line)


def iter_lines(source: str) -> Iterator[Tuple[int, str]]:
    # (raw line index, trimmed text) for every non-blank line
    for index, raw in enumerate(source.splitlines()):
        line = raw.strip()
        if line:
            yield index, line
