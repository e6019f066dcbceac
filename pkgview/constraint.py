"""Go build constraints.

A file's ``//go:build`` line (or, in older files, its ``// +build`` lines)
decides whether the file belongs to the package for a given target. Both
forms parse into the same small expression tree, which is evaluated against
a tag predicate supplied by the resolver.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from pkgview.errors import ConstraintError

_EXPR_TOKEN_RE = re.compile(r"\s*(?:(&&|\|\||[()!])|([A-Za-z0-9_.]+)|(\S))")
_TAG_RE = re.compile(r"^[A-Za-z0-9_.]+$")


class ExprOp(Enum):
    TAG = "tag"
    NOT = "!"
    AND = "&&"
    OR = "||"


@dataclass(frozen=True)
class Expr:
    """One node of a build constraint expression."""

    op: ExprOp
    tag: str = ""
    args: tuple[Expr, ...] = ()

    def eval(self, ok: Callable[[str], bool]) -> bool:
        """Evaluate with ``ok(tag)`` deciding whether each tag is satisfied."""
        if self.op is ExprOp.TAG:
            return ok(self.tag)
        if self.op is ExprOp.NOT:
            return not self.args[0].eval(ok)
        if self.op is ExprOp.AND:
            return all(arg.eval(ok) for arg in self.args)
        return any(arg.eval(ok) for arg in self.args)

    def __str__(self) -> str:
        if self.op is ExprOp.TAG:
            return self.tag
        if self.op is ExprOp.NOT:
            return f"!{self.args[0]}"
        return "(" + f" {self.op.value} ".join(str(a) for a in self.args) + ")"


def tag(name: str) -> Expr:
    return Expr(ExprOp.TAG, tag=name)


def not_(x: Expr) -> Expr:
    return Expr(ExprOp.NOT, args=(x,))


def and_(*args: Expr) -> Expr:
    return args[0] if len(args) == 1 else Expr(ExprOp.AND, args=tuple(args))


def or_(*args: Expr) -> Expr:
    return args[0] if len(args) == 1 else Expr(ExprOp.OR, args=tuple(args))


def is_go_build(line: str) -> bool:
    line = line.rstrip()
    return line == "//go:build" or line.startswith(("//go:build ", "//go:build\t"))


def is_plus_build(line: str) -> bool:
    if not line.startswith("//"):
        return False
    rest = line[2:].strip()
    return rest == "+build" or rest.startswith(("+build ", "+build\t"))


def parse_go_build(line: str) -> Expr:
    """Parse a ``//go:build`` line.

    ``!`` binds tighter than ``&&``, which binds tighter than ``||``.

    Raises:
        ConstraintError: the expression is malformed.
    """
    if not is_go_build(line):
        raise ConstraintError(f"not a //go:build line: {line!r}")
    return _ExprParser(line.rstrip()[len("//go:build"):]).parse()


def parse_plus_build(line: str) -> Expr:
    """Parse one legacy ``// +build`` line.

    Space separated options are ORed, comma separated terms within an option
    are ANDed, and ``!`` negates a single term.
    """
    if not is_plus_build(line):
        raise ConstraintError(f"not a // +build line: {line!r}")
    options = []
    for field in line[2:].split()[1:]:
        terms = []
        for term in field.split(","):
            negated = term.startswith("!")
            name = term[1:] if negated else term
            if not _TAG_RE.match(name):
                raise ConstraintError(f"invalid tag {term!r} in {line!r}")
            terms.append(not_(tag(name)) if negated else tag(name))
        options.append(and_(*terms))
    if not options:
        # An empty +build line excludes the file
        return tag("ignore")
    return or_(*options)


def from_lines(lines: Iterable[str]) -> Expr | None:
    """Combine the constraint comments of one file into a single expression.

    A ``//go:build`` line wins over any ``// +build`` lines. Several
    ``// +build`` lines must all hold. Returns None when the file has no
    constraint.
    """
    lines = list(lines)
    go_build = [line for line in lines if is_go_build(line)]
    if len(go_build) > 1:
        raise ConstraintError("multiple //go:build comments")
    if go_build:
        return parse_go_build(go_build[0])

    plus_build = [parse_plus_build(line) for line in lines if is_plus_build(line)]
    if not plus_build:
        return None
    return and_(*plus_build)


class _ExprParser:
    """Recursive descent over the ``//go:build`` grammar."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = self._lex(text)
        self.pos = 0

    def parse(self) -> Expr:
        if not self.tokens:
            raise ConstraintError("empty //go:build expression")
        x = self._or()
        if self.pos != len(self.tokens):
            raise ConstraintError(f"unexpected token {self.tokens[self.pos]!r} in {self.text.strip()!r}")
        return x

    def _lex(self, text: str) -> list[str]:
        tokens = []
        for m in _EXPR_TOKEN_RE.finditer(text):
            if m.group(3):
                raise ConstraintError(f"invalid syntax at {m.group(3)!r} in {text.strip()!r}")
            tokens.append(m.group(1) or m.group(2))
        return tokens

    def _peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        tok = self._peek()
        if tok is None:
            raise ConstraintError(f"unexpected end of expression in {self.text.strip()!r}")
        self.pos += 1
        return tok

    def _or(self) -> Expr:
        args = [self._and()]
        while self._peek() == "||":
            self.pos += 1
            args.append(self._and())
        return or_(*args)

    def _and(self) -> Expr:
        args = [self._not()]
        while self._peek() == "&&":
            self.pos += 1
            args.append(self._not())
        return and_(*args)

    def _not(self) -> Expr:
        if self._peek() == "!":
            self.pos += 1
            if self._peek() == "!":
                raise ConstraintError("double negation not allowed")
            return not_(self._atom())
        return self._atom()

    def _atom(self) -> Expr:
        tok = self._next()
        if tok == "(":
            x = self._or()
            if self._next() != ")":
                raise ConstraintError(f"missing close paren in {self.text.strip()!r}")
            return x
        if tok in ("&&", "||", "!", ")"):
            raise ConstraintError(f"unexpected token {tok!r} in {self.text.strip()!r}")
        return tag(tok)
