# jniguard — JNI Lifecycle Contract Analyzer
# Copyright (C) 2026 jniguard Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Semgrep-style pattern matching over the simplified C syntax tree.

Patterns are C expressions parsed by the regular parser. Identifiers that
start with `$` are metavariables; an identifier with an embedded
metavariable (`Get$TYPEArrayElements`) binds the embedded part; `...` in
an argument list stands for any number of arguments. A binding maps the
metavariable name (without `$`) to the canonical text of what it matched,
and a metavariable that is already bound must match identical text.

Source-side casts are transparent, and `(*env)->F(env, x)` matches
`env->F(x)` because both parse to the same normalized interface call.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

from jniguard.errors import RuleEvaluationError
from jniguard.parser import c_ast as A
from jniguard.parser.c_parser import parse_expression

logger = logging.getLogger(__name__)

Bindings = dict[str, str]

# a metavariable name ends where a capitalized word starts: $TYPEArray -> TYPE
METAVARIABLE_RE = re.compile(r"\$([A-Z_][A-Z0-9_]*?)(?=[A-Z][a-z]|[^A-Z0-9_]|\Z)")


# ── compiled patterns ──


@dataclass(frozen=True)
class Pattern:
    """One compiled pattern."""

    text: str
    node: A.Expr = field(compare=False, repr=False)
    metavariables: frozenset[str] = frozenset()

    def match(self, node, bindings: Optional[Bindings] = None) -> list[Bindings]:
        return match(self, node, bindings)


@dataclass(frozen=True)
class Either:
    """Alternation: any disjunct may match; results are unioned."""

    patterns: tuple[Pattern, ...]

    def match(self, node, bindings: Optional[Bindings] = None) -> list[Bindings]:
        return match(self, node, bindings)

    @property
    def metavariables(self) -> frozenset[str]:
        out: frozenset[str] = frozenset()
        for p in self.patterns:
            out |= p.metavariables
        return out


PatternLike = Union[Pattern, Either]


@functools.lru_cache(maxsize=512)
def compile_pattern(text: str) -> Pattern:
    """Parse pattern text. Raises ParseError on malformed patterns."""
    node = parse_expression(text.strip())
    return Pattern(
        text=text.strip(),
        node=node,
        metavariables=frozenset(METAVARIABLE_RE.findall(text)),
    )


def either(*texts: str) -> PatternLike:
    """Compile one or more alternative pattern texts."""
    patterns = tuple(compile_pattern(t) for t in texts)
    if len(patterns) == 1:
        return patterns[0]
    return Either(patterns)


@functools.lru_cache(maxsize=1024)
def _name_regex(name: str) -> Optional[re.Pattern]:
    """Regex for an identifier containing metavariables, or None if it has none."""
    if "$" not in name:
        return None
    parts: list[str] = []
    pos = 0
    seen: set[str] = set()
    for m in METAVARIABLE_RE.finditer(name):
        parts.append(re.escape(name[pos:m.start()]))
        var = m.group(1)
        if var in seen:
            parts.append(f"(?P={var})")
        else:
            # a whole-name metavariable takes any identifier, an embedded one
            # takes a non-empty infix
            parts.append(f"(?P<{var}>[A-Za-z0-9_:]+?)" if len(m.group(0)) < len(name) else f"(?P<{var}>.+)")
            seen.add(var)
        pos = m.end()
    parts.append(re.escape(name[pos:]))
    return re.compile("".join(parts))


def _is_metavariable(name: str) -> bool:
    m = METAVARIABLE_RE.fullmatch(name)
    return m is not None


def _bind(bindings: Bindings, var: str, text: str) -> Optional[Bindings]:
    bound = bindings.get(var)
    if bound is None:
        out = dict(bindings)
        out[var] = text
        return out
    return bindings if bound == text else None


def _match_name(pat: str, text: Optional[str], bindings: Bindings) -> Optional[Bindings]:
    """Match an identifier pattern against a concrete identifier."""
    if text is None:
        return None
    regex = _name_regex(pat)
    if regex is None:
        return bindings if pat == text else None
    m = regex.fullmatch(text)
    if m is None:
        return None
    out: Optional[Bindings] = bindings
    for var, value in m.groupdict().items():
        out = _bind(out, var, value)
        if out is None:
            return None
    return out


# ── structural matching ──


def match_at(pattern: PatternLike, node: A.Expr, bindings: Optional[Bindings] = None) -> list[Bindings]:
    """Every binding set for which `pattern` matches exactly at `node`."""
    bindings = dict(bindings or {})
    if isinstance(pattern, Either):
        return _dedupe(b for p in pattern.patterns for b in _match(p.node, node, bindings))
    return _dedupe(_match(pattern.node, node, bindings))


def match(pattern: PatternLike, node, bindings: Optional[Bindings] = None) -> list[Bindings]:
    """Every binding set for which `pattern` matches anywhere inside `node`.

    `node` may be an expression, a statement or a FunctionDef.
    """
    results: list[Bindings] = []
    for expr in _expressions_under(node):
        for sub in A.walk_expr(expr):
            results.extend(match_at(pattern, sub, bindings))
    return _dedupe(results)


def _dedupe(results) -> list[Bindings]:
    seen: set[tuple] = set()
    out: list[Bindings] = []
    for b in results:
        key = tuple(sorted(b.items()))
        if key not in seen:
            seen.add(key)
            out.append(b)
    return out


def _match(pat: A.Expr, node: A.Expr, b: Bindings) -> list[Bindings]:
    if not isinstance(pat, A.Cast):
        node = A.strip(node)

    if isinstance(pat, A.EllipsisArg):
        return [b]

    if isinstance(pat, A.Name):
        if _is_metavariable(pat.name):
            out = _bind(b, pat.name[1:], A.render(node))
            return [out] if out is not None else []
        if isinstance(node, A.Name):
            out = _match_name(pat.name, node.name, b)
            return [out] if out is not None else []
        return []

    if isinstance(pat, A.Call):
        if not isinstance(node, A.Call):
            return []
        if pat.interface:
            if not node.interface:
                return []
            b1 = _match_name(pat.receiver or "", node.receiver, b)
            if b1 is None:
                return []
            b2 = _match_name(pat.callee or "", node.callee, b1)
            if b2 is None:
                return []
            return _match_args(pat.iargs, node.iargs, b2)
        if isinstance(pat.func, A.Name) and node.interface:
            # `$F(...)` style pattern against an interface call
            b1 = _match_name(pat.func.name, node.callee, b)
            return _match_args(pat.args, node.iargs, b1) if b1 is not None else []
        return [
            out
            for b1 in _match(pat.func, node.func, b)
            for out in _match_args(pat.args, node.args, b1)
        ]

    if isinstance(pat, A.Literal):
        return [b] if isinstance(node, A.Literal) and node.text == pat.text else []

    if type(pat) is not type(node):
        return []

    if isinstance(pat, A.Member):
        if pat.arrow != node.arrow:
            return []
        b1 = _match_name(pat.attr, node.attr, b)
        return _match(pat.obj, node.obj, b1) if b1 is not None else []
    if isinstance(pat, A.Index):
        return _match_seq((pat.obj, pat.index), (node.obj, node.index), b)
    if isinstance(pat, A.Unary):
        if pat.op != node.op or pat.postfix != node.postfix:
            return []
        return _match(pat.operand, node.operand, b)
    if isinstance(pat, A.Binary):
        if pat.op != node.op:
            return []
        out = _match_seq((pat.left, pat.right), (node.left, node.right), b)
        if pat.op in ("==", "!="):
            out += _match_seq((pat.left, pat.right), (node.right, node.left), b)
        return out
    if isinstance(pat, A.Conditional):
        return _match_seq(
            (pat.cond, pat.then, pat.other), (node.cond, node.then, node.other), b
        )
    if isinstance(pat, A.Assign):
        if pat.op != node.op:
            return []
        return _match_seq((pat.target, pat.value), (node.target, node.value), b)
    if isinstance(pat, A.Cast):
        if pat.type_text != node.type_text:
            return []
        return _match(pat.operand, node.operand, b)
    if isinstance(pat, A.InitList):
        return _match_args(pat.items, node.items, b)
    if isinstance(pat, A.Opaque):
        return [b] if pat.text == node.text else []
    return []


def _match_seq(pats, nodes, b: Bindings) -> list[Bindings]:
    results = [b]
    for pat, node in zip(pats, nodes):
        results = [out for r in results for out in _match(pat, node, r)]
        if not results:
            break
    return results


def _match_args(pats: tuple, nodes: tuple, b: Bindings) -> list[Bindings]:
    """Positional argument matching where `...` absorbs any run of arguments."""
    if not pats:
        return [b] if not nodes else []
    head, rest = pats[0], pats[1:]
    if isinstance(head, A.EllipsisArg):
        return [
            out
            for skip in range(len(nodes) + 1)
            for out in _match_args(rest, nodes[skip:], b)
        ]
    if not nodes:
        return []
    return [
        out
        for b1 in _match(head, nodes[0], b)
        for out in _match_args(rest, nodes[1:], b1)
    ]


# ── statement walking ──


@dataclass(frozen=True, eq=False)
class Element:
    """A statement-level unit that evaluates expressions.

    `role` is "stmt" for expression and declaration statements, "cond" for
    the controlling expression of if/while/do/switch/for, "init" and "step"
    for the for-loop clauses, "return" and "goto" for jumps.
    """

    stmt: A.Stmt
    role: str
    exprs: tuple[A.Expr, ...]
    ancestors: tuple[A.Stmt, ...]


def iter_elements(stmt: A.Stmt, ancestors: tuple[A.Stmt, ...] = ()) -> Iterator[Element]:
    """Walk statements in source order, yielding the expression-bearing parts."""
    inner = ancestors + (stmt,)
    if isinstance(stmt, A.Block):
        for child in stmt.stmts:
            yield from iter_elements(child, inner)
    elif isinstance(stmt, A.ExprStmt):
        yield Element(stmt, "stmt", (stmt.expr,), ancestors)
    elif isinstance(stmt, A.DeclStmt):
        yield Element(stmt, "stmt", tuple(stmt.inits), ancestors)
    elif isinstance(stmt, (A.If, A.Switch)):
        yield Element(stmt, "cond", (stmt.cond,), ancestors)
        for child in A.stmt_children(stmt):
            yield from iter_elements(child, inner)
    elif isinstance(stmt, A.While):
        yield Element(stmt, "cond", (stmt.cond,), ancestors)
        yield from iter_elements(stmt.body, inner)
    elif isinstance(stmt, A.DoWhile):
        yield from iter_elements(stmt.body, inner)
        yield Element(stmt, "cond", (stmt.cond,), ancestors)
    elif isinstance(stmt, A.For):
        if stmt.init is not None:
            for el in iter_elements(stmt.init, inner):
                yield Element(el.stmt, "init", el.exprs, el.ancestors)
        if stmt.cond is not None:
            yield Element(stmt, "cond", (stmt.cond,), ancestors)
        yield from iter_elements(stmt.body, inner)
        if stmt.step is not None:
            yield Element(stmt, "step", (stmt.step,), ancestors)
    elif isinstance(stmt, (A.Case, A.Label)):
        yield from iter_elements(stmt.stmt, inner)
    elif isinstance(stmt, A.Return):
        yield Element(stmt, "return", A.stmt_exprs(stmt), ancestors)
    elif isinstance(stmt, A.Goto):
        yield Element(stmt, "goto", (), ancestors)


def _expressions_under(node) -> Iterator[A.Expr]:
    if isinstance(node, A.FunctionDef):
        node = node.body
    if isinstance(node, (
        A.Block, A.ExprStmt, A.DeclStmt, A.If, A.While, A.DoWhile, A.For,
        A.Switch, A.Case, A.Label, A.Goto, A.Return, A.Break, A.Continue, A.Empty,
    )):
        for el in iter_elements(node):
            yield from el.exprs
    elif node is not None:
        yield node


# ── filters and queries ──


@dataclass(frozen=True)
class MetavariableIn:
    """Keep a match only if a metavariable's text is (or is not) in a closed set."""

    name: str
    values: frozenset[str]
    negate: bool = False

    def accepts(self, bindings: Bindings) -> bool:
        if self.name not in bindings:
            raise RuleEvaluationError(f"metavariable ${self.name} is not bound by the pattern")
        return (bindings[self.name] in self.values) != self.negate


@dataclass(frozen=True)
class BlockPattern:
    """Matches an enclosing statement.

    kind is "if", "loop", "label" or "any". `cond` must match somewhere in the
    controlling expression, `body` somewhere in the nested statements, and
    `label` is the label name for kind "label" (None for any label).
    """

    kind: str = "any"
    cond: Optional[PatternLike] = None
    body: Optional[PatternLike] = None
    label: Optional[str] = None

    def matches(self, stmt: A.Stmt, bindings: Optional[Bindings] = None) -> list[Bindings]:
        bindings = dict(bindings or {})
        if self.kind == "if" and not isinstance(stmt, A.If):
            return []
        if self.kind == "loop" and not isinstance(stmt, A.LOOP_TYPES):
            return []
        if self.kind == "label":
            if not isinstance(stmt, A.Label):
                return []
            if self.label is not None and stmt.name != self.label:
                return []
        results = [bindings]
        if self.cond is not None:
            cond = _controlling_expr(stmt)
            if cond is None:
                return []
            results = [out for b in results for out in match(self.cond, cond, b)]
        if self.body is not None:
            results = [
                out
                for b in results
                for child in A.stmt_children(stmt)
                for out in match(self.body, child, b)
            ]
        return _dedupe(results)


def _controlling_expr(stmt: A.Stmt) -> Optional[A.Expr]:
    if isinstance(stmt, (A.If, A.While, A.DoWhile, A.Switch)):
        return stmt.cond
    if isinstance(stmt, A.For):
        return stmt.cond
    return None


@dataclass(frozen=True, eq=False)
class Site:
    """One accepted match of a query."""

    expr: A.Expr
    stmt: A.Stmt
    role: str
    ancestors: tuple[A.Stmt, ...]
    bindings: Bindings
    assigned_to: Optional[str] = None

    @property
    def line(self) -> int:
        return getattr(self.expr, "line", 0) or getattr(self.stmt, "line", 0)

    @property
    def col(self) -> int:
        return getattr(self.expr, "col", 0)


@dataclass(frozen=True)
class Query:
    """A trigger pattern plus the filters that decide which matches count."""

    pattern: PatternLike
    where: tuple[MetavariableIn, ...] = ()
    not_: tuple[PatternLike, ...] = ()
    inside: tuple[BlockPattern, ...] = ()
    not_inside: tuple[BlockPattern, ...] = ()

    def sites(self, function: A.FunctionDef) -> list[Site]:
        """Accepted matches in source order."""
        out: list[Site] = []
        for el in iter_elements(function.body):
            for expr in el.exprs:
                for sub, parent in _walk_with_parent(expr):
                    if isinstance(sub, A.Cast):
                        continue
                    for b in match_at(self.pattern, sub):
                        if self._accepts(sub, el, b):
                            out.append(Site(
                                expr=sub,
                                stmt=el.stmt,
                                role=el.role,
                                ancestors=el.ancestors,
                                bindings=b,
                                assigned_to=_assigned_name(sub, parent),
                            ))
        return out

    def _accepts(self, expr: A.Expr, el: Element, b: Bindings) -> bool:
        if not all(w.accepts(b) for w in self.where):
            return False
        if any(match_at(p, expr, b) for p in self.not_):
            return False
        for block in self.inside:
            if not any(block.matches(anc, b) for anc in el.ancestors):
                return False
        for block in self.not_inside:
            if any(block.matches(anc, b) for anc in el.ancestors):
                return False
        return True


def _walk_with_parent(expr: A.Expr) -> Iterator[tuple[A.Expr, Optional[A.Expr]]]:
    stack: list[tuple[A.Expr, Optional[A.Expr]]] = [(expr, None)]
    while stack:
        node, parent = stack.pop()
        yield node, parent
        # casts are transparent: their operand reports the cast's parent
        owner = parent if isinstance(node, A.Cast) else node
        stack.extend((child, owner) for child in reversed(A.expr_children(node)))


def _assigned_name(expr: A.Expr, parent: Optional[A.Expr]) -> Optional[str]:
    """Variable receiving the value of `expr`, if it is assigned directly."""
    if isinstance(expr, A.Assign):
        target = A.strip(expr.target)
        return target.name if isinstance(target, A.Name) else None
    if isinstance(parent, A.Assign) and parent.op == "=" and A.strip(parent.value) is expr:
        target = A.strip(parent.target)
        return target.name if isinstance(target, A.Name) else None
    return None
