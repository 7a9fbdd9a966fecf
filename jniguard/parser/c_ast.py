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

"""Simplified C syntax tree.

Only what rule matching and control-flow analysis need: statements,
expressions down to calls and assignments, and source positions. Nodes
compare by identity; structural comparison is the pattern matcher's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional, Union


# ── Expressions ──


@dataclass(frozen=True, eq=False)
class Name:
    name: str
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Literal:
    text: str
    kind: str = "number"   # number | string | char
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class EllipsisArg:
    """`...` inside a rule pattern argument list."""

    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Call:
    """A call expression.

    `callee` is the called name (the member name for `(*env)->F(...)`),
    `receiver` the pointer the call goes through, and `iargs` the argument
    list with the redundant leading interface pointer of the C calling form
    removed, so that `(*env)->F(env, x)` and `env->F(x)` compare equal.
    """

    func: "Expr"
    args: tuple["Expr", ...]
    callee: Optional[str] = None
    receiver: Optional[str] = None
    interface: bool = False
    iargs: tuple["Expr", ...] = ()
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Member:
    obj: "Expr"
    attr: str
    arrow: bool = False
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Index:
    obj: "Expr"
    index: "Expr"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Unary:
    op: str
    operand: "Expr"
    postfix: bool = False
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Conditional:
    cond: "Expr"
    then: "Expr"
    other: "Expr"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Assign:
    op: str
    target: "Expr"
    value: "Expr"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Cast:
    type_text: str
    operand: "Expr"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class InitList:
    items: tuple["Expr", ...]
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Opaque:
    """Tokens kept verbatim (sizeof operands, range-for headers)."""

    text: str
    line: int = 0
    col: int = 0


Expr = Union[
    Name, Literal, EllipsisArg, Call, Member, Index, Unary, Binary,
    Conditional, Assign, Cast, InitList, Opaque,
]


# ── Statements ──


@dataclass(frozen=True, eq=False)
class Block:
    stmts: tuple["Stmt", ...]
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class ExprStmt:
    expr: Expr
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class DeclStmt:
    """`T a = x, *b;` — initializers are kept as Assign expressions."""

    type_text: str
    names: tuple[str, ...]
    inits: tuple[Assign, ...]
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class If:
    cond: Expr
    then: "Stmt"
    other: Optional["Stmt"] = None
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class While:
    cond: Expr
    body: "Stmt"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class DoWhile:
    body: "Stmt"
    cond: Expr
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class For:
    init: Optional["Stmt"]
    cond: Optional[Expr]
    step: Optional[Expr]
    body: "Stmt"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Switch:
    cond: Expr
    body: "Stmt"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Case:
    value: Optional[Expr]   # None for `default:`
    stmt: "Stmt"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Label:
    name: str
    stmt: "Stmt"
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Goto:
    label: str
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Return:
    value: Optional[Expr] = None
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Break:
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Continue:
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class Empty:
    line: int = 0
    col: int = 0


Stmt = Union[
    Block, ExprStmt, DeclStmt, If, While, DoWhile, For, Switch, Case,
    Label, Goto, Return, Break, Continue, Empty,
]

LOOP_TYPES = (While, DoWhile, For)


# ── Top level ──


@dataclass(frozen=True, eq=False)
class Param:
    name: Optional[str]
    type_text: str


@dataclass(frozen=True, eq=False)
class FunctionDef:
    name: str
    params: tuple[Param, ...]
    body: Block
    local_names: frozenset[str] = frozenset()
    line: int = 0
    col: int = 0


@dataclass(frozen=True, eq=False)
class SourceFile:
    path: str
    tokens: tuple = ()
    functions: tuple[FunctionDef, ...] = ()
    global_names: frozenset[str] = frozenset()
    interface_globals: frozenset[str] = frozenset()
    errors: tuple = field(default_factory=tuple)   # per-function ParseErrors


# ── Traversal helpers ──


def expr_children(expr: Expr) -> tuple[Expr, ...]:
    if isinstance(expr, Call):
        return (expr.func,) + tuple(expr.args)
    if isinstance(expr, Member):
        return (expr.obj,)
    if isinstance(expr, Index):
        return (expr.obj, expr.index)
    if isinstance(expr, Unary):
        return (expr.operand,)
    if isinstance(expr, Binary):
        return (expr.left, expr.right)
    if isinstance(expr, Conditional):
        return (expr.cond, expr.then, expr.other)
    if isinstance(expr, Assign):
        return (expr.target, expr.value)
    if isinstance(expr, Cast):
        return (expr.operand,)
    if isinstance(expr, InitList):
        return tuple(expr.items)
    return ()


def walk_expr(expr: Expr) -> Iterator[Expr]:
    """Pre-order walk over an expression and all its sub-expressions."""
    stack = [expr]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(expr_children(node)))


def strip(expr: Expr) -> Expr:
    """Drop casts; parentheses never reach the tree."""
    while isinstance(expr, Cast):
        expr = expr.operand
    return expr


def calls_in(expr: Expr) -> Iterator[Call]:
    for node in walk_expr(expr):
        if isinstance(node, Call):
            yield node


def stmt_exprs(stmt: Stmt) -> tuple[Expr, ...]:
    """Expressions evaluated by the statement itself (not nested statements)."""
    if isinstance(stmt, ExprStmt):
        return (stmt.expr,)
    if isinstance(stmt, DeclStmt):
        return tuple(stmt.inits)
    if isinstance(stmt, (If, While, DoWhile, Switch)):
        return (stmt.cond,)
    if isinstance(stmt, Return):
        return (stmt.value,) if stmt.value is not None else ()
    return ()


def stmt_children(stmt: Stmt) -> tuple[Stmt, ...]:
    if isinstance(stmt, Block):
        return tuple(stmt.stmts)
    if isinstance(stmt, If):
        return (stmt.then,) if stmt.other is None else (stmt.then, stmt.other)
    if isinstance(stmt, (While, DoWhile, Switch)):
        return (stmt.body,)
    if isinstance(stmt, For):
        return (stmt.init, stmt.body) if stmt.init is not None else (stmt.body,)
    if isinstance(stmt, (Case, Label)):
        return (stmt.stmt,)
    return ()


def walk_stmts(stmt: Stmt) -> Iterator[Stmt]:
    stack = [stmt]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(stmt_children(node)))


# ── Rendering ──


def _render_child(expr: Expr) -> str:
    text = render(expr)
    if isinstance(expr, (Binary, Assign, Conditional)):
        return f"({text})"
    return text


def render(expr: Optional[Expr]) -> str:
    """Canonical C text for an expression. Used for metavariable bindings."""
    if expr is None:
        return ""
    if isinstance(expr, Name):
        return expr.name
    if isinstance(expr, Literal):
        return expr.text
    if isinstance(expr, EllipsisArg):
        return "..."
    if isinstance(expr, Call):
        args = ", ".join(render(a) for a in expr.iargs)
        if expr.interface and expr.receiver is not None:
            return f"{expr.receiver}->{expr.callee}({args})"
        return f"{_render_child(expr.func)}({', '.join(render(a) for a in expr.args)})"
    if isinstance(expr, Member):
        return f"{_render_child(expr.obj)}{'->' if expr.arrow else '.'}{expr.attr}"
    if isinstance(expr, Index):
        return f"{_render_child(expr.obj)}[{render(expr.index)}]"
    if isinstance(expr, Unary):
        if expr.postfix:
            return f"{_render_child(expr.operand)}{expr.op}"
        sep = " " if expr.op.isalpha() else ""
        return f"{expr.op}{sep}{_render_child(expr.operand)}"
    if isinstance(expr, Binary):
        sep = ", " if expr.op == "," else f" {expr.op} "
        return f"{_render_child(expr.left)}{sep}{_render_child(expr.right)}"
    if isinstance(expr, Conditional):
        return f"{_render_child(expr.cond)} ? {_render_child(expr.then)} : {_render_child(expr.other)}"
    if isinstance(expr, Assign):
        return f"{render(expr.target)} {expr.op} {render(expr.value)}"
    if isinstance(expr, Cast):
        return f"({expr.type_text}){_render_child(expr.operand)}"
    if isinstance(expr, InitList):
        return "{" + ", ".join(render(i) for i in expr.items) + "}"
    if isinstance(expr, Opaque):
        return expr.text
    raise TypeError(f"not an expression: {expr!r}")
