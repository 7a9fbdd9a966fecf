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

"""Per-function control-flow graphs.

Blocks hold CfgElements, the expression-bearing pieces of statements, in
execution order. Every `return`, every call to a process-exit function and
the implicit return at the end of the body have an edge to one synthetic
exit block. Blocks not reachable from the entry are moved to
`cfg.unreachable`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional

from jniguard.errors import MalformedControlFlow, UnresolvedLabel
from jniguard.parser import c_ast as A

logger = logging.getLogger(__name__)

DEFAULT_EXIT_FUNCTIONS = frozenset({"exit", "_exit", "_Exit", "abort"})

_TRUE_LITERALS = frozenset({"1", "true", "TRUE", "JNI_TRUE"})
_FALSE_LITERALS = frozenset({"0", "false", "FALSE", "JNI_FALSE"})


class EdgeKind(str, Enum):
    """Classification of a CFG edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"
    BACK_EDGE = "back-edge"
    GOTO = "goto"
    RETURN = "return"
    EXIT = "exit"
    SWITCH_CASE = "switch-case"
    BREAK = "break"
    CONTINUE = "continue"


@dataclass(eq=False)
class CfgElement:
    """One evaluation point: a simple statement, a condition, a for clause or a jump."""

    stmt: A.Stmt
    role: str
    exprs: tuple[A.Expr, ...]
    line: int
    ancestors: tuple[A.Stmt, ...] = ()

    def __repr__(self) -> str:
        return f"CfgElement({self.role}@{self.line})"


@dataclass(eq=False)
class Edge:
    source: "BasicBlock"
    target: "BasicBlock"
    kind: EdgeKind


@dataclass(eq=False)
class BasicBlock:
    id: int
    kind: str = "body"
    elements: list[CfgElement] = field(default_factory=list)
    successors: list[Edge] = field(default_factory=list)
    predecessors: list[Edge] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"BasicBlock(id={self.id}, kind={self.kind!r}, elements={len(self.elements)})"

    @property
    def lines(self) -> list[int]:
        return [e.line for e in self.elements]


class ControlFlowGraph:
    """CFG for one function."""

    def __init__(
        self,
        function: A.FunctionDef,
        entry: BasicBlock,
        exit: BasicBlock,
        blocks: list[BasicBlock],
        unreachable: list[BasicBlock],
    ) -> None:
        self.function = function
        self.entry = entry
        self.exit = exit
        self.blocks = blocks
        self.unreachable = unreachable
        self._positions: dict[tuple[int, str], tuple[BasicBlock, int]] = {}
        for block in blocks:
            for index, element in enumerate(block.elements):
                self._positions.setdefault((id(element.stmt), element.role), (block, index))

    def __repr__(self) -> str:
        return (
            f"ControlFlowGraph({self.function.name!r}, blocks={len(self.blocks)}, "
            f"unreachable={len(self.unreachable)})"
        )

    def position_of(self, stmt: A.Stmt, role: str) -> Optional[tuple[BasicBlock, int]]:
        """(block, index) of a statement's element, or None if it is unreachable."""
        return self._positions.get((id(stmt), role))

    def elements(self) -> Iterator[tuple[BasicBlock, int, CfgElement]]:
        for block in self.blocks:
            for index, element in enumerate(block.elements):
                yield block, index, element

    def edges(self) -> Iterator[Edge]:
        for block in self.blocks:
            yield from block.successors


def build_cfg(
    function: A.FunctionDef,
    exit_functions: Iterable[str] = DEFAULT_EXIT_FUNCTIONS,
) -> ControlFlowGraph:
    """Build the CFG of one function.

    Raises UnresolvedLabel for a goto without a matching label, and
    MalformedControlFlow for duplicate labels or for break/continue/case
    outside the construct they belong to.
    """
    return _Builder(function, frozenset(exit_functions)).build()


class _Builder:
    def __init__(self, function: A.FunctionDef, exit_functions: frozenset[str]) -> None:
        self.function = function
        self.exit_functions = exit_functions
        self.blocks: list[BasicBlock] = []
        self.labels: dict[str, BasicBlock] = {}
        self.gotos: list[tuple[BasicBlock, A.Goto]] = []
        self.break_targets: list[BasicBlock] = []
        self.continue_targets: list[BasicBlock] = []
        self.switches: list[dict] = []
        self.entry = self._new("entry")
        self.exit = self._new("exit")

    # ── helpers ──

    def _new(self, kind: str = "body") -> BasicBlock:
        block = BasicBlock(id=len(self.blocks), kind=kind)
        self.blocks.append(block)
        return block

    @staticmethod
    def _link(source: BasicBlock, target: BasicBlock, kind: EdgeKind) -> None:
        edge = Edge(source, target, kind)
        source.successors.append(edge)
        target.predecessors.append(edge)

    @staticmethod
    def _element(stmt: A.Stmt, role: str, exprs: tuple, ancestors: tuple) -> CfgElement:
        line = getattr(exprs[0], "line", 0) if exprs else 0
        return CfgElement(stmt, role, exprs, line or stmt.line, ancestors)

    def _is_exit_call(self, expr: A.Expr) -> bool:
        expr = A.strip(expr)
        return (
            isinstance(expr, A.Call)
            and not expr.interface
            and expr.receiver is None
            and expr.callee in self.exit_functions
        )

    # ── construction ──

    def build(self) -> ControlFlowGraph:
        start = self._new("body")
        self._link(self.entry, start, EdgeKind.FALL_THROUGH)
        end = self._stmt(self.function.body, start, ())
        if end is not None:
            self._link(end, self.exit, EdgeKind.RETURN)

        for block, goto in self.gotos:
            target = self.labels.get(goto.label)
            if target is None:
                raise UnresolvedLabel(goto.label, goto.line)
            self._link(block, target, EdgeKind.GOTO)

        reachable = self._reachable()
        kept = [b for b in self.blocks if b.id in reachable or b is self.exit]
        dropped = [b for b in self.blocks if b.id not in reachable and b is not self.exit]
        for block in dropped:
            for edge in block.successors:
                if edge in edge.target.predecessors:
                    edge.target.predecessors.remove(edge)
        # unreachable blocks keep their elements but lose their links
        for block in dropped:
            block.successors = []
            block.predecessors = []

        logger.debug(
            "CFG %s: %d blocks, %d unreachable",
            self.function.name, len(kept), len(dropped),
        )
        return ControlFlowGraph(self.function, self.entry, self.exit, kept, dropped)

    def _reachable(self) -> set[int]:
        seen = {self.entry.id}
        stack = [self.entry]
        while stack:
            block = stack.pop()
            for edge in block.successors:
                if edge.target.id not in seen:
                    seen.add(edge.target.id)
                    stack.append(edge.target)
        return seen

    def _stmt(
        self, stmt: A.Stmt, cur: Optional[BasicBlock], ancestors: tuple
    ) -> Optional[BasicBlock]:
        """Add `stmt` starting in `cur`; return the block control falls into, or None."""
        if cur is None:
            # code after a jump: only reachable through a label
            cur = self._new("body")
        inner = ancestors + (stmt,)

        if isinstance(stmt, A.Block):
            for child in stmt.stmts:
                cur = self._stmt(child, cur, inner)
            return cur

        if isinstance(stmt, A.ExprStmt):
            cur.elements.append(self._element(stmt, "stmt", (stmt.expr,), ancestors))
            if self._is_exit_call(stmt.expr):
                self._link(cur, self.exit, EdgeKind.EXIT)
                return None
            return cur

        if isinstance(stmt, A.DeclStmt):
            if stmt.inits:
                cur.elements.append(self._element(stmt, "stmt", tuple(stmt.inits), ancestors))
            return cur

        if isinstance(stmt, A.Return):
            cur.elements.append(self._element(stmt, "return", A.stmt_exprs(stmt), ancestors))
            self._link(cur, self.exit, EdgeKind.RETURN)
            return None

        if isinstance(stmt, A.Goto):
            cur.elements.append(self._element(stmt, "goto", (), ancestors))
            self.gotos.append((cur, stmt))
            return None

        if isinstance(stmt, A.Break):
            if not self.break_targets:
                raise MalformedControlFlow("'break' outside a loop or switch", stmt.line)
            self._link(cur, self.break_targets[-1], EdgeKind.BREAK)
            return None

        if isinstance(stmt, A.Continue):
            if not self.continue_targets:
                raise MalformedControlFlow("'continue' outside a loop", stmt.line)
            self._link(cur, self.continue_targets[-1], EdgeKind.CONTINUE)
            return None

        if isinstance(stmt, A.Empty):
            return cur

        if isinstance(stmt, A.If):
            return self._if(stmt, cur, ancestors, inner)
        if isinstance(stmt, A.While):
            return self._while(stmt, cur, ancestors, inner)
        if isinstance(stmt, A.DoWhile):
            return self._do_while(stmt, cur, ancestors, inner)
        if isinstance(stmt, A.For):
            return self._for(stmt, cur, ancestors, inner)
        if isinstance(stmt, A.Switch):
            return self._switch(stmt, cur, ancestors, inner)
        if isinstance(stmt, A.Case):
            return self._case(stmt, cur, inner)

        if isinstance(stmt, A.Label):
            if stmt.name in self.labels:
                raise MalformedControlFlow(f"label '{stmt.name}' defined twice", stmt.line)
            block = self._new("label")
            self._link(cur, block, EdgeKind.FALL_THROUGH)
            self.labels[stmt.name] = block
            return self._stmt(stmt.stmt, block, inner)

        raise TypeError(f"unknown statement {stmt!r}")

    def _if(self, stmt: A.If, cur: BasicBlock, ancestors: tuple, inner: tuple) -> BasicBlock:
        cur.elements.append(self._element(stmt, "cond", (stmt.cond,), ancestors))
        join = self._new("join")

        then_start = self._new("then")
        self._link(cur, then_start, EdgeKind.BRANCH_TRUE)
        then_end = self._stmt(stmt.then, then_start, inner)
        if then_end is not None:
            self._link(then_end, join, EdgeKind.FALL_THROUGH)

        if stmt.other is not None:
            else_start = self._new("else")
            self._link(cur, else_start, EdgeKind.BRANCH_FALSE)
            else_end = self._stmt(stmt.other, else_start, inner)
            if else_end is not None:
                self._link(else_end, join, EdgeKind.FALL_THROUGH)
        else:
            self._link(cur, join, EdgeKind.BRANCH_FALSE)
        return join

    def _loop_body(
        self, body: A.Stmt, start: BasicBlock, brk: BasicBlock, cont: BasicBlock, inner: tuple
    ) -> Optional[BasicBlock]:
        self.break_targets.append(brk)
        self.continue_targets.append(cont)
        try:
            return self._stmt(body, start, inner)
        finally:
            self.break_targets.pop()
            self.continue_targets.pop()

    def _while(self, stmt: A.While, cur: BasicBlock, ancestors: tuple, inner: tuple) -> BasicBlock:
        header = self._new("loop-header")
        self._link(cur, header, EdgeKind.FALL_THROUGH)
        header.elements.append(self._element(stmt, "cond", (stmt.cond,), ancestors))
        body_start = self._new("loop-body")
        after = self._new("loop-exit")
        self._link(header, body_start, EdgeKind.BRANCH_TRUE)
        if not _constant(stmt.cond, _TRUE_LITERALS):
            self._link(header, after, EdgeKind.BRANCH_FALSE)
        body_end = self._loop_body(stmt.body, body_start, after, header, inner)
        if body_end is not None:
            self._link(body_end, header, EdgeKind.BACK_EDGE)
        return after

    def _do_while(self, stmt: A.DoWhile, cur: BasicBlock, ancestors: tuple, inner: tuple) -> BasicBlock:
        body_start = self._new("loop-body")
        self._link(cur, body_start, EdgeKind.FALL_THROUGH)
        cond_block = self._new("loop-header")
        after = self._new("loop-exit")
        body_end = self._loop_body(stmt.body, body_start, after, cond_block, inner)
        if body_end is not None:
            self._link(body_end, cond_block, EdgeKind.FALL_THROUGH)
        cond_block.elements.append(self._element(stmt, "cond", (stmt.cond,), ancestors))
        # `do { ... } while (0)` never repeats
        if not _constant(stmt.cond, _FALSE_LITERALS):
            self._link(cond_block, body_start, EdgeKind.BACK_EDGE)
        if not _constant(stmt.cond, _TRUE_LITERALS):
            self._link(cond_block, after, EdgeKind.BRANCH_FALSE)
        return after

    def _for(self, stmt: A.For, cur: BasicBlock, ancestors: tuple, inner: tuple) -> BasicBlock:
        if stmt.init is not None:
            exprs = A.stmt_exprs(stmt.init)
            if exprs:
                cur.elements.append(self._element(stmt.init, "init", exprs, inner))
        header = self._new("loop-header")
        self._link(cur, header, EdgeKind.FALL_THROUGH)
        if stmt.cond is not None:
            header.elements.append(self._element(stmt, "cond", (stmt.cond,), ancestors))
        step = self._new("loop-step")
        if stmt.step is not None:
            step.elements.append(self._element(stmt, "step", (stmt.step,), ancestors))
        self._link(step, header, EdgeKind.BACK_EDGE)

        body_start = self._new("loop-body")
        after = self._new("loop-exit")
        self._link(header, body_start, EdgeKind.BRANCH_TRUE)
        if stmt.cond is not None and not _constant(stmt.cond, _TRUE_LITERALS):
            self._link(header, after, EdgeKind.BRANCH_FALSE)
        body_end = self._loop_body(stmt.body, body_start, after, step, inner)
        if body_end is not None:
            self._link(body_end, step, EdgeKind.FALL_THROUGH)
        return after

    def _switch(self, stmt: A.Switch, cur: BasicBlock, ancestors: tuple, inner: tuple) -> BasicBlock:
        cur.elements.append(self._element(stmt, "cond", (stmt.cond,), ancestors))
        after = self._new("switch-exit")
        context = {"dispatch": cur, "default": False}
        self.switches.append(context)
        self.break_targets.append(after)
        try:
            # statements before the first case label are dead
            body_end = self._stmt(stmt.body, self._new("body"), inner)
        finally:
            self.break_targets.pop()
            self.switches.pop()
        if body_end is not None:
            self._link(body_end, after, EdgeKind.FALL_THROUGH)
        if not context["default"]:
            self._link(cur, after, EdgeKind.SWITCH_CASE)
        return after

    def _case(self, stmt: A.Case, cur: BasicBlock, inner: tuple) -> Optional[BasicBlock]:
        if not self.switches:
            raise MalformedControlFlow("'case' outside a switch", stmt.line)
        context = self.switches[-1]
        block = self._new("case")
        # fall-through from the previous case
        self._link(cur, block, EdgeKind.FALL_THROUGH)
        self._link(context["dispatch"], block, EdgeKind.SWITCH_CASE)
        if stmt.value is None:
            context["default"] = True
        return self._stmt(stmt.stmt, block, inner)


def _constant(expr: Optional[A.Expr], literals: frozenset[str]) -> bool:
    expr = A.strip(expr) if expr is not None else None
    if isinstance(expr, A.Literal):
        return expr.text in literals
    if isinstance(expr, A.Name):
        return expr.name in literals
    return False
