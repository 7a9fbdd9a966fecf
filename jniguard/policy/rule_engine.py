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

"""Declarative rule evaluation.

Rules come from a YAML catalog (see rules/jni_hardening.yaml). Each rule
has a kind, and each kind has one generic evaluator:

- exception-check: after the trigger call, every path must reach an
  exception check before the next hazard (another JNI call that is not
  exception-safe, a read of the call's result, re-running the call, or
  leaving the function).
- null-check: every path must test $VAR against NULL before reading it.
- release: every path to the function exit must run a `requires` call
  with the trigger's bindings.
- loop-exception / loop-invariant: syntactic checks on JNI calls inside
  loops. These need no CFG and still run when CFG construction fails.

Used at:
- Scan time: `analyze_source` per file, called from the coordinator
- CLI: `load_ruleset` for `jniguard rules` and `--rules-file`
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

import yaml
from pydantic import ValidationError

from jniguard.analysis.cfg import ControlFlowGraph, CfgElement, Edge, EdgeKind, build_cfg
from jniguard.analysis.paths import Verdict, required_on_all_paths
from jniguard.analysis.patterns import (
    METAVARIABLE_RE,
    BlockPattern,
    Bindings,
    MetavariableIn,
    Pattern,
    Query,
    Site,
    compile_pattern,
    either,
    iter_elements,
    match,
)
from jniguard.errors import (
    ParseError,
    RuleEvaluationError,
    RuleLoadError,
    UnresolvedControlFlow,
)
from jniguard.models.findings import Diagnostic, DiagnosticKind, Finding
from jniguard.models.rules import EngineSettings, ExceptionHandler, RuleKind, RuleSet, RuleSpec
from jniguard.parser import c_ast as A
from jniguard.parser.c_parser import parse_source

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).parent.parent / "rules" / "jni_hardening.yaml"

_IDENTIFIER_RE = re.compile(r"[A-Za-z_]\w*")


# ── catalog loading ──


def load_ruleset(path: str | Path | None = None) -> RuleSet:
    """Load and validate a rule catalog. Defaults to the bundled one."""
    rules_path = Path(path) if path is not None else DEFAULT_RULES_PATH
    try:
        with open(rules_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise RuleLoadError(f"Rule catalog not found: {rules_path}") from e
    except yaml.YAMLError as e:
        raise RuleLoadError(f"Rule catalog {rules_path} is not valid YAML: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
        raise RuleLoadError(f"Rule catalog {rules_path} must be a mapping with a 'rules' list")

    try:
        ruleset = RuleSet(
            settings=EngineSettings(**(data.get("settings") or {})),
            rules=[RuleSpec(**rule_data) for rule_data in data["rules"]],
        )
    except (ValidationError, TypeError) as e:
        raise RuleLoadError(f"Invalid rule in {rules_path}: {e}") from e

    seen: set[str] = set()
    for rule in ruleset.rules:
        if rule.id in seen:
            raise RuleLoadError(f"Duplicate rule id '{rule.id}' in {rules_path}")
        seen.add(rule.id)
        try:
            compile_rule(rule)
        except ParseError as e:
            raise RuleLoadError(f"Rule {rule.id}: bad pattern: {e.message}") from e

    logger.info("Loaded %d rules from %s", len(ruleset.rules), rules_path)
    return ruleset


@dataclass(frozen=True)
class CompiledRule:
    spec: RuleSpec
    query: Query
    requires: tuple[Pattern, ...] = ()


def compile_rule(spec: RuleSpec) -> CompiledRule:
    """Compile a rule's patterns. Raises ParseError on a malformed pattern."""
    where = tuple(
        MetavariableIn(name, frozenset(values))
        for name, values in sorted(spec.metavariable_in.items())
    ) + tuple(
        MetavariableIn(name, frozenset(values), negate=True)
        for name, values in sorted(spec.metavariable_not_in.items())
    )
    return CompiledRule(
        spec=spec,
        query=Query(pattern=either(*spec.trigger_patterns), where=where),
        requires=tuple(compile_pattern(p) for p in spec.requires),
    )


def render_message(template: str, bindings: Bindings) -> str:
    """Substitute bound metavariables into a message template."""
    return METAVARIABLE_RE.sub(
        lambda m: bindings.get(m.group(1), m.group(0)), template
    )


# ── per-function state ──


class _FunctionContext:
    """One function under analysis. The CFG is built on first use."""

    def __init__(self, unit: A.SourceFile, function: A.FunctionDef, settings: EngineSettings) -> None:
        self.unit = unit
        self.function = function
        self.settings = settings
        self.exception_checks = frozenset(settings.exception_checks)
        self.exception_clear = frozenset(settings.exception_clear)
        self.exception_safe = (
            frozenset(settings.exception_safe) | self.exception_checks | self.exception_clear
        )
        self.exit_functions = frozenset(settings.exit_functions)
        self.null_literals = frozenset(settings.null_literals)
        self.status_ok = frozenset(settings.status_ok)
        # `if ((*env)->ExceptionCheck(env)) { ... }` and friends
        self.exception_guard = BlockPattern(
            kind="if",
            cond=either(*(f"(*$GUARD_ENV)->{name}($GUARD_ENV)" for name in settings.exception_checks)),
        )
        self._cfg: Optional[ControlFlowGraph] = None
        self.cfg_error: Optional[UnresolvedControlFlow] = None

    @property
    def cfg(self) -> Optional[ControlFlowGraph]:
        if self._cfg is None and self.cfg_error is None:
            try:
                self._cfg = build_cfg(self.function, self.exit_functions)
            except UnresolvedControlFlow as e:
                self.cfg_error = e
            except RecursionError:
                self.cfg_error = UnresolvedControlFlow("nesting too deep to analyze", self.function.line)
        return self._cfg

    def is_local(self, name: str) -> bool:
        return name in self.function.local_names

    # ── expression predicates ──

    def calls_named(self, exprs: Iterable[A.Expr], names: frozenset[str]) -> bool:
        return any(
            call.callee in names for expr in exprs for call in A.calls_in(expr)
        )

    def is_hazard_call(self, call: A.Call) -> bool:
        return call.interface and call.callee not in self.exception_safe

    def is_terminator(self, stmt: A.Stmt) -> bool:
        if isinstance(stmt, (A.Return, A.Goto)):
            return True
        if isinstance(stmt, A.ExprStmt):
            expr = A.strip(stmt.expr)
            return (
                isinstance(expr, A.Call)
                and not expr.interface
                and expr.callee in self.exit_functions
            )
        return False

    def terminates(self, stmt: A.Stmt) -> bool:
        return any(self.is_terminator(s) for s in A.walk_stmts(stmt))

    def clears(self, stmt: A.Stmt) -> bool:
        return any(
            self.calls_named(A.stmt_exprs(s), self.exception_clear)
            for s in A.walk_stmts(stmt)
        )

    def is_null(self, expr: A.Expr) -> bool:
        expr = A.strip(expr)
        if isinstance(expr, A.Name):
            return expr.name in self.null_literals
        if isinstance(expr, A.Literal):
            return expr.text in self.null_literals
        return False

    def is_status_ok(self, expr: A.Expr) -> bool:
        expr = A.strip(expr)
        if isinstance(expr, A.Name):
            return expr.name in self.status_ok
        if isinstance(expr, A.Literal):
            return expr.text in self.status_ok
        return False

    def null_tested(self, exprs: Iterable[A.Expr], var: str, as_condition: bool = False) -> bool:
        """Whether any of `exprs` compares `var` with NULL (or tests its truth)."""
        for root in exprs:
            if as_condition and _is_var(root, var):
                return True
            for node in A.walk_expr(root):
                if isinstance(node, A.Binary):
                    if node.op in ("==", "!="):
                        if _is_var(node.left, var) and self.is_null(node.right):
                            return True
                        if _is_var(node.right, var) and self.is_null(node.left):
                            return True
                    elif node.op in ("&&", "||"):
                        if _is_var(node.left, var) or _is_var(node.right, var):
                            return True
                elif isinstance(node, A.Unary) and node.op == "!":
                    if _is_var(node.operand, var):
                        return True
                elif isinstance(node, A.Conditional) and _is_var(node.cond, var):
                    return True
        return False

    def null_branch(self, cond: A.Expr, var: str) -> Optional[EdgeKind]:
        """The branch of `if (cond)` on which `var` is known to be NULL."""
        cond = A.strip(cond)
        if isinstance(cond, A.Binary) and cond.op in ("==", "!="):
            if (_is_var(cond.left, var) and self.is_null(cond.right)) or (
                _is_var(cond.right, var) and self.is_null(cond.left)
            ):
                return EdgeKind.BRANCH_TRUE if cond.op == "==" else EdgeKind.BRANCH_FALSE
            return None
        if isinstance(cond, A.Unary) and cond.op == "!" and _is_var(cond.operand, var):
            return EdgeKind.BRANCH_TRUE
        if _is_var(cond, var):
            return EdgeKind.BRANCH_FALSE
        return None

    def failure_branch(self, cond: A.Expr, is_subject: Callable[[A.Expr], bool]) -> Optional[EdgeKind]:
        """The branch of `if (cond)` taken when a JNI status code is not JNI_OK."""
        cond = A.strip(cond)
        if isinstance(cond, A.Binary) and cond.op in ("==", "!=", "<", ">"):
            if is_subject(cond.left) and self.is_status_ok(cond.right):
                op = cond.op
            elif is_subject(cond.right) and self.is_status_ok(cond.left):
                op = {"<": ">", ">": "<"}.get(cond.op, cond.op)
            else:
                return None
            if op == "==":
                return EdgeKind.BRANCH_FALSE
            # JNI error codes are negative
            return EdgeKind.BRANCH_TRUE
        if isinstance(cond, A.Unary) and cond.op == "!" and is_subject(cond.operand):
            return EdgeKind.BRANCH_FALSE
        if is_subject(cond):
            return EdgeKind.BRANCH_TRUE
        return None


def _is_var(expr: A.Expr, var: str) -> bool:
    """`var` itself, or an assignment to it: `(x = f())` tests x."""
    expr = A.strip(expr)
    if isinstance(expr, A.Name):
        return expr.name == var
    if isinstance(expr, A.Assign) and expr.op == "=":
        target = A.strip(expr.target)
        return isinstance(target, A.Name) and target.name == var
    return False


def _reads(expr: Optional[A.Expr], var: str) -> bool:
    """Whether evaluating `expr` reads `var` (a plain assignment target is not a read)."""
    if expr is None:
        return False
    if isinstance(expr, A.Assign):
        target = A.strip(expr.target)
        if isinstance(target, A.Name):
            return (expr.op != "=" and target.name == var) or _reads(expr.value, var)
        return _reads(expr.target, var) or _reads(expr.value, var)
    if isinstance(expr, A.Name):
        return expr.name == var
    return any(_reads(child, var) for child in A.expr_children(expr))


def _element_reads(exprs: Iterable[A.Expr], var: str) -> bool:
    return any(_reads(e, var) for e in exprs)


def _assigns(exprs: Iterable[A.Expr], var: str) -> bool:
    for root in exprs:
        for node in A.walk_expr(root):
            if isinstance(node, A.Assign) and node.op == "=":
                target = A.strip(node.target)
                if isinstance(target, A.Name) and target.name == var:
                    return True
    return False


def _root_name(expr: A.Expr) -> Optional[str]:
    expr = A.strip(expr)
    while True:
        if isinstance(expr, A.Name):
            return expr.name
        if isinstance(expr, (A.Member, A.Index)):
            expr = A.strip(expr.obj)
        elif isinstance(expr, A.Unary) and expr.op == "*":
            expr = A.strip(expr.operand)
        else:
            return None


def _enclosing_calls(exprs: Iterable[A.Expr], target: A.Expr) -> list[A.Call]:
    """Calls in `exprs` that take `target` (transitively) as an argument."""
    def visit(node: A.Expr, chain: list[A.Call]) -> Optional[list[A.Call]]:
        if node is target:
            return chain
        inner = chain + [node] if isinstance(node, A.Call) else chain
        for child in A.expr_children(node):
            found = visit(child, inner)
            if found is not None:
                return found
        return None

    for root in exprs:
        found = visit(root, [])
        if found is not None:
            return found
    return []


# ── evaluators ──


def _path_start(ctx: _FunctionContext, site: Site):
    cfg = ctx.cfg
    if cfg is None:
        return None, None
    position = cfg.position_of(site.stmt, site.role)
    if position is None:
        # trigger in dead code
        return cfg, None
    return cfg, position


def _trigger_element(position) -> CfgElement:
    block, index = position
    return block.elements[index]


def _required_var(rule: CompiledRule, site: Site) -> str:
    var = site.bindings.get("VAR")
    if var is None:
        raise RuleEvaluationError(
            f"rule {rule.spec.id}: pattern does not bind $VAR", rule.spec.id
        )
    return var


def _evaluate_exception_check(ctx: _FunctionContext, rule: CompiledRule, site: Site) -> bool:
    """True if the site violates the rule."""
    cfg, position = _path_start(ctx, site)
    if position is None:
        return False
    trigger = _trigger_element(position)
    call = site.expr

    # an enclosing JNI call runs after this one with the exception pending
    if any(ctx.is_hazard_call(c) for c in _enclosing_calls(trigger.exprs, call)):
        return True

    result = site.assigned_to
    clear_and_exit = rule.spec.handler == ExceptionHandler.CLEAR_AND_EXIT
    if (
        result is not None
        and not clear_and_exit
        and trigger.role == "cond"
        and ctx.null_tested(trigger.exprs, result, as_condition=True)
    ):
        return False

    def handles(element: CfgElement) -> bool:
        if not ctx.calls_named(element.exprs, ctx.exception_checks):
            return not clear_and_exit and ctx.calls_named(element.exprs, ctx.exception_clear)
        stmt = element.stmt
        if element.role != "cond" or not isinstance(stmt, A.If):
            return not clear_and_exit
        if clear_and_exit:
            if not ctx.clears(stmt.then):
                return False
            if ctx.terminates(stmt.then):
                return True
            following = _next_sibling(element)
            return following is not None and ctx.is_terminator(following)
        branches = [stmt.then] + ([stmt.other] if stmt.other is not None else [])
        return any(ctx.clears(b) or ctx.terminates(b) for b in branches)

    def classify(element: CfgElement) -> Verdict:
        if handles(element):
            return Verdict.SATISFIED
        if any(
            ctx.is_hazard_call(c) for e in element.exprs for c in A.calls_in(e)
        ):
            return Verdict.VIOLATED
        if result is not None and _element_reads(element.exprs, result):
            if element.role == "cond" and ctx.null_tested(element.exprs, result, as_condition=True):
                # accessors return NULL exactly when they throw
                return Verdict.CONTINUE if clear_and_exit else Verdict.SATISFIED
            return Verdict.VIOLATED
        return Verdict.CONTINUE

    coverage = required_on_all_paths(
        cfg, position, classify,
        exit_verdict=Verdict.VIOLATED,
        retrigger_verdict=Verdict.VIOLATED,
    )
    if not coverage:
        logger.debug("%s: unchecked path %s", rule.spec.id, coverage.witness)
    return not coverage.satisfied


def _next_sibling(element: CfgElement) -> Optional[A.Stmt]:
    if not element.ancestors or not isinstance(element.ancestors[-1], A.Block):
        return None
    stmts = element.ancestors[-1].stmts
    for i, stmt in enumerate(stmts):
        if stmt is element.stmt:
            return stmts[i + 1] if i + 1 < len(stmts) else None
    return None


def _evaluate_null_check(ctx: _FunctionContext, rule: CompiledRule, site: Site) -> bool:
    var = _required_var(rule, site)
    if not _IDENTIFIER_RE.fullmatch(var):
        return False
    cfg, position = _path_start(ctx, site)
    if position is None:
        return False
    trigger = _trigger_element(position)
    if ctx.null_tested(trigger.exprs, var, as_condition=trigger.role == "cond"):
        return False

    def classify(element: CfgElement) -> Verdict:
        if ctx.null_tested(element.exprs, var, as_condition=element.role == "cond"):
            return Verdict.SATISFIED
        if _element_reads(element.exprs, var):
            return Verdict.VIOLATED
        if _assigns(element.exprs, var):
            return Verdict.SATISFIED
        return Verdict.CONTINUE

    coverage = required_on_all_paths(
        cfg, position, classify,
        exit_verdict=Verdict.SATISFIED,
        retrigger_verdict=Verdict.SATISFIED,
    )
    return not coverage.satisfied


def _evaluate_release(ctx: _FunctionContext, rule: CompiledRule, site: Site) -> bool:
    spec = rule.spec
    var = site.bindings.get("VAR")
    if var is not None and spec.local_only:
        if not _IDENTIFIER_RE.fullmatch(var) or not ctx.is_local(var):
            return False
    cfg, position = _path_start(ctx, site)
    if position is None:
        return False
    bindings = site.bindings
    status = site.assigned_to if var is None else None

    def released(element: CfgElement) -> bool:
        return any(
            match(pattern, expr, bindings)
            for pattern in rule.requires
            for expr in element.exprs
        )

    def escapes(element: CfgElement) -> bool:
        if var is None or not spec.escape_on_return:
            return False
        if element.role == "return":
            return any(_is_var(e, var) for e in element.exprs)
        # stored somewhere that outlives the function
        for root in element.exprs:
            for node in A.walk_expr(root):
                if isinstance(node, A.Assign) and node.op == "=" and _is_var(node.value, var):
                    target = A.strip(node.target)
                    if not isinstance(target, A.Name) or not ctx.is_local(target.name):
                        return True
        return False

    def classify(element: CfgElement) -> Verdict:
        if released(element) or escapes(element):
            return Verdict.SATISFIED
        if var is not None and _assigns(element.exprs, var):
            # overwritten while still held
            return Verdict.VIOLATED
        return Verdict.CONTINUE

    def is_subject(expr: A.Expr) -> bool:
        expr = A.strip(expr)
        if expr is site.expr:
            return True
        return status is not None and _is_var(expr, status)

    def prune(element: CfgElement, edge: Edge) -> bool:
        cond = element.exprs[0] if element.exprs else None
        if cond is None or not isinstance(element.stmt, (A.If, A.While, A.For)):
            return False
        if spec.null_guard and var is not None:
            if ctx.null_branch(cond, var) == edge.kind:
                return True
        if spec.status_guard:
            if ctx.failure_branch(cond, is_subject) == edge.kind:
                return True
        return False

    coverage = required_on_all_paths(
        cfg, position, classify,
        exit_verdict=Verdict.VIOLATED,
        retrigger_verdict=Verdict.VIOLATED,
        prune_edge=prune,
    )
    if not coverage:
        logger.debug("%s: leaking path %s", spec.id, coverage.witness)
    return not coverage.satisfied


def _loops_around(site: Site) -> list[A.Stmt]:
    """Loops that re-run the site, outermost first."""
    loops = [a for a in site.ancestors if isinstance(a, A.LOOP_TYPES)]
    if site.role == "init" and loops and site.ancestors[-1] is loops[-1]:
        # a for-init runs once
        loops.pop()
    if site.role in ("cond", "step") and isinstance(site.stmt, A.LOOP_TYPES):
        loops.append(site.stmt)
    return loops


def _evaluate_loop_exception(ctx: _FunctionContext, rule: CompiledRule, site: Site) -> bool:
    if not isinstance(site.expr, A.Call) or site.expr.callee in ctx.exception_safe:
        return False
    loops = _loops_around(site)
    if not loops:
        return False
    loop = loops[-1]
    for element in iter_elements(loop):
        if ctx.calls_named(element.exprs, ctx.exception_checks):
            return False
    return not any(ctx.exception_guard.matches(a) for a in site.ancestors)


def _modified_in(loop: A.Stmt) -> set[str]:
    names: set[str] = set()
    for element in iter_elements(loop):
        for root in element.exprs:
            for node in A.walk_expr(root):
                if isinstance(node, A.Assign):
                    names.add(_root_name(node.target) or "")
                elif isinstance(node, A.Unary) and node.op in ("++", "--", "&"):
                    names.add(_root_name(node.operand) or "")
    for stmt in A.walk_stmts(loop):
        if isinstance(stmt, A.DeclStmt):
            names.update(stmt.names)
    names.discard("")
    return names


def _evaluate_loop_invariant(ctx: _FunctionContext, rule: CompiledRule, site: Site) -> bool:
    call = site.expr
    if not isinstance(call, A.Call) or call.callee in ctx.exception_safe:
        return False
    loops = _loops_around(site)
    if not loops:
        return False
    mentioned: set[str] = set()
    for arg in call.iargs:
        for node in A.walk_expr(arg):
            if isinstance(node, A.Call):
                return False
            if isinstance(node, A.Name):
                mentioned.add(node.name)
    return not (mentioned & _modified_in(loops[-1]))


_EVALUATORS: dict[RuleKind, Callable[[_FunctionContext, CompiledRule, Site], bool]] = {
    RuleKind.EXCEPTION_CHECK: _evaluate_exception_check,
    RuleKind.NULL_CHECK: _evaluate_null_check,
    RuleKind.RELEASE: _evaluate_release,
    RuleKind.LOOP_EXCEPTION: _evaluate_loop_exception,
    RuleKind.LOOP_INVARIANT: _evaluate_loop_invariant,
}


def evaluate_rule(ctx: _FunctionContext, rule: CompiledRule) -> list[Finding]:
    """Run one rule over one function. Raises RuleEvaluationError on engine defects."""
    evaluator = _EVALUATORS[rule.spec.kind]
    findings: list[Finding] = []
    seen: set[int] = set()
    for site in rule.query.sites(ctx.function):
        # one verdict per call site, whatever the number of binding sets
        if id(site.expr) in seen:
            continue
        seen.add(id(site.expr))
        if evaluator(ctx, rule, site):
            findings.append(Finding(
                rule_id=rule.spec.id,
                file=ctx.unit.path,
                line=site.line,
                column=site.col,
                function=ctx.function.name,
                severity=rule.spec.severity,
                message=render_message(rule.spec.message, site.bindings),
                bindings=site.bindings,
            ))
    return findings


# ── entry point ──


def analyze_source(
    text: str,
    path: str,
    rules: list[RuleSpec],
    settings: Optional[EngineSettings] = None,
) -> tuple[list[Finding], list[Diagnostic]]:
    """Analyze one translation unit.

    Failures never propagate: a file that cannot be parsed, a function whose
    CFG cannot be built, and a rule that breaks on one function each turn
    into a Diagnostic and only skip what they affect. Code nested too deeply
    for the recursive parser is reported the same way, per function.
    """
    settings = settings or EngineSettings()
    findings: list[Finding] = []
    diagnostics: list[Diagnostic] = []

    try:
        unit = parse_source(text, path, tuple(settings.interface_types))
    except ParseError as e:
        logger.warning("Parse error in %s:%d: %s", path, e.line, e.message)
        return [], [Diagnostic(
            kind=DiagnosticKind.PARSE_ERROR, file=path, line=e.line, message=e.message,
        )]
    except RecursionError:
        logger.warning("Nesting too deep to analyze %s", path)
        return [], [Diagnostic(
            kind=DiagnosticKind.PARSE_ERROR, file=path, message="nesting too deep to analyze",
        )]

    for e in unit.errors:
        logger.warning("Skipping function in %s:%d: %s", path, e.line, e.message)
        diagnostics.append(Diagnostic(
            kind=DiagnosticKind.PARSE_ERROR, file=path, line=e.line, message=e.message,
        ))

    compiled = [compile_rule(r) for r in rules]

    for function in unit.functions:
        ctx = _FunctionContext(unit, function, settings)
        for rule in compiled:
            if rule.spec.path_sensitive and ctx.cfg is None:
                continue
            try:
                findings.extend(evaluate_rule(ctx, rule))
            except RuleEvaluationError as e:
                logger.error("Rule %s failed on %s in %s: %s", rule.spec.id, function.name, path, e.message)
                diagnostics.append(Diagnostic(
                    kind=DiagnosticKind.RULE_EVALUATION_ERROR, file=path, line=function.line,
                    function=function.name, rule_id=rule.spec.id, message=e.message,
                ))
            except Exception as e:
                logger.exception("Rule %s crashed on %s in %s", rule.spec.id, function.name, path)
                diagnostics.append(Diagnostic(
                    kind=DiagnosticKind.RULE_EVALUATION_ERROR, file=path, line=function.line,
                    function=function.name, rule_id=rule.spec.id,
                    message=f"internal error: {type(e).__name__}: {e}",
                ))
        if ctx.cfg_error is not None:
            err = ctx.cfg_error
            logger.warning("Control flow of %s in %s not analyzable: %s", function.name, path, err.message)
            diagnostics.append(Diagnostic(
                kind=DiagnosticKind.UNRESOLVED_CONTROL_FLOW, file=path, line=err.line,
                function=function.name, message=err.message,
            ))

    findings.sort(key=Finding.sort_key)
    diagnostics.sort(key=Diagnostic.sort_key)
    return findings, diagnostics
