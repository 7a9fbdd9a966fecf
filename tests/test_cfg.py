"""Tests for per-function control-flow graphs."""

import pytest

from jniguard.analysis.cfg import EdgeKind, build_cfg
from jniguard.errors import MalformedControlFlow, UnresolvedControlFlow, UnresolvedLabel
from jniguard.parser import c_ast as A
from jniguard.parser.c_parser import parse_source


def _cfg(source: str):
    return build_cfg(parse_source(source).functions[0])


def _kinds(cfg) -> list[EdgeKind]:
    return [e.kind for e in cfg.edges()]


def _block_calling(cfg, callee: str):
    for block, index, element in cfg.elements():
        for expr in element.exprs:
            if any(c.callee == callee for c in A.calls_in(expr)):
                return block
    return None


class TestStraightLine:
    """Sequential code and function exit."""

    def test_entry_to_exit(self):
        cfg = _cfg("void f(void) { a(); b(); }")
        assert cfg.entry.successors[0].kind == EdgeKind.FALL_THROUGH
        body = cfg.entry.successors[0].target
        assert [e.role for e in body.elements] == ["stmt", "stmt"]
        assert body.successors[0].target is cfg.exit
        assert body.successors[0].kind == EdgeKind.RETURN

    def test_declaration_without_initializer_has_no_element(self):
        cfg = _cfg("void f(void) { int x; a(); }")
        assert sum(1 for _ in cfg.elements()) == 1

    def test_code_after_return_is_unreachable(self):
        fn = parse_source("void f(void) { return; g(); }").functions[0]
        cfg = build_cfg(fn)
        dead = fn.body.stmts[1]
        assert cfg.unreachable
        assert cfg.position_of(dead, "stmt") is None
        assert cfg.position_of(fn.body.stmts[0], "return") is not None

    def test_exit_call_ends_the_path(self):
        cfg = _cfg("void f(int c) { if (c) abort(); g(); }")
        assert EdgeKind.EXIT in _kinds(cfg)
        abort_block = _block_calling(cfg, "abort")
        assert [e.target for e in abort_block.successors] == [cfg.exit]


class TestBranches:
    """if/else and switch."""

    def test_if_without_else(self):
        cfg = _cfg("void f(int c) { if (c) a(); b(); }")
        cond_block = cfg.entry.successors[0].target
        assert cond_block.elements[-1].role == "cond"
        assert sorted(e.kind.value for e in cond_block.successors) == ["branch-false", "branch-true"]

    def test_if_else_join(self):
        cfg = _cfg("void f(int c) { if (c) a(); else b(); d(); }")
        a_block = _block_calling(cfg, "a")
        b_block = _block_calling(cfg, "b")
        assert a_block.successors[0].target is b_block.successors[0].target

    def test_switch_cases_and_fall_through(self):
        cfg = _cfg(
            "void f(int c) {\n"
            "    switch (c) {\n"
            "    case 1: a();\n"
            "    case 2: b(); break;\n"
            "    default: d();\n"
            "    }\n"
            "}\n"
        )
        assert _kinds(cfg).count(EdgeKind.SWITCH_CASE) == 3
        a_block = _block_calling(cfg, "a")
        b_block = _block_calling(cfg, "b")
        assert any(e.target is b_block for e in a_block.successors)
        assert EdgeKind.BREAK in _kinds(cfg)

    def test_switch_without_default_can_skip(self):
        cfg = _cfg("void f(int c) { switch (c) { case 1: a(); break; } d(); }")
        # one edge per case plus the no-match edge
        assert _kinds(cfg).count(EdgeKind.SWITCH_CASE) == 2


class TestLoops:
    """Back edges, break/continue and constant conditions."""

    def test_while_back_edge(self):
        cfg = _cfg("void f(int n) { while (n) { n--; } }")
        assert EdgeKind.BACK_EDGE in _kinds(cfg)
        assert EdgeKind.BRANCH_FALSE in _kinds(cfg)

    def test_infinite_loop_exits_only_through_break(self):
        cfg = _cfg("void f(int n) { while (1) { if (n) break; n++; } done(); }")
        done_block = _block_calling(cfg, "done")
        assert done_block is not None
        assert [e.kind for e in done_block.predecessors] == [EdgeKind.BREAK]

    def test_for_loop_step_and_continue(self):
        cfg = _cfg("void f(int n) { for (int i = 0; i < n; i++) { if (i) continue; g(i); } }")
        kinds = _kinds(cfg)
        assert EdgeKind.CONTINUE in kinds
        assert EdgeKind.BACK_EDGE in kinds
        roles = [e.role for _, _, e in cfg.elements()]
        assert "init" in roles
        assert "step" in roles

    def test_do_while_zero_runs_once(self):
        cfg = _cfg("void f(void) { do { g(); } while (0); }")
        assert EdgeKind.BACK_EDGE not in _kinds(cfg)


class TestGoto:
    """Label resolution and malformed jumps."""

    def test_goto_cleanup(self):
        cfg = _cfg(
            "void f(int c) {\n"
            "    if (c) goto cleanup;\n"
            "    work();\n"
            "cleanup:\n"
            "    release();\n"
            "}\n"
        )
        release_block = _block_calling(cfg, "release")
        kinds = sorted(e.kind.value for e in release_block.predecessors)
        assert kinds == ["fall-through", "goto"]

    def test_backward_goto(self):
        cfg = _cfg("void f(int c) { again: c--; if (c) goto again; }")
        assert EdgeKind.GOTO in _kinds(cfg)

    def test_unresolved_label(self):
        with pytest.raises(UnresolvedLabel) as exc:
            _cfg("void f(void) {\n    goto nowhere;\n}\n")
        assert exc.value.label == "nowhere"
        assert exc.value.line == 2
        assert isinstance(exc.value, UnresolvedControlFlow)

    def test_duplicate_label(self):
        with pytest.raises(MalformedControlFlow):
            _cfg("void f(void) { out: a(); out: b(); }")

    def test_break_outside_loop(self):
        with pytest.raises(MalformedControlFlow):
            _cfg("void f(void) { break; }")
