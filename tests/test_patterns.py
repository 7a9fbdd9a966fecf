"""Tests for the pattern compiler and matcher."""

import pytest

from jniguard.analysis.patterns import (
    BlockPattern,
    MetavariableIn,
    Query,
    compile_pattern,
    either,
    match,
    match_at,
)
from jniguard.errors import ParseError, RuleEvaluationError
from jniguard.parser.c_parser import parse_expression, parse_source


def _function(source: str):
    return parse_source(source).functions[0]


class TestMetavariables:
    """Binding and unification."""

    def test_binds_receiver_and_callee(self):
        pattern = compile_pattern("(*$ENV)->$JNI_FUNC($ENV, ...)")
        node = parse_expression('(*env)->FindClass(env, "x")')
        assert match_at(pattern, node) == [{"ENV": "env", "JNI_FUNC": "FindClass"}]

    def test_metavariable_set(self):
        pattern = compile_pattern("$VAR = (*$ENV)->$JNI_FUNC($ENV, ...)")
        assert pattern.metavariables == {"VAR", "ENV", "JNI_FUNC"}

    def test_repeated_metavariable_must_unify(self):
        pattern = compile_pattern("f($A, $A)")
        assert match_at(pattern, parse_expression("f(a, a)")) == [{"A": "a"}]
        assert match_at(pattern, parse_expression("f(a, b)")) == []

    def test_existing_bindings_constrain_match(self):
        pattern = compile_pattern("(*$ENV)->DeleteLocalRef($ENV, $VAR)")
        node = parse_expression("(*env)->DeleteLocalRef(env, other)")
        assert match_at(pattern, node, {"VAR": "cls"}) == []
        assert match_at(pattern, node, {"VAR": "other"}) == [{"VAR": "other", "ENV": "env"}]

    def test_embedded_metavariable(self):
        """`Get$TYPEArrayElements` binds TYPE to the infix."""
        pattern = compile_pattern("$VAR = (*$ENV)->Get$TYPEArrayElements($ENV, ...)")
        node = parse_expression("data = (*env)->GetIntArrayElements(env, arr, NULL)")
        [bindings] = match_at(pattern, node)
        assert bindings["TYPE"] == "Int"
        assert bindings["VAR"] == "data"

    def test_embedded_metavariable_needs_the_literal_parts(self):
        pattern = compile_pattern("(*$ENV)->Get$TYPEArrayElements($ENV, ...)")
        node = parse_expression("(*env)->GetPrimitiveArrayCritical(env, arr, NULL)")
        assert match_at(pattern, node) == []

    def test_bound_text_is_rendered_source(self):
        pattern = compile_pattern("f($X)")
        [bindings] = match_at(pattern, parse_expression('f("a b")'))
        assert bindings["X"] == '"a b"'


class TestStructure:
    """Ellipsis, calling forms and casts."""

    def test_ellipsis_absorbs_arguments(self):
        pattern = compile_pattern("f(..., $LAST)")
        [bindings] = match_at(pattern, parse_expression("f(1, 2, 3)"))
        assert bindings == {"LAST": "3"}

    def test_ellipsis_matches_empty_run(self):
        pattern = compile_pattern("f($X, ...)")
        assert match_at(pattern, parse_expression("f(a)")) == [{"X": "a"}]

    def test_c_pattern_matches_cpp_call(self):
        pattern = compile_pattern("(*$ENV)->FindClass($ENV, $NAME)")
        node = parse_expression('env->FindClass("x")', frozenset({"env"}))
        assert match_at(pattern, node) == [{"ENV": "env", "NAME": '"x"'}]

    def test_source_casts_are_transparent(self):
        pattern = compile_pattern("$VAR = (*$ENV)->CallObjectMethod($ENV, ...)")
        node = parse_expression("s = (jstring) (*env)->CallObjectMethod(env, obj, mid)")
        assert len(match_at(pattern, node)) == 1

    def test_equality_is_commutative(self):
        pattern = compile_pattern("$X == NULL")
        assert match_at(pattern, parse_expression("NULL == p")) == [{"X": "p"}]

    def test_match_searches_subexpressions(self):
        pattern = compile_pattern("g($Y)")
        results = match(pattern, parse_expression("f(g(1), h(g(2)))"))
        assert sorted(b["Y"] for b in results) == ["1", "2"]

    def test_either(self):
        pattern = either("a($X)", "b($X)")
        assert match_at(pattern, parse_expression("b(1)")) == [{"X": "1"}]
        assert match_at(pattern, parse_expression("c(1)")) == []

    def test_malformed_pattern(self):
        with pytest.raises(ParseError):
            compile_pattern("(*$ENV)->(")


class TestFilters:
    """metavariable-in, enclosing-block filters and queries."""

    def test_metavariable_in(self):
        allowed = MetavariableIn("F", frozenset({"FindClass"}))
        assert allowed.accepts({"F": "FindClass"})
        assert not allowed.accepts({"F": "NewObject"})
        assert MetavariableIn("F", frozenset({"FindClass"}), negate=True).accepts({"F": "NewObject"})

    def test_metavariable_in_unbound_is_an_engine_error(self):
        with pytest.raises(RuleEvaluationError):
            MetavariableIn("MISSING", frozenset()).accepts({})

    def test_block_pattern(self):
        fn = _function(
            "void f(JNIEnv *env) {\n"
            "    if ((*env)->ExceptionCheck(env)) { (*env)->ExceptionClear(env); }\n"
            "}\n"
        )
        guard = BlockPattern(kind="if", cond=compile_pattern("(*$E)->ExceptionCheck($E)"))
        stmt = fn.body.stmts[0]
        assert guard.matches(stmt) == [{"E": "env"}]
        assert BlockPattern(kind="loop").matches(stmt) == []

    def test_query_sites_in_source_order(self):
        fn = _function(
            "void f(JNIEnv *env) {\n"
            '    jclass a = (*env)->FindClass(env, "A");\n'
            "    jmethodID m = (*env)->GetMethodID(env, a, \"run\", \"()V\");\n"
            '    (*env)->FindClass(env, "B");\n'
            "}\n"
        )
        query = Query(
            pattern=compile_pattern("(*$ENV)->$F($ENV, ...)"),
            where=(MetavariableIn("F", frozenset({"FindClass"})),),
        )
        sites = query.sites(fn)
        assert [s.line for s in sites] == [2, 4]
        assert sites[0].assigned_to == "a"
        assert sites[1].assigned_to is None
        assert sites[0].role == "stmt"

    def test_query_not_inside(self):
        fn = _function(
            "void f(JNIEnv *env, int n) {\n"
            "    while (n--) { (*env)->FindClass(env, \"A\"); }\n"
            "    (*env)->FindClass(env, \"B\");\n"
            "}\n"
        )
        query = Query(
            pattern=compile_pattern("(*$ENV)->FindClass($ENV, ...)"),
            not_inside=(BlockPattern(kind="loop"),),
        )
        assert [s.line for s in query.sites(fn)] == [3]
