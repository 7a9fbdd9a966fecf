"""Tests for the rule catalog and per-kind rule evaluation."""

from pathlib import Path

import pytest

from jniguard.errors import RuleLoadError
from jniguard.models.findings import DiagnosticKind, Severity
from jniguard.models.rules import RuleKind, RuleSpec
from jniguard.policy.rule_engine import analyze_source, load_ruleset, render_message

FIXTURES = Path(__file__).parent / "fixtures"

RULESET = load_ruleset()


def _run(source: str, *rule_ids: str):
    rules = RULESET.select(list(rule_ids) if rule_ids else None)
    return analyze_source(source, "test.c", rules, RULESET.settings)


def _findings(source: str, *rule_ids: str):
    findings, diagnostics = _run(source, *rule_ids)
    assert diagnostics == []
    return findings


def _fixture(name: str):
    path = FIXTURES / name
    return analyze_source(path.read_text(encoding="utf-8"), name, RULESET.select(), RULESET.settings)


class TestCatalog:
    """Loading and validating rule catalogs."""

    def test_bundled_catalog(self):
        ids = RULESET.rule_ids()
        for rule_id in (
            "jni-exception-check-required",
            "jni-null-check-required",
            "jni-delete-local-ref-required",
            "jni-delete-global-ref-required",
            "jni-check-getarraylength-exception",
            "jni-release-byte-array-required",
            "jni-release-string-utf-required",
            "jni-exception-handling-in-loop",
            "repeated-jni-calls-in-loop",
            "jni-release-array-elements-required",
            "jni-check-directbuffer-pointers",
            "jni-thread-attach-detach-pairing",
        ):
            assert rule_id in ids
        assert len(ids) == len(set(ids))

    def test_bundled_settings(self):
        assert RULESET.settings.null_literals == ["NULL", "nullptr", "0"]
        assert RULESET.settings.status_ok == ["JNI_OK", "0"]

    def test_unquoted_null_literal(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "settings:\n"
            "  null-literals: [NULL, nullptr]\n"
            "rules: []\n",
            encoding="utf-8",
        )
        with pytest.raises(RuleLoadError, match="entries must be strings"):
            load_ruleset(path)

    def test_severities(self):
        by_id = {r.id: r for r in RULESET.rules}
        assert by_id["jni-exception-handling-in-loop"].severity == Severity.ERROR
        assert by_id["repeated-jni-calls-in-loop"].severity == Severity.ADVISORY
        assert by_id["jni-null-check-required"].severity == Severity.WARNING

    def test_missing_file(self, tmp_path):
        with pytest.raises(RuleLoadError, match="not found"):
            load_ruleset(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules: [unclosed\n", encoding="utf-8")
        with pytest.raises(RuleLoadError, match="not valid YAML"):
            load_ruleset(path)

    def test_missing_rules_list(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("settings: {}\n", encoding="utf-8")
        with pytest.raises(RuleLoadError, match="'rules' list"):
            load_ruleset(path)

    def test_release_rule_needs_requires(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: leak\n"
            "    kind: release\n"
            "    pattern: $VAR = (*$ENV)->NewGlobalRef($ENV, ...)\n"
            "    message: leak\n",
            encoding="utf-8",
        )
        with pytest.raises(RuleLoadError, match="Invalid rule"):
            load_ruleset(path)

    def test_duplicate_id(self, tmp_path):
        rule = (
            "  - id: same\n"
            "    kind: loop-exception\n"
            "    pattern: (*$ENV)->$F($ENV, ...)\n"
            "    message: m\n"
        )
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n" + rule + rule, encoding="utf-8")
        with pytest.raises(RuleLoadError, match="Duplicate rule id 'same'"):
            load_ruleset(path)

    def test_bad_pattern(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: broken\n"
            "    kind: loop-exception\n"
            "    pattern: \"(*$ENV)->(\"\n"
            "    message: m\n",
            encoding="utf-8",
        )
        with pytest.raises(RuleLoadError, match="bad pattern"):
            load_ruleset(path)

    def test_info_severity_is_advisory(self):
        rule = RuleSpec(
            id="r", kind="loop-invariant", pattern="(*$E)->$F($E, ...)", message="m", severity="info",
        )
        assert rule.severity == Severity.ADVISORY


class TestMessages:
    """Metavariable substitution in messages."""

    def test_render(self):
        message = render_message(
            "Release '$VAR' with Release$TYPEArrayElements", {"VAR": "buf", "TYPE": "Int"},
        )
        assert message == "Release 'buf' with ReleaseIntArrayElements"

    def test_unbound_left_alone(self):
        assert render_message("call $FUNC", {}) == "call $FUNC"


class TestScenarios:
    """End-to-end behavior on small source files."""

    def test_unchecked_calls(self):
        findings, diagnostics = _fixture("scenarios/unchecked_calls.c")
        assert diagnostics == []
        assert [(f.rule_id, f.line) for f in findings] == [
            ("jni-delete-local-ref-required", 6),
            ("jni-exception-check-required", 6),
            ("jni-exception-check-required", 7),
        ]
        assert all(f.severity == Severity.WARNING for f in findings)
        first = findings[0]
        assert first.function == "Java_com_example_Native_run"
        assert first.file == "scenarios/unchecked_calls.c"

    def test_null_checked_is_clean(self):
        findings, diagnostics = _fixture("scenarios/null_checked.c")
        assert findings == []
        assert diagnostics == []

    def test_attach_without_detach(self):
        findings, _ = _fixture("scenarios/attach_only.c")
        assert [(f.rule_id, f.line, f.function) for f in findings] == [
            ("jni-thread-attach-detach-pairing", 8, "worker"),
        ]

    def test_clean_project(self):
        findings, _ = _fixture("clean_project/native.c")
        assert findings == []

    def test_cpp_spelling(self):
        findings, _ = _fixture("leaky_project/src/strings.cpp")
        assert [(f.rule_id, f.line) for f in findings] == [("jni-release-string-utf-required", 6)]

    def test_class_member_function(self):
        source = (
            "namespace foo {\n"
            "class X {\n"
            "public:\n"
            "    int g(JNIEnv *env) {\n"
            "        jclass c = env->FindClass(\"y\");\n"
            "        return 0;\n"
            "    }\n"
            "};\n"
            "}\n"
        )
        findings = _findings(source, "jni-exception-check-required", "jni-delete-local-ref-required")
        assert sorted((f.rule_id, f.line, f.function) for f in findings) == [
            ("jni-delete-local-ref-required", 5, "g"),
            ("jni-exception-check-required", 5, "g"),
        ]

    def test_results_are_deterministic(self):
        first = _fixture("leaky_project/src/arrays.c")
        second = _fixture("leaky_project/src/arrays.c")
        assert first == second
        findings = first[0]
        assert findings == sorted(findings, key=lambda f: f.sort_key())


class TestExceptionChecks:
    """exception-check rules."""

    def test_check_that_clears(self):
        source = (
            "void f(JNIEnv *env) {\n"
            "    jclass cls = (*env)->FindClass(env, \"x\");\n"
            "    if ((*env)->ExceptionCheck(env)) {\n"
            "        (*env)->ExceptionClear(env);\n"
            "        return;\n"
            "    }\n"
            "    (*env)->DeleteLocalRef(env, cls);\n"
            "}\n"
        )
        assert _findings(source, "jni-exception-check-required") == []

    def test_check_on_one_branch_only(self):
        source = (
            "void f(JNIEnv *env, jobject obj, int c) {\n"
            "    jclass cls = (*env)->GetObjectClass(env, obj);\n"
            "    if (c) {\n"
            "        if ((*env)->ExceptionCheck(env)) {\n"
            "            return;\n"
            "        }\n"
            "    }\n"
            "    (*env)->CallVoidMethod(env, obj, NULL);\n"
            "}\n"
        )
        findings = _findings(source, "jni-exception-check-required")
        assert [(f.line, f.message) for f in findings] == [(
            2,
            "Missing exception check after calling 'GetObjectClass'. "
            "Ensure to handle exceptions properly after JNI calls.",
        )]

    def test_array_length_clear_and_return(self):
        source = (
            "jint f(JNIEnv *env, jarray arr) {\n"
            "    jint len = (*env)->GetArrayLength(env, arr);\n"
            "    if ((*env)->ExceptionCheck(env)) {\n"
            "        (*env)->ExceptionClear(env);\n"
            "        return -1;\n"
            "    }\n"
            "    return len;\n"
            "}\n"
        )
        assert _findings(source, "jni-check-getarraylength-exception") == []

    def test_array_length_without_clear(self):
        source = (
            "jint f(JNIEnv *env, jarray arr) {\n"
            "    jint len = (*env)->GetArrayLength(env, arr);\n"
            "    if ((*env)->ExceptionCheck(env)) {\n"
            "        return -1;\n"
            "    }\n"
            "    return len;\n"
            "}\n"
        )
        findings = _findings(source, "jni-check-getarraylength-exception")
        assert [f.line for f in findings] == [2]


class TestNullChecks:
    """null-check rules."""

    LOOKUP = "    jmethodID mid = (*env)->GetMethodID(env, cls, \"run\", \"()V\");\n"

    def test_used_without_check(self):
        source = (
            "void f(JNIEnv *env, jclass cls) {\n"
            + self.LOOKUP
            + "    (*env)->CallVoidMethod(env, cls, mid);\n"
            "}\n"
        )
        findings = _findings(source, "jni-null-check-required")
        assert [f.message for f in findings] == [
            "Missing NULL check for 'mid' after calling 'GetMethodID'. "
            "Ensure to check the result for NULL before proceeding."
        ]
        assert findings[0].bindings["VAR"] == "mid"

    @pytest.mark.parametrize("test", ["mid == NULL", "!mid", "NULL == mid"])
    def test_checked(self, test):
        source = (
            "void f(JNIEnv *env, jclass cls) {\n"
            + self.LOOKUP
            + f"    if ({test})\n"
            "        return;\n"
            "    (*env)->CallVoidMethod(env, cls, mid);\n"
            "}\n"
        )
        assert _findings(source, "jni-null-check-required") == []

    def test_direct_buffer(self):
        source = (
            "void f(JNIEnv *env, jobject buffer, jlong n) {\n"
            "    void *p = (*env)->GetDirectBufferAddress(env, buffer);\n"
            "    memset(p, 0, n);\n"
            "}\n"
        )
        findings = _findings(source, "jni-check-directbuffer-pointers")
        assert [f.line for f in findings] == [2]


class TestRelease:
    """release rules."""

    def test_goto_cleanup(self):
        source = (
            "void f(JNIEnv *env, jstring s, int c) {\n"
            "    const char *utf = (*env)->GetStringUTFChars(env, s, NULL);\n"
            "    if (c)\n"
            "        goto cleanup;\n"
            "    use(utf);\n"
            "cleanup:\n"
            "    (*env)->ReleaseStringUTFChars(env, s, utf);\n"
            "}\n"
        )
        assert _findings(source, "jni-release-string-utf-required") == []

    def test_early_return_leaks(self):
        source = (
            "void f(JNIEnv *env, jstring s, int c) {\n"
            "    const char *utf = (*env)->GetStringUTFChars(env, s, NULL);\n"
            "    if (c)\n"
            "        return;\n"
            "    (*env)->ReleaseStringUTFChars(env, s, utf);\n"
            "}\n"
        )
        findings = _findings(source, "jni-release-string-utf-required")
        assert [f.line for f in findings] == [2]

    def test_released_on_one_branch_only(self):
        source = (
            "void f(JNIEnv *env, jstring s, int c) {\n"
            "    const char *utf = (*env)->GetStringUTFChars(env, s, NULL);\n"
            "    if (c) {\n"
            "        (*env)->ReleaseStringUTFChars(env, s, utf);\n"
            "    } else {\n"
            "        use(utf);\n"
            "    }\n"
            "}\n"
        )
        findings = _findings(source, "jni-release-string-utf-required")
        assert [f.line for f in findings] == [2]

    def test_released_on_both_branches(self):
        source = (
            "void f(JNIEnv *env, jstring s, int c) {\n"
            "    const char *utf = (*env)->GetStringUTFChars(env, s, NULL);\n"
            "    if (c) {\n"
            "        (*env)->ReleaseStringUTFChars(env, s, utf);\n"
            "    } else {\n"
            "        use(utf);\n"
            "        (*env)->ReleaseStringUTFChars(env, s, utf);\n"
            "    }\n"
            "}\n"
        )
        assert _findings(source, "jni-release-string-utf-required") == []

    def test_global_ref_stored_in_global(self):
        source = (
            "static jobject g_ref;\n"
            "\n"
            "void f(JNIEnv *env, jobject obj) {\n"
            "    g_ref = (*env)->NewGlobalRef(env, obj);\n"
            "}\n"
        )
        assert _findings(source, "jni-delete-global-ref-required") == []

    def test_global_ref_dropped(self):
        source = (
            "void f(JNIEnv *env, jobject obj) {\n"
            "    jobject ref = (*env)->NewGlobalRef(env, obj);\n"
            "}\n"
        )
        findings = _findings(source, "jni-delete-global-ref-required")
        assert [f.message for f in findings] == [
            "Missing DeleteGlobalRef for 'ref'. Ensure to free global references "
            "after usage to prevent memory leaks."
        ]

    def test_global_ref_returned(self):
        source = (
            "jobject f(JNIEnv *env, jobject obj) {\n"
            "    jobject ref = (*env)->NewGlobalRef(env, obj);\n"
            "    return ref;\n"
            "}\n"
        )
        assert _findings(source, "jni-delete-global-ref-required") == []

    def test_attach_with_status_guard(self):
        source = (
            "void f(JavaVM *vm) {\n"
            "    JNIEnv *env;\n"
            "    if ((*vm)->AttachCurrentThread(vm, &env, NULL) != JNI_OK) {\n"
            "        return;\n"
            "    }\n"
            "    work(env);\n"
            "    (*vm)->DetachCurrentThread(vm);\n"
            "}\n"
        )
        assert _findings(source, "jni-thread-attach-detach-pairing") == []

    def test_monitor_without_exit(self):
        source = (
            "void f(JNIEnv *env, jobject lock) {\n"
            "    (*env)->MonitorEnter(env, lock);\n"
            "    work();\n"
            "}\n"
        )
        findings = _findings(source, "jni-monitor-enter-exit-pairing")
        assert [f.message for f in findings] == [
            "MonitorEnter on 'lock' must be matched by MonitorExit on every path to avoid deadlocks."
        ]

    def test_byte_array_released(self):
        source = (
            "void f(JNIEnv *env, jbyteArray arr) {\n"
            "    jbyte *buf = (*env)->GetByteArrayElements(env, arr, NULL);\n"
            "    if (buf == NULL)\n"
            "        return;\n"
            "    (*env)->ReleaseByteArrayElements(env, arr, buf, 0);\n"
            "}\n"
        )
        assert _findings(
            source, "jni-release-byte-array-required", "jni-release-array-elements-required",
        ) == []

    def test_int_array_leak_names_the_type(self):
        source = (
            "void f(JNIEnv *env, jintArray arr) {\n"
            "    jint *data = (*env)->GetIntArrayElements(env, arr, NULL);\n"
            "    consume(data);\n"
            "}\n"
        )
        findings = _findings(source, "jni-release-array-elements-required")
        assert len(findings) == 1
        assert "ReleaseIntArrayElements" in findings[0].message


class TestLoops:
    """loop-exception and loop-invariant rules."""

    def test_invariant_call_in_loop(self):
        source = (
            "void f(JNIEnv *env, jobject obj, int n) {\n"
            "    for (int i = 0; i < n; i++) {\n"
            "        jclass cls = (*env)->GetObjectClass(env, obj);\n"
            "        (*env)->DeleteLocalRef(env, cls);\n"
            "    }\n"
            "}\n"
        )
        findings = _findings(source, "repeated-jni-calls-in-loop")
        assert [(f.line, f.severity) for f in findings] == [(3, Severity.ADVISORY)]

    def test_loop_variable_argument_is_not_invariant(self):
        source = (
            "void f(JNIEnv *env, jobjectArray items, int n) {\n"
            "    for (int i = 0; i < n; i++) {\n"
            "        jobject item = (*env)->GetObjectArrayElement(env, items, i);\n"
            "        (*env)->DeleteLocalRef(env, item);\n"
            "    }\n"
            "}\n"
        )
        assert _findings(source, "repeated-jni-calls-in-loop") == []

    def test_loop_with_exception_check(self):
        source = (
            "void f(JNIEnv *env, jobjectArray items, int n) {\n"
            "    for (int i = 0; i < n; i++) {\n"
            "        jobject item = (*env)->GetObjectArrayElement(env, items, i);\n"
            "        if ((*env)->ExceptionCheck(env))\n"
            "            return;\n"
            "        (*env)->DeleteLocalRef(env, item);\n"
            "    }\n"
            "}\n"
        )
        assert _findings(source, "jni-exception-handling-in-loop") == []

    def test_loop_without_exception_check(self):
        findings, _ = _fixture("leaky_project/src/arrays.c")
        assert [(f.rule_id, f.line, f.severity) for f in findings] == [
            ("jni-release-array-elements-required", 6, Severity.WARNING),
            ("jni-exception-handling-in-loop", 11, Severity.ERROR),
        ]


class TestDiagnostics:
    """Failures become diagnostics and only skip what they affect."""

    def test_unresolved_goto_keeps_loop_rules(self):
        source = (
            "void f(JNIEnv *env, jobject obj, int n) {\n"
            "    while (n--) {\n"
            "        (*env)->GetObjectClass(env, obj);\n"
            "    }\n"
            "    goto missing;\n"
            "}\n"
        )
        findings, diagnostics = _run(source)
        assert [(d.kind, d.function, d.line) for d in diagnostics] == [
            (DiagnosticKind.UNRESOLVED_CONTROL_FLOW, "f", 5),
        ]
        assert {f.rule_id for f in findings} == {
            "jni-exception-handling-in-loop",
            "repeated-jni-calls-in-loop",
        }

    def test_unparseable_file(self):
        findings, diagnostics = _run("void f( {")
        assert findings == []
        assert [d.kind for d in diagnostics] == [DiagnosticKind.PARSE_ERROR]

    def test_bad_function_does_not_hide_others(self):
        source = (
            "void broken(JNIEnv *env) { int x = ; }\n"
            "void f(JNIEnv *env, jobject lock) {\n"
            "    (*env)->MonitorEnter(env, lock);\n"
            "}\n"
        )
        findings, diagnostics = _run(source, "jni-monitor-enter-exit-pairing")
        assert [d.kind for d in diagnostics] == [DiagnosticKind.PARSE_ERROR]
        assert [f.function for f in findings] == ["f"]

    def test_deep_nesting_skips_only_that_function(self):
        source = (
            "void deep(JNIEnv *env) " + "{" * 3000 + "}" * 3000 + "\n"
            "void f(JNIEnv *env, jobject lock) {\n"
            "    (*env)->MonitorEnter(env, lock);\n"
            "}\n"
        )
        findings, diagnostics = _run(source, "jni-monitor-enter-exit-pairing")
        assert [(d.kind, d.line, d.message) for d in diagnostics] == [
            (DiagnosticKind.PARSE_ERROR, 1, "nesting too deep to analyze"),
        ]
        assert [f.function for f in findings] == ["f"]

    def test_rule_error_is_isolated(self):
        broken = RuleSpec(
            id="broken-null-check",
            kind=RuleKind.NULL_CHECK,
            pattern="(*$ENV)->FindClass($ENV, ...)",
            message="m",
        )
        rules = [broken] + RULESET.select(["jni-exception-check-required"])
        findings, diagnostics = analyze_source(
            "void f(JNIEnv *env) {\n    (*env)->FindClass(env, \"x\");\n}\n",
            "test.c", rules, RULESET.settings,
        )
        assert [(d.kind, d.rule_id) for d in diagnostics] == [
            (DiagnosticKind.RULE_EVALUATION_ERROR, "broken-null-check"),
        ]
        assert [f.rule_id for f in findings] == ["jni-exception-check-required"]
