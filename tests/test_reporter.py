"""Tests for text, JSON and console output."""

import io
import json
from pathlib import Path

from rich.console import Console

from jniguard import __version__
from jniguard.models.findings import Diagnostic, DiagnosticKind, Finding, ScanResult, Severity
from jniguard.policy.rule_engine import load_ruleset
from jniguard.reporter.console_out import print_rules_table, print_summary
from jniguard.reporter.json_out import report_dict, to_canonical_json, write_report
from jniguard.reporter.text_out import format_diagnostic, format_finding, format_report

WARNING = Finding(
    rule_id="jni-delete-local-ref-required",
    file="src/native.c",
    line=6,
    column=17,
    function="Java_Native_run",
    severity=Severity.WARNING,
    message="Missing DeleteLocalRef for 'cls'.",
    bindings={"VAR": "cls", "ENV": "env"},
)
ERROR = Finding(
    rule_id="jni-exception-handling-in-loop",
    file="src/native.c",
    line=11,
    severity=Severity.ERROR,
    message="Missing exception handling for JNI call in loop.",
)
DIAGNOSTIC = Diagnostic(
    kind=DiagnosticKind.UNRESOLVED_CONTROL_FLOW,
    file="src/other.c",
    line=3,
    function="f",
    message="goto target 'out' is not defined in this function",
)


def _render(fn, *args) -> str:
    buffer = io.StringIO()
    fn(*args, console=Console(file=buffer, width=200))
    return buffer.getvalue()


class TestTextReport:
    """One line per finding or diagnostic."""

    def test_finding_line(self):
        assert format_finding(WARNING) == "src/native.c:6: WARNING: Missing DeleteLocalRef for 'cls'."

    def test_diagnostic_line(self):
        assert format_diagnostic(DIAGNOSTIC) == (
            "src/other.c:3: DIAGNOSTIC[unresolved-control-flow]: "
            "goto target 'out' is not defined in this function"
        )

    def test_report_order(self):
        result = ScanResult(findings=[WARNING, ERROR], diagnostics=[DIAGNOSTIC], files_scanned=2)
        lines = format_report(result).splitlines()
        assert len(lines) == 3
        assert ": ERROR: " in lines[1]
        assert "DIAGNOSTIC[" in lines[2]
        assert format_report(result).endswith("\n")

    def test_without_diagnostics(self):
        result = ScanResult(diagnostics=[DIAGNOSTIC])
        assert format_report(result, include_diagnostics=False) == ""
        assert format_report(ScanResult()) == ""


class TestJsonReport:
    """Canonical JSON."""

    def test_canonical_form(self):
        text = to_canonical_json({"b": 1, "a": [1, 2]})
        assert text == '{\n  "a": [\n    1,\n    2\n  ],\n  "b": 1\n}\n'

    def test_report_fields(self):
        result = ScanResult(findings=[WARNING, ERROR], files_scanned=1)
        data = report_dict(result)
        assert data["status"] == "fail"
        assert data["exit_code"] == 1
        assert data["counts"] == {"ERROR": 1, "WARNING": 1, "ADVISORY": 0}
        assert data["version"] == __version__
        assert data["findings"][0]["bindings"] == {"ENV": "env", "VAR": "cls"}
        assert data["findings"][0]["severity"] == "WARNING"

    def test_pydantic_model_accepted(self):
        data = json.loads(to_canonical_json(ScanResult(files_scanned=3)))
        assert data["files_scanned"] == 3
        assert data["partial"] is False

    def test_write_report(self, tmp_path: Path):
        out = tmp_path / "reports" / "jniguard.json"
        write_report(ScanResult(diagnostics=[DIAGNOSTIC]), out)
        raw = out.read_bytes()
        assert b"\r\n" not in raw
        data = json.loads(raw)
        assert data["status"] == "pass"
        assert data["diagnostics"][0]["kind"] == "unresolved-control-flow"


class TestConsoleSummary:
    """Rich summary panel."""

    def test_fail(self):
        output = _render(print_summary, ScanResult(findings=[WARNING, ERROR], files_scanned=2))
        assert "Findings by rule" in output
        assert "jni-exception-handling-in-loop" in output
        assert "Scan Complete" in output
        assert "Files analyzed: 2" in output
        assert "FAIL" in output

    def test_warnings_only(self):
        output = _render(print_summary, ScanResult(findings=[WARNING], files_scanned=1))
        assert "PASS with warnings" in output

    def test_clean(self):
        output = _render(print_summary, ScanResult(files_scanned=4))
        assert "Findings by rule" not in output
        assert "no JNI lifecycle violations found" in output

    def test_partial_and_diagnostics(self):
        result = ScanResult(diagnostics=[DIAGNOSTIC], files_scanned=1, files_skipped=2, partial=True)
        output = _render(print_summary, result)
        assert "skipped: 2" in output
        assert "1 diagnostic(s)" in output
        assert "Partial result" in output

    def test_rules_table(self):
        output = _render(print_rules_table, load_ruleset().rules)
        assert "JNI rules" in output
        assert "jni-release-primitive-array-critical-required" in output
        assert "loop-invariant" in output
