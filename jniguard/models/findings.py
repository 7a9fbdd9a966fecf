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

"""Pydantic models for findings, tool diagnostics and scan results."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Severity of a finding, as printed in the report."""

    ERROR = "ERROR"
    WARNING = "WARNING"
    ADVISORY = "ADVISORY"


class DiagnosticKind(str, Enum):
    """Tool-level problems. These are never security findings."""

    READ_ERROR = "read-error"
    PARSE_ERROR = "parse-error"
    UNRESOLVED_CONTROL_FLOW = "unresolved-control-flow"
    RULE_EVALUATION_ERROR = "rule-evaluation-error"


class Finding(BaseModel):
    """One confirmed rule violation.

    Core fields:
      rule_id, file, line, severity, message

    Context fields:
      column    — column of the trigger call
      function  — enclosing C function
      bindings  — metavariable values of the match, e.g. {"VAR": "cls"}
    """

    model_config = ConfigDict(frozen=True)

    rule_id: str
    file: str
    line: int
    column: int = 0
    function: Optional[str] = None
    severity: Severity
    message: str
    bindings: dict[str, str] = Field(default_factory=dict)

    def sort_key(self) -> tuple:
        return (self.file, self.line, self.rule_id, self.column, self.message)


class Diagnostic(BaseModel):
    """A tool diagnostic: something the analyzer could not do."""

    model_config = ConfigDict(frozen=True)

    kind: DiagnosticKind
    file: str
    line: int = 0
    function: Optional[str] = None
    rule_id: Optional[str] = None
    message: str

    def sort_key(self) -> tuple:
        return (self.file, self.line, self.kind.value, self.rule_id or "", self.message)


class ScanStatus(str, Enum):
    """Overall verdict. FAIL means at least one ERROR-severity finding."""

    PASS = "pass"
    FAIL = "fail"


class ScanResult(BaseModel):
    """Everything one scan produced, in deterministic order."""

    findings: list[Finding] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    files_scanned: int = 0
    files_skipped: int = 0
    partial: bool = False

    @property
    def status(self) -> ScanStatus:
        if any(f.severity == Severity.ERROR for f in self.findings):
            return ScanStatus.FAIL
        return ScanStatus.PASS

    @property
    def exit_code(self) -> int:
        return 1 if self.status == ScanStatus.FAIL else 0

    def counts(self) -> dict[str, int]:
        """Finding count per severity name."""
        out = {s.value: 0 for s in Severity}
        for f in self.findings:
            out[f.severity.value] += 1
        return out
