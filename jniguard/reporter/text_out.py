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


"""Plain-text report lines.

    <path>:<line>: <SEVERITY>: <message>
    <path>:<line>: DIAGNOSTIC[<kind>]: <message>

Findings come first, then diagnostics, each in the order ScanResult keeps.
"""

from __future__ import annotations

from jniguard.models.findings import Diagnostic, Finding, ScanResult


def format_finding(finding: Finding) -> str:
    return f"{finding.file}:{finding.line}: {finding.severity.value}: {finding.message}"


def format_diagnostic(diagnostic: Diagnostic) -> str:
    return f"{diagnostic.file}:{diagnostic.line}: DIAGNOSTIC[{diagnostic.kind.value}]: {diagnostic.message}"


def format_report(result: ScanResult, include_diagnostics: bool = True) -> str:
    """Render the whole result, one line per record, with a trailing newline."""
    lines = [format_finding(f) for f in result.findings]
    if include_diagnostics:
        lines.extend(format_diagnostic(d) for d in result.diagnostics)
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
