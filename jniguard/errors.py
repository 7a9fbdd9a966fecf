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

"""Exception hierarchy for the analyzer.

None of these ever escape a scan: the engine turns them into Diagnostic
records at the file, function and rule boundaries.
"""

from __future__ import annotations

from typing import Optional


class JniGuardError(Exception):
    """Base class for all analyzer errors."""


class ParseError(JniGuardError):
    """Source text could not be tokenized or parsed."""

    def __init__(self, message: str, file: str = "", line: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.file = file
        self.line = line

    def __str__(self) -> str:
        if self.file:
            return f"{self.file}:{self.line}: {self.message}"
        return f"line {self.line}: {self.message}"


class UnresolvedControlFlow(JniGuardError):
    """The CFG builder could not resolve a jump in a function body."""

    def __init__(self, message: str, line: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.line = line


class UnresolvedLabel(UnresolvedControlFlow):
    """A goto names a label that does not exist in the same function."""

    def __init__(self, label: str, line: int = 0) -> None:
        super().__init__(f"goto target '{label}' is not defined in this function", line)
        self.label = label


class MalformedControlFlow(UnresolvedControlFlow):
    """Duplicate labels, or break/continue with no enclosing loop or switch."""


class RuleEvaluationError(JniGuardError):
    """Internal invariant violated while evaluating a rule (an engine defect)."""

    def __init__(self, message: str, rule_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.rule_id = rule_id


class RuleLoadError(JniGuardError):
    """A rule catalog or config file is missing or invalid."""


__all__ = [
    "JniGuardError",
    "MalformedControlFlow",
    "ParseError",
    "RuleEvaluationError",
    "RuleLoadError",
    "UnresolvedControlFlow",
    "UnresolvedLabel",
]
