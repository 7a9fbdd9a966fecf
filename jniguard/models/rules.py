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

"""Pydantic models for the declarative rule catalog."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from jniguard.models.findings import Severity


class RuleKind(str, Enum):
    """How a rule's trigger is checked. One generic evaluator per kind."""

    EXCEPTION_CHECK = "exception-check"
    NULL_CHECK = "null-check"
    RELEASE = "release"
    LOOP_EXCEPTION = "loop-exception"
    LOOP_INVARIANT = "loop-invariant"


class ExceptionHandler(str, Enum):
    """What counts as handling a pending exception."""

    HANDLED = "handled"                # any ExceptionCheck / ExceptionOccurred test
    CLEAR_AND_EXIT = "clear-and-exit"  # the check clears and leaves the function


PATH_SENSITIVE_KINDS = frozenset({
    RuleKind.EXCEPTION_CHECK,
    RuleKind.NULL_CHECK,
    RuleKind.RELEASE,
})


class RuleSpec(BaseModel):
    """A single rule as declared in the YAML catalog."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: RuleKind
    severity: Severity = Severity.WARNING
    message: str
    pattern: Optional[str] = None
    pattern_either: list[str] = Field(default_factory=list, alias="pattern-either")
    metavariable_in: dict[str, list[str]] = Field(default_factory=dict, alias="metavariable-in")
    metavariable_not_in: dict[str, list[str]] = Field(default_factory=dict, alias="metavariable-not-in")
    requires: list[str] = Field(default_factory=list)
    handler: ExceptionHandler = ExceptionHandler.HANDLED
    null_guard: bool = Field(default=True, alias="null-guard")
    status_guard: bool = Field(default=False, alias="status-guard")
    escape_on_return: bool = Field(default=True, alias="escape-on-return")
    local_only: bool = Field(default=True, alias="local-only")
    enabled: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            upper = value.upper()
            # Semgrep's INFO has no counterpart; it is advisory here.
            return "ADVISORY" if upper == "INFO" else upper
        return value

    @field_validator("requires", mode="before")
    @classmethod
    def _listify_requires(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> "RuleSpec":
        if not self.trigger_patterns:
            raise ValueError(f"rule {self.id}: needs 'pattern' or 'pattern-either'")
        if self.kind == RuleKind.RELEASE and not self.requires:
            raise ValueError(f"rule {self.id}: release rules need 'requires'")
        return self

    @property
    def trigger_patterns(self) -> list[str]:
        out = [self.pattern] if self.pattern else []
        return out + list(self.pattern_either)

    @property
    def path_sensitive(self) -> bool:
        return self.kind in PATH_SENSITIVE_KINDS


class EngineSettings(BaseModel):
    """Closed sets of JNI function names shared by all rules."""

    model_config = ConfigDict(populate_by_name=True)

    exception_checks: list[str] = Field(
        default_factory=lambda: ["ExceptionCheck", "ExceptionOccurred"],
        alias="exception-checks",
    )
    exception_clear: list[str] = Field(
        default_factory=lambda: ["ExceptionClear"],
        alias="exception-clear",
    )
    exception_safe: list[str] = Field(default_factory=list, alias="exception-safe")
    exit_functions: list[str] = Field(
        default_factory=lambda: ["exit", "_exit", "_Exit", "abort"],
        alias="exit-functions",
    )
    null_literals: list[str] = Field(
        default_factory=lambda: ["NULL", "nullptr", "0"],
        alias="null-literals",
    )
    status_ok: list[str] = Field(
        default_factory=lambda: ["JNI_OK", "0"],
        alias="status-ok",
    )
    interface_types: list[str] = Field(
        default_factory=lambda: ["JNIEnv", "JavaVM"],
        alias="interface-types",
    )

    @field_validator(
        "exception_checks",
        "exception_clear",
        "exception_safe",
        "exit_functions",
        "null_literals",
        "status_ok",
        "interface_types",
        mode="before",
    )
    @classmethod
    def _require_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            for entry in value:
                if not isinstance(entry, str):
                    # YAML turns bare NULL, 0 or true into non-strings.
                    raise ValueError(
                        f"entries must be strings, got {entry!r}; quote it in YAML"
                    )
        return value


class RuleSet(BaseModel):
    """A complete rule catalog."""

    settings: EngineSettings = Field(default_factory=EngineSettings)
    rules: list[RuleSpec] = Field(default_factory=list)

    def rule_ids(self) -> list[str]:
        return [r.id for r in self.rules]

    def select(self, enabled_rule_ids: Optional[list[str]] = None) -> list[RuleSpec]:
        """Rules to run: the given ids, or every rule enabled in the catalog."""
        if enabled_rule_ids is None:
            return [r for r in self.rules if r.enabled]
        wanted = set(enabled_rule_ids)
        return [r for r in self.rules if r.id in wanted]
