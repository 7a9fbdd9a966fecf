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


"""Scan configuration.

Settings are read from the first file found, in order:
  1. <target>/.jniguard.yaml
  2. ~/.jniguard/config.yaml

Command-line flags override whatever the file says.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from jniguard.errors import RuleLoadError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".jniguard"
CONFIG_FILE = CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME = ".jniguard.yaml"

DEFAULT_EXTENSIONS = [".c", ".h", ".cc", ".cpp", ".cxx", ".hpp", ".hh"]


class ScanConfig(BaseModel):
    """Options that shape a scan."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    enabled_rules: Optional[list[str]] = Field(default=None, alias="enabled-rules")
    disabled_rules: list[str] = Field(default_factory=list, alias="disabled-rules")
    workers: int = Field(default=4, ge=1)
    time_budget: Optional[float] = Field(default=None, gt=0, alias="time-budget")
    extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    ignore: list[str] = Field(default_factory=list)
    rules_file: Optional[str] = Field(default=None, alias="rules-file")

    @field_validator("extensions")
    @classmethod
    def _dotted(cls, value: list[str]) -> list[str]:
        return [e if e.startswith(".") else f".{e}" for e in (x.lower() for x in value)]

    def rule_selection(self, all_ids: list[str]) -> Optional[list[str]]:
        """Rule ids to run, or None for the catalog default."""
        if self.enabled_rules is None and not self.disabled_rules:
            return None
        base = self.enabled_rules if self.enabled_rules is not None else all_ids
        disabled = set(self.disabled_rules)
        return [r for r in base if r not in disabled]


def find_config_file(target: Optional[Path] = None) -> Optional[Path]:
    """Return the config file that applies to *target*, if any."""
    if target is not None:
        base = target if target.is_dir() else target.parent
        candidate = base / PROJECT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    if CONFIG_FILE.is_file():
        return CONFIG_FILE
    return None


def load_config(target: Optional[Path] = None, path: Optional[Path] = None) -> ScanConfig:
    """Load the scan configuration.

    With *path*, that file is read. Otherwise the project file next to
    *target* is used, falling back to the user-level file, falling back to
    defaults. A present but invalid file raises RuleLoadError.
    """
    config_path = path if path is not None else find_config_file(target)
    if config_path is None:
        return ScanConfig()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise RuleLoadError(f"Cannot read config {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise RuleLoadError(f"Config {config_path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise RuleLoadError(f"Config {config_path} must be a mapping")

    try:
        config = ScanConfig.model_validate(data)
    except ValidationError as e:
        raise RuleLoadError(f"Invalid config {config_path}: {e}") from e

    logger.debug("Loaded config from %s", config_path)
    return config
