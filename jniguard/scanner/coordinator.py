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


"""File discovery and the parallel scan driver.

Inputs are files or directories. Directories are walked recursively with
.jniguardignore support; only C and C++ sources are kept. Each file is
analyzed on its own worker thread and results are merged by a
FindingCollector, then sorted so the report never depends on completion
order.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, Optional

from jniguard.config import DEFAULT_EXTENSIONS, ScanConfig
from jniguard.errors import RuleLoadError
from jniguard.models.findings import Diagnostic, DiagnosticKind, Finding, ScanResult
from jniguard.models.rules import EngineSettings, RuleSet, RuleSpec
from jniguard.policy.rule_engine import analyze_source, load_ruleset

logger = logging.getLogger(__name__)

# Default patterns to ignore during the directory walk
DEFAULT_IGNORE_PATTERNS = {
    ".git",
    ".hg",
    ".svn",
    ".gradle",
    ".cxx",
    ".externalNativeBuild",
    "node_modules",
    "build",
    "cmake-build-debug",
    "cmake-build-release",
    "CMakeFiles",
    "*.o",
    "*.so",
    "*.a",
    "*.dylib",
    "*.dll",
}

# C and C++ translation units and headers
C_EXTENSIONS = set(DEFAULT_EXTENSIONS)


def _load_ignore(target_dir: Path, extra: Iterable[str] = ()) -> set[str]:
    """Load .jniguardignore patterns from the target directory."""
    ignore_file = target_dir / ".jniguardignore"
    patterns = set(DEFAULT_IGNORE_PATTERNS)
    patterns.update(extra)

    if ignore_file.exists():
        for line in ignore_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                patterns.add(line)

    return patterns


def _should_ignore(path: Path, ignore_patterns: set[str]) -> bool:
    """Check if a path matches any ignore pattern."""
    for pattern in ignore_patterns:
        if pattern.startswith("*"):
            # Glob-style suffix matching
            suffix = pattern.lstrip("*")
            if path.name.endswith(suffix) or str(path).endswith(suffix):
                return True
        elif path.name == pattern or pattern in path.parts:
            return True
    return False


def get_files_directory(target_dir: Path, extra_ignore: Iterable[str] = ()) -> list[Path]:
    """Get files via recursive directory walk with .jniguardignore.

    Paths are returned relative to *target_dir*.
    """
    ignore_patterns = _load_ignore(target_dir, extra_ignore)
    files = []

    for item in sorted(target_dir.rglob("*")):
        if item.is_file():
            rel_path = item.relative_to(target_dir)
            if not _should_ignore(rel_path, ignore_patterns):
                files.append(rel_path)

    return sorted(files)


def get_c_files(all_files: list[Path], extensions: Optional[Iterable[str]] = None) -> list[Path]:
    """Filter to C/C++ sources and headers."""
    wanted = set(extensions) if extensions is not None else C_EXTENSIONS
    return [f for f in all_files if f.suffix.lower() in wanted]


def discover_files(
    paths: Iterable[str | Path],
    extensions: Optional[Iterable[str]] = None,
    ignore: Iterable[str] = (),
) -> list[Path]:
    """Expand scan inputs into a sorted, de-duplicated list of source files.

    A file named directly is always scanned. A directory contributes every
    C/C++ file below it that is not ignored.

    Raises:
        FileNotFoundError: an input path does not exist.
    """
    extensions = list(extensions) if extensions is not None else None
    ignore = list(ignore)
    found: set[Path] = set()

    for raw in paths:
        target = Path(raw)
        if not target.exists():
            raise FileNotFoundError(f"Path does not exist: {target}")

        if target.is_dir():
            rel_files = get_c_files(get_files_directory(target, ignore), extensions)
            logger.info("Found %d source files under %s", len(rel_files), target)
            found.update(target / rel for rel in rel_files)
        else:
            found.add(target)

    return sorted(found)


class FindingCollector:
    """Thread-safe accumulator for per-file results."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._findings: list[Finding] = []
        self._diagnostics: list[Diagnostic] = []
        self._scanned = 0
        self._skipped = 0

    def add(self, findings: list[Finding], diagnostics: list[Diagnostic]) -> None:
        with self._lock:
            self._findings.extend(findings)
            self._diagnostics.extend(diagnostics)
            self._scanned += 1

    def skip(self) -> None:
        with self._lock:
            self._skipped += 1

    def result(self) -> ScanResult:
        """Snapshot of everything collected so far, in report order."""
        with self._lock:
            return ScanResult(
                findings=sorted(self._findings, key=Finding.sort_key),
                diagnostics=sorted(self._diagnostics, key=Diagnostic.sort_key),
                files_scanned=self._scanned,
                files_skipped=self._skipped,
                partial=self._skipped > 0,
            )


def scan_file(
    path: Path,
    rules: list[RuleSpec],
    settings: Optional[EngineSettings] = None,
) -> tuple[list[Finding], list[Diagnostic]]:
    """Read and analyze one file. Never raises for problems in the file itself."""
    display = path.as_posix()
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read %s: %s", display, e)
        return [], [Diagnostic(
            kind=DiagnosticKind.READ_ERROR, file=display, message=f"cannot read file: {e.strerror or e}",
        )]

    try:
        return analyze_source(text, display, rules, settings)
    except RecursionError:
        logger.warning("Nesting too deep to analyze %s", display)
        return [], [Diagnostic(
            kind=DiagnosticKind.PARSE_ERROR, file=display, message="nesting too deep to analyze",
        )]
    except Exception as e:
        logger.exception("Analyzer crashed on %s", display)
        return [], [Diagnostic(
            kind=DiagnosticKind.PARSE_ERROR, file=display,
            message=f"internal error: {type(e).__name__}: {e}",
        )]


def scan(
    paths: Iterable[str | Path],
    enabled_rule_ids: Optional[list[str]] = None,
    *,
    workers: Optional[int] = None,
    time_budget: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    ruleset: Optional[RuleSet] = None,
    config: Optional[ScanConfig] = None,
) -> ScanResult:
    """Scan files and directories against the rule catalog.

    Args:
        paths: files or directories to scan.
        enabled_rule_ids: rule ids to run. None means every enabled rule
            (after the config's enabled/disabled lists).
        workers: thread count. Defaults to the config value.
        time_budget: wall-clock seconds for the whole scan. Files not
            started when it runs out are skipped and the result is partial.
        cancel_event: set it to stop starting new files.
        ruleset: a loaded catalog. Defaults to the config's rules file or
            the bundled catalog.
        config: scan configuration. Defaults to ScanConfig().

    Raises:
        FileNotFoundError: an input path does not exist.
        RuleLoadError: the catalog is invalid or a rule id is unknown.
    """
    config = config or ScanConfig()
    if ruleset is None:
        ruleset = load_ruleset(config.rules_file)

    known = set(ruleset.rule_ids())
    if enabled_rule_ids is None:
        enabled_rule_ids = config.rule_selection(ruleset.rule_ids())
    else:
        unknown = sorted(set(enabled_rule_ids) - known)
        if unknown:
            raise RuleLoadError(f"Unknown rule id(s): {', '.join(unknown)}")
    rules = ruleset.select(enabled_rule_ids)

    files = discover_files(paths, config.extensions, config.ignore)
    workers = workers or config.workers
    budget = time_budget if time_budget is not None else config.time_budget
    deadline = time.monotonic() + budget if budget is not None else None
    collector = FindingCollector()

    logger.info("Scanning %d files with %d rules on %d workers", len(files), len(rules), workers)

    def stopped() -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and time.monotonic() >= deadline

    def process_file(path: Path) -> None:
        # Checked when the worker picks the file up, so nothing in flight is cut short.
        if stopped():
            collector.skip()
            return
        logger.debug("Analyzing %s", path)
        findings, diagnostics = scan_file(path, rules, ruleset.settings)
        collector.add(findings, diagnostics)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(process_file, f) for f in files]

        for future in as_completed(futures):
            future.result()

    result = collector.result()
    if result.partial:
        logger.warning(
            "Scan stopped early: %d files analyzed, %d skipped",
            result.files_scanned, result.files_skipped,
        )
    return result
