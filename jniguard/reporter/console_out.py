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


"""Rich terminal output: scan summary and the rule catalog table."""

from __future__ import annotations

from collections import defaultdict

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from jniguard.models.findings import ScanResult, Severity
from jniguard.models.rules import RuleSpec


def _make_console() -> Console:
    """Console with soft wrap. No fixed width, uses the live terminal size."""
    return Console(soft_wrap=True)


console = _make_console()

SEVERITY_STYLES = {
    Severity.ERROR: "bold red",
    Severity.WARNING: "yellow",
    Severity.ADVISORY: "cyan",
}

ICON_PASS = "[green]✓[/green]"
ICON_WARN = "[yellow]![/yellow]"
ICON_DANGER = "[red]✗[/red]"


def print_error(message: str) -> None:
    # catalog and config errors quote YAML and pydantic text
    console.print(f"[red]Error: {escape(message)}[/red]")


def print_summary(result: ScanResult, console: Console = console) -> None:
    """Print per-rule counts and the overall verdict."""
    counts = result.counts()

    if result.findings:
        by_rule: dict[str, int] = defaultdict(int)
        severity_of: dict[str, Severity] = {}
        for f in result.findings:
            by_rule[f.rule_id] += 1
            severity_of[f.rule_id] = f.severity

        table = Table(title="Findings by rule", title_justify="left", expand=False)
        table.add_column("Rule", style="white")
        table.add_column("Severity")
        table.add_column("Count", justify="right")
        for rule_id, count in sorted(by_rule.items(), key=lambda x: (-x[1], x[0])):
            sev = severity_of[rule_id]
            table.add_row(rule_id, f"[{SEVERITY_STYLES[sev]}]{sev.value}[/]", str(count))
        console.print(table)

    lines = [
        f"  Files analyzed: {result.files_scanned}"
        + (f"  (skipped: {result.files_skipped})" if result.files_skipped else ""),
        "  Findings: "
        + ", ".join(f"{name}: {counts[name]}" for name in (s.value for s in Severity)),
    ]
    if result.diagnostics:
        lines.append(
            f"  {ICON_WARN}  {len(result.diagnostics)} diagnostic(s): some code could not be analyzed."
        )
    if result.partial:
        lines.append(f"  {ICON_WARN}  Partial result: the scan was cancelled or ran out of time.")

    if counts[Severity.ERROR.value]:
        lines.append(f"\n  {ICON_DANGER}  [bold red]FAIL[/bold red]: ERROR-severity findings present.")
        border = "red"
    elif result.findings:
        lines.append(f"\n  {ICON_WARN}  [yellow]PASS with warnings[/yellow]")
        border = "yellow"
    else:
        lines.append(f"\n  {ICON_PASS}  [green]PASS[/green]: no JNI lifecycle violations found.")
        border = "green"

    console.print(
        Panel(
            "\n".join(lines),
            border_style=border,
            title=f"[bold {border}]Scan Complete[/bold {border}]",
            title_align="left",
            expand=True,
            safe_box=True,
        )
    )


def print_rules_table(rules: list[RuleSpec], console: Console = console) -> None:
    """List a rule catalog."""
    table = Table(title="JNI rules", title_justify="left")
    table.add_column("ID", style="white", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Severity")
    table.add_column("Enabled", justify="center")
    for rule in rules:
        table.add_row(
            rule.id,
            rule.kind.value,
            f"[{SEVERITY_STYLES[rule.severity]}]{rule.severity.value}[/]",
            "yes" if rule.enabled else "no",
        )
    console.print(table)
