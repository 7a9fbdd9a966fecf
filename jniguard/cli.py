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


"""jniguard CLI: Typer entry point.

Commands:
- jniguard scan <path>...  analyze C/C++ JNI code and print findings
- jniguard rules           list the rule catalog
- jniguard version         show the version

Exit status of scan: 0 clean or warnings only, 1 if any ERROR finding,
2 on usage errors (missing path, unknown rule id, invalid catalog/config).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from jniguard import __version__
from jniguard.config import load_config
from jniguard.errors import RuleLoadError
from jniguard.policy.rule_engine import load_ruleset
from jniguard.reporter.console_out import console, print_error, print_rules_table, print_summary
from jniguard.reporter.json_out import report_dict, to_canonical_json, write_report
from jniguard.reporter.text_out import format_report
from jniguard.scanner.coordinator import scan as run_scan

app = typer.Typer(
    name="jniguard",
    help=(
        "jniguard: JNI lifecycle contract analyzer. "
        "Run 'jniguard <command> --help' for flags."
    ),
    add_completion=False,
)

logger = logging.getLogger("jniguard")

USAGE_ERROR = 2


def _configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        logging.basicConfig(level=logging.ERROR)
    elif verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)


@app.command()
def scan(
    paths: list[str] = typer.Argument(..., help="Files or directories to scan"),
    rule: Optional[list[str]] = typer.Option(None, "--rule", "-r", help="Run only this rule id (repeatable)"),
    output_json: bool = typer.Option(False, "--json", help="Output JSON to stdout (for CI)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Also write the JSON report to this file"),
    workers: Optional[int] = typer.Option(None, "--workers", "-j", min=1, help="Worker threads"),
    time_budget: Optional[float] = typer.Option(None, "--time-budget", help="Stop starting new files after this many seconds"),
    rules_file: Optional[str] = typer.Option(None, "--rules-file", help="Path to a custom rule catalog (YAML)"),
    config_file: Optional[str] = typer.Option(None, "--config", help="Path to a config file (default: .jniguard.yaml)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print findings and errors"),
) -> None:
    """Scan C/C++ sources for JNI lifecycle violations."""
    _configure_logging(verbose, quiet)

    for p in paths:
        if not Path(p).exists():
            print_error(f"Path not found: {p}")
            raise typer.Exit(code=USAGE_ERROR)

    first = Path(paths[0]).resolve()
    try:
        config = load_config(first, Path(config_file) if config_file else None)
        if rules_file:
            config.rules_file = rules_file
        ruleset = load_ruleset(config.rules_file)
        result = run_scan(
            paths,
            rule or None,
            workers=workers,
            time_budget=time_budget,
            ruleset=ruleset,
            config=config,
        )
    except RuleLoadError as e:
        print_error(str(e))
        raise typer.Exit(code=USAGE_ERROR)
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(code=USAGE_ERROR)

    if output:
        try:
            write_report(result, Path(output))
        except OSError as e:
            print_error(f"Cannot write report to {output}: {e.strerror or e}")
            raise typer.Exit(code=USAGE_ERROR)
        logger.info("Report written to %s", output)

    if output_json:
        print(to_canonical_json(report_dict(result)), end="")
    else:
        print(format_report(result), end="")
        if not quiet:
            print_summary(result)

    raise typer.Exit(code=result.exit_code)


@app.command()
def rules(
    rules_file: Optional[str] = typer.Option(None, "--rules-file", help="Path to a custom rule catalog (YAML)"),
) -> None:
    """List the rules in the catalog."""
    try:
        ruleset = load_ruleset(rules_file)
    except RuleLoadError as e:
        print_error(str(e))
        raise typer.Exit(code=USAGE_ERROR)
    print_rules_table(ruleset.rules)


@app.command()
def version() -> None:
    """Show the jniguard version."""
    console.print(f"jniguard v{__version__}")


if __name__ == "__main__":
    app()
