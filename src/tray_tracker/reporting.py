"""Rich-based reporting utilities for the TrayTracker CLI."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from tray_tracker.report import MigrationReport
from tray_tracker.rules import RelocationRule, Rule

console = Console()


def print_json(payload: Dict[str, Any]) -> None:
    """Print a JSON payload with syntax highlighting."""
    console.print(JSON(json.dumps(payload, indent=2, default=str)))


def print_report(report: MigrationReport) -> None:
    """Print a migration run summary with errors and review items."""
    title = f"{report.mode.title()} {report.rule}"
    if report.dry_run and report.mode != "status":
        title += " (dry run)"

    stats = (
        f"Processed: [bold]{report.processed}[/bold] | "
        f"Migrated: [green]{report.migrated}[/green] | "
        f"Skipped: [dim]{report.skipped}[/dim] | "
        f"Errors: [red]{len(report.errors)}[/red] | "
        f"Commits: {report.commits}"
    )
    lines: List[str] = [stats]

    if report.fatal:
        lines.append(f"\n[red]✗ Aborted: {report.fatal_error}[/red]")

    for message in report.validation_errors:
        lines.append(f"[yellow]● {message}[/yellow]")

    if report.review:
        shown = ", ".join(report.review[:10])
        more = f" (+{len(report.review) - 10} more)" if len(report.review) > 10 else ""
        lines.append(f"[yellow]● Needs manual review (both fields set):[/yellow] {shown}{more}")

    for err in report.errors[:10]:
        lines.append(f"[red]● {err['id']}:[/red] {err['message']}")
    if len(report.errors) > 10:
        lines.append(f"[dim]... and {len(report.errors) - 10} more errors[/dim]")

    if report.has_errors:
        border = "red"
    elif report.review or report.validation_errors:
        border = "yellow"
    else:
        border = "green"
    console.print(Panel("\n".join(lines), title=title, border_style=border))


def print_status_table(report: MigrationReport) -> None:
    """Print per-classification counts from a status scan."""
    table = Table(title=f"Migration Status: {report.rule}", show_header=True, header_style="bold cyan")
    table.add_column("Classification", style="bold")
    table.add_column("Documents", justify="right")
    table.add_column("Share", justify="right")

    for classification, count in report.counts.items():
        share = f"{count / report.processed:.1%}" if report.processed else "-"
        table.add_row(classification, str(count), share)
    table.add_row("[dim]total[/dim]", str(report.processed), "")

    console.print(table)
    if report.review:
        console.print(f"[yellow]{len(report.review)} documents need manual review[/yellow]")


def print_rules_table(rules: Dict[str, List[Rule]]) -> None:
    """Print the available named rule sets."""
    table = Table(title="Migration Rules", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold", no_wrap=True)
    table.add_column("Collection")
    table.add_column("Source")
    table.add_column("Target", style="magenta")
    table.add_column("Version")
    table.add_column("Description", style="dim")

    for name, rule_list in sorted(rules.items()):
        for index, rule in enumerate(rule_list):
            if isinstance(rule, RelocationRule):
                source, target = "(document)", f"{rule.target_collection} (collection)"
            else:
                source, target = rule.source_field, rule.target_field
            table.add_row(
                name if index == 0 else "",
                rule.collection,
                source,
                target,
                rule.version,
                rule.description,
            )

    console.print(table)
