# Copyright (c) 2025 Scott Wilcox
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Console reporter for the MCP smoke harness.

Renders progress and the final summary for a human watching the run.
"""

from typing import Dict, Iterable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mcp_harness.utils.report import HarnessReport, StepStatus

STATUS_STYLES = {
    StepStatus.PASS: "green",
    StepStatus.FAIL: "red",
    StepStatus.SKIP: "yellow",
    StepStatus.WARN: "yellow",
}

RULE = "=" * 40


class ConsoleReporter:
    """Prints harness progress with rich markup."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def banner(self, title: str) -> None:
        self.console.print(f"[blue]{RULE}[/blue]")
        self.console.print(f"[blue]{escape(title)}[/blue]")
        self.console.print(f"[blue]{RULE}[/blue]")

    def step(self, title: str) -> None:
        self.console.print(f"\n[bold blue]{escape(title)}[/bold blue]")

    def info(self, message: str) -> None:
        self.console.print(f"[yellow]{escape(message)}[/yellow]")

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓ {escape(message)}[/green]")

    def failure(self, message: str) -> None:
        self.console.print(f"[red]✗ {escape(message)}[/red]")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")

    def detail(self, message: str) -> None:
        self.console.print(f"  {escape(message)}")

    def progress(self) -> None:
        self.console.print(".", end="")

    def records(self, records: List[Dict[str, str]], title: str = "Resource Groups") -> None:
        self.console.print(f"  [blue]{escape(title)}:[/blue]")
        for record in records:
            self.console.print(
                f"    [green]•[/green] {escape(record['name'])} "
                f"([yellow]{escape(record['location'])}[/yellow])"
            )
        self.console.print(f"  Total: {len(records)} resource group(s)")

    def lines(self, title: str, lines: Iterable[str]) -> None:
        self.console.print(f"\n[yellow]{escape(title)}:[/yellow]")
        for line in lines:
            self.console.print(escape(line), highlight=False)

    def summary(self, report: HarnessReport) -> None:
        """Print the end-of-run summary table and connection details."""
        self.console.print(f"\n[blue]{RULE}[/blue]")
        if report.soft_failures:
            self.console.print(
                f"[yellow]Tests completed with {len(report.soft_failures)} issue(s)[/yellow]"
            )
        else:
            self.console.print("[green]All tests completed![/green]")
        self.console.print(f"[blue]{RULE}[/blue]")

        table = Table(title="MCP Smoke Test Results")
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("Message")
        table.add_column("Time", justify="right")
        for outcome in report.outcomes:
            style = STATUS_STYLES[outcome.status]
            table.add_row(
                escape(outcome.name),
                f"[{style}]{outcome.status.value}[/{style}]",
                escape(outcome.message),
                f"{outcome.elapsed_time:.2f}s"
            )
        self.console.print(table)
        self.console.print(", ".join(
            f"{report.count(status)} {status.value.lower()}" for status in StepStatus
        ))

        self.console.print(f"Target: [green]{escape(report.target_kind)} {escape(report.target_identity)}[/green]")
        self.console.print(f"Server URL: [green]{escape(report.server_url)}[/green]")
        if report.server_name or report.server_version:
            server = " ".join(filter(None, [report.server_name, report.server_version]))
            self.console.print(f"Server: [green]{escape(server)}[/green]")
        if report.session_id:
            self.console.print(f"Session ID: [green]{escape(report.session_id)}[/green]")
        if report.target_logs:
            self.lines(f"Container logs (last {len(report.target_logs)} lines)", report.target_logs)
