"""Console output for the CLI."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .batch import BatchReport
from .utils import format_size


class OutputFormatter:
    """Writes human-readable or JSON output."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize the formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress informational messages
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(highlight=False)
        self.err_console = Console(stderr=True, highlight=False)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message)

    def success(self, message: str) -> None:
        if not self.json_output:
            self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def print(self, message: str = "") -> None:
        if not self.json_output:
            self.console.print(message)

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[tuple[str, str]],
        title: Optional[str] = None,
    ) -> None:
        """Print rows as a table.

        Args:
            rows: Row dictionaries
            columns: (key, header) pairs in display order
            title: Optional table title
        """
        if self.json_output:
            self.output_json(rows)
            return
        table = Table(title=title)
        for _, header in columns:
            table.add_column(header)
        for row in rows:
            table.add_row(*("" if row.get(key) is None else str(row.get(key)) for key, _ in columns))
        self.console.print(table)

    def print_summary(self, report: BatchReport) -> None:
        """Print succeeded/failed counts and every failure with its cause."""
        if self.json_output:
            self.output_json(report.to_dict())
            return

        operation = report.operation.capitalize()
        self.console.print("")
        self.console.print(f"[bold]{operation} summary:[/bold]")
        self.console.print(f"  Succeeded: {report.succeeded_count}")
        self.console.print(f"  Failed: {report.failed_count}")
        if report.skipped:
            self.console.print(f"  Skipped: {len(report.skipped)}")
        if report.total_bytes:
            self.console.print(f"  Total size: {format_size(report.total_bytes)}")
        for name, error in report.failed:
            self.err_console.print(f"  [red]✗[/red] {name}: {error}")

    def format_size(self, size_bytes: int) -> str:
        return format_size(size_bytes)
