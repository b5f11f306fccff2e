"""Console output for the CLI."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Writes user-facing messages as rich text or JSON.

    Status messages go to stderr so that ``--json`` output on stdout stays
    machine-readable.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def info(self, message: str) -> None:
        """Print an informational message (suppressed by quiet and JSON mode)."""
        if self.quiet or self.json_output:
            return
        self.err_console.print(message, highlight=False)

    def success(self, message: str) -> None:
        if self.quiet or self.json_output:
            return
        self.err_console.print(f"[green]{message}[/green]", highlight=False)

    def warning(self, message: str) -> None:
        if self.quiet:
            return
        self.err_console.print(f"[yellow]{message}[/yellow]", highlight=False)

    def error(self, message: str) -> None:
        """Print an error message. Never suppressed."""
        self.err_console.print(
            f"[bold red]Error:[/bold red] {message}", highlight=False
        )

    def print(self, message: str) -> None:
        """Print plain output to stdout."""
        self.console.print(message, highlight=False)

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, items: list[tuple[str, Any]]) -> None:
        """Print a two-column summary table.

        Args:
            title: Table title
            items: (label, value) pairs
        """
        if self.quiet:
            return
        table = Table(title=title, show_header=False, title_justify="left")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for label, value in items:
            table.add_row(label, str(value))
        self.console.print(table)
