"""User-facing output: notifications, tables and progress messages."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Formats messages for the terminal.

    Errors and warnings go to stderr; in quiet mode only those are shown.
    In JSON mode informational messages are suppressed and results are
    printed with :meth:`output_json`.
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
        self._status: Any = None

    @property
    def _silent(self) -> bool:
        return self.quiet or self.json_output

    def print(self, message: str = "") -> None:
        if not self._silent:
            self.console.print(message)

    def info(self, message: str) -> None:
        if not self._silent:
            self.console.print(message)

    def success(self, message: str) -> None:
        if not self._silent:
            self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def output_table(
        self, title: str, columns: list[str], rows: list[list[str]]
    ) -> None:
        if self.json_output:
            self.output_json([dict(zip(columns, row)) for row in rows])
            return
        if self.quiet:
            return
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    # -- progress ------------------------------------------------------------

    def start_status(self, message: str) -> None:
        if self._silent or self._status is not None:
            return
        self._status = self.console.status(message)
        self._status.start()

    def update_status(self, message: str) -> None:
        if self._status is not None:
            self._status.update(message)

    def stop_status(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None
