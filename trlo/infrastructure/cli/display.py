import logging
from typing import Any, List, Optional, Sequence, Tuple

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from trlo.domain.events.batch_events import (
    ApiCallDeferred, DomainEvent, OperationFailed, RetryScheduled, describe_event,
)
from trlo.domain.interfaces.user_interface import UserInterface
from trlo.domain.models.batch import BatchReport, BatchStatus, OperationStatus
from trlo.infrastructure.formatting.report_formatter import format_report

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    OperationStatus.SUCCESS: "green",
    OperationStatus.FAILED: "bold red",
    OperationStatus.SKIPPED: "yellow",
    OperationStatus.PLANNED: "cyan",
}

BATCH_STATUS_STYLES = {
    BatchStatus.SUCCESS: "green",
    BatchStatus.PLANNED: "cyan",
    BatchStatus.PARTIAL: "yellow",
    BatchStatus.FAILED: "red",
    BatchStatus.CANCELLED: "yellow",
    BatchStatus.ABORTED: "red",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output.

    Reports go to stdout; errors, warnings and progress go to stderr so a
    JSON or Markdown report can be piped cleanly.
    """

    def __init__(self, console: Optional[Console] = None, err_console: Optional[Console] = None,
                 show_progress: bool = False):
        """Initializes the rich Consoles.

        Args:
            console: Console for reports (stdout).
            err_console: Console for diagnostics (stderr).
            show_progress: Whether batch events are echoed while running.
        """
        self._console = console or Console()
        self._err_console = err_console or Console(stderr=True)
        self.show_progress = show_progress

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_report(self, report: BatchReport, output_format: str = "table", **kwargs: Any) -> None:
        if output_format in ("json", "markdown"):
            # Plain output: no rich markup or wrapping in machine-readable reports.
            self.console.out(format_report(report, output_format), highlight=False)
            return
        self.console.print(self._results_table(report))
        self.console.print(self._summary_panel(report))

    def _results_table(self, report: BatchReport) -> Table:
        title = "Batch plan (dry run)" if report.dry_run else "Batch results"
        table = Table(title=title, show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Operation", style="bold")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("Result / Error", overflow="fold")
        table.add_column("ms", justify="right", style="dim")

        for position, result in enumerate(report.results, start=1):
            style = STATUS_STYLES.get(result.status, "white")
            if result.error is not None:
                detail = Text(f"{result.error.kind}: {result.error.message}", style=style)
            elif result.response and "id" in result.response:
                detail = Text(str(result.response["id"]))
            else:
                detail = Text("")
            duration = f"{result.duration_ms:.0f}" if result.duration_ms is not None else ""
            # ids and types may echo raw input; Text cells are never parsed as markup
            table.add_row(str(position), Text(str(result.operation_id)), Text(str(result.operation_type)),
                          Text(result.status.value, style=style), detail, duration)
        return table

    def _summary_panel(self, report: BatchReport) -> Panel:
        summary = report.summary()
        counts = [("total", "bold", summary["total"])]
        if report.dry_run:
            counts.append(("planned", "cyan", summary["planned"]))
        else:
            counts.append(("succeeded", "green", summary["succeeded"]))
        counts.append(("failed", "red", summary["failed"]))
        counts.append(("skipped", "yellow", summary["skipped"]))
        style = BATCH_STATUS_STYLES.get(report.status, "white")
        body = Text("  ").join(Text.assemble((label, label_style), f" {count}") for label, label_style, count in counts)
        if report.error is not None:
            body.append("\n")
            body.append(report.error.kind, style="red")
            body.append(f": {report.error.message}")
        return Panel(
            body,
            title=f"[bold {style}]{report.status.value.upper()}[/bold {style}]",
            title_align="left",
            border_style=style,
            box=SIMPLE,
            padding=(0, 1),
        )

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self._err_console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=ROUNDED,
            padding=(0, 1)
        )
        self._err_console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=ROUNDED,
            padding=(0, 1)
        )
        self._err_console.print(panel)

    def display_event(self, event: DomainEvent) -> None:
        """Echoes scheduler and retry events on stderr while a batch runs."""
        if not self.show_progress:
            return
        if isinstance(event, OperationFailed):
            style = "red"
        elif isinstance(event, (ApiCallDeferred, RetryScheduled)):
            style = "yellow"
        else:
            style = "dim"
        self._err_console.print(Text(describe_event(event), style=style))

    def display_operation_types(self, rows: Sequence[Tuple[str, str, str]]) -> None:
        table = Table(title="Operation types", show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Type", style="bold cyan")
        table.add_column("Required")
        table.add_column("Description", style="dim")
        for name, required, description in rows:
            table.add_row(name, required, description)
        self.console.print(table)
