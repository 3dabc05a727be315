"""
Rich console helpers for the migrator CLI.

Two output modes, selected by the global ``output_mode``:

Human mode (--format text):
    Rich progress bar, tables, panels and colored status lines.

JSON mode (--format json):
    Status lines are buffered and the final result is written as one JSON
    document to stdout; nothing decorative is printed.

``--quiet`` keeps human mode but suppresses everything except errors and a
single tab-separated summary line.

Examples:
    >>> output_mode.format = "text"
    >>> with create_progress_bar() as progress:
    ...     task = progress.add_task("Migrating", total=100)
    ...     progress.update(task, completed=50, description="Loading SQL dump...")
    >>> success("Migration complete")
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from ..report.formatters import format_duration_ms

if TYPE_CHECKING:
    from ..migration.orchestrator import ScriptResult
    from ..pipeline.models import MigrationResult


class OutputMode:
    """
    Output mode shared by every console helper.

    Attributes:
        format: "text" (human) or "json" (machine-readable)
        quiet: Suppress non-essential human output
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ("text", "json"):
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")
        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        self._json_buffer[key] = value

    def append_json(self, key: str, value: Any) -> None:
        """Append to a list-valued key of the JSON buffer."""
        self._json_buffer.setdefault(key, []).append(value)

    def flush_json(self) -> None:
        """Write the buffered JSON document to stdout (JSON mode only)."""
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


output_mode = OutputMode()

console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """Show a spinner while the block runs (human, non-quiet mode only)."""
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


class NoOpProgress:
    """Progress stand-in used outside human mode; accepts the same calls."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return None

    def add_task(self, _description: str, total: float | None = None) -> int:
        return 0

    def update(self, _task_id: int, **_kwargs: Any) -> None:
        return None


def create_progress_bar() -> Progress | NoOpProgress:
    """
    Progress bar for the overall 0-100 migration progress.

    Returns a Rich Progress in human mode and a NoOpProgress otherwise.
    """
    if output_mode.is_human() and not output_mode.quiet:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
    return NoOpProgress()


# ============================================================================
# Status lines
# ============================================================================


def success(message: str) -> None:
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[green]✓[/green] {message}")
    else:
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """Errors go to stderr in human mode, even when quiet."""
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    else:
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    else:
        output_mode.append_json("warnings", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    if not output_mode.is_human() or output_mode.quiet:
        return
    console.print(
        Panel(
            f"[bold cyan]Odoo Backup Migrator[/bold cyan] v{version}\n"
            "Upgrade Odoo backup archives offline",
            box=box.DOUBLE,
            border_style="cyan",
            expand=False,
        )
    )


# ============================================================================
# Tables and summaries
# ============================================================================

_STATUS_STYLES = {
    "applied": "[green]applied[/green]",
    "skipped": "[yellow]skipped[/yellow]",
    "failed": "[red]failed[/red]",
}


def print_script_table(script_results: list[ScriptResult]) -> None:
    """Per-script outcome table (human, non-quiet mode only)."""
    if not output_mode.is_human() or output_mode.quiet or not script_results:
        return

    table = Table(title="Migration Scripts", box=box.ROUNDED)
    table.add_column("Script", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Status", justify="center")
    table.add_column("Duration", justify="right")

    for script in script_results:
        status = script.status.value
        table.add_row(
            script.id,
            script.name,
            _STATUS_STYLES.get(status, status),
            format_duration_ms(script.duration_ms),
        )

    console.print(table)


def print_final_summary(result: MigrationResult) -> None:
    """
    Final outcome of a migration.

    Human mode: panel with a green (success) or red (failure) border.
    Quiet mode: one tab-separated line (status, output, source, target,
    applied count, duration ms).
    JSON mode: the full result dictionary, then the buffer is flushed.
    """
    if output_mode.is_agent():
        output_mode.add_json("result", result.to_dict())
        output_mode.flush_json()
        return

    status = "success" if result.success else "failed"
    if output_mode.quiet:
        print(
            f"{status}\t{result.output_path}\t{result.source_version or ''}\t"
            f"{result.target_version or ''}\t{len(result.migrations_applied)}\t"
            f"{result.duration_ms}"
        )
        return

    lines = [
        f"[bold]Input:[/bold] {result.input_path}",
        f"[bold]Output:[/bold] {result.output_path}",
        f"[bold]Version:[/bold] {result.source_version or 'unknown'} -> "
        f"{result.target_version or 'unknown'}",
        f"[bold]Scripts applied:[/bold] {len(result.migrations_applied)}",
        f"[bold]Duration:[/bold] {format_duration_ms(result.duration_ms)}",
    ]
    if result.report_path:
        lines.append(f"[bold]Report:[/bold] {result.report_path}")
    if result.warnings:
        lines.append(f"[bold]Warnings:[/bold] {len(result.warnings)}")
    for err in result.errors:
        lines.append(f"[bold red]Error ({err.phase}):[/bold red] {err.message}")

    if result.success:
        title = "[bold green]✓ Migration Completed Successfully[/bold green]"
        border_style = "green"
    else:
        title = "[bold red]✗ Migration Failed[/bold red]"
        border_style = "red"

    console.print(Panel("\n".join(lines), title=title, border_style=border_style, box=box.ROUNDED))


def print_paths_table(paths: list[dict[str, Any]]) -> None:
    """Available migration paths (JSON mode buffers them under "paths")."""
    if output_mode.is_agent():
        output_mode.add_json("paths", paths)
        return

    if output_mode.quiet:
        for path in paths:
            print(f"{path['id']}\t{path['source_version']}\t{path['target_version']}\t{path['script_count']}")
        return

    table = Table(title="Migration Paths", box=box.ROUNDED)
    table.add_column("Path", style="cyan", no_wrap=True)
    table.add_column("Source")
    table.add_column("Target")
    table.add_column("Scripts", justify="right")
    for path in paths:
        table.add_row(
            str(path["id"]),
            str(path["source_version"]),
            str(path["target_version"]),
            str(path["script_count"]),
        )
    console.print(table)


def print_manifest(manifest: dict[str, Any]) -> None:
    """Backup manifest as a key/value table."""
    if output_mode.is_agent():
        output_mode.add_json("manifest", manifest)
        return
    if output_mode.quiet:
        return

    table = Table(title="Manifest", box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")
    for key, value in manifest.items():
        if isinstance(value, list | dict):
            shown = f"{len(value)} entries"
        else:
            shown = str(value)
        table.add_row(key, shown)
    console.print(table)
