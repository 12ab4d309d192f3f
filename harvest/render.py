"""Terminal rendering for capture results and metrics."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from harvest.metrics import get_health_indicator
from harvest.types import CaptureResult, ResolvedFile

console = Console()

_HEALTH_STYLE = {"good": "green", "okay": "yellow", "bad": "red"}


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f}ms"
    elif ms < 60000:
        return f"{ms/1000:.1f}s"
    else:
        return f"{ms/60000:.1f}m"


def format_percent(value: float | None) -> str:
    if value is None:
        return "N/A"
    return f"{value * 100:.0f}%"


def health_dot(metric: str, value: float | None) -> str:
    style = _HEALTH_STYLE.get(get_health_indicator(metric, value))
    return f"[{style}]●[/{style}]" if style else "○"


def files_table(files: list[ResolvedFile]) -> Table:
    table = Table(title=f"Captured files ({len(files)})", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Lines", justify="right")
    table.add_column("Chars", justify="right")
    for index, file in enumerate(files):
        name = f"[yellow]{file.name}[/yellow] (ask for a name)" if file.unresolved else file.name
        table.add_row(str(index), name, str(len(file.content.splitlines())), str(len(file.content)))
    return table


def render_files(files: list[ResolvedFile], target: Console | None = None) -> None:
    out = target or console
    if not files:
        out.print("[dim]No files captured.[/dim]")
        return
    out.print(files_table(files))


def render_result(result: CaptureResult, target: Console | None = None) -> None:
    """Print a capture outcome: status line, then the file table."""
    out = target or console
    if result.ok:
        status = "[green]cancelled[/green]" if result.cancelled else "[green]complete[/green]"
        out.print(f"Capture {status} ({result.completion or 'n/a'})")
    else:
        out.print(f"[red]Capture failed[/red]: {result.reason.value} - {result.message}")
    render_files(result.files, out)


def render_summary(summary: dict, target: Console | None = None) -> None:
    """Metrics dashboard as a rich table."""
    out = target or console
    if summary["total"] == 0:
        out.print("No captures recorded yet.")
        return

    table = Table(title="Harvest metrics", show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_column("", justify="center")
    table.add_row(
        "Captures",
        f"{summary['total']} ({summary['success_count']} ok)",
        health_dot("success_rate", summary["success_rate"]),
    )
    table.add_row("Success rate", format_percent(summary["success_rate"]), "")
    table.add_row("Today", str(summary["today_count"]), "")
    table.add_row(
        "Avg duration",
        format_duration(summary["avg_duration_ms"]),
        health_dot("avg_duration_ms", summary["avg_duration_ms"]),
    )
    table.add_row(
        "Timeouts",
        format_percent(summary["timeout_rate"]),
        health_dot("timeout_rate", summary["timeout_rate"]),
    )
    table.add_row(
        "Unresolved names",
        format_percent(summary["unresolved_rate"]),
        health_dot("unresolved_rate", summary["unresolved_rate"]),
    )
    for surface, stats in sorted(summary["by_surface"].items()):
        table.add_row(f"  {surface}", f"{stats['total']} ({format_percent(stats['success_rate'])})", "")
    for reason, count in sorted(summary["by_reason"].items()):
        table.add_row(f"  failed: {reason}", str(count), "")
    out.print(table)


__all__ = [
    "console",
    "files_table",
    "format_duration",
    "format_percent",
    "render_files",
    "render_result",
    "render_summary",
]
