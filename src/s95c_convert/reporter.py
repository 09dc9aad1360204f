"""Per-file status lines and the end-of-run summary."""

from __future__ import annotations

from io import StringIO
from pathlib import Path

from rich.console import Console
from rich.table import Table

from s95c_convert.scheduler import RunSummary
from s95c_convert.worker import Outcome, WorkResult

_OUTCOME_STYLES = {
    Outcome.SKIPPED_EXISTS: "dim",
    Outcome.COPIED_NO_AUDIO: "cyan",
    Outcome.COPIED_COMPATIBLE: "cyan",
    Outcome.CONVERTED: "green",
    Outcome.FAILED: "bold red",
}


def format_status_line(result: WorkResult, summary: RunSummary | None = None) -> str:
    """One line per finished file: ``[n/total] [LABEL] path - message``."""
    counter = ""
    if summary is not None:
        counter = f"[{summary.completed}/{summary.total}] "
    return f"{counter}[{result.outcome.label}] {result.relative_path} - {result.message}"


def format_summary(
    summary: RunSummary,
    dest_root: Path,
    results: list[WorkResult] | None = None,
    elapsed_secs: float | None = None,
) -> str:
    """Render the run summary (and any failures) using rich tables.

    Returns:
        Formatted string suitable for printing.
    """
    console = Console(file=StringIO(), force_terminal=False, width=100)

    table = Table(title="Conversion Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Total files", str(summary.total))
    table.add_row("Skipped (exists)", str(summary.skipped))
    table.add_row("Copied", str(summary.copied))
    table.add_row("Converted", str(summary.converted))
    table.add_row("Failed", str(summary.failed))
    if summary.remaining > 0:
        table.add_row("Not started", str(summary.remaining))
    if elapsed_secs is not None:
        table.add_row("Elapsed", _format_duration(elapsed_secs))
    table.add_row("Output", str(dest_root))

    console.print(table)

    failures = [r for r in (results or []) if r.outcome is Outcome.FAILED]
    if failures:
        fail_table = Table(title="Failures", show_header=True, header_style="bold")
        fail_table.add_column("File", style=_OUTCOME_STYLES[Outcome.FAILED])
        fail_table.add_column("Reason")
        for r in sorted(failures, key=lambda r: str(r.relative_path)):
            fail_table.add_row(str(r.relative_path), r.message)
        console.print(fail_table)

    output = console.file
    assert isinstance(output, StringIO)
    return output.getvalue()


def outcome_style(outcome: Outcome) -> str:
    """Rich style used when echoing a status line for this outcome."""
    return _OUTCOME_STYLES[outcome]


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"
