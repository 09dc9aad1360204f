"""CLI entry point for the S95C audio converter."""

from __future__ import annotations

import logging
import signal
import time
from pathlib import Path
from types import FrameType
from typing import Any, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from s95c_convert import __version__
from s95c_convert.config import ConverterConfig, load_config, merge_config
from s95c_convert.encoder import FfmpegEncoder, MediaEncoder
from s95c_convert.errors import ConfigurationError
from s95c_convert.inspector import FfprobeInspector, MediaInspector, check_tools_available
from s95c_convert.logging_setup import STATUS_LINE, setup_logging
from s95c_convert.output import sweep_stale_files
from s95c_convert.reporter import format_status_line, format_summary, outcome_style
from s95c_convert.scanner import scan_directory
from s95c_convert.scheduler import RunSummary, run_batch
from s95c_convert.worker import Outcome, WorkResult

logger = logging.getLogger(__name__)

# Set by the signal handler to request a graceful stop
_shutdown_requested = False

# Shared by the log handler and the progress bar
_console = Console(stderr=True)

app = typer.Typer(
    name="s95c-convert",
    help="Mirror MKV files, re-encoding DTS/TrueHD audio to FLAC for the Samsung S95C.",
    invoke_without_command=True,
    no_args_is_help=True,
)


def _build_config(config_path: Optional[Path], cli_overrides: dict[str, Any]) -> ConverterConfig:
    """Load the optional TOML config and merge it with CLI overrides."""
    file_config = load_config(config_path) if config_path is not None else {}
    return merge_config(file_config, cli_overrides)


def _log_file_path(cfg: ConverterConfig) -> Path:
    """Return the path to the log file."""
    return cfg.dest_root / ".s95c" / "s95c-convert.log"


@app.command()
def run(
    source_root: Optional[str] = typer.Option(None, "--source-root", help="Directory to scan (default: current directory)"),
    dest_root: Optional[str] = typer.Option(None, "--dest-root", help="Mirrored output root (default: ./S95C_Converted)"),
    recurse: Optional[bool] = typer.Option(None, "--recurse/--no-recurse", help="Scan subdirectories too"),
    max_parallel: Optional[int] = typer.Option(None, "--max-parallel", help="Files processed at once (1-64, default 2)"),
    overwrite: Optional[bool] = typer.Option(None, "--overwrite/--no-overwrite", help="Reprocess files whose output already exists"),
    encode_timeout: Optional[float] = typer.Option(None, "--encode-timeout", help="Kill an encode after N minutes (0 = no limit)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (default: INFO)"),
    sweep: Optional[bool] = typer.Option(None, "--sweep/--no-sweep", help="Remove temp files left by an interrupted run"),
    config: Optional[str] = typer.Option(None, "--config", help="Optional TOML config file"),
) -> None:
    """Convert every MKV under the source root into the destination root."""
    config_path = Path(config) if config is not None else None
    if config_path is not None and not config_path.exists():
        typer.echo(f"Error: Config file not found: {config_path}", err=True)
        raise typer.Exit(code=1)

    cli_overrides: dict[str, Any] = {
        "source_root": source_root,
        "dest_root": dest_root,
        "recurse": recurse,
        "max_parallel": max_parallel,
        "overwrite": overwrite,
        "encode_timeout_minutes": encode_timeout,
        "log_level": log_level,
        "sweep_temp_files": sweep,
    }
    try:
        cfg = _build_config(config_path, cli_overrides)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    setup_logging(cfg.log_level, _log_file_path(cfg), console=_console)

    # Fail fast if ffmpeg/ffprobe are not installed
    try:
        check_tools_available()
    except ConfigurationError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1)

    logger.info("s95c-convert v%s", __version__)
    logger.info("Source: %s%s", cfg.source_root, " (recursive)" if cfg.recurse else "")
    logger.info("Destination: %s", cfg.dest_root)
    logger.info("Parallel jobs: %d", cfg.max_parallel)
    if cfg.overwrite:
        logger.info("Overwrite mode: existing outputs will be regenerated")
    if cfg.encode_timeout_secs:
        logger.info("Encode timeout: %.1f minutes", cfg.encode_timeout_minutes)

    exit_code = _run_pipeline(cfg, FfprobeInspector(), FfmpegEncoder())
    if exit_code != 0:
        raise typer.Exit(code=exit_code)


def _run_pipeline(
    cfg: ConverterConfig,
    inspector: MediaInspector,
    encoder: MediaEncoder,
) -> int:
    """Execute the full pipeline and return the process exit code."""
    global _shutdown_requested  # noqa: PLW0603
    _shutdown_requested = False

    # Install signal handlers for graceful shutdown
    prev_sigint = signal.getsignal(signal.SIGINT)
    prev_sigterm = signal.getsignal(signal.SIGTERM)

    def _handle_shutdown(signum: int, frame: FrameType | None) -> None:
        global _shutdown_requested  # noqa: PLW0603
        if _shutdown_requested:
            # Second signal forces an immediate exit
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
            raise KeyboardInterrupt
        _shutdown_requested = True
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, will finish running files and exit (press again to force quit)", sig_name)

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)

    try:
        return _run_pipeline_inner(cfg, inspector, encoder)
    finally:
        # Restore original signal handlers
        signal.signal(signal.SIGINT, prev_sigint)
        signal.signal(signal.SIGTERM, prev_sigterm)


def _run_pipeline_inner(
    cfg: ConverterConfig,
    inspector: MediaInspector,
    encoder: MediaEncoder,
) -> int:
    """Inner pipeline logic, separated for signal handler cleanup."""
    batch_start = time.monotonic()

    if cfg.sweep_temp_files:
        removed = sweep_stale_files(cfg.dest_root)
        if removed:
            logger.info("Removed %d stale temp file(s) from a previous run", removed)

    files = scan_directory(cfg.source_root, cfg.recurse, exclude=cfg.dest_root)
    if not files:
        logger.info("No .mkv files found in %s. Nothing to do.", cfg.source_root)
        return 0

    logger.info("Found %d .mkv file(s)", len(files))

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("{task.fields[last_file]}"),
        TimeElapsedColumn(),
        console=_console,
    ) as progress:
        task = progress.add_task("Converting", total=len(files), last_file="")

        def _on_result(result: WorkResult, summary: RunSummary) -> None:
            line = format_status_line(result, summary)
            # Shown whatever the log level; the log file gets its own copy
            progress.console.print(line, style=outcome_style(result.outcome), markup=False, highlight=False)
            level = logging.ERROR if result.outcome is Outcome.FAILED else logging.INFO
            logger.log(level, "%s", line, extra={STATUS_LINE: True})
            progress.update(task, last_file=str(result.relative_path))
            progress.advance(task)

        batch = run_batch(
            files,
            cfg,
            inspector,
            encoder,
            on_result=_on_result,
            should_stop=lambda: _shutdown_requested,
        )

    batch_secs = time.monotonic() - batch_start
    summary = batch.summary

    typer.echo(format_summary(summary, cfg.dest_root, batch.results, elapsed_secs=batch_secs))
    if batch.stopped:
        logger.info("Stopped: interrupted by signal (%d file(s) not started)", summary.remaining)

    if summary.failed or batch.stopped:
        return 1
    return 0


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"s95c-convert {__version__}")


if __name__ == "__main__":
    app()
