"""Atomic file placement, progress markers, and stale temp cleanup."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".partial"
MARKER_SUFFIX = ".progress.json"


def temp_path_for(destination: Path) -> Path:
    """Reserve a hidden temp file next to destination and return its path."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path_str = tempfile.mkstemp(
        dir=destination.parent,
        prefix=f".{destination.name}.",
        suffix=TEMP_SUFFIX,
    )
    os.close(fd)
    return Path(tmp_path_str)


@contextmanager
def staged_output(destination: Path) -> Iterator[Path]:
    """Yield a temp path; the caller commits it with commit_output().

    Whatever is left at the temp path when the block exits is deleted, so
    a failed or interrupted write never leaves partial data behind.
    """
    tmp_path = temp_path_for(destination)
    try:
        yield tmp_path
    finally:
        tmp_path.unlink(missing_ok=True)


def commit_output(tmp_path: Path, destination: Path) -> None:
    """Atomically move a finished temp file onto destination."""
    tmp_path.replace(destination)


def copy_atomic(source: Path, destination: Path) -> None:
    """Copy source to destination byte-for-byte via a temp file and rename."""
    with staged_output(destination) as tmp_path:
        shutil.copy2(source, tmp_path)
        commit_output(tmp_path, destination)


def marker_path_for(destination: Path) -> Path:
    """Path of the progress marker belonging to an output file."""
    return destination.with_name(destination.name + MARKER_SUFFIX)


def write_marker(marker_path: Path, source: Path, fraction: float, state: str = "running") -> None:
    """Write the progress marker atomically."""
    document: dict[str, Any] = {
        "state": state,
        "fraction_complete": round(min(max(fraction, 0.0), 1.0), 4),
        "source": str(source),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    marker_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path_str = tempfile.mkstemp(
        dir=marker_path.parent, prefix=f".{marker_path.name}.", suffix=TEMP_SUFFIX
    )
    tmp_path = Path(tmp_path_str)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        tmp_path.replace(marker_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


@contextmanager
def progress_marker(destination: Path, source: Path) -> Iterator[Path]:
    """Create a progress marker for destination and remove it on exit."""
    marker = marker_path_for(destination)
    write_marker(marker, source, 0.0)
    try:
        yield marker
    finally:
        marker.unlink(missing_ok=True)


def sweep_stale_files(dest_root: Path) -> int:
    """Delete temp files and progress markers left by an interrupted run.

    Returns the number of files removed.
    """
    if not dest_root.is_dir():
        return 0

    removed = 0
    for pattern in (f".*{TEMP_SUFFIX}", f"*{MARKER_SUFFIX}"):
        for path in dest_root.rglob(pattern):
            if not path.is_file():
                continue
            try:
                path.unlink()
                removed += 1
                logger.debug("Removed stale file %s", path)
            except OSError:
                logger.warning("Could not remove stale file %s", path)
    return removed
