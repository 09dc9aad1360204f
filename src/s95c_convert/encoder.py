"""ffmpeg invocation: command building, progress parsing, timeouts."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Protocol

from s95c_convert.audio_codecs import CodecArgumentPlan, codec_arguments
from s95c_convert.errors import EncodeError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_ERROR_TAIL_LINES = 20


class MediaEncoder(Protocol):
    """Anything that can remux a file according to a codec plan."""

    def encode(
        self,
        source: Path,
        output: Path,
        plan: CodecArgumentPlan,
        *,
        duration_secs: float | None = None,
        on_progress: ProgressCallback | None = None,
        timeout_secs: float | None = None,
    ) -> None: ...

    def terminate_all(self) -> None:
        """Kill every encode still running, making each one fail."""
        ...


def build_ffmpeg_command(source: Path, output: Path, plan: CodecArgumentPlan) -> list[str]:
    """Build the ffmpeg command line for one file.

    Video, subtitle and attachment streams are copied, chapters and global
    metadata carried over, and every audio stream is mapped in source order
    so the plan's positional directives line up.
    """
    return [
        "ffmpeg",
        "-hide_banner",
        "-nostdin",
        "-y",
        "-loglevel", "error",
        "-i", str(source),
        "-map", "0:v?",
        "-map", "0:a",
        "-map", "0:s?",
        "-map", "0:t?",
        "-map_chapters", "0",
        "-map_metadata", "0",
        "-c", "copy",
        *codec_arguments(plan),
        "-progress", "pipe:1",
        "-nostats",
        "-f", "matroska",
        str(output),
    ]


def parse_progress_line(line: str, duration_secs: float | None) -> float | None:
    """Turn one ``-progress`` key=value line into a completion fraction.

    Returns None for lines that carry no position information.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress" and value == "end":
        return 1.0
    # out_time_ms is microseconds too, despite the name
    if key in ("out_time_us", "out_time_ms") and duration_secs:
        try:
            micros = int(value)
        except ValueError:
            return None
        return min(max(micros / 1_000_000 / duration_secs, 0.0), 1.0)
    return None


class FfmpegEncoder:
    """MediaEncoder backed by the ffmpeg binary.

    One instance is shared by all worker threads; it keeps track of its
    running ffmpeg processes so an interrupted batch can kill them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running: set[subprocess.Popen[str]] = set()
        self._terminated: set[subprocess.Popen[str]] = set()
        self._stopping = False

    def terminate_all(self) -> None:
        with self._lock:
            self._stopping = True
            procs = list(self._running)
            self._terminated.update(procs)
        for proc in procs:
            logger.warning("Killing ffmpeg (pid %s)", proc.pid)
            proc.kill()

    def encode(
        self,
        source: Path,
        output: Path,
        plan: CodecArgumentPlan,
        *,
        duration_secs: float | None = None,
        on_progress: ProgressCallback | None = None,
        timeout_secs: float | None = None,
    ) -> None:
        """Run ffmpeg and wait for it. Raises EncodeError on any failure."""
        cmd = build_ffmpeg_command(source, output, plan)
        logger.debug("Running: %s", " ".join(cmd))

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                # Keep a terminal Ctrl-C from reaching ffmpeg; a graceful stop lets it finish
                start_new_session=True,
            )
        except OSError as e:
            raise EncodeError(f"Could not start ffmpeg: {e}") from e

        with self._lock:
            self._running.add(proc)
            if self._stopping:
                self._terminated.add(proc)
                proc.kill()

        timed_out = threading.Event()
        timer: threading.Timer | None = None
        if timeout_secs:
            def _kill() -> None:
                timed_out.set()
                proc.kill()

            timer = threading.Timer(timeout_secs, _kill)
            timer.daemon = True
            timer.start()

        tail: deque[str] = deque(maxlen=_ERROR_TAIL_LINES)
        last_fraction = -1.0
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                fraction = parse_progress_line(line, duration_secs)
                if fraction is None:
                    if "=" not in line and line.strip():
                        tail.append(line.strip())
                    continue
                # Marker writes are throttled to whole-percent steps
                if on_progress is not None and fraction - last_fraction >= 0.01:
                    last_fraction = fraction
                    on_progress(fraction)
            returncode = proc.wait()
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            with self._lock:
                self._running.discard(proc)
                terminated = proc in self._terminated
                self._terminated.discard(proc)

        if returncode != 0:
            # A kill that raced a clean exit does not turn it into a failure
            if terminated:
                raise EncodeError("ffmpeg was terminated")
            if timed_out.is_set():
                raise EncodeError(f"ffmpeg timed out after {timeout_secs:.0f}s")
            detail = tail[-1] if tail else "no details"
            raise EncodeError(f"ffmpeg exited with {returncode}: {detail}")
