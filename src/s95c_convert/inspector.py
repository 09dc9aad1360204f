"""Audio stream inspection using ffprobe."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from s95c_convert.errors import ConfigurationError, ProbeError

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECS = 60

REQUIRED_TOOLS = ("ffprobe", "ffmpeg")


@dataclass(frozen=True)
class AudioStream:
    """One audio track of a container, in audio-stream order."""

    index: int
    codec_name: str


class MediaInspector(Protocol):
    """Anything that can list a file's audio streams."""

    def probe_audio_streams(self, path: Path) -> list[AudioStream]: ...

    def probe_duration(self, path: Path) -> float | None: ...


def check_tools_available() -> None:
    """Verify that ffprobe and ffmpeg are on PATH."""
    missing = [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]
    if missing:
        raise ConfigurationError(
            f"{', '.join(missing)} not found on PATH. Install ffmpeg to continue."
        )


def parse_audio_streams(raw: str) -> list[AudioStream]:
    """Decode ffprobe JSON into AudioStream entries.

    Only ``codec_name`` is required per stream; unknown fields are ignored.
    The returned index is the position among audio streams, not the
    container-wide ``index`` ffprobe reports.
    """
    if not raw.strip():
        raise ProbeError("ffprobe produced no output")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProbeError("ffprobe returned invalid JSON") from e

    if not isinstance(data, dict):
        raise ProbeError("ffprobe output is not a JSON object")
    streams = data.get("streams", [])
    if not isinstance(streams, list):
        raise ProbeError("ffprobe 'streams' is not a list")

    result: list[AudioStream] = []
    for position, stream in enumerate(streams):
        if not isinstance(stream, dict):
            raise ProbeError(f"Stream entry {position} is not an object")
        codec_name = stream.get("codec_name")
        if not isinstance(codec_name, str) or not codec_name.strip():
            raise ProbeError(f"Audio stream {position} has no codec_name")
        result.append(AudioStream(index=position, codec_name=codec_name.strip().lower()))
    return result


def _run_ffprobe(args: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(
            ["ffprobe", "-v", "error", *args],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECS,
        )
    except subprocess.TimeoutExpired as e:
        raise ProbeError("ffprobe timed out") from e
    except OSError as e:
        raise ProbeError(f"ffprobe error: {e}") from e


class FfprobeInspector:
    """MediaInspector backed by the ffprobe binary."""

    def probe_audio_streams(self, path: Path) -> list[AudioStream]:
        """List the audio streams of a file.

        Returns an empty list for files without audio. Raises ProbeError when
        ffprobe fails or its output cannot be parsed.
        """
        result = _run_ffprobe([
            "-select_streams", "a",
            "-show_entries", "stream=index,codec_name",
            "-print_format", "json",
            str(path),
        ])
        if result.returncode != 0:
            detail = result.stderr.strip().splitlines()[-1:] or ["no details"]
            raise ProbeError(
                f"ffprobe exited with {result.returncode}: {detail[0]}"
            )
        return parse_audio_streams(result.stdout)

    def probe_duration(self, path: Path) -> float | None:
        """Return the container duration in seconds, or None if unknown."""
        try:
            result = _run_ffprobe([
                "-show_entries", "format=duration",
                "-print_format", "json",
                str(path),
            ])
        except ProbeError:
            logger.debug("Duration probe failed for %s", path, exc_info=True)
            return None
        if result.returncode != 0:
            return None
        return _extract_duration(result.stdout)


def _extract_duration(raw: str) -> float | None:
    """Extract format.duration in seconds from ffprobe JSON."""
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError:
        return None
    fmt = data.get("format", {}) if isinstance(data, dict) else {}
    if not isinstance(fmt, dict):
        return None
    dur_str = fmt.get("duration")
    if dur_str is None:
        return None
    try:
        duration = float(str(dur_str))
    except (ValueError, TypeError):
        return None
    return duration if duration > 0 else None
