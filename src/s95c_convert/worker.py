"""Per-file processing: skip, copy, or transcode one MKV."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath

from s95c_convert.audio_codecs import (
    CodecArgumentPlan,
    build_plan,
    is_unsupported,
    needs_transcode,
)
from s95c_convert.config import ConverterConfig
from s95c_convert.encoder import MediaEncoder
from s95c_convert.errors import EncodeError, PathContainmentError, ProbeError
from s95c_convert.inspector import AudioStream, MediaInspector
from s95c_convert.output import (
    commit_output,
    copy_atomic,
    progress_marker,
    staged_output,
    write_marker,
)
from s95c_convert.scanner import MediaFile, mirror_path, same_path

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """Terminal state of one file."""

    SKIPPED_EXISTS = "skipped_exists"
    COPIED_NO_AUDIO = "copied_no_audio"
    COPIED_COMPATIBLE = "copied_compatible"
    CONVERTED = "converted"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Outcome.SKIPPED_EXISTS: "SKIP",
    Outcome.COPIED_NO_AUDIO: "COPY",
    Outcome.COPIED_COMPATIBLE: "COPY",
    Outcome.CONVERTED: "CONVERTED",
    Outcome.FAILED: "FAILED",
}


@dataclass(frozen=True)
class WorkResult:
    """Result of processing a single file."""

    outcome: Outcome
    relative_path: PurePath
    source_path: Path
    dest_path: Path | None
    message: str
    elapsed_secs: float = 0.0


def process_file(
    media_file: MediaFile,
    config: ConverterConfig,
    inspector: MediaInspector,
    encoder: MediaEncoder,
) -> WorkResult:
    """Run one file through the skip/copy/transcode decision.

    Never raises for per-file problems; they come back as a FAILED result.
    """
    start = time.monotonic()
    source = media_file.path

    def _result(outcome: Outcome, relative: PurePath, dest: Path | None, message: str) -> WorkResult:
        return WorkResult(
            outcome=outcome,
            relative_path=relative,
            source_path=source,
            dest_path=dest,
            message=message,
            elapsed_secs=time.monotonic() - start,
        )

    try:
        mirrored = mirror_path(source, config.source_root, config.dest_root)
    except PathContainmentError as e:
        return _result(Outcome.FAILED, PurePath(source.name), None, str(e))

    relative = mirrored.relative_path
    dest = mirrored.destination_file

    if dest.exists() and same_path(dest, source):
        return _result(Outcome.SKIPPED_EXISTS, relative, dest, "Destination is the source file")
    if dest.exists() and not config.overwrite:
        return _result(Outcome.SKIPPED_EXISTS, relative, dest, "Already exists")

    try:
        mirrored.destination_directory.mkdir(parents=True, exist_ok=True)

        try:
            streams = inspector.probe_audio_streams(source)
        except ProbeError as e:
            logger.warning("Probe failed for %s, copying as-is: %s", relative, e)
            copy_atomic(source, dest)
            return _result(Outcome.COPIED_NO_AUDIO, relative, dest, f"Probe failed ({e}); copied as-is")

        if not streams:
            copy_atomic(source, dest)
            return _result(Outcome.COPIED_NO_AUDIO, relative, dest, "No audio streams; copied as-is")

        plan = build_plan(streams)
        if not needs_transcode(plan):
            codecs = ", ".join(s.codec_name for s in streams)
            copy_atomic(source, dest)
            return _result(Outcome.COPIED_COMPATIBLE, relative, dest, f"Audio compatible ({codecs}); copied")

        logger.info("Converting %s (%s)", relative, _describe(streams))
        _transcode(source, dest, streams, plan, config, inspector, encoder)
    except EncodeError as e:
        return _result(Outcome.FAILED, relative, dest, str(e))
    except OSError as e:
        return _result(Outcome.FAILED, relative, dest, f"I/O error: {e}")

    converted = sum(1 for s in streams if is_unsupported(s.codec_name))
    return _result(
        Outcome.CONVERTED,
        relative,
        dest,
        f"Converted {converted} of {len(streams)} audio stream(s) to FLAC",
    )


def _transcode(
    source: Path,
    dest: Path,
    streams: list[AudioStream],
    plan: CodecArgumentPlan,
    config: ConverterConfig,
    inspector: MediaInspector,
    encoder: MediaEncoder,
) -> None:
    """Encode into a temp file, verify it, then move it onto dest."""
    duration = inspector.probe_duration(source)

    with staged_output(dest) as tmp_path, progress_marker(dest, source) as marker:
        encoder.encode(
            source,
            tmp_path,
            plan,
            duration_secs=duration,
            on_progress=lambda fraction: write_marker(marker, source, fraction),
            timeout_secs=config.encode_timeout_secs,
        )
        _verify(tmp_path, streams, inspector)
        commit_output(tmp_path, dest)


def _verify(output: Path, source_streams: list[AudioStream], inspector: MediaInspector) -> None:
    """Re-probe the encoded file and check that no unsupported audio is left."""
    try:
        out_streams = inspector.probe_audio_streams(output)
    except ProbeError as e:
        raise EncodeError(f"Could not verify output: {e}") from e

    if len(out_streams) != len(source_streams):
        raise EncodeError(
            f"Output has {len(out_streams)} audio stream(s), expected {len(source_streams)}"
        )
    leftover = [s.codec_name for s in out_streams if is_unsupported(s.codec_name)]
    if leftover:
        raise EncodeError(f"Output still contains unsupported audio: {', '.join(leftover)}")


def _describe(streams: list[AudioStream]) -> str:
    return ", ".join(
        f"a:{s.index} {s.codec_name}{' -> flac' if is_unsupported(s.codec_name) else ''}"
        for s in streams
    )
