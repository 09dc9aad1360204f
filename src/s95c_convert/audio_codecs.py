"""Audio codec classification and per-stream ffmpeg codec arguments."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

# Samsung S95C cannot decode any DTS variant or Dolby TrueHD.
UNSUPPORTED_PREFIX = "dts"
UNSUPPORTED_EXACT: frozenset[str] = frozenset({"truehd"})

LOSSLESS_CODEC = "flac"
LOSSLESS_COMPRESSION_LEVEL = 12


class HasCodecName(Protocol):
    codec_name: str


class Action(Enum):
    """What to do with one audio stream."""

    TRANSCODE = "transcode"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class StreamDirective:
    """Encoder directive for a single audio stream."""

    action: Action
    codec: str | None = None
    compression_level: int | None = None

    @property
    def is_transcode(self) -> bool:
        return self.action is Action.TRANSCODE


TRANSCODE = StreamDirective(
    action=Action.TRANSCODE,
    codec=LOSSLESS_CODEC,
    compression_level=LOSSLESS_COMPRESSION_LEVEL,
)
PASSTHROUGH = StreamDirective(action=Action.PASSTHROUGH)

# Entry i applies to audio stream i of the source.
CodecArgumentPlan = tuple[StreamDirective, ...]


def is_unsupported(codec_name: str | None) -> bool:
    """Return True if the codec must be re-encoded for the TV.

    Matches every DTS flavour ffprobe reports (``dts``, ``dts-hd``, ...) by
    prefix and ``truehd`` exactly. Empty or missing names are never flagged.
    """
    if not codec_name:
        return False
    normalized = codec_name.strip().lower()
    if not normalized:
        return False
    return normalized.startswith(UNSUPPORTED_PREFIX) or normalized in UNSUPPORTED_EXACT


def build_plan(streams: Iterable[HasCodecName]) -> CodecArgumentPlan:
    """Build one directive per audio stream, preserving stream order."""
    return tuple(
        TRANSCODE if is_unsupported(stream.codec_name) else PASSTHROUGH
        for stream in streams
    )


def needs_transcode(plan: CodecArgumentPlan) -> bool:
    """True if any stream in the plan must be re-encoded."""
    return any(d.is_transcode for d in plan)


def codec_arguments(plan: CodecArgumentPlan) -> list[str]:
    """Render the plan as ffmpeg output options for the audio streams.

    Stream specifiers are output audio indices, so the plan must list the
    streams in exactly the order they are mapped.
    """
    args: list[str] = []
    for i, directive in enumerate(plan):
        if directive.is_transcode:
            args.extend([
                f"-c:a:{i}", str(directive.codec),
                f"-compression_level:a:{i}", str(directive.compression_level),
            ])
        else:
            args.extend([f"-c:a:{i}", "copy"])
    return args
