"""Shared test fixtures for s95c-convert.

Fake media files are plain text: ``AUDIO:aac,dts|payload``. The fake
inspector reads the codec list back from the file and the fake encoder
rewrites it according to the codec plan, so the worker can be driven end to
end without ffmpeg.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any

import pytest
import tomli_w

from s95c_convert.audio_codecs import CodecArgumentPlan
from s95c_convert.config import ConverterConfig
from s95c_convert.errors import EncodeError, ProbeError
from s95c_convert.inspector import AudioStream


def fake_mkv(path: Path, codecs: list[str], payload: str = "video") -> Path:
    """Write a fake MKV whose audio streams are the given codecs."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"AUDIO:{','.join(codecs)}|{payload}", encoding="utf-8")
    return path


def read_codecs(path: Path) -> list[str]:
    """Codec list stored in a fake MKV."""
    header = path.read_text(encoding="utf-8").split("|", 1)[0]
    names = header.removeprefix("AUDIO:")
    return [c for c in names.split(",") if c]


class ActivityTracker:
    """Counts simultaneously running fake subprocesses."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def __enter__(self) -> ActivityTracker:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        return self

    def __exit__(self, *exc: Any) -> None:
        with self._lock:
            self.active -= 1


class FakeInspector:
    """MediaInspector that reads the codec header of a fake MKV."""

    def __init__(self, tracker: ActivityTracker | None = None, delay: float = 0.0) -> None:
        self.tracker = tracker or ActivityTracker()
        self.delay = delay
        self.probed: list[Path] = []
        self._lock = threading.Lock()

    def probe_audio_streams(self, path: Path) -> list[AudioStream]:
        with self.tracker:
            time.sleep(self.delay)
            with self._lock:
                self.probed.append(path)
            text = path.read_text(encoding="utf-8", errors="replace")
            if not text.startswith("AUDIO:"):
                raise ProbeError("Invalid data found when processing input")
            return [
                AudioStream(index=i, codec_name=c)
                for i, c in enumerate(read_codecs(path))
            ]

    def probe_duration(self, path: Path) -> float | None:
        return 100.0


class FakeEncoder:
    """MediaEncoder that rewrites the codec header according to the plan."""

    def __init__(
        self,
        tracker: ActivityTracker | None = None,
        delay: float = 0.0,
        fail: bool = False,
        ignore_plan: bool = False,
    ) -> None:
        self.tracker = tracker or ActivityTracker()
        self.delay = delay
        self.fail = fail
        self.ignore_plan = ignore_plan
        self.calls: list[dict[str, Any]] = []
        self.markers_seen: list[bool] = []
        self.terminated = False
        self._lock = threading.Lock()
        self._killed = threading.Event()

    def terminate_all(self) -> None:
        self.terminated = True
        self._killed.set()

    def encode(
        self,
        source: Path,
        output: Path,
        plan: CodecArgumentPlan,
        *,
        duration_secs: float | None = None,
        on_progress: Any = None,
        timeout_secs: float | None = None,
    ) -> None:
        with self.tracker:
            with self._lock:
                self.calls.append({
                    "source": source,
                    "output": output,
                    "plan": plan,
                    "duration_secs": duration_secs,
                    "timeout_secs": timeout_secs,
                })
                self.markers_seen.append(any(output.parent.glob("*.progress.json")))
            output.write_text("half-written", encoding="utf-8")
            if self._killed.wait(self.delay):
                raise EncodeError("ffmpeg was terminated")
            if on_progress is not None:
                on_progress(0.5)
            if self.fail:
                raise EncodeError("ffmpeg exited with 1: simulated failure")

            codecs = read_codecs(source)
            if not self.ignore_plan:
                codecs = [
                    d.codec if d.is_transcode else c
                    for c, d in zip(codecs, plan)
                ]
            payload = source.read_text(encoding="utf-8").split("|", 1)[1]
            fake_mkv(output, [str(c) for c in codecs], payload)
            if on_progress is not None:
                on_progress(1.0)


@pytest.fixture
def tmp_source_dir(tmp_path: Path) -> Path:
    """Create a temporary source directory."""
    d = tmp_path / "source"
    d.mkdir()
    return d


@pytest.fixture
def tmp_dest_dir(tmp_path: Path) -> Path:
    """Path for the destination root (not created)."""
    return tmp_path / "dest"


@pytest.fixture
def make_config(tmp_source_dir: Path, tmp_dest_dir: Path):
    """Factory for ConverterConfig pointing at the temp directories."""

    def _make(**overrides: Any) -> ConverterConfig:
        tmp_dest_dir.mkdir(parents=True, exist_ok=True)
        values: dict[str, Any] = {
            "source_root": tmp_source_dir,
            "dest_root": tmp_dest_dir,
        }
        values.update(overrides)
        return ConverterConfig(**values)

    return _make


@pytest.fixture
def tracker() -> ActivityTracker:
    return ActivityTracker()


@pytest.fixture
def inspector(tracker: ActivityTracker) -> FakeInspector:
    return FakeInspector(tracker)


@pytest.fixture
def encoder(tracker: ActivityTracker) -> FakeEncoder:
    return FakeEncoder(tracker)


@pytest.fixture
def sample_config_file(tmp_path: Path, tmp_source_dir: Path, tmp_dest_dir: Path) -> Path:
    """Write a sample config TOML file and return its path."""
    config_path = tmp_path / "config.toml"
    data = {
        "source_root": str(tmp_source_dir),
        "dest_root": str(tmp_dest_dir),
        "max_parallel": 3,
    }
    config_path.write_bytes(tomli_w.dumps(data).encode())
    return config_path

