"""Tests for the bounded parallel scheduler."""

from __future__ import annotations

import time
from pathlib import Path, PurePath
from unittest.mock import patch

import pytest
from conftest import ActivityTracker, FakeEncoder, FakeInspector, fake_mkv

from s95c_convert.scanner import MediaFile, scan_directory
from s95c_convert.scheduler import RunSummary, run_batch
from s95c_convert.worker import Outcome, WorkResult


def _result(outcome: Outcome) -> WorkResult:
    return WorkResult(
        outcome=outcome,
        relative_path=PurePath("x.mkv"),
        source_path=Path("/s/x.mkv"),
        dest_path=Path("/d/x.mkv"),
        message="",
    )


class TestRunSummary:
    """Tests for RunSummary.record()."""

    def test_counts_each_outcome(self) -> None:
        summary = RunSummary(total=5)
        for outcome in Outcome:
            summary.record(_result(outcome))

        assert summary.completed == 5
        assert summary.skipped == 1
        assert summary.copied == 2
        assert summary.converted == 1
        assert summary.failed == 1
        assert summary.remaining == 0


class TestRunBatch:
    """Tests for run_batch()."""

    def _populate(self, source: Path, count: int, codecs: list[str]) -> list[MediaFile]:
        for i in range(count):
            fake_mkv(source / f"file{i:02d}.mkv", codecs)
        return scan_directory(source)

    def test_every_file_produces_one_result(
        self, tmp_source_dir: Path, make_config, inspector: FakeInspector, encoder: FakeEncoder
    ) -> None:
        files = self._populate(tmp_source_dir, 7, ["aac", "dts"])
        batch = run_batch(files, make_config(max_parallel=3), inspector, encoder)

        assert batch.summary.total == 7
        assert batch.summary.completed == 7
        assert batch.summary.converted == 7
        assert len(batch.results) == 7
        assert {r.source_path for r in batch.results} == {f.path for f in files}
        assert not batch.stopped

    @pytest.mark.parametrize("max_parallel", [1, 2, 4])
    def test_concurrency_bound_respected(
        self, tmp_source_dir: Path, make_config, max_parallel: int
    ) -> None:
        tracker = ActivityTracker()
        inspector = FakeInspector(tracker, delay=0.01)
        encoder = FakeEncoder(tracker, delay=0.05)
        files = self._populate(tmp_source_dir, 10, ["dts"])

        batch = run_batch(files, make_config(max_parallel=max_parallel), inspector, encoder)

        assert batch.summary.converted == 10
        assert 1 <= tracker.max_active <= max_parallel
        assert tracker.active == 0

    def test_parallelism_is_used(self, tmp_source_dir: Path, make_config) -> None:
        tracker = ActivityTracker()
        files = self._populate(tmp_source_dir, 6, ["dts"])

        run_batch(
            files,
            make_config(max_parallel=3),
            FakeInspector(tracker),
            FakeEncoder(tracker, delay=0.2),
        )

        assert tracker.max_active >= 2

    def test_callback_sees_incremental_summary(
        self, tmp_source_dir: Path, make_config, inspector: FakeInspector, encoder: FakeEncoder
    ) -> None:
        files = self._populate(tmp_source_dir, 4, ["aac"])
        seen: list[int] = []

        run_batch(
            files,
            make_config(max_parallel=2),
            inspector,
            encoder,
            on_result=lambda result, summary: seen.append(summary.completed),
        )

        assert seen == [1, 2, 3, 4]

    def test_failures_are_counted_not_raised(
        self, tmp_source_dir: Path, make_config, inspector: FakeInspector
    ) -> None:
        files = self._populate(tmp_source_dir, 3, ["truehd"])
        batch = run_batch(files, make_config(max_parallel=2), inspector, FakeEncoder(fail=True))

        assert batch.summary.failed == 3
        assert batch.summary.completed == 3

    def test_worker_crash_becomes_failed_result(
        self, tmp_source_dir: Path, make_config, inspector: FakeInspector, encoder: FakeEncoder
    ) -> None:
        files = self._populate(tmp_source_dir, 2, ["aac"])
        with patch("s95c_convert.scheduler.process_file", side_effect=RuntimeError("kaboom")):
            batch = run_batch(files, make_config(), inspector, encoder)

        assert batch.summary.failed == 2
        assert all("kaboom" in r.message for r in batch.results)

    def test_stop_request_stops_admitting(
        self, tmp_source_dir: Path, make_config, inspector: FakeInspector, encoder: FakeEncoder
    ) -> None:
        files = self._populate(tmp_source_dir, 5, ["aac"])
        batch = run_batch(
            files,
            make_config(max_parallel=1),
            inspector,
            encoder,
            should_stop=lambda: True,
        )

        assert batch.stopped
        assert batch.summary.completed == 1
        assert batch.summary.remaining == 4

    def test_empty_file_list(
        self, make_config, inspector: FakeInspector, encoder: FakeEncoder
    ) -> None:
        batch = run_batch([], make_config(), inspector, encoder)
        assert batch.summary.total == 0
        assert batch.results == []

    def test_interrupt_kills_running_encodes(
        self, tmp_source_dir: Path, tmp_dest_dir: Path, make_config, inspector: FakeInspector
    ) -> None:
        fake_mkv(tmp_source_dir / "a_quick.mkv", ["aac"])
        fake_mkv(tmp_source_dir / "b_slow.mkv", ["dts"])
        fake_mkv(tmp_source_dir / "c_waiting.mkv", ["dts"])
        files = scan_directory(tmp_source_dir)
        encoder = FakeEncoder(delay=30)

        def _interrupt(result: WorkResult, summary: RunSummary) -> None:
            raise KeyboardInterrupt

        start = time.monotonic()
        with pytest.raises(KeyboardInterrupt):
            run_batch(files, make_config(max_parallel=2), inspector, encoder, on_result=_interrupt)

        assert time.monotonic() - start < 5
        assert encoder.terminated

        # The killed encode's worker removes its temp file and marker
        deadline = time.monotonic() + 5
        while any(p.name.startswith((".b_slow.mkv.", "b_slow.mkv.")) for p in tmp_dest_dir.iterdir()):
            assert time.monotonic() < deadline
            time.sleep(0.05)
        assert not (tmp_dest_dir / "b_slow.mkv").exists()
        assert "c_waiting.mkv" not in {c["source"].name for c in encoder.calls}
