"""Bounded parallel execution of file workers."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Callable

from s95c_convert.config import ConverterConfig
from s95c_convert.encoder import MediaEncoder
from s95c_convert.inspector import MediaInspector
from s95c_convert.scanner import MediaFile
from s95c_convert.worker import Outcome, WorkResult, process_file

logger = logging.getLogger(__name__)

ResultCallback = Callable[[WorkResult, "RunSummary"], None]


@dataclass
class RunSummary:
    """Counters for one run. Only the scheduling thread updates them."""

    total: int = 0
    completed: int = 0
    skipped: int = 0
    copied: int = 0
    converted: int = 0
    failed: int = 0

    def record(self, result: WorkResult) -> None:
        self.completed += 1
        if result.outcome is Outcome.SKIPPED_EXISTS:
            self.skipped += 1
        elif result.outcome in (Outcome.COPIED_NO_AUDIO, Outcome.COPIED_COMPATIBLE):
            self.copied += 1
        elif result.outcome is Outcome.CONVERTED:
            self.converted += 1
        else:
            self.failed += 1

    @property
    def remaining(self) -> int:
        return self.total - self.completed


@dataclass
class BatchOutcome:
    """Everything a finished (or stopped) batch produced."""

    summary: RunSummary
    results: list[WorkResult] = field(default_factory=list)
    stopped: bool = False


def run_batch(
    files: list[MediaFile],
    config: ConverterConfig,
    inspector: MediaInspector,
    encoder: MediaEncoder,
    on_result: ResultCallback | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> BatchOutcome:
    """Process files with at most config.max_parallel workers in flight.

    Files are admitted in list order; a new one starts whenever a running
    one finishes. Results are recorded on this thread as they arrive, in
    completion order. If should_stop() turns true, no new files are
    admitted and the batch ends once the running ones finish.

    An exception on this thread (a forced stop arrives as KeyboardInterrupt)
    kills the running encodes and propagates without waiting for them.
    """
    outcome = BatchOutcome(summary=RunSummary(total=len(files)))
    queue = iter(files)
    in_flight: dict[Future[WorkResult], MediaFile] = {}

    def _admit(executor: ThreadPoolExecutor) -> bool:
        media_file = next(queue, None)
        if media_file is None:
            return False
        future = executor.submit(process_file, media_file, config, inspector, encoder)
        in_flight[future] = media_file
        return True

    executor = ThreadPoolExecutor(
        max_workers=config.max_parallel, thread_name_prefix="s95c-worker"
    )
    try:
        while len(in_flight) < config.max_parallel and _admit(executor):
            pass

        while in_flight:
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                media_file = in_flight.pop(future)
                result = _collect(future, media_file)
                outcome.results.append(result)
                outcome.summary.record(result)
                if on_result is not None:
                    on_result(result, outcome.summary)

            unstarted = len(files) - outcome.summary.completed - len(in_flight)
            if unstarted and should_stop is not None and should_stop():
                if not outcome.stopped:
                    logger.info(
                        "Stop requested: %d file(s) not started, waiting for %d running",
                        unstarted,
                        len(in_flight),
                    )
                outcome.stopped = True
                continue

            while len(in_flight) < config.max_parallel and _admit(executor):
                pass
    except BaseException:
        # Forced stop: kill running encodes instead of waiting them out
        logger.warning("Batch interrupted, terminating %d running file(s)", len(in_flight))
        encoder.terminate_all()
        executor.shutdown(wait=False, cancel_futures=True)
        raise

    executor.shutdown(wait=True)
    return outcome


def _collect(future: Future[WorkResult], media_file: MediaFile) -> WorkResult:
    """Return the future's result, turning an unexpected crash into FAILED."""
    try:
        return future.result()
    except Exception as e:
        logger.exception("Unexpected error processing %s", media_file.path)
        return WorkResult(
            outcome=Outcome.FAILED,
            relative_path=PurePath(media_file.path.name),
            source_path=media_file.path,
            dest_path=None,
            message=f"Unexpected error: {e}",
        )
