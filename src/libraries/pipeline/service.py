"""Event-driven pipeline: watch, debounce, settle, process."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import structlog
from watchdog.observers import Observer

from libraries.pipeline.debounce import PathDebouncer, TimerFactory
from libraries.pipeline.events import (
    INCOMING_PATTERN,
    FolderEventHandler,
    iter_existing_files,
)
from libraries.pipeline.processor import FileOutcome, FileProcessor

log = structlog.get_logger(__name__)

OutcomeCallback = Callable[[FileOutcome], None]


class PipelineState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    STOPPED = "stopped"


class FixerPipeline:
    """Feed every settled file in *watch_folder* through a :class:`FileProcessor`.

    Files already present when the pipeline starts go through the same
    debounce path as live notifications.  Distinct files are processed on a
    small thread pool; a path that settles again while it is being processed
    is queued once more after the current run finishes.
    """

    def __init__(
        self,
        processor: FileProcessor,
        watch_folder: Path,
        *,
        pattern: str = INCOMING_PATTERN,
        quiet_period: float = 1.0,
        workers: int = 4,
        on_outcome: OutcomeCallback | None = None,
        observer_factory: Callable[[], Any] = Observer,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.processor = processor
        self.watch_folder = watch_folder
        self.pattern = pattern
        self._on_outcome = on_outcome
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="imifixer"
        )
        self._debouncer = PathDebouncer(
            quiet_period, self._on_settled, timer_factory=timer_factory
        )
        self._lock = threading.Lock()
        self._in_flight: set[Path] = set()
        self._rerun: set[Path] = set()
        self.state = PipelineState.IDLE

    # Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"pipeline cannot start from state {self.state.value}")

        handler = FolderEventHandler(
            self._debouncer.trigger, self.pattern, root=self.watch_folder
        )
        self._observer = self._observer_factory()
        self._observer.schedule(handler, str(self.watch_folder), recursive=True)
        self._observer.start()
        self.state = PipelineState.WATCHING

        existing = 0
        for path in iter_existing_files(self.watch_folder, self.pattern):
            self._debouncer.trigger(path)
            existing += 1
        log.info(
            "pipeline.watching",
            folder=str(self.watch_folder),
            pattern=self.pattern,
            existing=existing,
        )

    def stop(self) -> None:
        """Stop watching and wait for files that are already being processed."""

        if self.state is not PipelineState.WATCHING:
            return
        self.state = PipelineState.STOPPED
        self._observer.stop()
        self._observer.join()
        self._debouncer.cancel_all()
        self._executor.shutdown(wait=True)
        log.info("pipeline.stopped", folder=str(self.watch_folder))

    def __enter__(self) -> "FixerPipeline":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def pending(self) -> int:
        return self._debouncer.pending

    # Dispatch ----------------------------------------------------------

    def _on_settled(self, path: Path) -> None:
        if not path.exists():
            log.debug("pipeline.settled_missing", file=str(path))
            return

        with self._lock:
            if path in self._in_flight:
                self._rerun.add(path)
                return
            self._in_flight.add(path)

        try:
            self._executor.submit(self._run, path)
        except RuntimeError:
            # executor already shut down
            with self._lock:
                self._in_flight.discard(path)
            log.debug("pipeline.dispatch_after_stop", file=str(path))

    def _run(self, path: Path) -> None:
        try:
            outcome = self.processor.process_with_retry(path)
            if self._on_outcome is not None:
                try:
                    self._on_outcome(outcome)
                except Exception:  # noqa: BLE001
                    log.exception("pipeline.outcome_callback_failed", file=str(path))
        finally:
            with self._lock:
                self._in_flight.discard(path)
                rerun = path in self._rerun
                self._rerun.discard(path)
        if rerun and self.state is PipelineState.WATCHING:
            self._on_settled(path)


__all__ = ["FixerPipeline", "OutcomeCallback", "PipelineState"]
