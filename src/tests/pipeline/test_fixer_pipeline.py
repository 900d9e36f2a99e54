from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest
from watchdog.events import FileModifiedEvent

from libraries.pipeline.processor import FileOutcome, FileProcessor, FileStatus
from libraries.pipeline.service import FixerPipeline, PipelineState
from libraries.reconcile.index import ReferenceIndex
from libraries.tva.models import ScheduleRecord

START = "2024-01-01T10:00:00Z"


class FakeObserver:
    def __init__(self) -> None:
        self.scheduled: list[tuple[object, str, bool]] = []
        self.started = False
        self.stopped = False
        self.joined = False

    def schedule(self, handler, path: str, recursive: bool = False) -> None:
        self.scheduled.append((handler, path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        self.joined = True


class ManualTimer:
    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.cancelled = False

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Timer factory whose timers only fire when told to."""

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    def fire_pending(self) -> None:
        for timer in list(self.timers):
            if not timer.cancelled:
                self.timers.remove(timer)
                timer.function()


@pytest.fixture
def index() -> ReferenceIndex:
    return ReferenceIndex.from_records(
        [ScheduleRecord("P1", "S1", "IMI-OLD", datetime(2024, 1, 1, 10, tzinfo=timezone.utc))]
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


def _pipeline(processor, watch: Path, clock: ManualClock, outcomes: list[FileOutcome], **kwargs):
    observer = FakeObserver()
    pipeline = FixerPipeline(
        processor,
        watch,
        quiet_period=1.0,
        on_outcome=outcomes.append,
        observer_factory=lambda: observer,
        timer_factory=clock,
        **kwargs,
    )
    return pipeline, observer


def test_existing_files_are_processed_after_they_settle(folders, write_tva, index, clock) -> None:
    for name in ("a.xml", "b.xml"):
        write_tva(folders["watch"] / name, [("P1", "S1", "IMI-NEW", START)])
    processor = FileProcessor(index, folders["output"], sleep=lambda _: None)
    outcomes: list[FileOutcome] = []
    pipeline, observer = _pipeline(processor, folders["watch"], clock, outcomes)

    pipeline.start()
    assert observer.started
    assert observer.scheduled[0][1:] == (str(folders["watch"]), True)
    assert pipeline.state is PipelineState.WATCHING
    assert pipeline.pending == 2
    assert [timer.interval for timer in clock.timers] == [1.0, 1.0]

    clock.fire_pending()
    pipeline.stop()

    assert observer.stopped and observer.joined
    assert pipeline.state is PipelineState.STOPPED
    assert sorted(outcome.source.name for outcome in outcomes) == ["a.xml", "b.xml"]
    assert all(outcome.status is FileStatus.FIXED for outcome in outcomes)
    assert sorted(path.name for path in folders["output"].iterdir()) == ["a.xml", "b.xml"]
    assert list(folders["watch"].iterdir()) == []


def test_notifications_are_debounced_per_path(folders, write_tva, index, clock) -> None:
    processor = FileProcessor(index, folders["output"], sleep=lambda _: None)
    outcomes: list[FileOutcome] = []
    pipeline, observer = _pipeline(processor, folders["watch"], clock, outcomes)

    with pipeline:
        handler = observer.scheduled[0][0]
        source = write_tva(folders["watch"] / "live.xml", [("P1", "S1", "IMI-NEW", START)])
        for _ in range(5):
            handler.dispatch(FileModifiedEvent(str(source)))
        assert pipeline.pending == 1
        clock.fire_pending()

    assert len(outcomes) == 1
    assert outcomes[0].summary is not None
    assert outcomes[0].summary.corrected == 1


def test_path_that_vanished_before_settling_is_dropped(folders, write_tva, index, clock) -> None:
    source = write_tva(folders["watch"] / "temp.xml", [("P1", "S1", "IMI-NEW", START)])
    processor = FileProcessor(index, folders["output"], sleep=lambda _: None)
    outcomes: list[FileOutcome] = []
    pipeline, _observer = _pipeline(processor, folders["watch"], clock, outcomes)

    pipeline.start()
    source.unlink()
    clock.fire_pending()
    pipeline.stop()

    assert outcomes == []
    assert list(folders["output"].iterdir()) == []


class BlockingProcessor:
    """Stand-in processor that holds its first run until released."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.second_run = threading.Event()
        self.calls = 0
        self._lock = threading.Lock()

    def process_with_retry(self, source: Path) -> FileOutcome:
        with self._lock:
            self.calls += 1
            call = self.calls
        if call == 1:
            self.release.wait(timeout=5)
        else:
            self.second_run.set()
        return FileOutcome(source=source, status=FileStatus.FIXED, attempts=1)


def test_settling_again_while_in_flight_queues_one_rerun(folders, clock) -> None:
    source = folders["watch"] / "busy.xml"
    source.write_text("<x/>", encoding="utf-8")
    processor = BlockingProcessor()
    outcomes: list[FileOutcome] = []
    pipeline, _observer = _pipeline(processor, folders["watch"], clock, outcomes, workers=2)

    pipeline.start()
    clock.fire_pending()
    assert pipeline.in_flight == 1

    for _ in range(3):
        pipeline._debouncer.trigger(source)
        clock.fire_pending()
    assert pipeline.in_flight == 1

    processor.release.set()
    assert processor.second_run.wait(timeout=5)
    pipeline.stop()

    assert processor.calls == 2
    assert len(outcomes) == 2


def test_pipeline_rejects_a_second_start(folders, index, clock) -> None:
    processor = FileProcessor(index, folders["output"], sleep=lambda _: None)
    pipeline, _observer = _pipeline(processor, folders["watch"], clock, [])

    pipeline.start()
    try:
        with pytest.raises(RuntimeError):
            pipeline.start()
    finally:
        pipeline.stop()
