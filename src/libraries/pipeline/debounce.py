"""Per-path debouncing of filesystem notifications."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Protocol

import structlog

log = structlog.get_logger(__name__)


class TimerProtocol(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerProtocol]


class PathDebouncer:
    """Collapse bursts of events for one path into a single callback.

    Every :meth:`trigger` restarts the quiet period for that path only; once
    it elapses without another trigger, *callback* runs with the path.
    """

    def __init__(
        self,
        quiet_period: float,
        callback: Callable[[Path], None],
        *,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        if quiet_period < 0:
            raise ValueError("quiet_period must be non-negative")
        self._quiet_period = quiet_period
        self._callback = callback
        self._timer_factory = timer_factory
        self._timers: dict[Path, tuple[TimerProtocol, object]] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def trigger(self, path: Path) -> None:
        with self._lock:
            if self._closed:
                return
            existing = self._timers.pop(path, None)
            if existing is not None:
                existing[0].cancel()
            token = object()
            timer = self._timer_factory(
                self._quiet_period, lambda: self._fire(path, token)
            )
            timer.daemon = True
            self._timers[path] = (timer, token)
            timer.start()

    def _fire(self, path: Path, token: object) -> None:
        with self._lock:
            current = self._timers.get(path)
            # a newer trigger replaced this timer after it had already fired
            if self._closed or current is None or current[1] is not token:
                return
            del self._timers[path]
        log.debug("pipeline.debounce.settled", file=str(path))
        self._callback(path)

    def cancel_all(self) -> None:
        with self._lock:
            self._closed = True
            timers = [timer for timer, _token in self._timers.values()]
            self._timers.clear()
        for timer in timers:
            timer.cancel()


__all__ = ["PathDebouncer", "TimerFactory", "TimerProtocol"]
