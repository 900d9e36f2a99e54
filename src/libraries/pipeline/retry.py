"""Fixed-count retry helper for files that are still being written."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for :func:`execute_with_retry`."""

    max_attempts: int = 10
    delay: float = 0.01

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")


class RetryExhaustedError(RuntimeError):
    """Raised when an operation keeps failing for every allowed attempt."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def execute_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "",
) -> T:
    """Call *func* until it succeeds or ``policy.max_attempts`` is reached."""

    attempts = 0
    while True:
        try:
            return func()
        except Exception as exc:  # noqa: BLE001
            attempts += 1
            if attempts >= policy.max_attempts:
                log.error(
                    "pipeline.retry_exhausted",
                    target=description,
                    attempts=attempts,
                    error=repr(exc),
                )
                raise RetryExhaustedError(
                    f"{description or 'operation'} failed after {attempts} attempts: {exc!r}",
                    attempts=attempts,
                    last_error=exc,
                ) from exc
            log.debug(
                "pipeline.retry_pending",
                target=description,
                attempt=attempts,
                max_attempts=policy.max_attempts,
                error=repr(exc),
            )
            sleep(policy.delay)


__all__ = ["RetryExhaustedError", "RetryPolicy", "execute_with_retry"]
