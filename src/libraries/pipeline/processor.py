"""Reconcile a single settled file and move the result to the output folder."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

import structlog

from libraries.pipeline.retry import RetryExhaustedError, RetryPolicy, execute_with_retry
from libraries.reconcile.engine import ReconcileSummary, reconcile_document
from libraries.reconcile.index import ReferenceIndex
from libraries.tva.document import TvaDocument, load_document, save_document

log = structlog.get_logger(__name__)


class FileStatus(str, Enum):
    FIXED = "fixed"
    VANISHED = "vanished"
    FAILED = "failed"


@dataclass
class FileOutcome:
    """Result of pushing one input file through the processor."""

    source: Path
    status: FileStatus
    destination: Path | None = None
    summary: ReconcileSummary | None = None
    attempts: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is FileStatus.FIXED


class FileProcessor:
    """Load, reconcile, write, then delete the source file."""

    def __init__(
        self,
        index: ReferenceIndex,
        output_folder: Path,
        *,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        loader: Callable[[Path], TvaDocument] = load_document,
        writer: Callable[[TvaDocument, Path], Path] = save_document,
    ) -> None:
        self.index = index
        self.output_folder = output_folder
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._loader = loader
        self._writer = writer

    def destination_for(self, source: Path) -> Path:
        return self.output_folder / source.name

    def _is_own_output(self, source: Path) -> bool:
        return self.destination_for(source).resolve() == source.resolve()

    def process(self, source: Path) -> tuple[Path, ReconcileSummary]:
        """Run one attempt; the source is removed only after the write succeeds."""

        if self._is_own_output(source):
            raise ValueError(f"Refusing to overwrite {source} with its own output")
        document = self._loader(source)
        document, summary = reconcile_document(document, self.index)
        destination = self._writer(document, self.destination_for(source))
        source.unlink()
        return destination, summary

    def process_with_retry(self, source: Path) -> FileOutcome:
        if not source.exists():
            log.debug("pipeline.file_vanished", file=str(source))
            return FileOutcome(source=source, status=FileStatus.VANISHED)

        if self._is_own_output(source):
            log.error(
                "pipeline.file_refused",
                file=str(source),
                reason="source is already in the output folder",
            )
            return FileOutcome(
                source=source,
                status=FileStatus.FAILED,
                error="source file is already in the output folder",
            )

        attempts = 0

        def _attempt() -> tuple[Path, ReconcileSummary]:
            nonlocal attempts
            attempts += 1
            return self.process(source)

        try:
            destination, summary = execute_with_retry(
                _attempt,
                self.retry_policy,
                sleep=self._sleep,
                description=str(source),
            )
        except RetryExhaustedError as exc:
            log.error(
                "pipeline.file_failed",
                file=str(source),
                attempts=exc.attempts,
                error=repr(exc.last_error),
            )
            return FileOutcome(
                source=source,
                status=FileStatus.FAILED,
                attempts=exc.attempts,
                error=str(exc.last_error),
            )

        log.info(
            "pipeline.file_fixed",
            file=source.name,
            destination=str(destination),
            corrected=summary.corrected,
            unchanged=summary.unchanged,
            seen=summary.seen,
            service=summary.service_id,
            reference_events=summary.reference_events_for_service,
            attempts=attempts,
        )
        return FileOutcome(
            source=source,
            status=FileStatus.FIXED,
            destination=destination,
            summary=summary,
            attempts=attempts,
        )


__all__ = ["FileOutcome", "FileProcessor", "FileStatus"]
