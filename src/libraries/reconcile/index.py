"""Read-only lookup tables built from the published TVA corpus."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from pathlib import Path
from time import perf_counter
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

import structlog
from pydantic import BaseModel

from libraries.tva.document import TvaParseError, iter_documents
from libraries.tva.models import MatchingKey, ScheduleRecord

log = structlog.get_logger(__name__)

REFERENCE_PATTERN = "*_TVA.xml"


class ReferenceIndexError(RuntimeError):
    """Raised when the reference corpus cannot be indexed."""


class IndexSummary(BaseModel):
    total_records: int
    distinct_keys: int
    files: Sequence[str]
    records_per_service: Mapping[str, int]


class ReferenceIndex:
    """Immutable view over the reference corpus keyed by matching key."""

    def __init__(
        self,
        by_matching_key: Mapping[MatchingKey, str],
        count_by_service: Mapping[str, int],
        *,
        total_records: int,
        files: Sequence[Path] = (),
    ) -> None:
        self._by_matching_key = MappingProxyType(dict(by_matching_key))
        self._count_by_service = MappingProxyType(dict(count_by_service))
        self._total_records = total_records
        self._files = tuple(files)

    @classmethod
    def from_records(
        cls, records: Iterable[ScheduleRecord], *, files: Sequence[Path] = ()
    ) -> "ReferenceIndex":
        """Index *records*, later records in start time order winning.

        Records sharing a start time keep their iteration order, so callers
        must pass them in a deterministic sequence.
        """

        ordered = sorted(
            (record for record in records if record.imi),
            key=lambda record: record.matching_key.start_time,
        )
        by_key: dict[MatchingKey, str] = {}
        for record in ordered:
            key = record.matching_key
            previous = by_key.get(key)
            if previous is not None and previous != record.imi:
                log.warning(
                    "reconcile.index.duplicate_key",
                    crid=key.program_crid,
                    service=key.service_id,
                    start=key.start_time.isoformat(),
                    replaced=previous,
                    kept=record.imi,
                )
            by_key[key] = record.imi  # type: ignore[assignment]

        services = Counter(record.service_id for record in ordered)
        return cls(by_key, services, total_records=len(ordered), files=files)

    @property
    def total_records(self) -> int:
        return self._total_records

    def __len__(self) -> int:
        return len(self._by_matching_key)

    def lookup(
        self, program_crid: str, service_id: str, start_time: datetime
    ) -> str | None:
        key = ScheduleRecord(program_crid, service_id, None, start_time).matching_key
        return self._by_matching_key.get(key)

    def lookup_record(self, record: ScheduleRecord) -> str | None:
        return self._by_matching_key.get(record.matching_key)

    def count_for_service(self, service_id: str) -> int:
        return self._count_by_service.get(service_id, 0)

    def summary(self) -> IndexSummary:
        return IndexSummary(
            total_records=self._total_records,
            distinct_keys=len(self._by_matching_key),
            files=[path.name for path in self._files],
            records_per_service=dict(sorted(self._count_by_service.items())),
        )


def build_reference_index(
    folder: Path, pattern: str = REFERENCE_PATTERN
) -> ReferenceIndex:
    """Load every published export under *folder* and index its records."""

    if not folder.exists() or not folder.is_dir():
        raise ReferenceIndexError(f"Reference folder does not exist: {folder}")

    log.info("reconcile.index.loading", folder=str(folder), pattern=pattern)
    start = perf_counter()

    records: list[ScheduleRecord] = []
    files: list[Path] = []
    try:
        for document in iter_documents(folder, pattern):
            file_records = [entry.record for entry in document.schedule_entries()]
            file_records.extend(document.broadcast_records())
            skipped = sum(1 for record in file_records if not record.imi)
            if skipped:
                log.debug(
                    "reconcile.index.records_without_imi",
                    file=str(document.path),
                    skipped=skipped,
                )
            records.extend(file_records)
            files.append(document.path)
    except (OSError, TvaParseError) as exc:
        log.error("reconcile.index.failed", folder=str(folder), error=str(exc))
        raise ReferenceIndexError(
            f"Unable to load reference corpus from '{folder}': {exc}"
        ) from exc

    if not files:
        log.warning("reconcile.index.empty", folder=str(folder), pattern=pattern)

    index = ReferenceIndex.from_records(records, files=files)
    log.info(
        "reconcile.index.complete",
        files=len(files),
        events=index.total_records,
        keys=len(index),
        seconds=round(perf_counter() - start, 3),
    )
    return index


__all__ = [
    "IndexSummary",
    "REFERENCE_PATTERN",
    "ReferenceIndex",
    "ReferenceIndexError",
    "build_reference_index",
]
