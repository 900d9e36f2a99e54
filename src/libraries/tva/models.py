"""Record types shared by the TVA codec and the reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import NamedTuple


class MatchingKey(NamedTuple):
    """Composite key locating a broadcast instance in the reference corpus."""

    program_crid: str
    service_id: str
    start_time: datetime


@dataclass(frozen=True, slots=True)
class ScheduleRecord:
    """One schedule entry extracted from a TVA document."""

    program_crid: str
    service_id: str
    imi: str | None
    start_time: datetime

    @property
    def matching_key(self) -> MatchingKey:
        start = self.start_time
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return MatchingKey(
            self.program_crid, self.service_id, start.astimezone(timezone.utc)
        )


__all__ = ["MatchingKey", "ScheduleRecord"]
