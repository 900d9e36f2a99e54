"""Correct drifted IMI values in a TVA document against the reference index."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

import structlog
from pydantic import BaseModel

from libraries.reconcile.index import ReferenceIndex
from libraries.tva.document import TvaDocument

log = structlog.get_logger(__name__)


class ImiCorrection(BaseModel):
    program_crid: str
    service_id: str
    start_time: datetime
    previous_imi: str
    reference_imi: str


class ReconcileSummary(BaseModel):
    """Counters produced for one reconciled document."""

    seen: int = 0
    matched: int = 0
    corrected: int = 0
    service_id: str = ""
    reference_events_for_service: int = 0
    corrections: Sequence[ImiCorrection] = ()

    @property
    def unchanged(self) -> int:
        return self.matched - self.corrected


def reconcile_document(
    document: TvaDocument, index: ReferenceIndex
) -> tuple[TvaDocument, ReconcileSummary]:
    """Rewrite every ``ScheduleEvent`` IMI that differs from the reference.

    Records are visited in document order and only the ``InstanceMetadataId``
    text is touched.  Records without a reference entry, or without an IMI
    element of their own, are left as they are.
    """

    seen = matched = 0
    service_id = ""
    corrections: list[ImiCorrection] = []

    for entry in document.schedule_entries():
        record = entry.record
        seen += 1
        service_id = record.service_id

        reference_imi = index.lookup_record(record)
        if reference_imi is None or record.imi is None:
            continue
        matched += 1
        if reference_imi == record.imi:
            continue

        document.set_imi(entry, reference_imi)
        corrections.append(
            ImiCorrection(
                program_crid=record.program_crid,
                service_id=record.service_id,
                start_time=record.start_time,
                previous_imi=record.imi,
                reference_imi=reference_imi,
            )
        )

    summary = ReconcileSummary(
        seen=seen,
        matched=matched,
        corrected=len(corrections),
        service_id=service_id,
        reference_events_for_service=index.count_for_service(service_id),
        corrections=corrections,
    )
    log.debug(
        "reconcile.document.complete",
        file=str(document.path),
        seen=summary.seen,
        matched=summary.matched,
        corrected=summary.corrected,
    )
    return document, summary


__all__ = ["ImiCorrection", "ReconcileSummary", "reconcile_document"]
