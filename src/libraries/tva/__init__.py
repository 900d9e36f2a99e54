"""TV-Anytime schedule document helpers."""

from libraries.tva.document import (
    IMI_HOW_RELATED,
    MPEG7_NS,
    TVA_NS,
    ScheduleEntry,
    TvaDocument,
    TvaParseError,
    iter_documents,
    load_document,
    parse_document,
    parse_start_time,
    save_document,
    serialise_document,
)
from libraries.tva.models import MatchingKey, ScheduleRecord

__all__ = [
    "IMI_HOW_RELATED",
    "MPEG7_NS",
    "TVA_NS",
    "MatchingKey",
    "ScheduleEntry",
    "ScheduleRecord",
    "TvaDocument",
    "TvaParseError",
    "iter_documents",
    "load_document",
    "parse_document",
    "parse_start_time",
    "save_document",
    "serialise_document",
]
