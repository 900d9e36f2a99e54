"""IMI reconciliation against the published reference corpus."""

from libraries.reconcile.engine import (
    ImiCorrection,
    ReconcileSummary,
    reconcile_document,
)
from libraries.reconcile.index import (
    REFERENCE_PATTERN,
    IndexSummary,
    ReferenceIndex,
    ReferenceIndexError,
    build_reference_index,
)

__all__ = [
    "ImiCorrection",
    "IndexSummary",
    "REFERENCE_PATTERN",
    "ReconcileSummary",
    "ReferenceIndex",
    "ReferenceIndexError",
    "build_reference_index",
    "reconcile_document",
]
