"""Watch-folder pipeline that feeds schedule files into the reconciler."""

from libraries.pipeline.debounce import PathDebouncer
from libraries.pipeline.events import (
    INCOMING_PATTERN,
    FolderEventHandler,
    iter_existing_files,
    matches_pattern,
)
from libraries.pipeline.processor import FileOutcome, FileProcessor, FileStatus
from libraries.pipeline.retry import RetryExhaustedError, RetryPolicy, execute_with_retry
from libraries.pipeline.service import FixerPipeline, PipelineState

__all__ = [
    "INCOMING_PATTERN",
    "FileOutcome",
    "FileProcessor",
    "FileStatus",
    "FixerPipeline",
    "FolderEventHandler",
    "PathDebouncer",
    "PipelineState",
    "RetryExhaustedError",
    "RetryPolicy",
    "execute_with_retry",
    "iter_existing_files",
    "matches_pattern",
]
