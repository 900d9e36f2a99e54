"""Filesystem notification sources feeding the fixer pipeline."""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Callable, Iterator

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler

log = structlog.get_logger(__name__)

INCOMING_PATTERN = "*.xml"


def matches_pattern(path: Path, pattern: str) -> bool:
    """Case-insensitive filename match, like a Windows folder filter."""

    return fnmatch.fnmatch(path.name.lower(), pattern.lower())


def iter_existing_files(folder: Path, pattern: str = INCOMING_PATTERN) -> Iterator[Path]:
    """Yield files already present anywhere below *folder*."""

    for path in sorted(folder.rglob("*")):
        if path.is_file() and matches_pattern(path, pattern):
            yield path


class FolderEventHandler(FileSystemEventHandler):
    """Forward create, modify, delete and move-in events for matching files.

    With *root* set, a move whose destination lies outside *root* is ignored.
    """

    def __init__(
        self,
        callback: Callable[[Path], None],
        pattern: str = INCOMING_PATTERN,
        *,
        root: Path | None = None,
    ) -> None:
        super().__init__()
        self._callback = callback
        self._pattern = pattern
        self._root = root

    def _forward(self, raw_path: str | bytes, kind: str) -> None:
        path = Path(os.fsdecode(raw_path))
        if not matches_pattern(path, self._pattern):
            return
        log.debug("pipeline.event", kind=kind, file=str(path))
        self._callback(path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, "modified")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, "deleted")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        destination = Path(os.fsdecode(event.dest_path))
        if self._root is not None and self._root not in destination.parents:
            log.debug("pipeline.moved_out", file=str(destination))
            return
        self._forward(event.dest_path, "moved")


__all__ = [
    "INCOMING_PATTERN",
    "FolderEventHandler",
    "iter_existing_files",
    "matches_pattern",
]
