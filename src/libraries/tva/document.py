"""Load, inspect, and save TV-Anytime schedule documents.

Two extraction rules feed the same :class:`ScheduleRecord` shape:

``ScheduleEvent``
    Used by both published exports and incoming schedule files.  The IMI is
    stored directly in ``InstanceMetadataId`` and the service comes from the
    enclosing ``Schedule/@serviceIDRef``.
``BroadcastEvent``
    Only found in published exports.  The IMI is referenced indirectly through
    an ``InstanceDescription/RelatedMaterial`` entry whose ``HowRelated`` term
    marks it as the instance metadata id.
"""

from __future__ import annotations

import io
import os
import re
import tempfile
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from libraries.tva.models import ScheduleRecord

TVA_NS = "urn:tva:metadata:2010"
MPEG7_NS = "urn:tva:mpeg7:2008"
IMI_HOW_RELATED = "urn:tva:metadata:cs:HowRelatedCS:2010:16"

# ElementTree keeps prefixes in a process wide registry.
_namespace_lock = threading.Lock()
_GENERATED_PREFIX = re.compile(r"ns\d+$")


class TvaParseError(ValueError):
    """Raised when a document cannot be parsed into schedule records."""


def _tva(tag: str) -> str:
    return f"{{{TVA_NS}}}{tag}"


def _mpeg7(tag: str) -> str:
    return f"{{{MPEG7_NS}}}{tag}"


def parse_start_time(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""

    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise TvaParseError(f"Invalid start time: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class ScheduleEntry:
    """A parsed record still attached to the element it was read from."""

    record: ScheduleRecord
    element: ET.Element = field(compare=False, repr=False)


@dataclass
class TvaDocument:
    """Mutable in-memory TVA document."""

    path: Path
    tree: ET.ElementTree
    namespaces: dict[str, str] = field(default_factory=dict)

    @property
    def root(self) -> ET.Element:
        return self.tree.getroot()

    def _parent_map(self) -> dict[ET.Element, ET.Element]:
        return {child: parent for parent in self.root.iter() for child in parent}

    def schedule_entries(self) -> list[ScheduleEntry]:
        """Return every ``ScheduleEvent`` in document order."""

        parents = self._parent_map()
        entries: list[ScheduleEntry] = []
        for element in self.root.iter(_tva("ScheduleEvent")):
            schedule = parents.get(element)
            service_id = schedule.get("serviceIDRef") if schedule is not None else None
            if not service_id:
                raise TvaParseError(
                    f"ScheduleEvent in '{self.path}' has no parent Schedule/@serviceIDRef"
                )
            imi_element = element.find(_tva("InstanceMetadataId"))
            record = ScheduleRecord(
                program_crid=self._program_crid(element),
                service_id=service_id,
                imi=_text_or_none(imi_element),
                start_time=self._start_time(element),
            )
            entries.append(ScheduleEntry(record=record, element=element))
        return entries

    def broadcast_records(self) -> list[ScheduleRecord]:
        """Return every ``BroadcastEvent`` using the related-material IMI rule."""

        records: list[ScheduleRecord] = []
        for element in self.root.iter(_tva("BroadcastEvent")):
            service_id = element.get("serviceIDRef")
            if not service_id:
                raise TvaParseError(
                    f"BroadcastEvent in '{self.path}' is missing @serviceIDRef"
                )
            records.append(
                ScheduleRecord(
                    program_crid=self._program_crid(element),
                    service_id=service_id,
                    imi=_related_material_imi(element),
                    start_time=self._start_time(element),
                )
            )
        return records

    def set_imi(self, entry: ScheduleEntry, value: str) -> None:
        imi_element = entry.element.find(_tva("InstanceMetadataId"))
        if imi_element is None:
            raise TvaParseError(
                f"ScheduleEvent for {entry.record.program_crid!r} has no InstanceMetadataId"
            )
        imi_element.text = value

    def _program_crid(self, element: ET.Element) -> str:
        program = element.find(_tva("Program"))
        crid = program.get("crid") if program is not None else None
        if not crid:
            raise TvaParseError(
                f"{_local_name(element.tag)} in '{self.path}' is missing Program/@crid"
            )
        return crid

    def _start_time(self, element: ET.Element) -> datetime:
        start = _text_or_none(element.find(_tva("PublishedStartTime")))
        if start is None:
            raise TvaParseError(
                f"{_local_name(element.tag)} in '{self.path}' is missing PublishedStartTime"
            )
        return parse_start_time(start)


def _local_name(tag: str) -> str:
    return tag.rpartition("}")[2]


def _text_or_none(element: ET.Element | None) -> str | None:
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None


def _related_material_imi(element: ET.Element) -> str | None:
    description = element.find(_tva("InstanceDescription"))
    if description is None:
        return None
    for material in description.findall(_tva("RelatedMaterial")):
        hrefs = {how.get("href") for how in material.findall(_tva("HowRelated"))}
        if IMI_HOW_RELATED not in hrefs:
            continue
        return _text_or_none(
            material.find(f"{_tva('MediaLocator')}/{_mpeg7('MediaUri')}")
        )
    return None


def load_document(path: Path) -> TvaDocument:
    """Parse *path*, keeping comments and namespace prefixes."""

    return parse_document(path.read_bytes(), path=path)


def parse_document(data: bytes, *, path: Path = Path("<memory>")) -> TvaDocument:
    try:
        namespaces: dict[str, str] = {}
        for _event, (prefix, uri) in ET.iterparse(
            io.BytesIO(data), events=("start-ns",)
        ):
            namespaces.setdefault(prefix, uri)
        parser = ET.XMLParser(
            target=ET.TreeBuilder(insert_comments=True, insert_pis=True)
        )
        parser.feed(data)
        root = parser.close()
    except ET.ParseError as exc:
        raise TvaParseError(f"Malformed XML in '{path}': {exc}") from exc
    return TvaDocument(path=path, tree=ET.ElementTree(root), namespaces=namespaces)


def serialise_document(document: TvaDocument) -> bytes:
    buffer = io.BytesIO()
    with _namespace_lock:
        for prefix, uri in document.namespaces.items():
            if _GENERATED_PREFIX.match(prefix):
                continue
            ET.register_namespace(prefix, uri)
        document.tree.write(buffer, encoding="utf-8", xml_declaration=True)
    return buffer.getvalue()


def save_document(document: TvaDocument, destination: Path) -> Path:
    """Write *document* to *destination* atomically and return the path."""

    payload = serialise_document(document)
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, destination)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return destination


def iter_documents(folder: Path, pattern: str) -> Iterator[TvaDocument]:
    """Yield documents under *folder* matching *pattern* in sorted name order."""

    for path in sorted(folder.glob(pattern)):
        if path.is_file():
            yield load_document(path)


__all__ = [
    "IMI_HOW_RELATED",
    "MPEG7_NS",
    "TVA_NS",
    "ScheduleEntry",
    "TvaDocument",
    "TvaParseError",
    "iter_documents",
    "load_document",
    "parse_document",
    "parse_start_time",
    "save_document",
    "serialise_document",
]
