"""Shared pytest fixtures for building TVA schedule documents."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Sequence
from xml.sax.saxutils import escape, quoteattr

import pytest

# (crid, service, imi or None, start time)
Event = tuple[str, str, Optional[str], str]

HOW_RELATED_IMI = "urn:tva:metadata:cs:HowRelatedCS:2010:16"


def _schedule_event(crid: str, imi: str | None, start: str) -> str:
    imi_xml = (
        f"          <InstanceMetadataId>{escape(imi)}</InstanceMetadataId>\n"
        if imi is not None
        else ""
    )
    return (
        "        <ScheduleEvent>\n"
        f"          <Program crid={quoteattr(crid)}/>\n"
        f"{imi_xml}"
        f"          <PublishedStartTime>{start}</PublishedStartTime>\n"
        "        </ScheduleEvent>\n"
    )


def _broadcast_event(crid: str, service: str, imi: str | None, start: str) -> str:
    related = ""
    if imi is not None:
        related = (
            "        <InstanceDescription>\n"
            "          <RelatedMaterial>\n"
            '            <HowRelated href="urn:tva:metadata:cs:HowRelatedCS:2010:19"/>\n'
            "            <MediaLocator><mpeg7:MediaUri>ignored</mpeg7:MediaUri></MediaLocator>\n"
            "          </RelatedMaterial>\n"
            "          <RelatedMaterial>\n"
            f'            <HowRelated href="{HOW_RELATED_IMI}"/>\n'
            f"            <MediaLocator><mpeg7:MediaUri>{escape(imi)}</mpeg7:MediaUri></MediaLocator>\n"
            "          </RelatedMaterial>\n"
            "        </InstanceDescription>\n"
        )
    return (
        f"      <BroadcastEvent serviceIDRef={quoteattr(service)}>\n"
        f"        <Program crid={quoteattr(crid)}/>\n"
        f"{related}"
        f"        <PublishedStartTime>{start}</PublishedStartTime>\n"
        "      </BroadcastEvent>\n"
    )


def build_tva_xml(
    events: Sequence[Event] = (),
    broadcast_events: Sequence[Event] = (),
) -> str:
    """Return a TVA document; consecutive events of one service share a Schedule."""

    schedules: list[str] = []
    current_service: str | None = None
    body: list[str] = []
    for crid, service, imi, start in events:
        if service != current_service and body:
            schedules.append(
                f"      <Schedule serviceIDRef={quoteattr(current_service or '')}>\n"
                + "".join(body)
                + "      </Schedule>\n"
            )
            body = []
        current_service = service
        body.append(_schedule_event(crid, imi, start))
    if body:
        schedules.append(
            f"      <Schedule serviceIDRef={quoteattr(current_service or '')}>\n"
            + "".join(body)
            + "      </Schedule>\n"
        )

    broadcasts = "".join(_broadcast_event(*event) for event in broadcast_events)
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<TVAMain xmlns="urn:tva:metadata:2010" xmlns:mpeg7="urn:tva:mpeg7:2008">\n'
        "  <!-- generated schedule -->\n"
        "  <ProgramDescription>\n"
        "    <ProgramLocationTable>\n"
        + "".join(schedules)
        + broadcasts
        + "    </ProgramLocationTable>\n"
        "  </ProgramDescription>\n"
        "</TVAMain>\n"
    )


WriteTva = Callable[..., Path]


@pytest.fixture
def tva_xml() -> Callable[..., str]:
    return build_tva_xml


@pytest.fixture
def write_tva() -> WriteTva:
    def _write(
        path: Path,
        events: Sequence[Event] = (),
        broadcast_events: Sequence[Event] = (),
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(build_tva_xml(events, broadcast_events), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def folders(tmp_path: Path) -> dict[str, Path]:
    layout = {
        "watch": tmp_path / "incoming",
        "output": tmp_path / "corrected",
        "reference": tmp_path / "published",
    }
    for folder in layout.values():
        folder.mkdir()
    return layout
