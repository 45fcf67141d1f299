"""
Section detection for streamed analysis text.

``classify_fragment`` is a pure function: the running section label is passed
in and the (possibly updated) label is handed back, so a run threads its own
state and nothing is shared between runs.
"""

from __future__ import annotations

from core.constants import SECTION_MARKERS, SectionMarker
from models.analysis_models import ContentChunk, SectionStarted

ClassifiedEvent = SectionStarted | ContentChunk


def find_section_marker(fragment: str) -> SectionMarker | None:
    """Return the highest-priority section marker contained in ``fragment``.

    Matching is case-insensitive containment. Headings split across two
    fragments are not reassembled.
    """
    if not fragment:
        return None
    upper = fragment.upper()
    for marker in SECTION_MARKERS:
        if marker.marker in upper:
            return marker
    return None


def classify_fragment(fragment: str, current_section: str) -> tuple[str, list[ClassifiedEvent]]:
    """Classify one fragment of streamed text.

    Args:
        fragment: Text just received from the stream (may be empty)
        current_section: Section label in effect before this fragment ("" for none)

    Returns:
        Tuple of (section label after this fragment, events to emit). The events
        are a ``SectionStarted`` when the label changes, followed by exactly one
        ``ContentChunk`` carrying the verbatim fragment and the new label.
    """
    events: list[ClassifiedEvent] = []
    section = current_section

    marker = find_section_marker(fragment)
    if marker is not None and marker.label != current_section:
        section = marker.label
        events.append(SectionStarted(section=section, message=marker.message))

    events.append(ContentChunk(section=section, chunk=fragment))
    return section, events


__all__ = ["ClassifiedEvent", "classify_fragment", "find_section_marker"]
