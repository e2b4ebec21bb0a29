"""In-memory transcript: an ordered, id-addressable collection of segments."""

import logging
from typing import Dict, Iterable, List, Optional

from .models import Segment
from .subtitle_formatter import render_document

logger = logging.getLogger(__name__)

READING_RATE_WPM = 187
MIN_ESTIMATED_DURATION_MS = 1000


def clean_lines(text: Optional[str]) -> List[str]:
    """Splits text into stripped, non-blank display lines."""
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def estimate_duration_ms(text: Optional[str]) -> int:
    """Time needed to read `text` at READING_RATE_WPM, never below one second."""
    words = len((text or "").split())
    return max(MIN_ESTIMATED_DURATION_MS, round(words * 60000 / READING_RATE_WPM))


def make_segment_id(start_ms: int, end_ms: int, text: str) -> str:
    return f"{start_ms}-{end_ms}-{text}"


def build_segment(
    text: Optional[str],
    start_ms: int,
    end_ms: Optional[int] = None,
    segment_id: Optional[str] = None,
) -> Segment:
    """
    Normalizes backend output into a Segment.

    A missing or non-increasing end time is replaced by an estimate based on
    the word count. Without a backend id, one is synthesized from the range
    and the text.
    """
    lines = clean_lines(text)
    start_ms = max(0, int(start_ms))
    if end_ms is None or int(end_ms) <= start_ms:
        end_ms = start_ms + estimate_duration_ms(" ".join(lines))
    end_ms = int(end_ms)
    if segment_id is None:
        segment_id = make_segment_id(start_ms, end_ms, "\n".join(lines))
    return Segment(id=str(segment_id), start_ms=start_ms, end_ms=end_ms, text_lines=lines)


class SegmentCollection:
    """
    Ordered transcript state.

    Segments are kept sorted by start time (stable, so equal starts keep
    insertion order) and indexed by id. Only the owning writer thread should
    mutate an instance.
    """

    def __init__(self, segments: Optional[Iterable[Segment]] = None):
        self._segments: List[Segment] = []
        self._positions: Dict[str, int] = {}
        if segments:
            self.reset_all(segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __contains__(self, segment_id: str) -> bool:
        return segment_id in self._positions

    @property
    def segments(self) -> List[Segment]:
        return list(self._segments)

    def get(self, segment_id: str) -> Optional[Segment]:
        position = self._positions.get(segment_id)
        return None if position is None else self._segments[position]

    def upsert(self, segment: Segment) -> bool:
        """
        Inserts a new segment or replaces the one with the same id.

        Returns False when nothing changed: blank text, or an identical
        segment already stored.
        """
        if not segment.text.strip():
            return False
        position = self._positions.get(segment.id)
        if position is None:
            self._segments.append(segment)
            self._resort()
            return True
        previous = self._segments[position]
        if previous == segment:
            return False
        self._segments[position] = segment
        if previous.start_ms != segment.start_ms:
            self._resort()
        return True

    def reset_all(self, segments: Iterable[Segment]) -> None:
        """Replaces the whole collection; later duplicates of an id win."""
        by_id: Dict[str, Segment] = {}
        for segment in segments:
            if segment.text.strip():
                by_id[segment.id] = segment
        self._segments = list(by_id.values())
        self._resort()

    def render(self) -> str:
        return render_document(self._segments)

    def _resort(self) -> None:
        self._segments.sort(key=lambda segment: segment.start_ms)
        self._positions = {segment.id: index for index, segment in enumerate(self._segments)}
