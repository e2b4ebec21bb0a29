"""Converts between millisecond timestamps, segments and SRT (SubRip Text) documents."""

import logging
import re
from typing import Iterable, List, Optional

from .models import Segment, SrtBlock

logger = logging.getLogger(__name__)

# Hours take two or more digits so that long media round-trips.
TIMESTAMP_PATTERN = re.compile(r"^(\d{2,}):(\d{2}):(\d{2}),(\d{3})$")
TIMING_LINE_PATTERN = re.compile(r"^(\d{2,}:\d{2}:\d{2},\d{3})\s+-->\s+(\d{2,}:\d{2}:\d{2},\d{3})$")
BLOCK_SEPARATOR = re.compile(r"\r?\n\r?\n")
LINE_SEPARATOR = re.compile(r"\r?\n")


def parse_timestamp(text: Optional[str]) -> int:
    """
    Parses an SRT timestamp (HH:MM:SS,mmm) into milliseconds.

    Anything that does not match the pattern yields 0; callers treat 0 as
    "unparseable".
    """
    match = TIMESTAMP_PATTERN.match(text or "")
    if not match:
        return 0
    hours, minutes, seconds, millis = (int(group) for group in match.groups())
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + millis


def format_timestamp(milliseconds: float) -> str:
    """
    Formats milliseconds into SRT time format HH:MM:SS,mmm.

    Negative input is clamped to zero. The hours field is not wrapped.
    """
    clamped = max(0, int(milliseconds))
    hours = clamped // 3600000
    minutes = (clamped % 3600000) // 60000
    seconds = (clamped % 60000) // 1000
    millis = clamped % 1000
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def format_timing_line(start_ms: int, end_ms: int) -> str:
    return f"{format_timestamp(start_ms)} --> {format_timestamp(end_ms)}"


def is_timing_line(line: Optional[str]) -> bool:
    return bool(TIMING_LINE_PATTERN.match(line or ""))


def split_timing_line(line: str):
    """Returns (start_ms, end_ms) for a valid timing line, or None."""
    match = TIMING_LINE_PATTERN.match(line or "")
    if not match:
        return None
    return parse_timestamp(match.group(1)), parse_timestamp(match.group(2))


def render_document(segments: Iterable[Segment]) -> str:
    """
    Renders segments as an SRT document.

    Segments are ordered by start time (stable for equal starts) and numbered
    from 1. Every block ends with one blank line. A segment whose lines are all
    blank still gets one (empty) text line.
    """
    ordered = sorted(segments, key=lambda segment: segment.start_ms)
    if not ordered:
        return ""
    parts = []
    for index, segment in enumerate(ordered, start=1):
        lines = [line for line in segment.text_lines if line.strip()] or [""]
        parts.append(f"{index}\n{format_timing_line(segment.start_ms, segment.end_ms)}\n")
        parts.append("\n".join(lines))
        parts.append("\n\n")
    return "".join(parts)


def parse_document(text: Optional[str]) -> List[SrtBlock]:
    """
    Splits an SRT document into timing/text blocks.

    The numeric index line is optional. Blocks without a valid timing line are
    dropped (logged at DEBUG); they never fail the whole document.
    """
    if not text:
        return []
    blocks = []
    for raw_block in BLOCK_SEPARATOR.split(text.lstrip("\ufeff")):
        raw_block = raw_block.strip()
        if not raw_block:
            continue
        lines = [line.rstrip() for line in LINE_SEPARATOR.split(raw_block)]
        if len(lines) < 2:
            logger.debug(f"Skipping short subtitle block: {raw_block!r}")
            continue
        timing_index = 1 if lines[0].isdigit() else 0
        timing = lines[timing_index]
        if not is_timing_line(timing):
            logger.debug(f"Skipping subtitle block without timing line: {raw_block!r}")
            continue
        blocks.append(SrtBlock(timing=timing, text_lines=lines[timing_index + 1:]))
    return blocks


def shift_timing_line(line: str, offset_ms: int) -> str:
    """Moves both ends of a timing line by offset_ms, clamping each at zero."""
    bounds = split_timing_line(line)
    if bounds is None or not offset_ms:
        return line
    start_ms, end_ms = bounds
    return format_timing_line(max(0, start_ms + offset_ms), max(0, end_ms + offset_ms))


def shift_document(blocks: Iterable[SrtBlock], offset_ms: int) -> List[SrtBlock]:
    return [
        SrtBlock(timing=shift_timing_line(block.timing, offset_ms), text_lines=list(block.text_lines))
        for block in blocks
    ]


def block_to_segment(block: SrtBlock, segment_id: str) -> Segment:
    start_ms, end_ms = split_timing_line(block.timing) or (0, 0)
    return Segment(id=segment_id, start_ms=start_ms, end_ms=end_ms, text_lines=list(block.text_lines))
