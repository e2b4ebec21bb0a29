"""Turns backend output into transcript updates as it arrives."""

import codecs
import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from .models import Segment
from .segments import build_segment
from .subtitle_formatter import block_to_segment, parse_document, parse_timestamp
from .utils import atomic_write_text
from .writer import SubtitleWriter

logger = logging.getLogger(__name__)

LOG_POLL_INTERVAL_SECONDS = 1.0
LOG_LINE_PATTERN = re.compile(
    r"^\[(\d{2,}:\d{2}:\d{2}\.\d{3})\s+-->\s+(\d{2,}:\d{2}:\d{2}\.\d{3})\]\s*(.*?)\s*$"
)
SSE_DATA_PREFIX = "data:"
SSE_DONE_MARKER = "[DONE]"
DELTA_SEGMENT_ID = "delta"
FINAL_SEGMENT_ID = "final"


class AuditLog:
    """Raw inbound units with wall-clock timestamps, dumped next to the subtitle for debugging."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []
        self._raw_parts: List[str] = []
        self._lock = threading.Lock()

    @property
    def raw_text(self) -> str:
        return "".join(self._raw_parts)

    def add_raw(self, text: str) -> None:
        with self._lock:
            self._raw_parts.append(text)

    def record(self, payload: str, parsed: Any = None, parse_error: Optional[str] = None) -> None:
        event: Dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat(), "payload": payload}
        if parse_error is not None:
            event["parse_error"] = parse_error
        elif parsed is not None:
            event["parsed"] = parsed
        with self._lock:
            self.events.append(event)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "raw_text": "".join(self._raw_parts),
                "events": list(self.events),
            }

    def dump(self, path: str) -> bool:
        """Best-effort write; failures are logged and reported as False."""
        try:
            atomic_write_text(path, json.dumps(self.to_dict(), ensure_ascii=False, indent=2))
            logger.debug(f"Wrote stream audit log to {path}")
            return True
        except Exception as e:
            logger.warning(f"Failed to write audit log {path}: {e}")
            return False


class IncrementalIngestor(ABC):
    """
    Feeds a SubtitleWriter from a backend's progressive output.

    Lifecycle: start(writer), then the variant-specific feeding, then
    finalize(), which returns once every update is on disk.
    """

    def __init__(self, audit: Optional[AuditLog] = None):
        self.audit = audit or AuditLog()
        self.writer: Optional[SubtitleWriter] = None

    def start(self, writer: SubtitleWriter) -> None:
        self.writer = writer

    @abstractmethod
    def finalize(self, final_output: Optional[str] = None) -> bool:
        """Stops ingesting, applies any authoritative final output, flushes writes."""
        pass

    def _flush(self) -> bool:
        if self.writer is None:
            return False
        self.writer.flush()
        return True


def parse_log_timestamp(value: str) -> int:
    """whisper-server logs use HH:MM:SS.mmm; SRT uses a comma."""
    return parse_timestamp(value.replace(".", ","))


class LogPollingIngestor(IncrementalIngestor):
    """
    Re-reads the server log every interval and picks up
    "[HH:MM:SS.mmm --> HH:MM:SS.mmm]  text" lines it has not seen yet.
    """

    def __init__(self, log_path: str, interval: float = LOG_POLL_INTERVAL_SECONDS, audit: Optional[AuditLog] = None):
        super().__init__(audit)
        self.log_path = log_path
        self.interval = interval
        self._seen: Set[Tuple[str, str, str]] = set()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, writer: SubtitleWriter) -> None:
        super().start(writer)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="log-poller", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            try:
                self.poll()
            except Exception as e:
                logger.error(f"Log polling failed: {e}", exc_info=True)
            if self._stop_event.wait(self.interval):
                return

    def poll(self) -> int:
        """Reads the whole log once; returns how many new segments were submitted."""
        if not os.path.exists(self.log_path):
            return 0
        with open(self.log_path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
        added = 0
        for line in content.splitlines():
            match = LOG_LINE_PATTERN.match(line.strip())
            if not match:
                continue
            key = match.groups()
            if key in self._seen:
                continue
            self._seen.add(key)
            start_raw, end_raw, text = key
            self.audit.add_raw(line + "\n")
            self.audit.record(line)
            if not text:
                continue
            self.writer.upsert(build_segment(text, parse_log_timestamp(start_raw), parse_log_timestamp(end_raw)))
            added += 1
        if added:
            logger.debug(f"Picked up {added} new segments from {self.log_path}")
        return added

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def finalize(self, final_output: Optional[str] = None) -> bool:
        """
        Stops polling and replaces the interim lines with the server's own
        returned document, when it has any blocks.
        """
        self.stop()
        if self.writer is None:
            return False
        try:
            self.poll()
        except OSError as e:
            logger.warning(f"Final read of {self.log_path} failed: {e}")
        blocks = parse_document(final_output)
        if blocks:
            self.writer.reset_all(block_to_segment(block, f"final:{index}") for index, block in enumerate(blocks))
        elif final_output is not None:
            logger.warning("Final inference output had no subtitle blocks; keeping streamed lines.")
        return self._flush()


class EventStreamIngestor(IncrementalIngestor):
    """
    Consumes a server-sent-event byte stream of `data: {json}` lines.

    Recognized payloads: segment updates, final transcripts, plain-text deltas
    and backend errors. Chunks must be fed in arrival order.
    """

    def __init__(self, media_duration_ms: Optional[int] = None, audit: Optional[AuditLog] = None):
        super().__init__(audit)
        self.media_duration_ms = media_duration_ms
        self.done = False
        self.errors: List[Any] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._delta_text = ""
        self._delta_active = False
        self._stream_segments: Dict[str, Segment] = {}

    def feed(self, chunk: bytes) -> None:
        text = self._decoder.decode(chunk)
        if not text:
            return
        self.audit.add_raw(text)
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self.handle_line(line.rstrip("\r"))

    def handle_line(self, line: str) -> None:
        line = line.strip()
        if self.done:
            return
        if not line.startswith(SSE_DATA_PREFIX):
            # event:, id:, retry: and ": comment" lines carry nothing we use
            return
        payload = line[len(SSE_DATA_PREFIX):].strip()
        if not payload:
            return
        if payload == SSE_DONE_MARKER:
            self.done = True
            return
        try:
            event = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream payload: {e}")
            self.audit.record(payload, parse_error=str(e))
            return
        self.audit.record(payload, parsed=event)
        if not isinstance(event, dict):
            logger.debug(f"Ignoring non-object stream payload: {payload!r}")
            return
        self.dispatch(event)

    def dispatch(self, event: Dict[str, Any]) -> None:
        event_type = str(event.get("type") or "")
        if event_type == "error" or event_type.endswith(".error") or "error" in event:
            self.errors.append(event.get("error", event))
            logger.error(f"Backend reported an error: {event.get('error', event)}")
        elif event_type.endswith(".done") or (not event_type and isinstance(event.get("segments"), list)):
            self._handle_final(event)
        elif event_type.endswith(".segment") or (not event_type and "start" in event and "text" in event):
            self._handle_segment(event)
        elif "delta" in event:
            self._handle_delta(event)
        else:
            logger.debug(f"Ignoring stream event of type {event_type or 'unknown'}")

    def _segment_from_event(self, event: Dict[str, Any], fallback_id: Optional[str] = None) -> Optional[Segment]:
        text = str(event.get("text") or "").strip()
        speaker = event.get("speaker")
        if text and speaker:
            text = f"{speaker}: {text}"
        try:
            start_ms = round(float(event.get("start") or 0) * 1000)
            end = event.get("end")
            end_ms = round(float(end) * 1000) if end is not None else None
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping segment with bad timing {event!r}: {e}")
            return None
        segment_id = event.get("id")
        if segment_id is None:
            segment_id = fallback_id
        return build_segment(text, start_ms, end_ms, None if segment_id is None else str(segment_id))

    def _handle_segment(self, event: Dict[str, Any]) -> None:
        segment = self._segment_from_event(event)
        if segment is None or not segment.text_lines:
            return
        self._stream_segments[segment.id] = segment
        if self._delta_active:
            # Real segments supersede the running delta text
            self._delta_active = False
            self.writer.reset_all(list(self._stream_segments.values()))
        else:
            self.writer.upsert(segment)

    def _handle_delta(self, event: Dict[str, Any]) -> None:
        delta = event.get("delta")
        if not isinstance(delta, str) or not delta:
            return
        self._delta_text += delta
        if self._stream_segments:
            return
        self._delta_active = True
        self.writer.upsert(build_segment(self._delta_text, 0, segment_id=DELTA_SEGMENT_ID))

    def _handle_final(self, event: Dict[str, Any]) -> None:
        segments = []
        for index, raw in enumerate(event.get("segments") or []):
            if isinstance(raw, dict):
                segment = self._segment_from_event(raw, fallback_id=f"{FINAL_SEGMENT_ID}:{index}")
                if segment is not None and segment.text_lines:
                    segments.append(segment)
        if segments:
            self.writer.reset_all(segments)
            self._delta_active = False
            return
        text = str(event.get("text") or "").strip()
        if text:
            end_ms = self.media_duration_ms if self.media_duration_ms else None
            self.writer.reset_all([build_segment(text, 0, end_ms, segment_id=FINAL_SEGMENT_ID)])
            self._delta_active = False
            return
        logger.warning("Final transcript was empty; keeping interim segments.")

    def finalize(self, final_output: Optional[str] = None) -> bool:
        """Processes a trailing line without newline, then flushes pending writes."""
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self.audit.add_raw(tail)
        self._buffer += tail
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self.handle_line(line.rstrip("\r"))
        return self._flush()

    @property
    def delta_text(self) -> str:
        return self._delta_text.strip()
