"""Data models for StreamSub."""

import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

@dataclass
class Segment:
    """One subtitle block: a time range in milliseconds and its display lines."""
    id: str
    start_ms: int
    end_ms: int
    text_lines: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.text_lines)

@dataclass
class SrtBlock:
    """A parsed subtitle block, timing line kept verbatim."""
    timing: str
    text_lines: List[str] = field(default_factory=list)

@dataclass
class BackendSession:
    """A running inference server owned by one transcription request."""
    pid: int
    host: str
    port: int
    log_path: str
    process: Optional[subprocess.Popen] = field(default=None, repr=False)
    ready: bool = False
    stopped: bool = False

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

@dataclass
class TranscriptionResult:
    """Holds the final transcript and where it was written."""
    segments: List[Segment] = field(default_factory=list)
    subtitle_path: Optional[str] = None
    original_audio_path: Optional[str] = None
