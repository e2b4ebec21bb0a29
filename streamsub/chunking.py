"""Fallback for backends without streaming: transcribe fixed-length windows one after another."""

import logging
import math
import os
from typing import Callable, List, Optional, Tuple

from tqdm import tqdm

from .audio_extractor import AudioExtractor, SAMPLE_RATE
from .models import Segment
from .subtitle_formatter import block_to_segment, parse_document, render_document, shift_document
from .utils import ensure_dir_exists, remove_file_quietly
from .writer import SubtitleOutput

logger = logging.getLogger(__name__)

STREAM_CHUNK_MS = 10_000
PCM_BYTES_PER_SAMPLE = 2
WAV_HEADER_BYTES = 44


def estimate_audio_duration_ms(
    wav_path: str,
    known_duration_ms: Optional[int] = None,
    sample_rate: int = SAMPLE_RATE,
    bytes_per_sample: int = PCM_BYTES_PER_SAMPLE,
) -> Optional[int]:
    """
    Duration of the prepared mono PCM WAV in milliseconds.

    An authoritative known_duration_ms wins; otherwise the payload size after
    the 44-byte header is converted using the sample format. Returns None if
    neither is available.
    """
    if known_duration_ms and known_duration_ms > 0:
        return int(known_duration_ms)
    try:
        total_bytes = os.path.getsize(wav_path)
    except OSError as e:
        logger.warning(f"Unable to inspect wav duration: {e}")
        return None
    if total_bytes <= WAV_HEADER_BYTES:
        return None
    samples = (total_bytes - WAV_HEADER_BYTES) / bytes_per_sample
    return math.floor(samples / sample_rate * 1000)


def plan_windows(total_ms: int, window_ms: int = STREAM_CHUNK_MS) -> List[Tuple[int, int]]:
    """(start_ms, duration_ms) pairs covering [0, total_ms); the last one may be shorter."""
    if window_ms <= 0:
        raise ValueError("window_ms must be positive")
    windows = []
    start = 0
    while start < total_ms:
        duration = min(window_ms, total_ms - start)
        windows.append((start, duration))
        start += duration
    return windows


class ChunkedTranscriber:
    """
    Transcribes audio window by window and rewrites the subtitle after each one.

    `infer` takes a WAV path and returns an SRT document. The temporary window
    file is removed after every window, including failed ones; the first
    failure aborts the run.
    """

    def __init__(
        self,
        infer: Callable[[str], str],
        extractor: AudioExtractor,
        output: SubtitleOutput,
        temp_dir: str,
        window_ms: int = STREAM_CHUNK_MS,
        show_progress: bool = False,
    ):
        self.infer = infer
        self.extractor = extractor
        self.output = output
        self.temp_dir = temp_dir
        self.window_ms = window_ms
        self.show_progress = show_progress

    def transcribe(self, wav_path: str, known_duration_ms: Optional[int] = None) -> List[Segment]:
        total_ms = estimate_audio_duration_ms(wav_path, known_duration_ms)
        aggregated: List[Segment] = []

        if not total_ms or total_ms <= self.window_ms:
            logger.info("Audio fits in one window; transcribing the whole file.")
            self._append(aggregated, self.infer(wav_path), 0, 0)
            self.output.write(render_document(aggregated))
            return aggregated

        ensure_dir_exists(self.temp_dir)
        windows = plan_windows(total_ms, self.window_ms)
        logger.info(f"Transcribing {total_ms}ms of audio in {len(windows)} windows of {self.window_ms}ms")
        for index, (start_ms, duration_ms) in enumerate(tqdm(windows, desc="Transcribing", unit="chunk", disable=not self.show_progress)):
            chunk_path = os.path.join(self.temp_dir, f"whisper_chunk_{index}.wav")
            try:
                self.extractor.extract_chunk(wav_path, chunk_path, start_ms, duration_ms)
                self._append(aggregated, self.infer(chunk_path), start_ms, index)
                self.output.write(render_document(aggregated))
            finally:
                error = remove_file_quietly(chunk_path)
                if error:
                    logger.warning(f"Unable to remove temp file {chunk_path}: {error}")
        return aggregated

    @staticmethod
    def _append(aggregated: List[Segment], srt_text: str, offset_ms: int, chunk_index: int) -> None:
        blocks = shift_document(parse_document(srt_text), offset_ms)
        for block_index, block in enumerate(blocks):
            aggregated.append(block_to_segment(block, f"chunk{chunk_index}:{block_index}"))
        logger.debug(f"Window {chunk_index} at {offset_ms}ms produced {len(blocks)} blocks")
