"""Transcription strategies: a local whisper-server or a remote streaming API."""

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from .audio_extractor import AudioExtractor
from .backend import WhisperServerManager
from .chunking import STREAM_CHUNK_MS, ChunkedTranscriber
from .exceptions import ConfigurationError, InferenceError, StreamError, TranscodeError
from .ingestors import LOG_POLL_INTERVAL_SECONDS, EventStreamIngestor, LogPollingIngestor
from .models import TranscriptionResult
from .utils import remove_file_quietly
from .writer import SubtitleOutput, SubtitleWriter

logger = logging.getLogger(__name__)

STRATEGY_CHUNKED = "chunked"
STRATEGY_LOG = "log"

class Transcriber(ABC):
    """Abstract base class for transcription backends."""

    @abstractmethod
    def transcribe(self, audio_path: str, output: SubtitleOutput, media_duration_ms: Optional[int] = None) -> TranscriptionResult:
        """
        Transcribes the prepared mono 16kHz audio file, rewriting `output` as
        results arrive.

        Args:
            audio_path: Path to the prepared WAV file.
            output: Destination subtitle file and its reload hook.
            media_duration_ms: Authoritative media duration, if known.

        Returns:
            A TranscriptionResult with the final segments.

        Raises:
            StreamSubError: If any stage fails. The backend is torn down first.
        """
        pass

    def close(self) -> None:
        """Releases connections and processes held by the backend."""
        pass

    def __enter__(self) -> "Transcriber":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

class WhisperServerTranscriber(Transcriber):
    """Runs a local whisper-server for one request, then shuts it down."""

    def __init__(
        self,
        manager: WhisperServerManager,
        model: str,
        extractor: AudioExtractor,
        temp_dir: str,
        strategy: str = STRATEGY_CHUNKED,
        window_ms: int = STREAM_CHUNK_MS,
        poll_interval: float = LOG_POLL_INTERVAL_SECONDS,
        show_progress: bool = False,
    ):
        if strategy not in (STRATEGY_CHUNKED, STRATEGY_LOG):
            raise ConfigurationError(f"Unknown whisper-server strategy '{strategy}'. Use '{STRATEGY_CHUNKED}' or '{STRATEGY_LOG}'.")
        self.manager = manager
        self.model = model
        self.extractor = extractor
        self.temp_dir = temp_dir
        self.strategy = strategy
        self.window_ms = window_ms
        self.poll_interval = poll_interval
        self.show_progress = show_progress

    def transcribe(self, audio_path: str, output: SubtitleOutput, media_duration_ms: Optional[int] = None) -> TranscriptionResult:
        logger.info(f"Starting whisper-server transcription ({self.strategy}) with model '{self.model}' for: {audio_path}")
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        session = self.manager.start(self.model)
        try:
            if self.strategy == STRATEGY_LOG:
                segments = self._transcribe_with_log(session, audio_path, output)
            else:
                chunker = ChunkedTranscriber(
                    infer=lambda path: self.manager.request_inference(session, path),
                    extractor=self.extractor,
                    output=output,
                    temp_dir=self.temp_dir,
                    window_ms=self.window_ms,
                    show_progress=self.show_progress,
                )
                segments = chunker.transcribe(audio_path, media_duration_ms)
        finally:
            self.manager.stop(session)

        logger.info(f"Transcription produced {len(segments)} segments.")
        return TranscriptionResult(segments=segments, subtitle_path=output.path, original_audio_path=audio_path)

    def close(self) -> None:
        self.manager.close()

    def _transcribe_with_log(self, session, audio_path: str, output: SubtitleOutput):
        ingestor = LogPollingIngestor(session.log_path, interval=self.poll_interval)
        with SubtitleWriter(output) as writer:
            ingestor.start(writer)
            final_output = None
            try:
                final_output = self.manager.request_inference(session, audio_path)
            finally:
                # On failure this still stops the poller and flushes what was streamed
                ingestor.finalize(final_output)
            return writer.segments()

class OpenAIStreamingTranscriber(Transcriber):
    """Streams a transcription from an OpenAI-compatible /audio/transcriptions endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        extractor: AudioExtractor,
        temp_dir: str,
        model: str = "gpt-4o-transcribe-diarize",
        base_url: str = "https://api.openai.com/v1/audio/transcriptions",
        response_format: str = "json",
        chunking_strategy: Optional[str] = "auto",
        max_upload_bytes: int = 25 * 1024 * 1024,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Raises:
            ConfigurationError: If no API key is configured.
        """
        if not api_key:
            raise ConfigurationError("OpenAI mode requires 'openai_api_key' or the OPENAI_API_KEY environment variable.")
        self.api_key = api_key
        self.extractor = extractor
        self.temp_dir = temp_dir
        self.model = model
        self.base_url = base_url
        self.response_format = response_format
        self.chunking_strategy = chunking_strategy
        self.max_upload_bytes = max_upload_bytes
        self.client = http_client or httpx.Client()
        self._owns_client = http_client is None

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def prepare_upload(self, audio_path: str) -> str:
        """
        Returns the file to upload, re-encoding oversized WAVs to mp3.

        Size problems are logged, never fatal: the best available file is used.
        """
        size = os.path.getsize(audio_path)
        if size <= self.max_upload_bytes:
            return audio_path
        compressed_path = os.path.join(self.temp_dir, f"{os.path.splitext(os.path.basename(audio_path))[0]}.upload.mp3")
        try:
            self.extractor.encode_compressed(audio_path, compressed_path)
        except TranscodeError as e:
            logger.warning(f"Audio is {size} bytes (limit {self.max_upload_bytes}) and re-encoding failed: {e}. Uploading as is.")
            return audio_path
        compressed_size = os.path.getsize(compressed_path)
        if compressed_size > self.max_upload_bytes:
            logger.warning(f"Re-encoded audio is still {compressed_size} bytes (limit {self.max_upload_bytes}); the upload may be rejected.")
        return compressed_path

    def build_form(self) -> dict:
        data = {
            "model": self.model,
            "response_format": self.response_format,
            "stream": "true",
        }
        if self.chunking_strategy:
            data["chunking_strategy"] = self.chunking_strategy
        return data

    def transcribe(self, audio_path: str, output: SubtitleOutput, media_duration_ms: Optional[int] = None) -> TranscriptionResult:
        logger.info(f"Starting streaming transcription with model '{self.model}' at {self.base_url}")
        if not os.path.exists(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        upload_path = self.prepare_upload(audio_path)
        ingestor = EventStreamIngestor(media_duration_ms=media_duration_ms)
        try:
            with SubtitleWriter(output) as writer:
                ingestor.start(writer)
                try:
                    self._stream(upload_path, ingestor)
                finally:
                    ingestor.finalize()
                    ingestor.audit.dump(output.audit_path)
                segments = writer.segments()
        finally:
            if upload_path != audio_path:
                error = remove_file_quietly(upload_path)
                if error:
                    logger.warning(f"Unable to remove temp file {upload_path}: {error}")

        if ingestor.errors:
            logger.warning(f"Stream finished with {len(ingestor.errors)} backend error event(s).")
        logger.info(f"Streaming transcription produced {len(segments)} segments.")
        return TranscriptionResult(segments=segments, subtitle_path=output.path, original_audio_path=audio_path)

    def _stream(self, upload_path: str, ingestor: EventStreamIngestor) -> None:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
        }
        mime_type = "audio/mpeg" if upload_path.endswith(".mp3") else "audio/wav"
        try:
            with open(upload_path, "rb") as audio_file:
                with self.client.stream(
                    "POST",
                    self.base_url,
                    headers=headers,
                    files={"file": (os.path.basename(upload_path), audio_file, mime_type)},
                    data=self.build_form(),
                    timeout=httpx.Timeout(None, connect=30.0),
                ) as response:
                    if not response.is_success:
                        detail = response.read().decode("utf-8", errors="replace").strip()
                        logger.error(f"Transcription API returned {response.status_code}: {detail}")
                        raise InferenceError(f"Transcription API returned {response.status_code}: {detail}")
                    for chunk in response.iter_bytes():
                        ingestor.feed(chunk)
        except httpx.HTTPError as e:
            logger.error(f"Transcription stream failed: {e}")
            raise StreamError(f"Transcription stream failed: {e}") from e
