"""Orchestrates the subtitle generation pipeline for one media file."""

import logging
import os
import time
from typing import Optional, Tuple

from .audio_extractor import AudioExtractor
from .transcriber import Transcriber
from .models import TranscriptionResult
from .writer import ReloadHook, SubtitleOutput, persist_subtitle_copy
from .exceptions import StreamSubError, FileSystemError
from .utils import ensure_dir_exists, remove_file_quietly

logger = logging.getLogger(__name__)

class SubtitleGenerator:
    """
    Manages the end-to-end process of generating subtitles for a media file.
    """

    def __init__(
        self,
        config: dict,
        audio_extractor: AudioExtractor,
        transcriber: Transcriber,
        reload_hook: Optional[ReloadHook] = None,
    ):
        """
        Initializes the SubtitleGenerator.

        Args:
            config: A dictionary containing configuration settings.
            audio_extractor: An instance of AudioExtractor.
            transcriber: The backend strategy to run.
            reload_hook: Called with the subtitle path after every write.
        """
        self.config = config
        self.audio_extractor = audio_extractor
        self.transcriber = transcriber
        self.reload_hook = reload_hook

        self.temp_dir = config.get('temp_dir')
        if not self.temp_dir:
            raise StreamSubError("Configuration missing 'temp_dir'.")
        try:
            ensure_dir_exists(self.temp_dir)
        except (FileSystemError, ValueError) as e:
            raise StreamSubError(f"Temporary directory '{self.temp_dir}' is invalid or not writable: {e}") from e

        self.archive_dir = config.get('subtitle_archive_dir')

    def _get_output_paths(self, media_path: str, output_dir: str) -> Tuple[str, str]:
        """Determines the subtitle path and the temporary audio path."""
        base_name = os.path.splitext(os.path.basename(media_path))[0]
        subtitle_path = os.path.join(output_dir, f"{base_name}.srt")
        temp_audio_path = os.path.join(self.temp_dir, f"{base_name}_{int(time.time())}.wav")
        return subtitle_path, temp_audio_path

    def generate(self, media_path: str, output_dir: Optional[str] = None) -> TranscriptionResult:
        """
        Executes the full subtitle generation pipeline for a single media file.

        Args:
            media_path: Path (or file:// URL) of the local media file.
            output_dir: Directory for the .srt file; defaults to the media's directory.

        Returns:
            The final TranscriptionResult.

        Raises:
            StreamSubError: For any configuration or processing errors in the pipeline.
            FileNotFoundError: If the input media is not found.
        """
        if media_path.startswith("file://"):
            media_path = media_path[len("file://"):]
        elif "://" in media_path:
            raise StreamSubError(f"Subtitle generation doesn't work with non-local file {media_path}.")
        if not os.path.isfile(media_path):
            raise FileNotFoundError(f"Input media file not found: {media_path}")

        start_time = time.time()
        logger.info(f"--- Starting StreamSub process for: {media_path} ---")
        output_dir = output_dir or os.path.dirname(os.path.abspath(media_path))
        ensure_dir_exists(output_dir)
        subtitle_path, temp_audio_path = self._get_output_paths(media_path, output_dir)
        extracted_audio_path = None

        try:
            logger.info("Generating temporary wave file...")
            extracted_audio_path = self.audio_extractor.extract_audio(media_path, temp_audio_path)
            media_duration_ms = self.audio_extractor.probe_duration_ms(media_path)

            logger.info("Transcribing...")
            output = SubtitleOutput(subtitle_path, self.reload_hook)
            result = self.transcriber.transcribe(extracted_audio_path, output, media_duration_ms)
            if not result.segments:
                logger.warning("Transcription produced no segments.")

            if os.path.exists(subtitle_path):
                persist_subtitle_copy(subtitle_path, media_path, self.archive_dir)

            logger.info(f"Transcription succeeded. Subtitles saved to: {subtitle_path}")
            logger.info(f"--- StreamSub process completed in {time.time() - start_time:.2f} seconds ---")
            return result

        except (StreamSubError, FileNotFoundError) as e:
            logger.error(f"StreamSub process failed: {e}", exc_info=False)
            raise
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred during subtitle generation: {e}", exc_info=True)
            raise StreamSubError(f"An unexpected critical error occurred: {e}") from e
        finally:
            error = remove_file_quietly(extracted_audio_path)
            if error:
                logger.warning(f"Could not remove temporary file {extracted_audio_path}: {error}")
