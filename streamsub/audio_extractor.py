"""Handles audio preparation for the inference backends using ffmpeg."""

import ffmpeg
import os
import shutil
import logging
from .exceptions import ConfigurationError, TranscodeError
from typing import Optional
from .utils import ensure_dir_exists, remove_file_quietly

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
PCM_CODEC = 'pcm_s16le'

class AudioExtractor:
    """Runs the external transcoder: full extraction, windows, upload re-encoding and probing."""

    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None):
        """
        Initializes the AudioExtractor.

        Args:
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
            ffprobe_path: Optional path to ffprobe, used for duration probing only.
        """
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        self.ffprobe_cmd = ffprobe_path or 'ffprobe'
        logger.info(f"Using ffmpeg command: {self.ffmpeg_cmd}")

    def check_available(self) -> None:
        """
        Raises:
            ConfigurationError: If the ffmpeg executable cannot be located.
        """
        if not (os.path.isfile(self.ffmpeg_cmd) or shutil.which(self.ffmpeg_cmd)):
            raise ConfigurationError(f"Unable to locate ffmpeg executable at: {self.ffmpeg_cmd}")

    def build_extract_stream(self, media_path: str, output_path: str):
        return (
            ffmpeg
            .input(media_path)
            .output(output_path, acodec=PCM_CODEC, ar=SAMPLE_RATE, ac=1)
            .overwrite_output()
        )

    def build_chunk_stream(self, source_path: str, output_path: str, start_ms: int, duration_ms: int):
        # -ss/-t before -i: seek on the input side
        return (
            ffmpeg
            .input(source_path, ss=f"{start_ms / 1000:.3f}", t=f"{duration_ms / 1000:.3f}")
            .output(output_path, acodec=PCM_CODEC, ar=SAMPLE_RATE, ac=1)
            .overwrite_output()
        )

    def build_compressed_stream(self, source_path: str, output_path: str, codec: str = 'libmp3lame', bitrate: str = '32k'):
        return (
            ffmpeg
            .input(source_path)
            .output(output_path, acodec=codec, ar=SAMPLE_RATE, ac=1, audio_bitrate=bitrate)
            .overwrite_output()
        )

    def extract_audio(self, media_path: str, output_path: str) -> str:
        """
        Converts the media file's audio track to mono 16kHz 16-bit PCM WAV.

        Args:
            media_path: Path to the input media file.
            output_path: Where to write the WAV file.

        Returns:
            output_path.

        Raises:
            FileNotFoundError: If the input media file does not exist.
            TranscodeError: If ffmpeg fails to extract the audio.
            FileSystemError: If the output directory cannot be created/accessed.
        """
        logger.info(f"Starting audio extraction for: {media_path}")
        if not os.path.exists(media_path):
            raise FileNotFoundError(f"Input media file not found: {media_path}")
        ensure_dir_exists(os.path.dirname(os.path.abspath(output_path)))
        self._run(self.build_extract_stream(media_path, output_path), output_path)
        logger.info(f"Successfully extracted audio to: {output_path}")
        return output_path

    def extract_chunk(self, source_path: str, output_path: str, start_ms: int, duration_ms: int) -> str:
        """Cuts [start_ms, start_ms + duration_ms) out of source_path as a WAV file."""
        logger.debug(f"Extracting window {start_ms}ms +{duration_ms}ms to {output_path}")
        self._run(self.build_chunk_stream(source_path, output_path, start_ms, duration_ms), output_path)
        return output_path

    def encode_compressed(self, source_path: str, output_path: str, codec: str = 'libmp3lame', bitrate: str = '32k') -> str:
        """Re-encodes audio to a compressed mono 16kHz file for size-limited uploads."""
        logger.info(f"Re-encoding {source_path} as {codec} {bitrate} for upload")
        self._run(self.build_compressed_stream(source_path, output_path, codec, bitrate), output_path)
        return output_path

    def probe_duration_ms(self, media_path: str) -> Optional[int]:
        """Returns the container duration in milliseconds, or None if ffprobe cannot tell."""
        try:
            info = ffmpeg.probe(media_path, cmd=self.ffprobe_cmd)
            duration = float(info.get('format', {}).get('duration', 0) or 0)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.warning(f"ffprobe failed for {media_path}: {stderr_output}")
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unable to probe duration of {media_path}: {e}")
            return None
        if duration <= 0:
            return None
        return int(duration * 1000)

    def _run(self, stream, output_path: str) -> None:
        try:
            stream.run(cmd=self.ffmpeg_cmd, capture_stdout=True, capture_stderr=True)
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode('utf-8', errors='replace') if e.stderr else "No stderr output"
            logger.error(f"ffmpeg stderr: {stderr_output}")
            # Don't leave a half-written file behind
            error = remove_file_quietly(output_path)
            if error:
                logger.warning(f"Could not clean up partially created audio file {output_path}: {error}")
            raise TranscodeError(f"ffmpeg failed: {stderr_output}") from e
        except OSError as e:
            logger.error(f"Could not run ffmpeg ({self.ffmpeg_cmd}): {e}", exc_info=True)
            raise TranscodeError(f"Could not run ffmpeg: {e}") from e
