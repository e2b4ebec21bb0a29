"""Command-Line Interface handler for StreamSub."""

import argparse
import glob
import logging
import os
import sys

from .config_loader import ConfigLoader
from .log_setup import setup_logging, setup_logging_from_config
from .audio_extractor import AudioExtractor
from .backend import PidFile, WhisperServerManager, cleanup_orphaned_server
from .chunking import STREAM_CHUNK_MS
from .transcriber import OpenAIStreamingTranscriber, WhisperServerTranscriber, Transcriber
from .subtitle_generator import SubtitleGenerator
from .exceptions import StreamSubError, ConfigurationError

logger = logging.getLogger(__name__)

MODE_WHISPER_SERVER = "whisper_server"
MODE_OPENAI = "openai"

def list_models(models_dir: str) -> list:
    """Names of the ggml-<name>.bin models present in models_dir."""
    pattern = os.path.join(os.path.expanduser(models_dir), "ggml-*.bin")
    return sorted(os.path.basename(path)[len("ggml-"):-len(".bin")] for path in glob.glob(pattern))

class CLIHandler:
    """Parses arguments and orchestrates the StreamSub process."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            description="StreamSub: Generate subtitles progressively from a media file's audio track.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        parser.add_argument(
            "-m", "--media",
            help="Path to the input media file."
        )
        parser.add_argument(
            "-o", "--output-dir",
            default=None,
            help="Directory to save the generated .srt file. Defaults to the media file's directory."
        )
        parser.add_argument(
            "-c", "--config",
            default="config.yaml",
            help="Path to the configuration YAML file."
        )
        parser.add_argument(
            "--model",
            default=None, # Default taken from config
            help="whisper.cpp model name (ggml-<model>.bin in models_dir)."
        )
        parser.add_argument(
            "--mode",
            default=None,
            choices=[MODE_WHISPER_SERVER, MODE_OPENAI],
            help="Override the transcriber_mode specified in config."
        )
        parser.add_argument(
            "--strategy",
            default=None,
            choices=["chunked", "log"],
            help="Override wserver_strategy: transcribe in windows, or follow the server log."
        )
        parser.add_argument(
            "--temp-dir",
            default=None,
            help="Override the temporary directory specified in the config file."
        )
        parser.add_argument(
            "--log-level",
            default="INFO",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Set the logging level for console and file output."
        )
        parser.add_argument(
            "--progress",
            action="store_true",
            help="Show a progress bar while transcribing in windows."
        )
        parser.add_argument(
            "--list-models",
            action="store_true",
            help="List the models found in models_dir and exit."
        )
        parser.add_argument(
            "--cleanup-only",
            action="store_true",
            help="Terminate a whisper-server left over from a previous run and exit."
        )
        return parser

    def build_transcriber(self, config: dict, extractor: AudioExtractor, model: str, show_progress: bool = False) -> Transcriber:
        """
        Raises:
            ConfigurationError: Unknown mode or missing credentials.
        """
        mode = config.get('transcriber_mode', MODE_WHISPER_SERVER)
        if mode == MODE_OPENAI:
            return OpenAIStreamingTranscriber(
                api_key=config.get('openai_api_key'),
                extractor=extractor,
                temp_dir=config['temp_dir'],
                model=config.get('openai_model'),
                base_url=config.get('openai_base_url'),
                response_format=config.get('openai_response_format'),
                chunking_strategy=config.get('openai_chunking_strategy'),
                max_upload_bytes=int(float(config.get('openai_max_upload_mb', 25)) * 1024 * 1024),
            )
        if mode != MODE_WHISPER_SERVER:
            raise ConfigurationError(f"Unsupported transcriber_mode '{mode}'.")
        manager = WhisperServerManager(
            server_path=config.get('wserver_path'),
            models_dir=config.get('models_dir', 'models'),
            log_path=config.get('server_log'),
            pid_file=PidFile(config.get('pid_file')),
            host=config.get('wserver_host'),
            port=config.get('wserver_port'),
            extra_options=config.get('wserver_options'),
            ready_timeout=float(config.get('ready_timeout_seconds', 20)),
        )
        return WhisperServerTranscriber(
            manager=manager,
            model=model,
            extractor=extractor,
            temp_dir=config['temp_dir'],
            strategy=config.get('wserver_strategy', 'chunked'),
            window_ms=int(float(config.get('chunk_seconds', STREAM_CHUNK_MS / 1000)) * 1000),
            poll_interval=float(config.get('log_poll_interval_seconds', 1.0)),
            show_progress=show_progress,
        )

    def run(self) -> None:
        """Parses arguments, sets up logging, loads config, and runs the generator."""
        args = self.parser.parse_args()

        log_level = getattr(logging, args.log_level.upper(), logging.INFO)
        # Temporary setup to catch config loading errors
        setup_logging(log_level=log_level, log_dir='logs', log_file='streamsub_init.log')

        try:
            config = ConfigLoader().load_config(args.config)
        except ConfigurationError as e:
            logger.critical(f"Failed to load configuration from {args.config}: {e}", exc_info=True)
            sys.exit(1)
        except FileNotFoundError:
            logger.critical(f"Configuration file not found: {args.config}", exc_info=True)
            sys.exit(1)

        setup_logging_from_config(config, log_level)
        logger.info("Logging re-configured with settings from config file.")

        if args.temp_dir:
            logger.info(f"Overriding temp_dir from config with CLI argument: {args.temp_dir}")
            config['temp_dir'] = args.temp_dir
        if args.mode:
            logger.info(f"Overriding transcriber_mode from config with CLI argument: {args.mode}")
            config['transcriber_mode'] = args.mode
        if args.strategy:
            logger.info(f"Overriding wserver_strategy from config with CLI argument: {args.strategy}")
            config['wserver_strategy'] = args.strategy

        if args.list_models:
            for name in list_models(config.get('models_dir', 'models')):
                print(name)
            sys.exit(0)

        pid_file = PidFile(config.get('pid_file'))
        cleanup_orphaned_server(pid_file)
        if args.cleanup_only:
            sys.exit(0)

        if not args.media:
            self.parser.error("--media is required unless --list-models or --cleanup-only is given")

        model = args.model or config.get('default_model')
        try:
            logger.info("Initializing StreamSub components...")
            extractor = AudioExtractor(
                ffmpeg_path=config.get('ffmpeg_path'),
                ffprobe_path=config.get('ffprobe_path'),
            )
            extractor.check_available()
            with self.build_transcriber(config, extractor, model, show_progress=args.progress) as transcriber:
                generator = SubtitleGenerator(config=config, audio_extractor=extractor, transcriber=transcriber)
                logger.info("Components initialized successfully.")

                generator.generate(args.media, args.output_dir)
            logger.info("StreamSub finished successfully.")
            sys.exit(0)

        except (StreamSubError, FileNotFoundError) as e:
            logger.error(f"A StreamSub error occurred: {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            sys.exit(2)
        finally:
            cleanup_orphaned_server(pid_file)

def main() -> None:
    CLIHandler().run()
