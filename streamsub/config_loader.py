"""Handles loading configuration from YAML files."""

import yaml
import os
import logging
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'transcriber_mode': 'whisper_server',
    'wserver_path': None,
    'wserver_host': '127.0.0.1',
    'wserver_port': 17896,
    'wserver_options': '',
    'wserver_strategy': 'chunked',
    'models_dir': 'models',
    'default_model': 'base.en',
    'ffmpeg_path': 'ffmpeg',
    'ffprobe_path': 'ffprobe',
    'openai_api_key': None,
    'openai_model': 'gpt-4o-transcribe-diarize',
    'openai_response_format': 'json',
    'openai_chunking_strategy': 'auto',
    'openai_base_url': 'https://api.openai.com/v1/audio/transcriptions',
    'openai_max_upload_mb': 25,
    'chunk_seconds': 10,
    'ready_timeout_seconds': 20,
    'log_poll_interval_seconds': 1.0,
    'temp_dir': 'tmp',
    'pid_file': 'tmp/whisper_server.pid',
    'server_log': 'tmp/whisper_server.log',
    'subtitle_archive_dir': None,
    'log_dir': 'logs',
    'log_file': 'streamsub.log',
    'log_file_level': 'DEBUG',
}

class ConfigLoader:
    """Loads configuration settings from a YAML file."""

    def load_config(self, config_path: str) -> dict:
        """
        Loads configuration from the specified YAML file path.

        Keys missing from the file are filled in from DEFAULT_CONFIG. An empty
        file yields the defaults.

        Args:
            config_path: The path to the YAML configuration file.

        Returns:
            A dictionary containing the loaded configuration settings.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML or
                              if there are other reading errors.
        """
        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
            logger.error(f"Configuration path is not a file: {config_path}")
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}") from e
        except IOError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).")

        config = dict(DEFAULT_CONFIG)
        config.update(loaded)
        if not config.get('openai_api_key'):
            config['openai_api_key'] = os.environ.get('OPENAI_API_KEY')
        logger.info(f"Configuration loaded successfully from {config_path}")
        return config
