"""Logging configuration for StreamSub."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from .utils import ensure_dir_exists

DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(threadName)s - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_HANDLER_NAME = "streamsub-console"
FILE_HANDLER_NAME = "streamsub-file"

# The readiness probe hits /health every 300ms and the chunk loop posts once
# per window; their request lines would bury the transcript progress.
QUIET_LOGGERS = ("httpx", "httpcore")

def _level(value, default: int) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.upper())
        if isinstance(level, int):
            return level
    return default

def setup_logging(
    log_level: int = logging.INFO,
    log_dir: str = "logs",
    log_file: str = "streamsub.log",
    file_log_level: Optional[int] = logging.DEBUG,
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    max_bytes: int = 10 * 1024 * 1024, # 10 MB
    backup_count: int = 5
) -> Optional[str]:
    """
    Configures logging for the application.

    The console follows `log_level`. The rotating file keeps `file_log_level`
    (DEBUG by default) so stream events, window offsets and server restarts
    can be reconstructed after a run even when the console was quiet.
    Only StreamSub's own handlers are replaced on re-configuration.

    Args:
        log_level: Minimum level printed to stdout.
        log_dir: The directory to store log files.
        log_file: The name of the log file.
        file_log_level: Minimum level written to the file; None disables the file.
        log_format: The format string for log messages.
        date_format: The format string for timestamps in logs.
        max_bytes: Maximum size of a log file before rotation.
        backup_count: Number of backup log files to keep.

    Returns:
        The log file path, or None when no file handler could be attached.
    """
    logger = logging.getLogger() # Get root logger
    for handler in logger.handlers[:]:
        if handler.get_name() in (CONSOLE_HANDLER_NAME, FILE_HANDLER_NAME):
            logger.removeHandler(handler)
            handler.close()

    levels = [log_level] if file_log_level is None else [log_level, file_log_level]
    logger.setLevel(min(levels))
    formatter = logging.Formatter(log_format, datefmt=date_format)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.set_name(CONSOLE_HANDLER_NAME)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(log_level)
    logger.addHandler(stream_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, log_level))

    if file_log_level is None:
        return None
    log_path = os.path.join(log_dir, log_file)
    try:
        ensure_dir_exists(log_dir)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
    except Exception as e:
        # Console logging still works without the file handler
        logger.error(f"Failed to set up file logging handler at {log_path}: {e}", exc_info=True)
        return None
    file_handler.set_name(FILE_HANDLER_NAME)
    file_handler.setFormatter(formatter)
    file_handler.setLevel(file_log_level)
    logger.addHandler(file_handler)
    logger.info(f"Logging initialized. Log file: {log_path} (file level {logging.getLevelName(file_log_level)})")
    return log_path

def setup_logging_from_config(config: dict, log_level: int) -> Optional[str]:
    """Applies the log_dir, log_file and log_file_level config keys."""
    return setup_logging(
        log_level=log_level,
        log_dir=config.get('log_dir') or 'logs',
        log_file=config.get('log_file') or 'streamsub.log',
        file_log_level=_level(config.get('log_file_level'), logging.DEBUG),
    )
