"""Utility functions for StreamSub."""

import os
import re
import logging
import tempfile
from datetime import datetime
from typing import Optional
from .exceptions import FileSystemError

logger = logging.getLogger(__name__)

def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}") from e

def atomic_write_text(path: str, content: str) -> None:
    """
    Replaces the file at `path` with `content` in one step.

    The text goes to a temporary file in the same directory which is then
    renamed over the target, so a concurrent reader sees either the old or
    the new document, never a truncated one.

    Raises:
        FileSystemError: If the temporary file cannot be written or renamed.
    """
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".streamsub-", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    except OSError as e:
        raise FileSystemError(f"Could not write {path}: {e}") from e
    finally:
        if tmp_path is not None:
            remove_file_quietly(tmp_path)

def remove_file_quietly(path: Optional[str]) -> Optional[OSError]:
    """Deletes `path` if it exists. Returns the error instead of raising it."""
    if not path or not os.path.exists(path):
        return None
    try:
        os.remove(path)
        logger.debug(f"Removed file: {path}")
        return None
    except OSError as e:
        return e

def sanitize_file_stem(file_path: Optional[str]) -> str:
    """Turns a media path into a filename-safe stem, e.g. 'My Movie (2020).mkv' -> 'My_Movie_2020_'."""
    if not file_path:
        return "subtitle"
    base_name = os.path.basename(file_path.replace("\\", "/")) or "subtitle"
    stem = os.path.splitext(base_name)[0] or "subtitle"
    return re.sub(r"[^A-Za-z0-9._-]+", "_", stem) or "subtitle"

def format_timestamp_suffix(moment: Optional[datetime] = None) -> str:
    """Formats a local time as YYYYMMDD-HHMMSS for archive filenames."""
    moment = moment or datetime.now()
    return moment.strftime("%Y%m%d-%H%M%S")
