"""Persists subtitle documents while a viewer may be reading them."""

import logging
import os
import queue
import shutil
import threading
from typing import Callable, Iterable, List, Optional

from .exceptions import FileSystemError
from .models import Segment
from .segments import SegmentCollection
from .utils import atomic_write_text, ensure_dir_exists, format_timestamp_suffix, sanitize_file_stem

logger = logging.getLogger(__name__)

ReloadHook = Callable[[str], None]


def log_reload_hook(subtitle_path: str) -> None:
    """Default host hook: there is no player to notify, only a log line."""
    logger.debug(f"Subtitle track updated: {subtitle_path}")


class SubtitleOutput:
    """A subtitle file on disk plus the host hook that reloads it."""

    def __init__(self, path: str, reload_hook: Optional[ReloadHook] = None):
        self.path = path
        self.reload_hook = reload_hook or log_reload_hook
        self.write_count = 0

    @property
    def audit_path(self) -> str:
        return f"{os.path.splitext(self.path)[0]}.events.json"

    def write(self, content: str) -> None:
        """
        Atomically replaces the subtitle file, then asks the host to reload it.

        Raises:
            FileSystemError: If the file cannot be written. Reload failures are
                             only logged.
        """
        atomic_write_text(self.path, content)
        self.write_count += 1
        try:
            self.reload_hook(self.path)
        except Exception as e:
            logger.warning(f"Failed to reload subtitle track {self.path}: {e}")


class _Command:
    def __init__(self, apply: Optional[Callable[[SegmentCollection], bool]]):
        self.apply = apply


_STOP = _Command(None)


class SubtitleWriter:
    """
    Single writer for one session's transcript.

    Producers enqueue commands; one background thread applies them in order to
    the SegmentCollection it owns, then renders and writes the document once per
    batch of drained commands. Writes never overlap, and flush() blocks until
    everything enqueued so far is on disk.
    """

    def __init__(self, output: SubtitleOutput, collection: Optional[SegmentCollection] = None):
        self.output = output
        self._collection = collection or SegmentCollection()
        self._queue: "queue.Queue[_Command]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self.last_error: Optional[Exception] = None

    def start(self) -> "SubtitleWriter":
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="subtitle-writer", daemon=True)
            self._thread.start()
        return self

    def upsert(self, segment: Segment) -> None:
        self._submit(lambda collection: collection.upsert(segment))

    def reset_all(self, segments: Iterable[Segment]) -> None:
        segments = list(segments)

        def apply(collection: SegmentCollection) -> bool:
            collection.reset_all(segments)
            return True

        self._submit(apply)

    def flush(self) -> None:
        """Blocks until every queued command has been applied and written."""
        if self._thread is not None:
            self._queue.join()

    def segments(self) -> List[Segment]:
        self.flush()
        return self._collection.segments

    def render(self) -> str:
        self.flush()
        return self._collection.render()

    def close(self) -> None:
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join()
        self._thread = None

    def __enter__(self) -> "SubtitleWriter":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _submit(self, apply: Callable[[SegmentCollection], bool]) -> None:
        if self._thread is None:
            raise RuntimeError("SubtitleWriter.start() must be called before submitting updates")
        self._queue.put(_Command(apply))

    def _run(self) -> None:
        while True:
            batch = [self._queue.get()]
            # Coalesce whatever piled up while the previous write was running
            while True:
                try:
                    batch.append(self._queue.get_nowait())
                except queue.Empty:
                    break
            stop = False
            changed = False
            for command in batch:
                if command is _STOP:
                    stop = True
                    continue
                try:
                    changed = command.apply(self._collection) or changed
                except Exception as e:
                    logger.error(f"Failed to apply transcript update: {e}", exc_info=True)
            if changed:
                self._write()
            for _ in batch:
                self._queue.task_done()
            if stop:
                return

    def _write(self) -> None:
        try:
            self.output.write(self._collection.render())
            logger.debug(f"Wrote {len(self._collection)} segments to {self.output.path}")
        except FileSystemError as e:
            # The next update rewrites the whole document anyway
            self.last_error = e
            logger.error(f"Failed to write subtitle file: {e}")


def persist_subtitle_copy(subtitle_path: str, media_path: str, archive_dir: Optional[str]) -> Optional[str]:
    """
    Copies the finished subtitle into archive_dir as <media-stem>-<timestamp>.srt.

    Best-effort: failures are logged and None is returned.
    """
    if not archive_dir:
        return None
    try:
        archive_dir = os.path.expanduser(archive_dir)
        ensure_dir_exists(archive_dir)
        destination = os.path.join(
            archive_dir, f"{sanitize_file_stem(media_path)}-{format_timestamp_suffix()}.srt"
        )
        shutil.copyfile(subtitle_path, destination)
        logger.info(f"Stored subtitle copy at {destination}")
        return destination
    except (FileSystemError, OSError, ValueError) as e:
        logger.warning(f"Failed to archive subtitle: {e}")
        return None
