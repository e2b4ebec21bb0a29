"""Lifecycle management for a local whisper-server inference process."""

import logging
import os
import shlex
import shutil
import signal
import subprocess
import threading
import time
from typing import Callable, List, Optional

import httpx

from .exceptions import (
    ConfigurationError,
    InferenceError,
    ReadinessTimeoutError,
    SessionBusyError,
    StartupError,
)
from .models import BackendSession
from .utils import ensure_dir_exists, remove_file_quietly

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 17896
READY_TIMEOUT_SECONDS = 20.0
PROBE_INTERVAL_SECONDS = 0.3
PROBE_TIMEOUT_SECONDS = 2.0
TERMINATE_GRACE_SECONDS = 0.2

# Shell operators are dropped from user-supplied server options
_UNSAFE_TOKEN_CHARS = set("();<>|&")


def parse_argument_list(raw_value: Optional[str]) -> List[str]:
    """
    Splits a free-text option string the way a POSIX shell would.

    Quotes and backslash escapes are honoured. Shell operators ('|', '&&',
    '>' ...) are ignored rather than rejected, and an unbalanced quote yields
    no arguments at all.
    """
    if not raw_value:
        return []
    lexer = shlex.shlex(str(raw_value), posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        tokens = list(lexer)
    except ValueError as e:
        logger.warning(f"Failed to parse option string {raw_value!r}: {e}")
        return []
    return [token for token in tokens if token and not set(token) <= _UNSAFE_TOKEN_CHARS]


class PidFile:
    """
    Remembers the pid of the running server across application restarts.

    Absence of the file means no server is believed to be running.
    """

    def __init__(self, path: str):
        self.path = path

    def write(self, pid: int) -> None:
        ensure_dir_exists(os.path.dirname(os.path.abspath(self.path)))
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(f"{pid}\n")

    def read(self) -> Optional[int]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Unable to read PID file {self.path}: {e}")
            return None
        try:
            pid = int(content)
        except ValueError:
            pid = 0
        if pid <= 0:
            logger.warning(f"Ignoring malformed PID file {self.path}: {content!r}")
            return None
        return pid

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def clear(self) -> None:
        error = remove_file_quietly(self.path)
        if error:
            logger.warning(f"Unable to delete PID file {self.path}: {error}")


def terminate_process(pid: int, grace_seconds: float = TERMINATE_GRACE_SECONDS,
                      sleep: Callable[[float], None] = time.sleep) -> Optional[OSError]:
    """
    Sends SIGTERM, waits grace_seconds, then SIGKILL.

    A process that no longer exists counts as stopped. Any other failure is
    returned, not raised, so the caller decides how to report it.
    """
    if pid <= 0:
        return OSError(f"Refusing to signal pid {pid}")
    kill_signal = getattr(signal, "SIGKILL", signal.SIGTERM)
    for index, sig in enumerate((signal.SIGTERM, kill_signal)):
        if index:
            sleep(grace_seconds)
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return None
        except OSError as e:
            return e
    return None


def cleanup_orphaned_server(pid_file: PidFile) -> None:
    """
    Kills a server left behind by a previous run, if the PID file names one.

    Run at application lifecycle boundaries. The PID file is removed afterwards
    whether or not the kill worked.
    """
    if not pid_file.exists():
        return
    pid = pid_file.read()
    if pid is not None:
        logger.info(f"Terminating leftover whisper-server (pid {pid})")
        error = terminate_process(pid)
        if error:
            logger.warning(f"Failed to cleanup whisper-server (pid {pid}): {error}")
    pid_file.clear()


def wait_for_server_ready(
    client: httpx.Client,
    base_url: str,
    timeout: float = READY_TIMEOUT_SECONDS,
    interval: float = PROBE_INTERVAL_SECONDS,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Polls GET /health until it answers 200.

    Raises:
        ReadinessTimeoutError: If the deadline passes first; carries the last
                               probe error.
    """
    health_url = f"{base_url}/health"
    deadline = clock() + timeout
    last_error = None
    while clock() < deadline:
        try:
            response = client.get(health_url, timeout=PROBE_TIMEOUT_SECONDS)
            if response.status_code == 200:
                return
            last_error = f"Unexpected server status: {response.status_code}"
        except httpx.HTTPError as e:
            last_error = str(e) or type(e).__name__
        sleep(interval)
    reason = last_error or "unknown"
    raise ReadinessTimeoutError(
        f"Timed out waiting for whisper-server to become ready ({reason}).", last_error=last_error
    )


class WhisperServerManager:
    """
    Starts, health-checks, queries and stops whisper-server.

    At most one session is alive per manager; start() refuses to launch a
    second one until the first is stopped.
    """

    def __init__(
        self,
        server_path: Optional[str],
        models_dir: str,
        log_path: str,
        pid_file: PidFile,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        extra_options: Optional[str] = None,
        ready_timeout: float = READY_TIMEOUT_SECONDS,
        http_client: Optional[httpx.Client] = None,
    ):
        self.server_path = server_path
        self.models_dir = models_dir
        self.log_path = log_path
        self.pid_file = pid_file
        self.host = host or DEFAULT_HOST
        self.port = int(port or DEFAULT_PORT)
        self.extra_options = extra_options
        self.ready_timeout = ready_timeout
        self.client = http_client or httpx.Client()
        self._lock = threading.Lock()
        self._active: Optional[BackendSession] = None

    def resolve_executable(self) -> str:
        """
        Raises:
            ConfigurationError: If whisper-server cannot be found.
        """
        if self.server_path:
            candidate = os.path.expanduser(self.server_path)
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
            found = shutil.which(candidate)
            if found:
                return found
        raise ConfigurationError(
            f"Unable to locate whisper-server executable at: {self.server_path}. Check the configuration file."
        )

    def resolve_model_path(self, model: str) -> str:
        model_path = os.path.join(os.path.expanduser(self.models_dir), f"ggml-{model}.bin")
        if not os.path.isfile(model_path):
            raise ConfigurationError(f"No such model {model} (expected {model_path}).")
        return model_path

    def build_command(self, executable: str, model_path: str) -> List[str]:
        return [
            executable, "-m", model_path, "--host", self.host, "--port", str(self.port),
        ] + parse_argument_list(self.extra_options)

    def start(self, model: str) -> BackendSession:
        """
        Launches whisper-server for `model` and waits until it is healthy.

        Raises:
            ConfigurationError: Executable or model file missing.
            SessionBusyError: Another session from this manager is still running.
            StartupError: The process could not be spawned.
            ReadinessTimeoutError: The server never became healthy; it has
                                   already been stopped.
        """
        executable = self.resolve_executable()
        model_path = self.resolve_model_path(model)
        command = self.build_command(executable, model_path)

        with self._lock:
            if self._active is not None and not self._active.stopped:
                raise SessionBusyError(f"whisper-server is already running (pid {self._active.pid}).")
            session = self._spawn(command)
            self._active = session

        try:
            wait_for_server_ready(self.client, session.base_url, timeout=self.ready_timeout)
        except ReadinessTimeoutError:
            logger.error(f"Failed to start whisper-server (log: {session.log_path})")
            self.stop(session)
            raise
        except BaseException as e:
            logger.error(f"whisper-server startup interrupted ({type(e).__name__}); stopping pid {session.pid}")
            self.stop(session)
            raise
        session.ready = True
        logger.info(f"whisper-server ready at {session.base_url} (pid {session.pid})")
        return session

    def _spawn(self, command: List[str]) -> BackendSession:
        logger.info(f"Launching whisper-server: {shlex.join(command)}")
        ensure_dir_exists(os.path.dirname(os.path.abspath(self.log_path)))
        try:
            with open(self.log_path, "wb") as log_file:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as e:
            logger.error(f"Unable to start whisper-server: {e}", exc_info=True)
            raise StartupError(f"Unable to start whisper-server. Check your server path and options: {e}") from e

        pid = getattr(process, "pid", None)
        if not isinstance(pid, int) or pid <= 0:
            process.kill()
            process.wait()
            raise StartupError("Unable to start whisper-server: no process id was returned.")
        try:
            self.pid_file.write(pid)
        except OSError as e:
            logger.warning(f"Unable to record whisper-server pid in {self.pid_file.path}: {e}")
        return BackendSession(pid=pid, host=self.host, port=self.port, log_path=self.log_path, process=process)

    def request_inference(self, session: BackendSession, audio_path: str, response_format: str = "srt") -> str:
        """
        POSTs the audio to /inference and returns the response body.

        No client-side timeout: the call blocks until the server answers or the
        connection fails.

        Raises:
            InferenceError: Non-2xx response or transport failure.
        """
        url = f"{session.base_url}/inference"
        logger.info(f"Requesting inference for {audio_path}")
        try:
            with open(audio_path, "rb") as audio_file:
                response = self.client.post(
                    url,
                    files={"file": (os.path.basename(audio_path), audio_file, "audio/wav")},
                    data={"response_format": response_format},
                    timeout=None,
                )
        except httpx.HTTPError as e:
            logger.error(f"Inference request to {url} failed: {e}")
            raise InferenceError(f"Inference request failed: {e}") from e
        except OSError as e:
            raise InferenceError(f"Could not read audio file {audio_path}: {e}") from e
        if not response.is_success:
            detail = response.text.strip()
            logger.error(f"whisper-server returned {response.status_code}: {detail}")
            raise InferenceError(f"whisper-server returned {response.status_code}: {detail}")
        return response.text

    def stop(self, session: Optional[BackendSession]) -> None:
        """
        Terminates the server. Safe to call repeatedly; never raises.

        The PID file is cleared on every call.
        """
        try:
            if session is None or session.stopped:
                return
            error = terminate_process(session.pid)
            if error:
                logger.warning(f"Failed to stop whisper-server (pid {session.pid}): {error}")
            if session.process is not None:
                try:
                    session.process.wait(timeout=1.0)
                except subprocess.TimeoutExpired:
                    logger.warning(f"whisper-server (pid {session.pid}) did not exit after SIGKILL")
            session.stopped = True
            session.ready = False
            logger.info(f"Stopped whisper-server (pid {session.pid})")
            with self._lock:
                if self._active is session:
                    self._active = None
        finally:
            self.pid_file.clear()

    def close(self) -> None:
        """Stops any session still running and releases the HTTP client."""
        self.stop(self._active)
        self.client.close()
