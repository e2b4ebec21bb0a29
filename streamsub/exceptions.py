"""Custom Exceptions for the StreamSub application."""

class StreamSubError(Exception):
    """Base class for exceptions in this module."""
    pass

class ConfigurationError(StreamSubError):
    """Exception raised for missing executables, models, credentials or bad config files."""
    pass

class TranscodeError(StreamSubError):
    """Exception raised when the external transcoder fails."""
    pass

class StartupError(StreamSubError):
    """Exception raised when the inference backend cannot be launched."""
    pass

class ReadinessTimeoutError(StartupError):
    """Exception raised when the backend never answered its health probe in time."""

    def __init__(self, message: str, last_error: str = None):
        super().__init__(message)
        self.last_error = last_error

class SessionBusyError(StartupError):
    """Exception raised when a backend session is already running."""
    pass

class InferenceError(StreamSubError):
    """Exception raised when the backend rejects or fails an inference request."""
    pass

class StreamError(InferenceError):
    """Exception raised when a streaming connection drops mid-transfer."""
    pass

class FileSystemError(StreamSubError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass
