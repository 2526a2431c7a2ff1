"""Custom exceptions for longscribe."""


class LongscribeError(Exception):
    """Base class for exceptions in this package."""
    pass


class ConfigurationError(LongscribeError):
    """Missing or invalid configuration (credentials, limits, endpoints)."""
    pass


class AudioSplitError(LongscribeError):
    """Raised when ffmpeg fails to cut the source into chunks."""
    pass


class TranscriptionError(LongscribeError):
    """Raised when transcription cannot produce a usable transcript."""
    pass


class RemoteProcessingError(TranscriptionError):
    """The service reported a failed upload or did not finish processing in time."""
    pass


class TaskStoreError(LongscribeError):
    """Raised when the task store rejects or cannot complete a request."""
    pass
