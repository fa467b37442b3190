"""
Exceptions raised by the track service.
"""


class TrackServiceError(Exception):
    """Base class for errors raised by the track service itself."""


class LockTimeoutError(TrackServiceError):
    """The advisory lock on the track file could not be acquired in time."""

    def __init__(self, lock_path, attempts):
        self.lock_path = lock_path
        self.attempts = attempts
        super().__init__(f"Could not acquire lock {lock_path} after {attempts} attempts")


class InvalidPayloadError(TrackServiceError):
    """The request body could not be read as a tracking record."""
