"""Errors raised by the video processing pipeline."""

from typing import Optional


class TranscodingError(Exception):
    """Base exception for video processing errors."""

    retryable = True


class AssetNotFoundError(TranscodingError):
    """Raised when the lesson no longer exists."""

    retryable = False


class InputInvalidError(TranscodingError):
    """Raised when the source file is missing, empty or of a disallowed type."""


class EnvironmentUnavailableError(TranscodingError):
    """Raised when ffmpeg is missing or the output directory cannot be created."""


class EncodeFailedError(TranscodingError):
    """Raised when ffmpeg exits non-zero or times out."""

    def __init__(self, message: str, stderr: Optional[str] = None):
        super().__init__(message)
        self.stderr = stderr or ""


class OutputVerificationFailedError(TranscodingError):
    """Raised when the produced manifest set or key file is unusable."""
