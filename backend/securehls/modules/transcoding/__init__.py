"""Lesson video processing: encrypted multi-rendition HLS.

The API-facing pieces (``service``, ``router``, ``tasks``) are imported
directly from their modules.
"""

from securehls.modules.transcoding.errors import (
    AssetNotFoundError,
    EncodeFailedError,
    EnvironmentUnavailableError,
    InputInvalidError,
    OutputVerificationFailedError,
    TranscodingError,
)
from securehls.modules.transcoding.ffmpeg import (
    EncoderConfig,
    FFmpegEncoder,
    ProbeResult,
)
from securehls.modules.transcoding.job import (
    JobContext,
    TranscodeOutcome,
    TranscodingJob,
)
from securehls.modules.transcoding.renditions import (
    BASELINE_RENDITION,
    RENDITION_LADDER,
    Rendition,
)

__all__ = [
    # Errors
    "AssetNotFoundError",
    "EncodeFailedError",
    "EnvironmentUnavailableError",
    "InputInvalidError",
    "OutputVerificationFailedError",
    "TranscodingError",
    # Encoder
    "EncoderConfig",
    "FFmpegEncoder",
    "ProbeResult",
    # Job
    "JobContext",
    "TranscodeOutcome",
    "TranscodingJob",
    # Renditions
    "BASELINE_RENDITION",
    "RENDITION_LADDER",
    "Rendition",
]
