"""FFmpeg utilities for encrypted HLS encoding.

Builds and runs ffmpeg commands producing one AES-128 encrypted HLS
rendition per call, probes media with ffprobe, and checks that the encoder
is installed.
"""

import json
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from securehls.core.metrics import ENCODE_DURATION_SECONDS
from securehls.modules.transcoding.errors import (
    EncodeFailedError,
    EnvironmentUnavailableError,
)
from securehls.modules.transcoding.renditions import (
    FALLBACK_PROFILE,
    FallbackProfile,
    Rendition,
)

logger = logging.getLogger(__name__)


@dataclass
class EncoderConfig:
    """Configuration shared by every encode."""
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    segment_seconds: int = 6
    encode_timeout: float = 3600.0
    check_timeout: float = 10.0
    probe_timeout: float = 30.0
    preset: str = "medium"
    crf: int = 23
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 44100


@dataclass
class EncodeOutput:
    """Result of a successful encode."""
    manifest_path: Path
    rendition: Optional[Rendition]
    elapsed_seconds: float


@dataclass
class ProbeResult:
    """Outcome of an ffprobe call: either ``data`` or ``error`` is set.

    ``rejected`` means ffprobe ran and could not read the input as media, as
    opposed to ffprobe itself being unavailable or timing out.
    """
    data: Optional[dict] = None
    error: Optional[str] = None
    rejected: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def has_video(self) -> bool:
        if not self.data:
            return False
        return any(s.get("codec_type") == "video" for s in self.data.get("streams", []))

    @property
    def duration(self) -> Optional[int]:
        """Duration in whole seconds, from the container or first video stream."""
        if not self.data:
            return None

        raw = self.data.get("format", {}).get("duration")
        if raw is None:
            for stream in self.data.get("streams", []):
                if stream.get("codec_type") == "video" and stream.get("duration") is not None:
                    raw = stream["duration"]
                    break

        if raw is None:
            return None
        try:
            return int(round(float(raw)))
        except (TypeError, ValueError):
            return None


class FFmpegEncoder:
    """Encoder adapter around the ffmpeg and ffprobe binaries."""

    def __init__(self, config: Optional[EncoderConfig] = None):
        self.config = config or EncoderConfig()

    def check_available(self) -> str:
        """Run ``ffmpeg -version``.

        Returns:
            First line of the version banner

        Raises:
            EnvironmentUnavailableError: If ffmpeg cannot be run
        """
        cmd = [self.config.ffmpeg_path, "-version"]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.check_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise EnvironmentUnavailableError(
                f"FFmpeg is not available: {e}"
            ) from e

        if result.returncode != 0:
            raise EnvironmentUnavailableError(
                f"FFmpeg is not available (exit code {result.returncode})"
            )

        return result.stdout.splitlines()[0].strip() if result.stdout else ""

    def _hls_args(self, segment_pattern: Path, key_info_file: Path, manifest_path: Path) -> list[str]:
        return [
            "-f", "hls",
            "-hls_time", str(self.config.segment_seconds),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(segment_pattern),
            "-hls_key_info_file", str(key_info_file),
            "-hls_flags", "independent_segments",
            str(manifest_path),
        ]

    def _tail_args(self) -> list[str]:
        return [
            "-threads", "0",
            "-loglevel", "warning",
            "-y",
        ]

    def build_rendition_command(
        self,
        input_path: Path,
        output_dir: Path,
        rendition: Rendition,
        key_info_file: Path,
    ) -> list[str]:
        """Build the ffmpeg command for one ladder tier.

        Writes ``<tier>.m3u8`` and ``<tier>_segment_NNN.ts``.
        """
        return [
            self.config.ffmpeg_path,
            "-i", str(input_path),
            # Video settings
            "-c:v", "libx264",
            "-preset", self.config.preset,
            "-crf", str(self.config.crf),
            "-b:v", rendition.bitrate,
            "-maxrate", rendition.maxrate,
            "-bufsize", rendition.bufsize,
            "-vf", f"scale=-2:{rendition.height}",
            "-profile:v", "high",
            "-level:v", "4.0",
            # Audio settings
            "-c:a", "aac",
            "-b:a", self.config.audio_bitrate,
            "-ar", str(self.config.audio_sample_rate),
            "-ac", "2",
            *self._hls_args(
                output_dir / f"{rendition.segment_prefix}%03d.ts",
                key_info_file,
                output_dir / rendition.manifest_name,
            ),
            *self._tail_args(),
        ]

    def build_fallback_command(
        self,
        input_path: Path,
        manifest_path: Path,
        segment_pattern: Path,
        key_info_file: Path,
        profile: FallbackProfile = FALLBACK_PROFILE,
    ) -> list[str]:
        """Build the single-rendition command writing the canonical manifest directly."""
        return [
            self.config.ffmpeg_path,
            "-i", str(input_path),
            "-c:v", "libx264",
            "-preset", self.config.preset,
            "-crf", str(profile.crf),
            "-maxrate", profile.maxrate,
            "-bufsize", profile.bufsize,
            "-vf", f"scale=-2:{profile.height}",
            "-c:a", "aac",
            "-b:a", self.config.audio_bitrate,
            "-ar", str(self.config.audio_sample_rate),
            *self._hls_args(segment_pattern, key_info_file, manifest_path),
            *self._tail_args(),
        ]

    def _run(self, cmd: list[str], label: str) -> float:
        """Run an encode command, returning elapsed seconds.

        Raises:
            EncodeFailedError: On non-zero exit, timeout or launch failure
        """
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.encode_timeout,
            )
        except subprocess.TimeoutExpired as e:
            stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else e.stderr
            raise EncodeFailedError(
                f"Encode {label} timed out after {self.config.encode_timeout}s",
                stderr=stderr,
            ) from e
        except OSError as e:
            raise EncodeFailedError(f"Encode {label} could not start: {e}") from e

        elapsed = time.monotonic() - start
        ENCODE_DURATION_SECONDS.labels(rendition=label).observe(elapsed)

        if result.returncode != 0:
            raise EncodeFailedError(
                f"Encode {label} exited with code {result.returncode}",
                stderr=result.stderr,
            )
        return elapsed

    def encode_rendition(
        self,
        input_path: Path,
        output_dir: Path,
        rendition: Rendition,
        key_info_file: Path,
    ) -> EncodeOutput:
        """Encode one ladder tier into ``output_dir``."""
        cmd = self.build_rendition_command(input_path, output_dir, rendition, key_info_file)
        elapsed = self._run(cmd, rendition.name)
        return EncodeOutput(
            manifest_path=output_dir / rendition.manifest_name,
            rendition=rendition,
            elapsed_seconds=elapsed,
        )

    def encode_fallback(
        self,
        input_path: Path,
        manifest_path: Path,
        segment_pattern: Path,
        key_info_file: Path,
    ) -> EncodeOutput:
        """Encode the single fallback rendition straight into the canonical manifest."""
        cmd = self.build_fallback_command(input_path, manifest_path, segment_pattern, key_info_file)
        elapsed = self._run(cmd, "fallback")
        return EncodeOutput(
            manifest_path=manifest_path,
            rendition=None,
            elapsed_seconds=elapsed,
        )

    def probe(self, input_path: Path) -> ProbeResult:
        """Get media information using ffprobe.

        Never raises; failures are returned as ``ProbeResult.error``.
        """
        cmd = [
            self.config.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(input_path),
        ]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.probe_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return ProbeResult(error=str(e))

        if result.returncode != 0:
            return ProbeResult(
                error=result.stderr or f"ffprobe exited with code {result.returncode}",
                rejected=True,
            )

        try:
            return ProbeResult(data=json.loads(result.stdout))
        except json.JSONDecodeError as e:
            return ProbeResult(error=f"Invalid ffprobe output: {e}")


def get_default_encoder() -> FFmpegEncoder:
    """Encoder configured from application settings."""
    from securehls.core.config import settings

    return FFmpegEncoder(
        EncoderConfig(
            ffmpeg_path=settings.FFMPEG_PATH,
            ffprobe_path=settings.FFPROBE_PATH,
            segment_seconds=settings.HLS_SEGMENT_SECONDS,
            encode_timeout=settings.ENCODE_TIMEOUT_SECONDS,
            check_timeout=settings.FFMPEG_CHECK_TIMEOUT_SECONDS,
            probe_timeout=settings.FFPROBE_TIMEOUT_SECONDS,
        )
    )
