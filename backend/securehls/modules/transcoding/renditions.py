"""Rendition ladder for HLS encoding.

A fixed list of quality tiers encoded in order. The 720p tier is the
baseline: if it fails the job falls back to a single 720p encode so there is
always one servable rendition.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Rendition:
    """A single quality tier."""
    name: str
    height: int
    width: int  # used for RESOLUTION in the master playlist; encodes keep aspect
    bitrate: str  # ffmpeg rate string, e.g. "800k"
    maxrate: str
    bufsize: str

    @property
    def manifest_name(self) -> str:
        return f"{self.name}.m3u8"

    @property
    def segment_prefix(self) -> str:
        return f"{self.name}_segment_"

    @property
    def bandwidth(self) -> int:
        """Bits per second for the master playlist."""
        return parse_bitrate(self.bitrate)


@dataclass(frozen=True)
class FallbackProfile:
    """Single-rendition encode used when the baseline tier fails."""
    height: int = 720
    crf: int = 23
    maxrate: str = "2M"
    bufsize: str = "4M"


RENDITION_LADDER: tuple[Rendition, ...] = (
    Rendition(
        name="360p",
        height=360,
        width=640,
        bitrate="800k",
        maxrate="1M",
        bufsize="2M",
    ),
    Rendition(
        name="720p",
        height=720,
        width=1280,
        bitrate="2500k",
        maxrate="3M",
        bufsize="6M",
    ),
    Rendition(
        name="1080p",
        height=1080,
        width=1920,
        bitrate="5000k",
        maxrate="6M",
        bufsize="12M",
    ),
)

BASELINE_RENDITION = "720p"

FALLBACK_PROFILE = FallbackProfile()

_RATE_MULTIPLIERS = {"k": 1000, "m": 1000 * 1000}


def parse_bitrate(rate: str) -> int:
    """Convert an ffmpeg rate string ("800k", "3M", "128000") to bits per second.

    Raises:
        ValueError: If the string is not a positive rate
    """
    value = rate.strip()
    if not value:
        raise ValueError("Empty bitrate")

    multiplier = _RATE_MULTIPLIERS.get(value[-1].lower())
    number = value[:-1] if multiplier else value
    bits = int(float(number) * (multiplier or 1))
    if bits <= 0:
        raise ValueError(f"Bitrate must be positive: {rate}")
    return bits


def get_rendition(name: str, ladder: tuple[Rendition, ...] = RENDITION_LADDER) -> Optional[Rendition]:
    """Look up a tier by name."""
    for rendition in ladder:
        if rendition.name == name:
            return rendition
    return None


def is_baseline(rendition: Rendition, baseline: str = BASELINE_RENDITION) -> bool:
    return rendition.name == baseline


def validate_ladder(
    ladder: tuple[Rendition, ...],
    baseline: str = BASELINE_RENDITION,
) -> tuple[bool, list[str]]:
    """Validate a rendition ladder.

    Args:
        ladder: Tiers in encode order
        baseline: Name of the mandatory tier

    Returns:
        Tuple of (is_valid, error_messages)
    """
    errors = []

    if not ladder:
        errors.append("Rendition ladder must have at least one tier")

    names = [r.name for r in ladder]
    if len(set(names)) != len(names):
        errors.append("Rendition names must be unique")

    if ladder and baseline not in names:
        errors.append(f"Baseline tier {baseline} is not in the ladder")

    prev_height = 0
    for rendition in ladder:
        if rendition.height <= prev_height:
            errors.append("Tiers must be ordered by increasing height")
            break
        prev_height = rendition.height

    for rendition in ladder:
        try:
            if parse_bitrate(rendition.maxrate) < parse_bitrate(rendition.bitrate):
                errors.append(f"Max bitrate must be >= bitrate for {rendition.name}")
        except ValueError as e:
            errors.append(f"{rendition.name}: {e}")

    return len(errors) == 0, errors
