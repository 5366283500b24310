"""HLS manifest assembly and output verification."""

import logging
import shutil
from pathlib import Path
from typing import Iterable, Sequence

from securehls.modules.transcoding.errors import OutputVerificationFailedError
from securehls.modules.transcoding.keys import is_valid_key_file
from securehls.modules.transcoding.renditions import Rendition
from securehls.modules.transcoding.storage import LessonVideoLayout, SEGMENT_SUFFIX

logger = logging.getLogger(__name__)

HLS_VERSION = 6


def build_master_manifest(renditions: Sequence[Rendition]) -> str:
    """Build a master playlist listing every rendition.

    Args:
        renditions: Successfully encoded tiers, in ladder order

    Returns:
        Master playlist text
    """
    lines = ["#EXTM3U", f"#EXT-X-VERSION:{HLS_VERSION}", ""]

    for rendition in renditions:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={rendition.bandwidth},"
            f"RESOLUTION={rendition.width}x{rendition.height}"
        )
        lines.append(rendition.manifest_name)
        lines.append("")

    return "\n".join(lines) + "\n"


def write_master_manifest(layout: LessonVideoLayout, renditions: Sequence[Rendition]) -> Path:
    """Write ``master.m3u8`` and copy it to the canonical manifest.

    Returns:
        Path of the canonical manifest
    """
    layout.master_manifest.write_text(build_master_manifest(renditions))
    shutil.copyfile(layout.master_manifest, layout.canonical_manifest)

    logger.info(
        "Master manifest created",
        extra={
            "lesson_id": layout.lesson_id,
            "renditions": [r.name for r in renditions],
        },
    )
    return layout.canonical_manifest


def promote_single_rendition(layout: LessonVideoLayout, rendition: Rendition) -> Path:
    """Copy the only successful variant manifest to the canonical manifest."""
    shutil.copyfile(layout.variant_manifest(rendition.name), layout.canonical_manifest)
    return layout.canonical_manifest


def _uri_lines(text: str) -> list[str]:
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.startswith("#")
    ]


def is_master_manifest(text: str) -> bool:
    return "#EXT-X-STREAM-INF" in text


def listed_variants(manifest_path: Path) -> set[str]:
    """Variant names a master playlist points at; empty for a media playlist."""
    if not manifest_path.is_file():
        return set()
    text = manifest_path.read_text()
    if not is_master_manifest(text):
        return set()
    return {uri[: -len(".m3u8")] for uri in _uri_lines(text) if uri.endswith(".m3u8")}


def discard_stale_manifests(layout: LessonVideoLayout, keep: Iterable[Path]) -> list[str]:
    """Delete playlists in the output directory that this encode did not produce.

    A retry reuses the directory of the failed attempt, whose variant and
    master playlists point at segments encrypted under a key that no longer
    exists.

    Returns:
        Names of the deleted playlists
    """
    keep = {Path(p).name for p in keep}
    removed = []
    for manifest in layout.manifest_files():
        if manifest.name not in keep:
            manifest.unlink(missing_ok=True)
            removed.append(manifest.name)

    if removed:
        logger.info(
            "Removed stale playlists",
            extra={"lesson_id": layout.lesson_id, "playlists": removed},
        )
    return removed


def count_segment_references(manifest_path: Path) -> int:
    """Count segment URIs in a playlist.

    A master playlist is followed one level into the variant playlists it
    lists; missing variants count as zero.
    """
    if not manifest_path.is_file():
        return 0

    text = manifest_path.read_text()
    count = 0
    for uri in _uri_lines(text):
        if uri.endswith(SEGMENT_SUFFIX):
            count += 1
        elif uri.endswith(".m3u8") and is_master_manifest(text):
            variant = manifest_path.parent / uri
            if variant.is_file():
                count += sum(
                    1 for line in _uri_lines(variant.read_text())
                    if line.endswith(SEGMENT_SUFFIX)
                )
    return count


def verify_output(layout: LessonVideoLayout) -> int:
    """Check the manifest set of a finished encode.

    Returns:
        Number of segment references reachable from the canonical manifest

    Raises:
        OutputVerificationFailedError: If the canonical manifest is missing
            or empty, references no segments, or the key is not 16 bytes
    """
    canonical = layout.canonical_manifest
    if not canonical.is_file() or canonical.stat().st_size == 0:
        raise OutputVerificationFailedError(
            f"Canonical manifest missing or empty for lesson {layout.lesson_id}"
        )

    segments = count_segment_references(canonical)
    if segments < 1:
        raise OutputVerificationFailedError(
            f"Canonical manifest for lesson {layout.lesson_id} references no segments"
        )

    if not is_valid_key_file(layout.key_file):
        raise OutputVerificationFailedError(
            f"Encryption key for lesson {layout.lesson_id} is missing or not 16 bytes"
        )

    return segments
