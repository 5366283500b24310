"""On-disk layout of lesson videos and local blob storage.

Per lesson, under ``<STORAGE_ROOT>/<HLS_OUTPUT_DIR>/lesson_<id>/``:

- ``<tier>.m3u8`` and ``<tier>_segment_NNN.ts`` per rendition
- ``segment_NNN.ts`` when the single-rendition fallback ran
- ``master.m3u8`` when two or more renditions succeeded
- ``index.m3u8``, the canonical entry point
- ``enc.key`` (16 bytes) and, during encoding only, ``enc.keyinfo``
"""

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from securehls.core.config import settings

logger = logging.getLogger(__name__)

CANONICAL_MANIFEST = "index.m3u8"
MASTER_MANIFEST = "master.m3u8"
KEY_FILE = "enc.key"
KEY_INFO_FILE = "enc.keyinfo"
FALLBACK_SEGMENT_PATTERN = "segment_%03d.ts"
SEGMENT_SUFFIX = ".ts"


@dataclass(frozen=True)
class LessonVideoLayout:
    """Paths of one lesson's HLS output."""
    storage_root: Path
    hls_dir: str
    lesson_id: int

    @property
    def relative_dir(self) -> str:
        return f"{self.hls_dir.strip('/')}/lesson_{self.lesson_id}"

    @property
    def output_dir(self) -> Path:
        return self.storage_root / self.relative_dir

    @property
    def canonical_manifest(self) -> Path:
        return self.output_dir / CANONICAL_MANIFEST

    @property
    def canonical_relative_path(self) -> str:
        """Value stored in ``lesson.video_path`` once the video is ready."""
        return f"{self.relative_dir}/{CANONICAL_MANIFEST}"

    @property
    def master_manifest(self) -> Path:
        return self.output_dir / MASTER_MANIFEST

    @property
    def key_file(self) -> Path:
        return self.output_dir / KEY_FILE

    @property
    def key_info_file(self) -> Path:
        return self.output_dir / KEY_INFO_FILE

    def variant_manifest(self, name: str) -> Path:
        return self.output_dir / f"{name}.m3u8"

    def segment(self, name: str) -> Path:
        return self.output_dir / name

    def segment_files(self) -> list[Path]:
        """All segment files currently on disk, in name order."""
        if not self.output_dir.is_dir():
            return []
        return sorted(self.output_dir.glob(f"*{SEGMENT_SUFFIX}"))

    def manifest_files(self) -> list[Path]:
        if not self.output_dir.is_dir():
            return []
        return sorted(self.output_dir.glob("*.m3u8"))


def get_layout(lesson_id: int, storage_root: Optional[Path] = None) -> LessonVideoLayout:
    """Layout for a lesson using the configured storage root."""
    return LessonVideoLayout(
        storage_root=Path(storage_root or settings.STORAGE_ROOT),
        hls_dir=settings.HLS_OUTPUT_DIR,
        lesson_id=lesson_id,
    )


def remove_output_dir(layout: LessonVideoLayout) -> bool:
    """Recursively delete a lesson's HLS directory.

    Returns:
        True if a directory was removed
    """
    if not layout.output_dir.exists():
        return False
    shutil.rmtree(layout.output_dir)
    logger.info(
        "Removed HLS output directory",
        extra={"lesson_id": layout.lesson_id, "path": str(layout.output_dir)},
    )
    return True


def format_bytes(size: int) -> str:
    """Human readable size, e.g. ``1.5 MB``."""
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value > 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


class LocalBlobStorage:
    """Blob storage on the local filesystem, addressed by relative path."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.STORAGE_ROOT)

    def path(self, relative_path: str) -> Path:
        """Resolve a relative path, refusing anything outside the root."""
        root = self.root.resolve()
        resolved = (root / relative_path).resolve()
        if resolved != root and root not in resolved.parents:
            raise ValueError(f"Path escapes storage root: {relative_path}")
        return resolved

    def delete(self, relative_path: str) -> bool:
        """Delete a file. Returns True if something was deleted."""
        target = self.path(relative_path)
        if not target.is_file():
            return False
        target.unlink()
        return True

    def write_temp(self, source: BinaryIO, extension: str, directory: Optional[str] = None) -> str:
        """Store an upload under a random name.

        Returns:
            Path of the stored file relative to the storage root
        """
        directory = directory or settings.TEMP_VIDEO_DIR
        relative_path = f"{directory.strip('/')}/{uuid.uuid4()}.{extension.lstrip('.').lower()}"
        target = self.path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            shutil.copyfileobj(source, f)
        return relative_path
