"""AES-128 key material for HLS segment encryption.

One random 16-byte key per lesson, shared by every rendition. ffmpeg reads
it through a key-info file of three lines: the key URI written into the
playlist, the local key file path, and the IV as 32 hex characters.
"""

import logging
import secrets
from dataclasses import dataclass
from pathlib import Path

from securehls.modules.transcoding.errors import EnvironmentUnavailableError
from securehls.modules.transcoding.storage import LessonVideoLayout

logger = logging.getLogger(__name__)

KEY_SIZE = 16
IV_SIZE = 16


@dataclass(frozen=True)
class KeyMaterial:
    """Key files produced for one encoding run."""
    key_file: Path
    key_info_file: Path
    iv: str
    key_uri: str


def build_key_info(key_uri: str, key_file: Path, iv: str) -> str:
    """Content of the ffmpeg ``-hls_key_info_file``."""
    return f"{key_uri}\n{key_file}\n{iv}"


def generate_key_material(layout: LessonVideoLayout, key_uri: str) -> KeyMaterial:
    """Write ``enc.key`` and ``enc.keyinfo`` into the lesson's output directory.

    Args:
        layout: Output layout of the lesson
        key_uri: URI players are told to fetch the key from

    Returns:
        KeyMaterial describing the written files

    Raises:
        EnvironmentUnavailableError: If the files cannot be written
    """
    key = secrets.token_bytes(KEY_SIZE)
    iv = secrets.token_hex(IV_SIZE)

    try:
        layout.key_file.write_bytes(key)
        layout.key_info_file.write_text(
            build_key_info(key_uri, layout.key_file, iv)
        )
    except OSError as e:
        raise EnvironmentUnavailableError(
            f"Could not write key material for lesson {layout.lesson_id}: {e}"
        ) from e

    logger.info(
        "Generated encryption key",
        extra={"lesson_id": layout.lesson_id, "iv_length": len(iv)},
    )

    return KeyMaterial(
        key_file=layout.key_file,
        key_info_file=layout.key_info_file,
        iv=iv,
        key_uri=key_uri,
    )


def discard_key_info(material: KeyMaterial) -> bool:
    """Delete the key-info file; it must not outlive the encode.

    Returns:
        True if the file existed and was removed
    """
    if not material.key_info_file.exists():
        return False
    material.key_info_file.unlink()
    return True


def is_valid_key_file(path: Path) -> bool:
    """True when the key file exists and holds exactly 16 bytes."""
    return path.is_file() and path.stat().st_size == KEY_SIZE
