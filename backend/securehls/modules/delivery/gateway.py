"""Delivery gateway for encrypted lesson video.

Playlists are rewritten per viewer: every segment line becomes a segment URL
carrying a fresh segment token, the ``#EXT-X-KEY`` URI becomes the key URL
carrying a fresh key token, and variant playlists listed by a master become
URLs of the variant playlist endpoint.
"""

import logging
import re
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from securehls.core.metrics import KEY_DELIVERIES_TOTAL, SEGMENT_TOKEN_REJECTIONS_TOTAL
from securehls.modules.delivery.access import LessonAccessPolicy
from securehls.modules.delivery.errors import (
    AssetUnavailableError,
    DeliveryError,
    TokenInvalidError,
)
from securehls.modules.delivery.tokens import CapabilityTokenService
from securehls.modules.lesson.models import Lesson, User, VideoStatus
from securehls.modules.transcoding.keys import KEY_SIZE
from securehls.modules.transcoding.manifest import listed_variants
from securehls.modules.transcoding.storage import LessonVideoLayout, SEGMENT_SUFFIX

logger = logging.getLogger(__name__)

PLAYLIST_MEDIA_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_MEDIA_TYPE = "video/mp2t"
KEY_MEDIA_TYPE = "application/octet-stream"

PLAYLIST_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

SEGMENT_HEADERS = {
    "Cache-Control": "private, max-age=3600",
    "Content-Disposition": "inline",
}

KEY_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "X-Robots-Tag": "noindex, nofollow, nosnippet, noarchive",
    "Content-Security-Policy": "default-src 'none'",
}

SEGMENT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.ts$")
VARIANT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
KEY_URI_PATTERN = re.compile(r'URI="([^"]+)"')


class LessonLookup(Protocol):
    async def get_by_id(self, lesson_id: int) -> Optional[Lesson]: ...


class DeliveryUrlBuilder:
    """Builds the public URLs of the delivery endpoints."""

    def __init__(self, api_prefix: str = "/api/v1", base_url: Optional[str] = None):
        self.prefix = (base_url or "").rstrip("/") + "/" + api_prefix.strip("/")

    def lesson_url(self, lesson_id: int) -> str:
        return f"{self.prefix}/lessons/{lesson_id}"

    def playlist_url(self, lesson_id: int) -> str:
        return f"{self.lesson_url(lesson_id)}/playlist"

    def variant_playlist_url(self, lesson_id: int, variant: str) -> str:
        return f"{self.lesson_url(lesson_id)}/playlist/{variant}.m3u8"

    def segment_url(self, lesson_id: int, segment: str, token: str) -> str:
        return f"{self.lesson_url(lesson_id)}/segments/{segment}?token={token}"

    def key_url(self, lesson_id: int, token: Optional[str] = None) -> str:
        url = f"{self.lesson_url(lesson_id)}/key"
        return f"{url}?token={token}" if token else url


def is_segment_line(line: str) -> bool:
    return line.strip().endswith(SEGMENT_SUFFIX) and not line.startswith("#")


def is_variant_line(line: str) -> bool:
    return line.strip().endswith(".m3u8") and not line.startswith("#")


def is_key_line(line: str) -> bool:
    return line.startswith("#EXT-X-KEY") and KEY_URI_PATTERN.search(line) is not None


def replace_key_uri(line: str, key_url: str) -> str:
    """Swap the URI attribute of an ``#EXT-X-KEY`` line."""
    return KEY_URI_PATTERN.sub(lambda _: f'URI="{key_url}"', line, count=1)


class DeliveryGateway:
    """Serves playlists, segments and keys to authorized viewers."""

    def __init__(
        self,
        lessons: LessonLookup,
        access: LessonAccessPolicy,
        tokens: CapabilityTokenService,
        urls: DeliveryUrlBuilder,
        layout_factory: Callable[[int], LessonVideoLayout],
    ):
        self.lessons = lessons
        self.access = access
        self.tokens = tokens
        self.urls = urls
        self.layout_factory = layout_factory

    async def _authorized_lesson(self, lesson_id: int, user: User) -> Lesson:
        lesson = await self.lessons.get_by_id(lesson_id)
        if lesson is None:
            raise AssetUnavailableError(f"Lesson {lesson_id} not found")

        await self.access.authorize(user, lesson)

        if lesson.video_status != VideoStatus.READY.value:
            raise AssetUnavailableError("The video is not available yet")
        return lesson

    async def rewrite_playlist(self, content: str, lesson_id: int, user_id: int) -> str:
        """Rewrite a playlist for one viewer."""
        key_url: Optional[str] = None
        lines = []

        for line in content.split("\n"):
            stripped = line.strip()
            if is_segment_line(line):
                token = await self.tokens.issue_segment_token(lesson_id, stripped, user_id)
                lines.append(self.urls.segment_url(lesson_id, stripped, token))
            elif is_variant_line(line):
                lines.append(
                    self.urls.variant_playlist_url(lesson_id, stripped[: -len(".m3u8")])
                )
            elif is_key_line(line):
                if key_url is None:
                    key_url = self.urls.key_url(lesson_id, self.tokens.issue_key_token(lesson_id))
                lines.append(replace_key_uri(line, key_url))
            else:
                lines.append(line)

        return "\n".join(lines)

    async def get_playlist(self, lesson_id: int, user: User) -> str:
        """Canonical playlist rewritten for the viewer.

        Raises:
            AuthorizationDeniedError: If the viewer may not watch the lesson
            AssetUnavailableError: If the lesson or its manifest is missing
        """
        await self._authorized_lesson(lesson_id, user)
        manifest = self.layout_factory(lesson_id).canonical_manifest
        if not manifest.is_file():
            raise AssetUnavailableError("The video is not available right now")

        return await self.rewrite_playlist(manifest.read_text(), lesson_id, user.id)

    async def get_variant_playlist(self, lesson_id: int, variant: str, user: User) -> str:
        """One rendition's playlist rewritten for the viewer."""
        if not VARIANT_NAME_PATTERN.match(variant):
            raise AssetUnavailableError("Unknown rendition")

        await self._authorized_lesson(lesson_id, user)
        layout = self.layout_factory(lesson_id)
        manifest = layout.variant_manifest(variant)
        if variant not in listed_variants(layout.canonical_manifest) or not manifest.is_file():
            raise AssetUnavailableError("Unknown rendition")

        return await self.rewrite_playlist(manifest.read_text(), lesson_id, user.id)

    async def get_segment(
        self,
        lesson_id: int,
        segment: str,
        token: Optional[str],
        user: User,
    ) -> Path:
        """Path of a segment the viewer holds a valid token for.

        Raises:
            TokenInvalidError: If the token does not grant this segment
        """
        await self._authorized_lesson(lesson_id, user)

        if not SEGMENT_NAME_PATTERN.match(segment):
            SEGMENT_TOKEN_REJECTIONS_TOTAL.inc()
            raise TokenInvalidError("Invalid segment name")

        if not await self.tokens.validate_segment_token(token, lesson_id, segment, user.id):
            SEGMENT_TOKEN_REJECTIONS_TOTAL.inc()
            raise TokenInvalidError("Link expired or invalid")

        path = self.layout_factory(lesson_id).segment(segment)
        if not path.is_file():
            raise AssetUnavailableError("Segment not found")
        return path

    async def get_key(self, lesson_id: int, token: Optional[str], user: User) -> bytes:
        """The lesson's 16-byte AES key. Every attempt is logged.

        Raises:
            TokenInvalidError: If the key token is invalid for this lesson
            AssetUnavailableError: If the key file is missing or malformed
        """
        log_extra: dict[str, Any] = {"lesson_id": lesson_id, "user_id": user.id}

        try:
            await self._authorized_lesson(lesson_id, user)
        except DeliveryError as e:
            KEY_DELIVERIES_TOTAL.labels(outcome="denied").inc()
            logger.warning(
                "Encryption key request denied",
                extra={**log_extra, "reason": type(e).__name__},
            )
            raise

        if not self.tokens.validate_key_token(token, lesson_id):
            KEY_DELIVERIES_TOTAL.labels(outcome="invalid_token").inc()
            logger.warning(
                "Unauthorized encryption key request",
                extra={**log_extra, "token": (token or "")[:20] + "..."},
            )
            raise TokenInvalidError("Link expired or invalid")

        key_file = self.layout_factory(lesson_id).key_file
        key = key_file.read_bytes() if key_file.is_file() else b""
        if len(key) != KEY_SIZE:
            KEY_DELIVERIES_TOTAL.labels(outcome="missing").inc()
            logger.error(
                "Encryption key missing or malformed",
                extra={**log_extra, "path": str(key_file), "key_size": len(key)},
            )
            raise AssetUnavailableError("Encryption key not available")

        KEY_DELIVERIES_TOTAL.labels(outcome="granted").inc()
        logger.info(
            "Encryption key delivered",
            extra={**log_extra, "key_size": len(key)},
        )
        return key
