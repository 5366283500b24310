"""Capability tokens for segments and encryption keys.

Segment tokens are bound to (lesson, segment, viewer) and only live as long
as their entry in the ephemeral store, so eviction revokes them. Key tokens
are bound to the lesson and signed with HMAC-SHA256; they carry everything
needed to verify them and survive store restarts.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from securehls.core.redis import KeyValueStore

logger = logging.getLogger(__name__)

SEGMENT_TOKEN_PREFIX = "segment_token:"


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(token: str) -> bytes:
    padding = "=" * (-len(token) % 4)
    return base64.urlsafe_b64decode(token + padding)


@dataclass(frozen=True)
class SegmentGrant:
    """Claims carried by a segment token."""
    lesson_id: int
    segment: str
    user_id: int
    expires_at: int
    nonce: str


@dataclass(frozen=True)
class KeyGrant:
    """Claims carried by a key token."""
    lesson_id: int
    expires_at: int
    signature: str


class CapabilityTokenService:
    """Issues and validates segment and key tokens."""

    def __init__(
        self,
        store: KeyValueStore,
        secret_key: str,
        segment_ttl: int = 600,
        key_ttl: int = 900,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.secret_key = secret_key.encode("utf-8")
        self.segment_ttl = segment_ttl
        self.key_ttl = key_ttl
        self.clock = clock

    def _now(self) -> int:
        return int(self.clock())

    # ----------------------------------------------------------------
    # Segment tokens
    # ----------------------------------------------------------------

    async def issue_segment_token(self, lesson_id: int, segment: str, user_id: int) -> str:
        """Mint a token for one segment fetch by one viewer."""
        grant = SegmentGrant(
            lesson_id=lesson_id,
            segment=segment,
            user_id=user_id,
            expires_at=self._now() + self.segment_ttl,
            nonce=secrets.token_hex(8),
        )
        payload = json.dumps(asdict(grant), separators=(",", ":"), sort_keys=True)
        token = _b64encode(payload.encode("utf-8"))
        await self.store.put(SEGMENT_TOKEN_PREFIX + token, payload, self.segment_ttl)
        return token

    @staticmethod
    def decode_segment_token(token: str) -> Optional[SegmentGrant]:
        """Parse a segment token without checking it. None if malformed."""
        try:
            data = json.loads(_b64decode(token))
            return SegmentGrant(
                lesson_id=int(data["lesson_id"]),
                segment=str(data["segment"]),
                user_id=int(data["user_id"]),
                expires_at=int(data["expires_at"]),
                nonce=str(data["nonce"]),
            )
        except (binascii.Error, ValueError, TypeError, KeyError):
            return None

    async def validate_segment_token(
        self,
        token: Optional[str],
        lesson_id: int,
        segment: str,
        user_id: int,
    ) -> bool:
        """True when the token is live in the store and bound to this request."""
        if not token:
            return False

        if not await self.store.has(SEGMENT_TOKEN_PREFIX + token):
            return False

        grant = self.decode_segment_token(token)
        if grant is None:
            return False

        return (
            grant.lesson_id == lesson_id
            and grant.segment == segment
            and grant.user_id == user_id
            and grant.expires_at > self._now()
        )

    async def revoke_segment_token(self, token: str) -> None:
        await self.store.delete(SEGMENT_TOKEN_PREFIX + token)

    # ----------------------------------------------------------------
    # Key tokens
    # ----------------------------------------------------------------

    def _sign(self, lesson_id: int, expires_at: int) -> str:
        message = f"{lesson_id}|{expires_at}".encode("utf-8")
        return hmac.new(self.secret_key, message, hashlib.sha256).hexdigest()

    def issue_key_token(self, lesson_id: int) -> str:
        """Mint a signed token for fetching the lesson's encryption key."""
        expires_at = self._now() + self.key_ttl
        signature = self._sign(lesson_id, expires_at)
        return _b64encode(f"{lesson_id}|{expires_at}|{signature}".encode("utf-8"))

    @staticmethod
    def decode_key_token(token: str) -> Optional[KeyGrant]:
        """Parse a key token without checking it. None if malformed."""
        try:
            lesson_id, expires_at, signature = _b64decode(token).decode("utf-8").split("|")
            return KeyGrant(
                lesson_id=int(lesson_id),
                expires_at=int(expires_at),
                signature=signature,
            )
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None

    def validate_key_token(self, token: Optional[str], lesson_id: int) -> bool:
        """True when the signature verifies, the lesson matches and it has not expired."""
        if not token:
            return False

        grant = self.decode_key_token(token)
        if grant is None:
            return False

        expected = self._sign(grant.lesson_id, grant.expires_at)
        if not hmac.compare_digest(expected.encode("ascii"), grant.signature.encode("utf-8")):
            return False

        return grant.lesson_id == lesson_id and grant.expires_at > self._now()
