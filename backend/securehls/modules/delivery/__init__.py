"""Secure delivery of encrypted lesson video.

Capability tokens gate every segment and key fetch; playlists are rewritten
per viewer to carry them.
"""

from securehls.modules.delivery.access import LessonAccessPolicy
from securehls.modules.delivery.errors import (
    AssetUnavailableError,
    AuthorizationDeniedError,
    DeliveryError,
    TokenInvalidError,
)
from securehls.modules.delivery.gateway import DeliveryGateway, DeliveryUrlBuilder
from securehls.modules.delivery.tokens import (
    CapabilityTokenService,
    KeyGrant,
    SegmentGrant,
)

__all__ = [
    # Access
    "LessonAccessPolicy",
    # Errors
    "AssetUnavailableError",
    "AuthorizationDeniedError",
    "DeliveryError",
    "TokenInvalidError",
    # Gateway
    "DeliveryGateway",
    "DeliveryUrlBuilder",
    # Tokens
    "CapabilityTokenService",
    "KeyGrant",
    "SegmentGrant",
]
