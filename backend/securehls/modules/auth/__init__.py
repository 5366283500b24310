"""Viewer authentication."""

from securehls.modules.auth.jwt import (
    TokenPayload,
    create_access_token,
    decode_token,
    get_current_viewer,
    require_admin,
)

__all__ = [
    "TokenPayload",
    "create_access_token",
    "decode_token",
    "get_current_viewer",
    "require_admin",
]
