"""Errors raised while delivering protected video."""


class DeliveryError(Exception):
    """Base exception for delivery errors."""
    pass


class TokenInvalidError(DeliveryError):
    """Raised when a capability token is missing, expired, tampered or mis-bound."""
    pass


class AuthorizationDeniedError(DeliveryError):
    """Raised when the viewer may not watch the lesson."""
    pass


class AssetUnavailableError(DeliveryError):
    """Raised when the lesson or the requested file does not exist."""
    pass
