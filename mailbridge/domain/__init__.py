"""Domain layer: enums and exceptions.

No dependencies on infrastructure or presentation. Used by application
and infrastructure layers.
"""

from mailbridge.domain.enums import (
    AccountStatus,
    ConnectionHealth,
    EventDirection,
    EventStatus,
    Provider,
)
from mailbridge.domain.exceptions import (
    AuthenticationException,
    AuthorizationException,
    CryptoError,
    DownstreamDeliveryFailed,
    HistoryCursorExpired,
    MailBridgeException,
    MissingRefreshToken,
    MissingThreadContext,
    ProviderFetchFailed,
    ResourceNotFoundException,
    TokenRefreshFailed,
    ValidationException,
)

__all__ = [
    # Enums
    "AccountStatus",
    "ConnectionHealth",
    "EventDirection",
    "EventStatus",
    "Provider",
    # Exceptions
    "AuthenticationException",
    "AuthorizationException",
    "CryptoError",
    "DownstreamDeliveryFailed",
    "HistoryCursorExpired",
    "MailBridgeException",
    "MissingRefreshToken",
    "MissingThreadContext",
    "ProviderFetchFailed",
    "ResourceNotFoundException",
    "TokenRefreshFailed",
    "ValidationException",
]
