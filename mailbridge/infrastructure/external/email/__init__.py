"""Email integration: vault, OAuth drivers and state, provider protocol.

Provider adapters live in the providers subpackage and are built by
factory.MailProviderFactory.
"""

from mailbridge.infrastructure.external.email.encryption import CredentialVault
from mailbridge.infrastructure.external.email.oauth_drivers import (
    GoogleDriver,
    MicrosoftDriver,
    OAuthDriver,
    OAuthDriverRegistry,
    OAuthTokens,
)
from mailbridge.infrastructure.external.email.oauth_state import OAuthStateManager
from mailbridge.infrastructure.external.email.protocols import (
    Attachment,
    CanonicalMessage,
    HistoryDelta,
    IMailProvider,
    ReplyRequest,
    SendResult,
    WatchInfo,
)

__all__ = [
    "Attachment",
    "CanonicalMessage",
    "CredentialVault",
    "GoogleDriver",
    "HistoryDelta",
    "IMailProvider",
    "MicrosoftDriver",
    "OAuthDriver",
    "OAuthDriverRegistry",
    "OAuthStateManager",
    "OAuthTokens",
    "ReplyRequest",
    "SendResult",
    "WatchInfo",
]
