"""Mail providers: Gmail and Microsoft Graph."""

from mailbridge.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailbridge.infrastructure.external.email.providers.outlook_provider import (
    OutlookProvider,
)

__all__ = [
    "GmailProvider",
    "OutlookProvider",
]
