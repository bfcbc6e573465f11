"""Application DTOs (commands and results for the mail pipeline)."""

from mailbridge.application.dtos.email import (
    ClaimedMessage,
    GmailPushNotification,
    IngestionSummary,
    RedriveResult,
    SendReplyCommand,
    SendReplyResult,
    WatchdogResult,
)

__all__ = [
    "ClaimedMessage",
    "GmailPushNotification",
    "IngestionSummary",
    "RedriveResult",
    "SendReplyCommand",
    "SendReplyResult",
    "WatchdogResult",
]
