"""Pydantic request/response schemas for the API."""

from mailbridge.schemas.email import (
    IngestionAckResponse,
    RedriveResponse,
    SendReplyRequest,
    SendReplyResponse,
    WatchdogResponse,
)
from mailbridge.schemas.email_account import (
    DisconnectRequest,
    EmailAccountListResponse,
    EmailAccountResponse,
    OkResponse,
)
from mailbridge.schemas.health import HealthResponse

__all__ = [
    "DisconnectRequest",
    "EmailAccountListResponse",
    "EmailAccountResponse",
    "HealthResponse",
    "IngestionAckResponse",
    "OkResponse",
    "RedriveResponse",
    "SendReplyRequest",
    "SendReplyResponse",
    "WatchdogResponse",
]
