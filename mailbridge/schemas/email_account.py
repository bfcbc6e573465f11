"""Email account API schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EmailAccountResponse(BaseModel):
    """Connected mailbox as shown to its tenant. Tokens are never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    provider: str
    email_address: str
    status: str
    health: str = Field(..., description="Stored health, or computed when stored is ok")
    last_error: str | None = None
    last_error_at: datetime | None = None
    last_push_at: datetime | None = None
    last_success_at: datetime | None = None
    watch_expires_at: datetime | None = None
    created_at: datetime | None = None


class EmailAccountListResponse(BaseModel):
    accounts: list[EmailAccountResponse]


class DisconnectRequest(BaseModel):
    """Request body for POST /email/accounts/disconnect."""

    account_id: str = Field(..., min_length=1)


class OkResponse(BaseModel):
    """Plain acknowledgment, also returned to providers on ignored callbacks."""

    ok: bool = True
