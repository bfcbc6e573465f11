"""Mail pipeline API schemas: push acks, outbound send, watchdog and re-drive summaries."""

from typing import Any

from pydantic import BaseModel, Field, model_validator


class IngestionAckResponse(BaseModel):
    """Response to a provider callback once claims are recorded."""

    ok: bool = True
    claimed: int = 0
    processed: int | None = Field(
        default=None, description="Set when processing ran inline (INGESTION_ASYNC=false)"
    )
    failed: int | None = None


class SendReplyRequest(BaseModel):
    """Request body for POST /email/send. client_id is the tenant id."""

    account_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    reply_to_event_id: str | None = None
    job_id: str | None = None
    body: str = Field(..., min_length=1)
    subject_override: str | None = None

    @model_validator(mode="after")
    def require_target(self) -> "SendReplyRequest":
        if not self.reply_to_event_id and not self.job_id:
            raise ValueError("reply_to_event_id or job_id is required")
        return self


class SendReplyResponse(BaseModel):
    ok: bool = True
    event_id: str
    provider_message_id: str | None = None
    provider_thread_id: str | None = None


class WatchdogResultItem(BaseModel):
    account_id: str
    provider: str
    action: str | None = None
    status: str
    error: str | None = None


class WatchdogResponse(BaseModel):
    """Response for POST /email/watchdog."""

    ok: bool = True
    total: int
    results: list[WatchdogResultItem]


class RedriveResultItem(BaseModel):
    event_id: str
    account_id: str
    provider_message_id: str | None = None
    status: str
    error: str | None = None


class RedriveResponse(BaseModel):
    """Response for POST /email/events/redrive."""

    ok: bool = True
    total: int
    results: list[RedriveResultItem]

    @classmethod
    def from_results(cls, results: list[dict[str, Any]]) -> "RedriveResponse":
        return cls(total=len(results), results=[RedriveResultItem(**r) for r in results])


class LinkJobRequest(BaseModel):
    """Request body for POST /email/events/{event_id}/link. client_id is the tenant id."""

    client_id: str = Field(..., min_length=1)
    job_id: str = Field(..., min_length=1)
    conversation_id: str | None = None


class LinkJobResponse(BaseModel):
    ok: bool = True
    event_id: str
    job_id: str
    conversation_id: str | None = None
