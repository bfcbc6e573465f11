"""EmailEvent ORM model. Idempotency ledger row for one inbound or outbound message."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mailbridge.domain.enums import EventStatus
from mailbridge.infrastructure.persistence.database import Base
from mailbridge.infrastructure.persistence.models.mixins import MultiTenantModel


class EmailEvent(MultiTenantModel, Base):
    """Email event ledger. Table: email_event.

    (account_id, provider_message_id) is unique; provider_message_id is
    NULL only for outbound sends that failed before the provider issued an
    id. Rows are never deleted.
    """

    __tablename__ = "email_event"
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "provider_message_id",
            name="uq_email_event_account_provider_message",
        ),
        Index("ix_email_event_status_claimed_at", "status", "claimed_at"),
    )

    account_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("email_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)

    from_address: Mapped[str | None] = mapped_column(String(320), nullable=True)
    to_addresses: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    cc_addresses: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=EventStatus.RECEIVED.value
    )
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # "metadata" is reserved on declarative classes.
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
