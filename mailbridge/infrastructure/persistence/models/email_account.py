"""EmailAccount ORM model. One connected Gmail or Microsoft 365 mailbox."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mailbridge.domain.enums import AccountStatus, ConnectionHealth, Provider
from mailbridge.infrastructure.persistence.database import Base
from mailbridge.infrastructure.persistence.models.mixins import MultiTenantModel


class EmailAccount(MultiTenantModel, Base):
    """Mailbox credentials and sync state. Table: email_account.

    Tokens are stored only as vault ciphertext. Rows are never deleted;
    disconnect clears tokens and cursors and flips status.
    """

    __tablename__ = "email_account"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider",
            "email_address",
            name="uq_email_account_tenant_provider_address",
        ),
    )

    provider: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    email_address: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AccountStatus.CONNECTED.value, index=True
    )

    # Credentials (Fernet ciphertext)
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scopes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    token_last_refreshed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    token_refresh_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Gmail push state
    gmail_history_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gmail_watch_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Microsoft Graph subscription state
    ms_subscription_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    ms_subscription_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Health
    last_push_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_success_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    health: Mapped[str | None] = mapped_column(
        String(32), nullable=True, default=ConnectionHealth.OK.value
    )

    @property
    def watch_expires_at(self) -> datetime | None:
        """Gmail watch expiration or Graph subscription expiry, by provider."""
        if self.provider == Provider.MICROSOFT.value:
            return self.ms_subscription_expires_at
        return self.gmail_watch_expires_at
