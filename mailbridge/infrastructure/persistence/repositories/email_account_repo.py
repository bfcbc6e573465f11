"""Email account repository. Lookups for push routing and targeted state updates."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailbridge.domain.enums import AccountStatus, ConnectionHealth, Provider
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.repositories.base import BaseRepository
from mailbridge.shared.utils.datetime import utc_now

_MAX_ERROR_LENGTH = 2000


class EmailAccountRepository(BaseRepository[EmailAccount]):
    """Email account repository (Gmail and Microsoft 365 mailboxes)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__(session_factory, EmailAccount)

    async def get_by_id_and_tenant(
        self, account_id: str, tenant_id: str
    ) -> EmailAccount | None:
        """Return email account by id if it belongs to tenant."""
        return await self._first(
            select(EmailAccount).where(
                EmailAccount.id == account_id,
                EmailAccount.tenant_id == tenant_id,
            )
        )

    async def list_by_tenant(self, tenant_id: str) -> list[EmailAccount]:
        """Return all accounts of a tenant, newest first."""
        return await self._all(
            select(EmailAccount)
            .where(EmailAccount.tenant_id == tenant_id)
            .order_by(EmailAccount.created_at.desc())
        )

    async def list_connected(self) -> list[EmailAccount]:
        """Return every connected account (watchdog sweep)."""
        return await self._all(
            select(EmailAccount)
            .where(EmailAccount.status == AccountStatus.CONNECTED.value)
            .order_by(EmailAccount.created_at)
        )

    async def find_connected_by_address(
        self, provider: Provider | str, email_address: str
    ) -> EmailAccount | None:
        """Resolve a push notification's mailbox (case-insensitive address)."""
        return await self._first(
            select(EmailAccount)
            .where(
                EmailAccount.provider == Provider(provider).value,
                func.lower(EmailAccount.email_address) == email_address.strip().lower(),
                EmailAccount.status == AccountStatus.CONNECTED.value,
            )
            .order_by(EmailAccount.updated_at.desc())
        )

    async def find_by_subscription_id(self, subscription_id: str) -> EmailAccount | None:
        """Resolve a Graph change notification's mailbox by subscription id."""
        return await self._first(
            select(EmailAccount).where(
                EmailAccount.provider == Provider.MICROSOFT.value,
                EmailAccount.ms_subscription_id == subscription_id,
                EmailAccount.status == AccountStatus.CONNECTED.value,
            )
        )

    async def upsert_connected(
        self,
        *,
        tenant_id: str,
        provider: Provider,
        email_address: str,
        access_token_encrypted: str,
        refresh_token_encrypted: str | None,
        token_expires_at: datetime | None,
        scopes: list[str] | None,
    ) -> EmailAccount:
        """Create or reconnect the (tenant, provider, address) account.

        A reconnect that returns no refresh token keeps the stored one.
        """
        address = email_address.strip().lower()
        values = {
            "access_token_encrypted": access_token_encrypted,
            "token_expires_at": token_expires_at,
            "scopes": scopes,
            "status": AccountStatus.CONNECTED.value,
            "health": ConnectionHealth.OK.value,
            "last_error": None,
            "last_error_at": None,
        }
        if refresh_token_encrypted:
            values["refresh_token_encrypted"] = refresh_token_encrypted

        existing = await self._find_by_identity(tenant_id, provider, address)
        if existing is None:
            try:
                return await self.create(
                    EmailAccount(
                        tenant_id=tenant_id,
                        provider=provider.value,
                        email_address=address,
                        token_refresh_count=0,
                        **values,
                    )
                )
            except IntegrityError:
                # Concurrent callback for the same mailbox inserted first.
                existing = await self._find_by_identity(tenant_id, provider, address)
                if existing is None:
                    raise
        await self.update_fields(existing.id, **values)
        return await self.get_or_raise(existing.id)

    async def _find_by_identity(
        self, tenant_id: str, provider: Provider, email_address: str
    ) -> EmailAccount | None:
        return await self._first(
            select(EmailAccount).where(
                EmailAccount.tenant_id == tenant_id,
                EmailAccount.provider == provider.value,
                EmailAccount.email_address == email_address,
            )
        )

    async def update_tokens(
        self,
        account_id: str,
        *,
        access_token_encrypted: str,
        token_expires_at: datetime | None,
        refresh_token_encrypted: str | None = None,
    ) -> None:
        """Persist a refreshed access token (and a rotated refresh token when issued)."""
        values: dict = {
            "access_token_encrypted": access_token_encrypted,
            "token_expires_at": token_expires_at,
            "token_last_refreshed_at": utc_now(),
            "token_refresh_count": EmailAccount.token_refresh_count + 1,
        }
        if refresh_token_encrypted:
            values["refresh_token_encrypted"] = refresh_token_encrypted
        await self.update_fields(account_id, **values)

    async def record_error(
        self,
        account_id: str,
        message: str,
        health: ConnectionHealth | None = None,
    ) -> None:
        """Store the last error; health is only changed when a classification is given."""
        values: dict = {
            "last_error": message[:_MAX_ERROR_LENGTH],
            "last_error_at": utc_now(),
        }
        if health is not None:
            values["health"] = health.value
        await self.update_fields(account_id, **values)

    async def clear_error(self, account_id: str, health: ConnectionHealth) -> None:
        await self.update_fields(
            account_id, last_error=None, last_error_at=None, health=health.value
        )

    async def record_push(self, account_id: str) -> None:
        await self.update_fields(account_id, last_push_at=utc_now())

    async def record_success(self, account_id: str) -> None:
        await self.update_fields(account_id, last_success_at=utc_now())

    async def set_history_id(self, account_id: str, history_id: str) -> None:
        await self.update_fields(account_id, gmail_history_id=history_id)

    async def set_history_id_if_absent(self, account_id: str, history_id: str) -> bool:
        """Seed the Gmail cursor only when none is stored; returns True if it was set."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(EmailAccount)
                    .where(
                        EmailAccount.id == account_id,
                        EmailAccount.gmail_history_id.is_(None),
                    )
                    .values(gmail_history_id=history_id)
                )
        return (result.rowcount or 0) == 1

    async def set_gmail_watch(self, account_id: str, expires_at: datetime | None) -> None:
        await self.update_fields(account_id, gmail_watch_expires_at=expires_at)

    async def set_ms_subscription(
        self,
        account_id: str,
        subscription_id: str | None,
        expires_at: datetime | None,
    ) -> None:
        await self.update_fields(
            account_id,
            ms_subscription_id=subscription_id,
            ms_subscription_expires_at=expires_at,
        )

    async def disconnect(self, account_id: str) -> None:
        """Clear credentials and push cursors; the row itself is kept."""
        await self.update_fields(
            account_id,
            access_token_encrypted=None,
            refresh_token_encrypted=None,
            token_expires_at=None,
            scopes=None,
            gmail_history_id=None,
            gmail_watch_expires_at=None,
            ms_subscription_id=None,
            ms_subscription_expires_at=None,
            status=AccountStatus.DISCONNECTED.value,
        )
