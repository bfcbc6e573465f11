"""Mailbox connection service: OAuth connect, listing with health, disconnect.

Keeps token encryption and provider calls out of the API layer.
"""

from __future__ import annotations

from dataclasses import dataclass

from mailbridge.application.services.connection_status import display_health
from mailbridge.domain.enums import ConnectionHealth, Provider
from mailbridge.domain.exceptions import MailBridgeException, ResourceNotFoundException
from mailbridge.infrastructure.external.email.encryption import CredentialVault
from mailbridge.infrastructure.external.email.factory import MailProviderFactory
from mailbridge.infrastructure.external.email.oauth_drivers import OAuthDriverRegistry
from mailbridge.infrastructure.external.email.oauth_state import OAuthStateManager
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailbridge.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AccountView:
    account: EmailAccount
    health: ConnectionHealth


class EmailAccountService:
    """Connect, list and disconnect mailboxes for a tenant."""

    def __init__(
        self,
        account_repo: EmailAccountRepository,
        vault: CredentialVault,
        drivers: OAuthDriverRegistry,
        providers: MailProviderFactory,
        state_manager: OAuthStateManager,
    ) -> None:
        self._repo = account_repo
        self._vault = vault
        self._drivers = drivers
        self._providers = providers
        self._state = state_manager

    async def start_authorization(
        self, provider: Provider, tenant_id: str
    ) -> tuple[str, str]:
        """Return (authorization_url, signed_state) for the consent redirect."""
        state = self._state.create_signed_state(tenant_id)
        url = await self._drivers.get(provider).build_authorization_url(state)
        return url, state

    def verify_state(self, state_param: str | None, state_cookie: str | None) -> str:
        """Check the callback state against the cookie and return the tenant id.

        Raises:
            ValueError: Missing, mismatched, or badly signed state.
        """
        if not state_param or not state_cookie or state_param != state_cookie:
            raise ValueError("state_mismatch")
        return self._state.verify_and_extract(state_param)

    async def complete_authorization(
        self, provider: Provider, tenant_id: str, code: str
    ) -> EmailAccount:
        """Exchange the code, upsert the account, and start push delivery.

        A watch/subscription failure is logged and left for the watchdog;
        the account is still connected.
        """
        driver = self._drivers.get(provider)
        tokens = await driver.exchange_code(code)
        email_address = await driver.get_mailbox_address(tokens.access_token)
        account = await self._repo.upsert_connected(
            tenant_id=tenant_id,
            provider=provider,
            email_address=email_address,
            access_token_encrypted=self._vault.encrypt(tokens.access_token),
            refresh_token_encrypted=(
                self._vault.encrypt(tokens.refresh_token) if tokens.refresh_token else None
            ),
            token_expires_at=tokens.expires_at,
            scopes=tokens.scopes,
        )
        logger.info(
            "Connected %s mailbox for tenant %s (account %s)",
            provider.value,
            tenant_id,
            account.id,
        )
        try:
            await self._providers.get(provider).ensure_watch(account, force=True)
        except MailBridgeException as e:
            logger.error(
                "Failed to start push delivery for account %s: %s", account.id, e.message
            )
            await self._repo.record_error(account.id, e.message)
        return account

    async def list_accounts(self, tenant_id: str) -> list[AccountView]:
        accounts = await self._repo.list_by_tenant(tenant_id)
        return [AccountView(account=a, health=display_health(a)) for a in accounts]

    async def disconnect(self, tenant_id: str, account_id: str) -> None:
        """Clear tokens and cursors. Raises ResourceNotFoundException if not the tenant's."""
        account = await self._repo.get_by_id_and_tenant(account_id, tenant_id)
        if not account:
            raise ResourceNotFoundException("email_account", account_id)
        await self._repo.disconnect(account.id)
        logger.info("Disconnected account %s for tenant %s", account_id, tenant_id)
