"""Mail provider factory: picks the Gmail or Graph adapter for an account."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import httpx

from mailbridge.core.config import Settings
from mailbridge.domain.enums import Provider
from mailbridge.infrastructure.external.email.protocols import IMailProvider
from mailbridge.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailbridge.infrastructure.external.email.providers.outlook_provider import (
    OutlookProvider,
)
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailbridge.infrastructure.services.token_service import TokenLifecycleManager
from mailbridge.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class MailProviderFactory:
    """Adapters keyed by provider. Every provider-specific branch goes through here."""

    def __init__(self, providers: dict[Provider, IMailProvider]) -> None:
        self._providers = providers

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        token_manager: TokenLifecycleManager,
        account_repo: EmailAccountRepository,
        *,
        http_client: httpx.AsyncClient | None = None,
        gmail_service_factory: Callable[[str, float], Any] | None = None,
    ) -> MailProviderFactory:
        """Build both adapters from settings.

        Args:
            settings: Loaded settings (topic, client state, timeouts).
            token_manager: Shared token lifecycle manager.
            account_repo: Account repository for cursor/subscription writes.
            http_client: Optional shared httpx.AsyncClient for Graph calls.
            gmail_service_factory: Optional Gmail client builder (tests).
        """
        renew_within = timedelta(hours=settings.watchdog_renew_window_hours)
        client_state = (
            settings.microsoft_client_state.get_secret_value()
            if settings.microsoft_client_state
            else None
        )
        return cls(
            {
                Provider.GOOGLE: GmailProvider(
                    token_manager,
                    account_repo,
                    pubsub_topic=settings.google_pubsub_topic,
                    timeout=settings.provider_timeout_seconds,
                    renew_within=renew_within,
                    service_factory=gmail_service_factory,
                ),
                Provider.MICROSOFT: OutlookProvider(
                    token_manager,
                    account_repo,
                    notification_url=settings.microsoft_notification_url,
                    client_state=client_state,
                    subscription_ttl=timedelta(
                        hours=settings.microsoft_subscription_ttl_hours
                    ),
                    renew_within=renew_within,
                    timeout=settings.provider_timeout_seconds,
                    http_client=http_client,
                ),
            }
        )

    def get(self, provider: Provider | str) -> IMailProvider:
        """Return the adapter for a provider value.

        Raises:
            ValueError: If provider is not supported.
        """
        try:
            return self._providers[Provider(provider)]
        except (KeyError, ValueError) as e:
            raise ValueError(
                f"Unsupported provider: {provider}. "
                f"Supported: {[p.value for p in self._providers]}"
            ) from e

    def for_account(self, account: EmailAccount) -> IMailProvider:
        return self.get(account.provider)

    def gmail(self) -> GmailProvider:
        provider = self.get(Provider.GOOGLE)
        if not isinstance(provider, GmailProvider):
            raise TypeError("Google provider is not a GmailProvider")
        return provider
