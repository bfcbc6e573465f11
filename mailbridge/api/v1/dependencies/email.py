"""Mail pipeline dependencies (composition root).

Builds vault, adapters and use cases per request from settings and the
shared httpx client on app.state; OAuth drivers are built once per
process. Routes depend only on these.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated

import httpx
from fastapi import Depends, Request
from pydantic import SecretStr

from mailbridge.application.use_cases.email import (
    IngestionDispatcher,
    OutboundSender,
    RedriveSweep,
    Watchdog,
)
from mailbridge.core.config import get_settings
from mailbridge.infrastructure.external.email.consumer import DownstreamConsumerClient
from mailbridge.infrastructure.external.email.encryption import CredentialVault
from mailbridge.infrastructure.external.email.factory import MailProviderFactory
from mailbridge.infrastructure.external.email.oauth_drivers import OAuthDriverRegistry
from mailbridge.infrastructure.external.email.oauth_state import OAuthStateManager
from mailbridge.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailEventRepository,
)
from mailbridge.infrastructure.services.email_account_service import EmailAccountService
from mailbridge.infrastructure.services.token_service import TokenLifecycleManager

from .db import get_email_account_repo, get_email_event_repo


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value is not None else None


def get_http_client(request: Request) -> httpx.AsyncClient | None:
    """Shared outbound HTTP client created in lifespan (None outside the app lifespan)."""
    return getattr(request.app.state, "http_client", None)


def get_credential_vault() -> CredentialVault:
    return CredentialVault.from_settings(get_settings())


def get_oauth_state_manager() -> OAuthStateManager:
    return OAuthStateManager()


def get_oauth_driver_registry(
    request: Request,
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> OAuthDriverRegistry:
    """Process-wide driver registry, built on first use and kept on app.state."""
    registry = getattr(request.app.state, "oauth_drivers", None)
    if registry is None:
        registry = OAuthDriverRegistry.from_settings(get_settings(), http_client=http_client)
        request.app.state.oauth_drivers = registry
    return registry


def get_token_manager(
    vault: Annotated[CredentialVault, Depends(get_credential_vault)],
    account_repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    drivers: Annotated[OAuthDriverRegistry, Depends(get_oauth_driver_registry)],
) -> TokenLifecycleManager:
    settings = get_settings()
    return TokenLifecycleManager(
        vault,
        account_repo,
        drivers,
        refresh_buffer=timedelta(seconds=settings.token_refresh_buffer_seconds),
    )


def get_mail_provider_factory(
    token_manager: Annotated[TokenLifecycleManager, Depends(get_token_manager)],
    account_repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> MailProviderFactory:
    return MailProviderFactory.from_settings(
        get_settings(), token_manager, account_repo, http_client=http_client
    )


def get_downstream_consumer(
    http_client: Annotated[httpx.AsyncClient | None, Depends(get_http_client)],
) -> DownstreamConsumerClient:
    return DownstreamConsumerClient.from_settings(get_settings(), http_client=http_client)


def get_ingestion_dispatcher(
    account_repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    event_repo: Annotated[EmailEventRepository, Depends(get_email_event_repo)],
    providers: Annotated[MailProviderFactory, Depends(get_mail_provider_factory)],
    consumer: Annotated[DownstreamConsumerClient, Depends(get_downstream_consumer)],
) -> IngestionDispatcher:
    settings = get_settings()
    return IngestionDispatcher(
        account_repo,
        event_repo,
        providers,
        consumer,
        gmail_verification_token=_secret(settings.google_pubsub_verification_token),
        microsoft_client_state=_secret(settings.microsoft_client_state),
    )


def get_outbound_sender(
    account_repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    event_repo: Annotated[EmailEventRepository, Depends(get_email_event_repo)],
    providers: Annotated[MailProviderFactory, Depends(get_mail_provider_factory)],
) -> OutboundSender:
    return OutboundSender(account_repo, event_repo, providers)


def get_watchdog(
    account_repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    providers: Annotated[MailProviderFactory, Depends(get_mail_provider_factory)],
) -> Watchdog:
    settings = get_settings()
    return Watchdog(
        account_repo,
        providers,
        renew_within=timedelta(hours=settings.watchdog_renew_window_hours),
        stale_after=timedelta(hours=settings.watchdog_stale_window_hours),
        error_backoff=timedelta(minutes=settings.watchdog_error_backoff_minutes),
    )


def get_redrive_sweep(
    event_repo: Annotated[EmailEventRepository, Depends(get_email_event_repo)],
    dispatcher: Annotated[IngestionDispatcher, Depends(get_ingestion_dispatcher)],
) -> RedriveSweep:
    settings = get_settings()
    return RedriveSweep(
        event_repo,
        dispatcher,
        max_attempts=settings.redrive_max_attempts,
        batch_size=settings.redrive_batch_size,
    )


def get_email_account_service(
    account_repo: Annotated[EmailAccountRepository, Depends(get_email_account_repo)],
    vault: Annotated[CredentialVault, Depends(get_credential_vault)],
    drivers: Annotated[OAuthDriverRegistry, Depends(get_oauth_driver_registry)],
    providers: Annotated[MailProviderFactory, Depends(get_mail_provider_factory)],
    state_manager: Annotated[OAuthStateManager, Depends(get_oauth_state_manager)],
) -> EmailAccountService:
    return EmailAccountService(account_repo, vault, drivers, providers, state_manager)
