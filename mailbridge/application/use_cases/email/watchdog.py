"""Watchdog use case: renew Gmail watches and Graph subscriptions, recover stale accounts."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from mailbridge.application.dtos.email import WatchdogResult
from mailbridge.application.interfaces.repositories import IEmailAccountRepository
from mailbridge.application.interfaces.services import IMailProviderRegistry
from mailbridge.application.services.connection_status import (
    classify_auth_failure,
    healthy_status,
)
from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import MailBridgeException
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.utils.datetime import ensure_utc, utc_now

if TYPE_CHECKING:
    from mailbridge.infrastructure.persistence.models.email_account import EmailAccount

logger = get_logger(__name__)

ACTION_GMAIL_REWATCH = "gmail_rewatch"
ACTION_MS_RESUBSCRIBE = "ms_resubscribe"
ACTION_RECOVER = "recover"

STATUS_RECOVERED = "recovered"
STATUS_FAILED_AUTH = "failed_auth"
STATUS_FAILED_TRANSIENT = "failed_transient"
STATUS_SKIPPED_BACKOFF = "skipped_backoff"
STATUS_HEALTHY = "healthy"


def _older_than(value: datetime | None, cutoff: datetime) -> bool:
    """True only for a known timestamp at or before cutoff."""
    if value is None:
        return False
    return ensure_utc(value) <= cutoff


class Watchdog:
    """Periodic sweep over connected accounts."""

    def __init__(
        self,
        account_repo: IEmailAccountRepository,
        providers: IMailProviderRegistry,
        *,
        renew_within: timedelta = timedelta(hours=24),
        stale_after: timedelta = timedelta(hours=6),
        error_backoff: timedelta = timedelta(minutes=30),
    ) -> None:
        self.account_repo = account_repo
        self.providers = providers
        self.renew_within = renew_within
        self.stale_after = stale_after
        self.error_backoff = error_backoff

    def _in_backoff(self, account: EmailAccount, now: datetime) -> bool:
        if account.last_error_at is None:
            return False
        return now - ensure_utc(account.last_error_at) < self.error_backoff

    def _renewal_due(self, account: EmailAccount, now: datetime) -> bool:
        expires_at = account.watch_expires_at
        if expires_at is None:
            return True
        return ensure_utc(expires_at) <= now + self.renew_within

    def _stale(self, account: EmailAccount, now: datetime) -> bool:
        cutoff = now - self.stale_after
        return _older_than(account.last_push_at, cutoff) and _older_than(
            account.last_success_at, cutoff
        )

    async def check_account(
        self, account: EmailAccount, now: datetime | None = None
    ) -> WatchdogResult:
        """Evaluate one account and renew or recover it when needed."""
        now = now or utc_now()
        if self._in_backoff(account, now):
            return WatchdogResult(
                account.id, account.provider, ACTION_RECOVER, STATUS_SKIPPED_BACKOFF
            )
        if not (self._renewal_due(account, now) or self._stale(account, now)):
            return WatchdogResult(account.id, account.provider, None, STATUS_HEALTHY)

        action = (
            ACTION_MS_RESUBSCRIBE
            if account.provider == Provider.MICROSOFT.value
            else ACTION_GMAIL_REWATCH
        )
        try:
            await self.providers.for_account(account).ensure_watch(account, force=True)
        except MailBridgeException as e:
            return await self._record_failure(account, e.message)
        except Exception as e:
            logger.exception("Watchdog recovery crashed for account %s", account.id)
            return await self._record_failure(account, str(e) or type(e).__name__)

        await self.account_repo.clear_error(
            account.id, healthy_status(bool(account.refresh_token_encrypted))
        )
        logger.info("Watchdog %s succeeded for account %s", action, account.id)
        return WatchdogResult(account.id, account.provider, action, STATUS_RECOVERED)

    async def _record_failure(self, account: EmailAccount, message: str) -> WatchdogResult:
        """Persist the error (status stays connected) and classify it."""
        health = classify_auth_failure(message)
        await self.account_repo.record_error(account.id, message, health)
        logger.warning(
            "Watchdog recovery failed for account %s (%s): %s",
            account.id,
            health.value if health else "transient",
            message,
        )
        return WatchdogResult(
            account.id,
            account.provider,
            ACTION_RECOVER,
            STATUS_FAILED_AUTH if health else STATUS_FAILED_TRANSIENT,
            message,
        )

    async def run(self) -> list[WatchdogResult]:
        """Sweep every connected account; one failure never aborts the sweep."""
        now = utc_now()
        accounts = await self.account_repo.list_connected()
        results = [await self.check_account(account, now) for account in accounts]
        logger.info(
            "Watchdog sweep finished: %d account(s), %d recovered",
            len(results),
            sum(1 for r in results if r.status == STATUS_RECOVERED),
        )
        return results
