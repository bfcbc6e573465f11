"""Connection health classification for mailbox accounts.

Pure functions over account state and error text; shared by the token
manager, the watchdog and the account listing.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from mailbridge.domain.enums import AccountStatus, ConnectionHealth, Provider
from mailbridge.shared.utils.datetime import ensure_utc, utc_now

if TYPE_CHECKING:
    from mailbridge.infrastructure.persistence.models.email_account import EmailAccount

_REVOKED_RE = re.compile(r"revoked|invalid_grant")
_REFRESH_FAILED_RE = re.compile(
    r"missing refresh token|invalid refresh token|refresh token|token refresh failed"
)
_RECONNECT_RE = re.compile(
    r"interaction_required|consent_required|unauthorized|invalid_token"
)


def classify_auth_failure(message: str | None) -> ConnectionHealth | None:
    """Map provider/auth error text to a health value, or None for transient errors.

    Order matters: a revoked grant also mentions the refresh token.
    """
    text = (message or "").lower()
    if _REVOKED_RE.search(text):
        return ConnectionHealth.PROVIDER_REVOKED
    if _REFRESH_FAILED_RE.search(text):
        return ConnectionHealth.REFRESH_FAILED
    if _RECONNECT_RE.search(text):
        return ConnectionHealth.NEEDS_RECONNECT
    return None


def _classify_stored_error(message: str | None) -> ConnectionHealth | None:
    # Display ordering: a consent prompt outranks refresh-token wording.
    text = (message or "").lower()
    if _REVOKED_RE.search(text):
        return ConnectionHealth.PROVIDER_REVOKED
    if _RECONNECT_RE.search(text):
        return ConnectionHealth.NEEDS_RECONNECT
    if _REFRESH_FAILED_RE.search(text):
        return ConnectionHealth.REFRESH_FAILED
    return None


def healthy_status(has_refresh_token: bool) -> ConnectionHealth:
    """Health after a successful renewal: ok only if the account can still refresh."""
    return ConnectionHealth.OK if has_refresh_token else ConnectionHealth.NEEDS_RECONNECT


def compute_connection_status(
    account: EmailAccount, now: datetime | None = None
) -> ConnectionHealth:
    """Derive display health from stored state.

    Adds inactive, watch_expired and subscription_expired on top of the
    persisted values.
    """
    if account.status == AccountStatus.DISCONNECTED.value:
        return ConnectionHealth.INACTIVE

    classified = _classify_stored_error(account.last_error)
    if classified is not None:
        return classified

    if not account.refresh_token_encrypted:
        return ConnectionHealth.NEEDS_RECONNECT

    now = now or utc_now()
    if account.provider == Provider.GOOGLE.value:
        expires_at = ensure_utc(account.gmail_watch_expires_at)
        if expires_at is not None and expires_at <= now:
            return ConnectionHealth.WATCH_EXPIRED
    if account.provider == Provider.MICROSOFT.value:
        expires_at = ensure_utc(account.ms_subscription_expires_at)
        if expires_at is not None and expires_at <= now:
            return ConnectionHealth.SUBSCRIPTION_EXPIRED

    return ConnectionHealth.OK


def display_health(account: EmailAccount, now: datetime | None = None) -> ConnectionHealth:
    """Health shown in account listings.

    A stored non-ok value wins; otherwise the computed value is used so
    expired watches surface even while the stored value is still ok.
    """
    if account.status == AccountStatus.DISCONNECTED.value:
        return ConnectionHealth.INACTIVE
    if account.health and account.health != ConnectionHealth.OK.value:
        return ConnectionHealth(account.health)
    return compute_connection_status(account, now)
