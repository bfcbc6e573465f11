"""Watchdog: renewal triggers, backoff, failure classification."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from mailbridge.application.use_cases.email import Watchdog
from mailbridge.domain.enums import ConnectionHealth, Provider
from mailbridge.domain.exceptions import ProviderFetchFailed, TokenRefreshFailed
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.shared.utils.datetime import utc_now


class FakeProviders:
    def __init__(self) -> None:
        self.adapter = AsyncMock()

    def for_account(self, account):
        return self.adapter


def _account(**overrides) -> EmailAccount:
    now = utc_now()
    values = {
        "id": "acc1",
        "tenant_id": "t1",
        "provider": Provider.GOOGLE.value,
        "email_address": "owner@example.com",
        "refresh_token_encrypted": "ciphertext",
        "gmail_watch_expires_at": now + timedelta(days=5),
        "last_push_at": now - timedelta(minutes=5),
        "last_success_at": now - timedelta(minutes=5),
    }
    values.update(overrides)
    return EmailAccount(**values)


@pytest.fixture
def repo() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def watchdog(repo, providers) -> Watchdog:
    return Watchdog(
        repo,
        providers,
        renew_within=timedelta(hours=24),
        stale_after=timedelta(hours=6),
        error_backoff=timedelta(minutes=30),
    )


async def test_healthy_account_is_left_alone(watchdog, providers) -> None:
    result = await watchdog.check_account(_account())
    assert result.status == "healthy"
    assert result.action is None
    providers.adapter.ensure_watch.assert_not_awaited()


async def test_expiring_gmail_watch_is_renewed(watchdog, repo, providers) -> None:
    account = _account(gmail_watch_expires_at=utc_now() + timedelta(hours=2))

    result = await watchdog.check_account(account)

    assert (result.action, result.status) == ("gmail_rewatch", "recovered")
    providers.adapter.ensure_watch.assert_awaited_once_with(account, force=True)
    repo.clear_error.assert_awaited_once_with("acc1", ConnectionHealth.OK)


async def test_missing_graph_subscription_is_created(watchdog, providers) -> None:
    account = _account(provider=Provider.MICROSOFT.value, gmail_watch_expires_at=None)

    result = await watchdog.check_account(account)

    assert (result.action, result.status) == ("ms_resubscribe", "recovered")


async def test_stale_account_is_recovered(watchdog, providers) -> None:
    """No push and no success within the window triggers a forced rewatch."""
    old = utc_now() - timedelta(hours=7)
    result = await watchdog.check_account(_account(last_push_at=old, last_success_at=old))
    assert result.status == "recovered"


async def test_unknown_activity_is_not_stale(watchdog, providers) -> None:
    result = await watchdog.check_account(_account(last_push_at=None, last_success_at=None))
    assert result.status == "healthy"


async def test_recent_error_is_backed_off(watchdog, providers) -> None:
    account = _account(
        gmail_watch_expires_at=None, last_error_at=utc_now() - timedelta(minutes=5)
    )

    result = await watchdog.check_account(account)

    assert (result.action, result.status) == ("recover", "skipped_backoff")
    providers.adapter.ensure_watch.assert_not_awaited()


async def test_auth_failure_is_classified(watchdog, repo, providers) -> None:
    providers.adapter.ensure_watch.side_effect = TokenRefreshFailed(
        "google", 400, '{"error": "invalid_grant"}'
    )

    result = await watchdog.check_account(_account(gmail_watch_expires_at=None))

    assert result.status == "failed_auth"
    assert "invalid_grant" in result.error
    message, health = repo.record_error.await_args.args[1:]
    assert health == ConnectionHealth.PROVIDER_REVOKED
    assert "invalid_grant" in message


async def test_transient_failure_keeps_health(watchdog, repo, providers) -> None:
    providers.adapter.ensure_watch.side_effect = ProviderFetchFailed("google", "watch", 503)

    result = await watchdog.check_account(_account(gmail_watch_expires_at=None))

    assert result.status == "failed_transient"
    assert repo.record_error.await_args.args[2] is None


async def test_unexpected_error_does_not_abort_sweep(watchdog, repo, providers) -> None:
    first = _account(id="a1", gmail_watch_expires_at=None)
    second = _account(id="a2", gmail_watch_expires_at=None)
    repo.list_connected.return_value = [first, second]
    providers.adapter.ensure_watch.side_effect = [RuntimeError("boom"), None]

    results = await watchdog.run()

    assert [r.status for r in results] == ["failed_transient", "recovered"]
    assert results[0].to_dict()["error"] == "boom"


async def test_account_without_refresh_token_recovers_as_needs_reconnect(
    watchdog, repo
) -> None:
    await watchdog.check_account(
        _account(gmail_watch_expires_at=None, refresh_token_encrypted=None)
    )
    repo.clear_error.assert_awaited_once_with("acc1", ConnectionHealth.NEEDS_RECONNECT)
