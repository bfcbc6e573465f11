"""TokenLifecycleManager: fresh tokens, refresh via the provider token endpoint, failures."""

import asyncio
import itertools
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from mailbridge.domain.enums import ConnectionHealth, Provider
from mailbridge.domain.exceptions import MissingRefreshToken, TokenRefreshFailed
from mailbridge.infrastructure.external.email.oauth_drivers import (
    GoogleDriver,
    OAuthDriverRegistry,
)
from mailbridge.infrastructure.services.token_service import TokenLifecycleManager
from mailbridge.shared.utils.datetime import utc_now


def _registry(handler) -> OAuthDriverRegistry:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OAuthDriverRegistry(
        {
            Provider.GOOGLE: GoogleDriver(
                "client-id", "client-secret", "http://test/callback", http_client=http_client
            )
        }
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected HTTP call to {request.url}")


async def test_fresh_token_is_returned_without_refresh(make_account, account_repo, vault) -> None:
    """A token outside the refresh buffer is decrypted and returned as is."""
    account = await make_account()
    manager = TokenLifecycleManager(vault, account_repo, _registry(_unreachable))
    assert await manager.get_valid_access_token(account) == "access-token"


async def test_expiring_token_is_refreshed_and_persisted(make_account, account_repo, vault) -> None:
    """A token inside the buffer is refreshed; the new ciphertext and expiry are stored."""
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(parse_qs(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "new-access", "expires_in": 3600, "scope": "a b"},
        )

    account = await make_account(token_expires_at=utc_now() + timedelta(seconds=30))
    manager = TokenLifecycleManager(
        vault, account_repo, _registry(handler), refresh_buffer=timedelta(seconds=120)
    )

    assert await manager.get_valid_access_token(account) == "new-access"
    assert seen[0]["grant_type"] == ["refresh_token"]
    assert seen[0]["refresh_token"] == ["refresh-token"]

    stored = await account_repo.get_by_id(account.id)
    assert vault.decrypt(stored.access_token_encrypted) == "new-access"
    assert vault.decrypt(stored.refresh_token_encrypted) == "refresh-token"
    assert stored.token_refresh_count == 1
    assert stored.token_last_refreshed_at is not None


async def test_rotated_refresh_token_is_stored(make_account, account_repo, vault) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"access_token": "a2", "refresh_token": "r2", "expires_in": 3600},
        )

    account = await make_account(token_expires_at=utc_now() - timedelta(minutes=1))
    manager = TokenLifecycleManager(vault, account_repo, _registry(handler))
    await manager.get_valid_access_token(account)

    stored = await account_repo.get_by_id(account.id)
    assert vault.decrypt(stored.refresh_token_encrypted) == "r2"


async def test_concurrent_refreshes_all_return_valid_tokens(
    make_account, account_repo, vault
) -> None:
    """Without locks every concurrent caller refreshes; each gets a usable token."""
    counter = itertools.count(1)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"access_token": f"token-{next(counter)}", "expires_in": 3600}
        )

    account = await make_account(token_expires_at=utc_now() - timedelta(minutes=1))
    manager = TokenLifecycleManager(vault, account_repo, _registry(handler))
    copies = [await account_repo.get_by_id(account.id) for _ in range(3)]

    tokens = await asyncio.gather(*(manager.get_valid_access_token(c) for c in copies))

    assert sorted(tokens) == ["token-1", "token-2", "token-3"]
    stored = await account_repo.get_by_id(account.id)
    assert vault.decrypt(stored.access_token_encrypted) in tokens
    assert stored.token_refresh_count == 3


async def test_missing_refresh_token_raises_and_marks_account(
    make_account, account_repo, vault
) -> None:
    account = await make_account(
        refresh_token_encrypted=None, token_expires_at=utc_now() - timedelta(minutes=1)
    )
    manager = TokenLifecycleManager(vault, account_repo, _registry(_unreachable))

    with pytest.raises(MissingRefreshToken):
        await manager.get_valid_access_token(account)

    stored = await account_repo.get_by_id(account.id)
    assert stored.last_error == "Missing refresh token"
    assert stored.health == ConnectionHealth.REFRESH_FAILED.value


async def test_revoked_grant_is_classified(make_account, account_repo, vault) -> None:
    """invalid_grant from the token endpoint marks the account provider_revoked."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    account = await make_account(token_expires_at=utc_now() - timedelta(minutes=1))
    manager = TokenLifecycleManager(vault, account_repo, _registry(handler))

    with pytest.raises(TokenRefreshFailed) as exc_info:
        await manager.get_valid_access_token(account)

    assert exc_info.value.status_code == 400
    stored = await account_repo.get_by_id(account.id)
    assert stored.health == ConnectionHealth.PROVIDER_REVOKED.value
    assert "invalid_grant" in stored.last_error
