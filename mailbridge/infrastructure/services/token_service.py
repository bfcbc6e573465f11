"""Token lifecycle: hand out a valid access token, refreshing when near expiry.

No locks are taken. Concurrent refreshes for one account each call the
token endpoint and each persist a valid token; the last write wins.
"""

from __future__ import annotations

from datetime import timedelta

from mailbridge.application.services.connection_status import classify_auth_failure
from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import MissingRefreshToken, TokenRefreshFailed
from mailbridge.infrastructure.external.email.encryption import CredentialVault
from mailbridge.infrastructure.external.email.oauth_drivers import OAuthDriverRegistry
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)


class TokenLifecycleManager:
    """Returns a currently valid access token for an account."""

    def __init__(
        self,
        vault: CredentialVault,
        account_repo: EmailAccountRepository,
        drivers: OAuthDriverRegistry,
        refresh_buffer: timedelta = timedelta(seconds=120),
    ) -> None:
        self._vault = vault
        self._account_repo = account_repo
        self._drivers = drivers
        self._refresh_buffer = refresh_buffer

    def _is_fresh(self, account: EmailAccount) -> bool:
        expires_at = ensure_utc(account.token_expires_at)
        if expires_at is None:
            return True
        return expires_at - utc_now() > self._refresh_buffer

    async def get_valid_access_token(self, account: EmailAccount) -> str:
        """Return the stored token, or refresh and persist a new one.

        The account object is updated in place after a refresh so later
        calls in the same request reuse the new token.

        Raises:
            CryptoError: Stored ciphertext cannot be decrypted.
            MissingRefreshToken: Token is expiring and no refresh token is stored.
            TokenRefreshFailed: Provider rejected the refresh.
        """
        access_token = self._vault.decrypt_optional(account.access_token_encrypted)
        if access_token and self._is_fresh(account):
            return access_token

        refresh_token = self._vault.decrypt_optional(account.refresh_token_encrypted)
        if not refresh_token:
            await self._account_repo.record_error(
                account.id,
                "Missing refresh token",
                classify_auth_failure("missing refresh token"),
            )
            raise MissingRefreshToken(account.id)

        driver = self._drivers.get(account.provider)
        scopes = account.scopes if account.provider == Provider.MICROSOFT.value else None
        try:
            tokens = await driver.refresh_access_token(refresh_token, scopes=scopes)
        except TokenRefreshFailed as e:
            logger.warning(
                "Token refresh failed for account %s (%s): status=%s",
                account.id,
                account.provider,
                e.status_code,
            )
            await self._account_repo.record_error(
                account.id, e.message, classify_auth_failure(e.message)
            )
            raise

        access_encrypted = self._vault.encrypt(tokens.access_token)
        refresh_encrypted = None
        if tokens.refresh_token and tokens.refresh_token != refresh_token:
            refresh_encrypted = self._vault.encrypt(tokens.refresh_token)
        expires_at = tokens.expires_at or ensure_utc(account.token_expires_at)

        await self._account_repo.update_tokens(
            account.id,
            access_token_encrypted=access_encrypted,
            token_expires_at=expires_at,
            refresh_token_encrypted=refresh_encrypted,
        )
        account.access_token_encrypted = access_encrypted
        account.token_expires_at = expires_at
        if refresh_encrypted:
            account.refresh_token_encrypted = refresh_encrypted
        logger.info("Refreshed %s access token for account %s", account.provider, account.id)
        return tokens.access_token
