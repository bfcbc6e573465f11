"""OAuth provider drivers: authorization URL, code exchange, refresh, mailbox address."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx
import msal

from mailbridge.core.config import Settings
from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import AuthenticationException, TokenRefreshFailed
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.telemetry.tracing import traced
from mailbridge.shared.utils.datetime import utc_now

logger = get_logger(__name__)

GOOGLE_GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
]
MICROSOFT_OAUTH_SCOPES = [
    "openid",
    "profile",
    "email",
    "offline_access",
    "https://graph.microsoft.com/Mail.Read",
    "https://graph.microsoft.com/Mail.Send",
]
# msal adds these itself and rejects them if passed explicitly.
_MSAL_RESERVED_SCOPES = frozenset({"openid", "profile", "offline_access"})


def parse_scope_string(scope: str | list[str] | None, fallback: list[str]) -> list[str]:
    """Split a space-delimited scope string into a de-duplicated, ordered list."""
    if isinstance(scope, list):
        items = scope
    else:
        items = (scope or "").split(" ")
    scopes = list(dict.fromkeys(s.strip() for s in items if s and s.strip()))
    return scopes or list(dict.fromkeys(fallback))


@dataclass
class OAuthTokens:
    """Normalized OAuth token response."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    scopes: list[str] = field(default_factory=list)


class OAuthDriver(ABC):
    """Abstract OAuth driver for one mailbox provider."""

    PROVIDER: ClassVar[Provider]
    PROVIDER_NAME: ClassVar[str]
    DEFAULT_SCOPES: ClassVar[list[str]]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(self.DEFAULT_SCOPES)
        self._http_client = http_client
        self._timeout = timeout

    @property
    @abstractmethod
    def token_endpoint(self) -> str: ...

    @abstractmethod
    async def build_authorization_url(self, state: str) -> str:
        """Return the provider consent URL carrying state."""
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an authorization code for tokens."""
        ...

    @abstractmethod
    async def get_mailbox_address(self, access_token: str) -> str:
        """Return the mailbox address the token was issued for."""
        ...

    def _refresh_params(self, refresh_token: str, scopes: list[str] | None) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

    @traced("oauth.refresh_access_token")
    async def refresh_access_token(
        self, refresh_token: str, scopes: list[str] | None = None
    ) -> OAuthTokens:
        """Refresh an access token at the provider token endpoint.

        When the provider omits refresh_token in the response the returned
        tokens carry None; callers keep the stored one.

        Raises:
            TokenRefreshFailed: Non-2xx response or network failure; the
                provider error body is preserved for classification.
        """
        try:
            response = await self._post_form(
                self.token_endpoint, self._refresh_params(refresh_token, scopes)
            )
        except httpx.HTTPError as e:
            raise TokenRefreshFailed(self.PROVIDER.value, None, str(e)) from e
        if not response.is_success:
            logger.error(
                "%s token refresh failed: status=%d",
                self.PROVIDER_NAME,
                response.status_code,
            )
            raise TokenRefreshFailed(
                self.PROVIDER.value, response.status_code, response.text[:1000]
            )
        data: dict[str, Any] = response.json()
        if not data.get("access_token"):
            raise TokenRefreshFailed(
                self.PROVIDER.value,
                response.status_code,
                "refresh response missing access token",
            )
        return self._normalize_token_response(data, fallback_scopes=scopes or [])

    async def _post_form(self, url: str, data: dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(url, data=data, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, data=data)

    async def _get_json(self, url: str, access_token: str) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}
        if self._http_client is not None:
            response = await self._http_client.get(url, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, headers=headers)
        if response.status_code != 200:
            logger.error(
                "%s profile lookup failed: status=%d",
                self.PROVIDER_NAME,
                response.status_code,
            )
            raise AuthenticationException(
                f"{self.PROVIDER_NAME} profile lookup failed ({response.status_code})"
            )
        return response.json()

    def _normalize_token_response(
        self, token_data: dict[str, Any], fallback_scopes: list[str] | None = None
    ) -> OAuthTokens:
        expires_in = token_data.get("expires_in")
        expires_at = (
            utc_now() + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        return OAuthTokens(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_at,
            scopes=parse_scope_string(
                token_data.get("scope"), fallback_scopes or self.scopes
            ),
        )


class GoogleDriver(OAuthDriver):
    """Google OAuth driver (offline access so a refresh token is issued)."""

    PROVIDER = Provider.GOOGLE
    PROVIDER_NAME = "Gmail"
    DEFAULT_SCOPES = GOOGLE_GMAIL_SCOPES
    AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
    PROFILE_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/profile"

    @property
    def token_endpoint(self) -> str:
        return self.TOKEN_ENDPOINT

    async def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        return f"{self.AUTHORIZATION_ENDPOINT}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        response = await self._post_form(
            self.TOKEN_ENDPOINT,
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if response.status_code != 200:
            logger.error(
                "%s token exchange failed: status=%d",
                self.PROVIDER_NAME,
                response.status_code,
            )
            raise AuthenticationException(
                f"Token exchange failed with status {response.status_code}"
            )
        return self._normalize_token_response(response.json())

    async def get_mailbox_address(self, access_token: str) -> str:
        data = await self._get_json(self.PROFILE_ENDPOINT, access_token)
        address = data.get("emailAddress")
        if not address:
            raise AuthenticationException("Gmail profile has no email address")
        return address


class MicrosoftDriver(OAuthDriver):
    """Microsoft identity platform driver.

    msal builds the consent URL and redeems the code; refresh goes straight
    to the v2.0 token endpoint with the account's granted scopes.
    """

    PROVIDER = Provider.MICROSOFT
    PROVIDER_NAME = "Microsoft 365"
    DEFAULT_SCOPES = MICROSOFT_OAUTH_SCOPES
    PROFILE_ENDPOINT = "https://graph.microsoft.com/v1.0/me"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        tenant: str = "common",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ) -> None:
        super().__init__(
            client_id,
            client_secret,
            redirect_uri,
            http_client=http_client,
            timeout=timeout,
        )
        self.tenant = tenant
        self._app: msal.ConfidentialClientApplication | None = None

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority}/oauth2/v2.0/token"

    @property
    def _msal_scopes(self) -> list[str]:
        return [s for s in self.scopes if s not in _MSAL_RESERVED_SCOPES]

    async def _get_app(self) -> msal.ConfidentialClientApplication:
        # The constructor fetches authority metadata over the network.
        if self._app is None:
            self._app = await asyncio.to_thread(
                msal.ConfidentialClientApplication,
                self.client_id,
                client_credential=self.client_secret,
                authority=self.authority,
            )
        return self._app

    async def build_authorization_url(self, state: str) -> str:
        app = await self._get_app()
        return app.get_authorization_request_url(
            self._msal_scopes,
            state=state,
            redirect_uri=self.redirect_uri,
            response_mode="query",
        )

    async def exchange_code(self, code: str) -> OAuthTokens:
        app = await self._get_app()
        result: dict[str, Any] = await asyncio.to_thread(
            app.acquire_token_by_authorization_code,
            code,
            scopes=self._msal_scopes,
            redirect_uri=self.redirect_uri,
        )
        if "access_token" not in result:
            logger.error(
                "%s token exchange failed: %s",
                self.PROVIDER_NAME,
                result.get("error"),
            )
            raise AuthenticationException(
                f"Token exchange failed: {result.get('error_description') or result.get('error')}"
            )
        return self._normalize_token_response(result)

    def _refresh_params(self, refresh_token: str, scopes: list[str] | None) -> dict[str, str]:
        params = super()._refresh_params(refresh_token, scopes)
        if scopes:
            params["scope"] = " ".join(scopes)
        return params

    async def get_mailbox_address(self, access_token: str) -> str:
        data = await self._get_json(self.PROFILE_ENDPOINT, access_token)
        address = data.get("mail") or data.get("userPrincipalName")
        if not address:
            raise AuthenticationException("Microsoft account has no email address")
        return address


class OAuthDriverRegistry:
    """Drivers keyed by provider, built once from settings."""

    def __init__(self, drivers: dict[Provider, OAuthDriver]) -> None:
        self._drivers = drivers

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> OAuthDriverRegistry:
        timeout = settings.provider_timeout_seconds
        return cls(
            {
                Provider.GOOGLE: GoogleDriver(
                    settings.google_client_id,
                    settings.google_client_secret.get_secret_value(),
                    settings.google_redirect_uri,
                    http_client=http_client,
                    timeout=timeout,
                ),
                Provider.MICROSOFT: MicrosoftDriver(
                    settings.microsoft_client_id,
                    settings.microsoft_client_secret.get_secret_value(),
                    settings.microsoft_redirect_uri,
                    tenant=settings.microsoft_tenant_id,
                    http_client=http_client,
                    timeout=timeout,
                ),
            }
        )

    def get(self, provider: Provider | str) -> OAuthDriver:
        try:
            return self._drivers[Provider(provider)]
        except (KeyError, ValueError) as e:
            raise ValueError(
                f"Unsupported provider: {provider}. "
                f"Supported: {', '.join(p.value for p in self._drivers)}"
            ) from e
