"""Microsoft 365 provider using the Microsoft Graph API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

import httpx

from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import MissingThreadContext, ProviderFetchFailed
from mailbridge.infrastructure.external.email.protocols import (
    Attachment,
    CanonicalMessage,
    ReplyRequest,
    SendResult,
    WatchInfo,
)
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount
from mailbridge.infrastructure.persistence.repositories.email_account_repo import (
    EmailAccountRepository,
)
from mailbridge.infrastructure.services.token_service import TokenLifecycleManager
from mailbridge.shared.telemetry.logging import get_logger
from mailbridge.shared.telemetry.tracing import traced
from mailbridge.shared.utils.datetime import ensure_utc, parse_iso_utc, to_iso_utc, utc_now

logger = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
INBOX_RESOURCE = "me/mailFolders('Inbox')/messages"
MESSAGE_SELECT = (
    "subject,from,toRecipients,ccRecipients,receivedDateTime,body,"
    "bodyPreview,conversationId,internetMessageId"
)
FILE_ATTACHMENT_TYPE = "#microsoft.graph.fileAttachment"
DEFAULT_MIME_TYPE = "application/octet-stream"


def parse_recipients(recipients: list[dict[str, Any]] | None) -> list[str]:
    return [
        address
        for recipient in recipients or []
        if (address := (recipient.get("emailAddress") or {}).get("address"))
    ]


def split_body(message: dict[str, Any]) -> tuple[str, str]:
    """Return (text, html). HTML bodies fall back to bodyPreview for text."""
    body = message.get("body") or {}
    content_type = (body.get("contentType") or "").lower()
    body_html = (body.get("content") or "") if content_type == "html" else ""
    if content_type == "text":
        body_text = body.get("content") or ""
    else:
        body_text = message.get("bodyPreview") or ""
    return body_text, body_html


class OutlookProvider:
    """Graph adapter over a shared httpx.AsyncClient."""

    provider_name = Provider.MICROSOFT.value

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        account_repo: EmailAccountRepository,
        *,
        notification_url: str,
        client_state: str | None,
        subscription_ttl: timedelta = timedelta(days=2),
        renew_within: timedelta = timedelta(hours=24),
        timeout: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = token_manager
        self._accounts = account_repo
        self._notification_url = notification_url
        self._client_state = client_state
        self._subscription_ttl = subscription_ttl
        self._renew_within = renew_within
        self._timeout = timeout
        self._shared_http = http_client

    @asynccontextmanager
    async def _http_cm(self):
        """Yield shared HTTP client or a short-lived one."""
        if self._shared_http is not None:
            yield self._shared_http
            return
        async with httpx.AsyncClient() as client:
            yield client

    async def _request(
        self,
        account: EmailAccount,
        method: str,
        path: str,
        operation: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        access_token = await self._tokens.get_valid_access_token(account)
        try:
            async with self._http_cm() as client:
                response = await client.request(
                    method,
                    f"{GRAPH_BASE_URL}{path}",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json=json,
                    params=params,
                    timeout=self._timeout,
                )
        except httpx.HTTPError as e:
            raise ProviderFetchFailed(self.provider_name, operation, reason=str(e)) from e
        if not response.is_success:
            raise ProviderFetchFailed(
                self.provider_name, operation, response.status_code, response.text[:500]
            )
        return response

    @traced("graph.fetch_message")
    async def fetch_message(
        self, account: EmailAccount, provider_message_id: str
    ) -> CanonicalMessage:
        response = await self._request(
            account,
            "GET",
            f"/me/messages/{provider_message_id}",
            "messages.get",
            params={"$select": MESSAGE_SELECT},
        )
        message = response.json()
        attachments = await self._fetch_attachments(account, provider_message_id)
        body_text, body_html = split_body(message)
        return CanonicalMessage(
            provider_message_id=provider_message_id,
            provider_thread_id=message.get("conversationId"),
            from_address=((message.get("from") or {}).get("emailAddress") or {}).get(
                "address"
            ),
            to=parse_recipients(message.get("toRecipients")),
            cc=parse_recipients(message.get("ccRecipients")),
            subject=message.get("subject") or "",
            received_at=parse_iso_utc(message.get("receivedDateTime")) or utc_now(),
            body_text=body_text,
            body_html=body_html,
            attachments=attachments,
            internet_message_id=message.get("internetMessageId"),
        )

    async def _fetch_attachments(
        self, account: EmailAccount, provider_message_id: str
    ) -> list[Attachment]:
        try:
            response = await self._request(
                account,
                "GET",
                f"/me/messages/{provider_message_id}/attachments",
                "attachments.list",
            )
        except ProviderFetchFailed as e:
            logger.warning(
                "Skipping attachments on Graph message %s: %s",
                provider_message_id,
                e.message,
            )
            return []
        return [
            Attachment(
                filename=item.get("name") or "attachment",
                mime_type=item.get("contentType") or DEFAULT_MIME_TYPE,
                base64=item.get("contentBytes") or "",
            )
            for item in response.json().get("value", [])
            if item.get("@odata.type") == FILE_ATTACHMENT_TYPE
        ]

    def _subscription_is_current(self, account: EmailAccount) -> bool:
        expires_at = ensure_utc(account.ms_subscription_expires_at)
        return (
            bool(account.ms_subscription_id)
            and expires_at is not None
            and expires_at - utc_now() > self._renew_within
        )

    @traced("graph.ensure_watch")
    async def ensure_watch(self, account: EmailAccount, force: bool = False) -> WatchInfo:
        """Create the Inbox subscription, or renew the existing one.

        A renewal answered with 404/410 means Graph dropped the
        subscription; it is cleared and recreated.
        """
        if not force and self._subscription_is_current(account):
            return WatchInfo(
                expires_at=ensure_utc(account.ms_subscription_expires_at),
                subscription_id=account.ms_subscription_id,
            )
        expiration = utc_now() + self._subscription_ttl
        if account.ms_subscription_id:
            try:
                response = await self._request(
                    account,
                    "PATCH",
                    f"/subscriptions/{account.ms_subscription_id}",
                    "subscriptions.renew",
                    json={"expirationDateTime": to_iso_utc(expiration)},
                )
            except ProviderFetchFailed as e:
                if e.status_code not in (404, 410):
                    raise
                logger.warning(
                    "Graph subscription %s gone for account %s; recreating",
                    account.ms_subscription_id,
                    account.id,
                )
                await self._accounts.set_ms_subscription(account.id, None, None)
                account.ms_subscription_id = None
                account.ms_subscription_expires_at = None
            else:
                expires_at = (
                    parse_iso_utc(response.json().get("expirationDateTime")) or expiration
                )
                await self._accounts.set_ms_subscription(
                    account.id, account.ms_subscription_id, expires_at
                )
                account.ms_subscription_expires_at = expires_at
                logger.info(
                    "Graph subscription renewed for account %s until %s",
                    account.id,
                    expires_at,
                )
                return WatchInfo(
                    expires_at=expires_at,
                    subscription_id=account.ms_subscription_id,
                    renewed=True,
                )
        return await self._create_subscription(account, expiration)

    async def _create_subscription(
        self, account: EmailAccount, expiration: datetime
    ) -> WatchInfo:
        body: dict[str, Any] = {
            "changeType": "created",
            "notificationUrl": self._notification_url,
            "resource": INBOX_RESOURCE,
            "expirationDateTime": to_iso_utc(expiration),
        }
        if self._client_state:
            body["clientState"] = self._client_state
        response = await self._request(
            account, "POST", "/subscriptions", "subscriptions.create", json=body
        )
        data = response.json()
        subscription_id = data.get("id")
        if not subscription_id:
            raise ProviderFetchFailed(
                self.provider_name,
                "subscriptions.create",
                response.status_code,
                "subscription response missing id",
            )
        expires_at = parse_iso_utc(data.get("expirationDateTime")) or expiration
        await self._accounts.set_ms_subscription(account.id, subscription_id, expires_at)
        account.ms_subscription_id = subscription_id
        account.ms_subscription_expires_at = expires_at
        logger.info(
            "Graph subscription %s created for account %s", subscription_id, account.id
        )
        return WatchInfo(
            expires_at=expires_at, subscription_id=subscription_id, renewed=True
        )

    @traced("graph.send_reply")
    async def send_reply(self, account: EmailAccount, request: ReplyRequest) -> SendResult:
        """Reply via createReply then send; the draft id identifies the sent message."""
        if not request.provider_message_id:
            raise MissingThreadContext(self.provider_name, "provider message id")
        draft_response = await self._request(
            account,
            "POST",
            f"/me/messages/{request.provider_message_id}/createReply",
            "messages.createReply",
            json={"comment": request.body},
        )
        draft = draft_response.json()
        draft_id = draft.get("id")
        if not draft_id:
            raise ProviderFetchFailed(
                self.provider_name,
                "messages.createReply",
                draft_response.status_code,
                "draft response missing id",
            )
        if request.subject and request.subject != draft.get("subject"):
            await self._request(
                account,
                "PATCH",
                f"/me/messages/{draft_id}",
                "messages.update",
                json={"subject": request.subject},
            )
        send_response = await self._request(
            account, "POST", f"/me/messages/{draft_id}/send", "messages.send"
        )
        return SendResult(
            provider_message_id=draft_id,
            provider_thread_id=draft.get("conversationId") or request.provider_thread_id,
            provider_result={"draft_id": draft_id, "status": send_response.status_code},
        )
