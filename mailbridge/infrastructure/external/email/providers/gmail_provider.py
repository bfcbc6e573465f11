"""Gmail provider using the Gmail API (history deltas, watch, send)."""

from __future__ import annotations

import asyncio
import base64
from collections import deque
from collections.abc import Callable
from datetime import timedelta
from email.message import EmailMessage as MimeMessage
from typing import Any

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import (
    HistoryCursorExpired,
    MissingThreadContext,
    ProviderFetchFailed,
)
from mailbridge.infrastructure.external.email.protocols import (
    Attachment,
    CanonicalMessage,
    HistoryDelta,
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
from mailbridge.shared.utils.datetime import ensure_utc, from_timestamp_ms_utc, utc_now

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
HISTORY_PAGE_SIZE = 500

ServiceFactory = Callable[[str, float], Any]


def build_gmail_service(access_token: str, timeout: float) -> Any:
    """Build a Gmail API client bound to one access token.

    Discovery uses the document bundled with google-api-python-client, so
    no network call is made here.
    """
    credentials = Credentials(token=access_token)
    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("gmail", "v1", http=http, cache_discovery=False)


def decode_base64url(data: str | None) -> str:
    """Decode Gmail's unpadded base64url body data to text."""
    if not data:
        return ""
    raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    return raw.decode("utf-8", errors="replace")


def base64url_to_standard(data: str | None) -> str:
    """Re-encode Gmail base64url attachment data as standard padded base64."""
    if not data:
        return ""
    raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    return base64.b64encode(raw).decode("ascii")


def parse_address_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [entry.strip() for entry in value.split(",") if entry.strip()]


def _header(headers: list[dict[str, str]], name: str) -> str:
    lowered = name.lower()
    for item in headers:
        if item.get("name", "").lower() == lowered:
            return item.get("value", "")
    return ""


def extract_bodies(payload: dict[str, Any] | None) -> tuple[str, str]:
    """Return (text, html): the first text/plain and first text/html parts.

    Falls back to the top-level body for single-part messages without a
    text/plain part.
    """
    body_text = ""
    body_html = ""
    if not payload:
        return body_text, body_html
    queue: deque[dict[str, Any]] = deque([payload])
    while queue:
        part = queue.popleft()
        queue.extend(part.get("parts") or [])
        data = (part.get("body") or {}).get("data")
        if not data:
            continue
        if part.get("mimeType") == "text/plain" and not body_text:
            body_text = decode_base64url(data)
        elif part.get("mimeType") == "text/html" and not body_html:
            body_html = decode_base64url(data)
    if not body_text:
        body_text = decode_base64url((payload.get("body") or {}).get("data"))
    return body_text, body_html


def attachment_parts(payload: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Breadth-first list of parts that carry a filename and an attachment id."""
    found: list[dict[str, Any]] = []
    if not payload:
        return found
    queue: deque[dict[str, Any]] = deque(payload.get("parts") or [])
    while queue:
        part = queue.popleft()
        queue.extend(part.get("parts") or [])
        if part.get("filename") and (part.get("body") or {}).get("attachmentId"):
            found.append(part)
    return found


def build_reply_mime(request: ReplyRequest) -> str:
    """RFC 5322 plain-text reply, base64url-encoded without padding."""
    message = MimeMessage()
    message["To"] = request.to
    message["Subject"] = request.subject
    if request.in_reply_to_header:
        message["In-Reply-To"] = request.in_reply_to_header
        message["References"] = request.in_reply_to_header
    message.set_content(request.body, charset="utf-8")
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


class GmailProvider:
    """Gmail adapter. Blocking client calls run in a worker thread."""

    provider_name = Provider.GOOGLE.value

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        account_repo: EmailAccountRepository,
        *,
        pubsub_topic: str,
        timeout: float = 20.0,
        renew_within: timedelta = timedelta(hours=24),
        service_factory: ServiceFactory | None = None,
    ) -> None:
        self._tokens = token_manager
        self._accounts = account_repo
        self._topic = pubsub_topic
        self._timeout = timeout
        self._renew_within = renew_within
        self._service_factory = service_factory or build_gmail_service

    async def _service(self, account: EmailAccount) -> Any:
        access_token = await self._tokens.get_valid_access_token(account)
        return self._service_factory(access_token, self._timeout)

    async def _execute(self, request: Any, operation: str) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            raise ProviderFetchFailed(
                self.provider_name, operation, int(status) if status else None, str(e)
            ) from e
        except GoogleAuthError as e:
            # AuthorizedHttp turns a 401 into a refresh attempt it cannot make.
            raise ProviderFetchFailed(
                self.provider_name, operation, 401, f"unauthorized: {e}"
            ) from e
        except (OSError, httplib2.HttpLib2Error) as e:
            raise ProviderFetchFailed(self.provider_name, operation, reason=str(e)) from e

    @traced("gmail.list_new_message_ids")
    async def list_new_message_ids(
        self, account: EmailAccount, start_history_id: str
    ) -> HistoryDelta:
        """Message ids added since start_history_id, de-duplicated in first-seen order.

        Raises:
            HistoryCursorExpired: Gmail no longer has history for the cursor (404).
            ProviderFetchFailed: Any other API or network failure.
        """
        service = await self._service(account)
        message_ids: dict[str, None] = {}
        thread_ids: dict[str, str] = {}
        next_cursor = start_history_id
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "userId": "me",
                "startHistoryId": start_history_id,
                "historyTypes": ["messageAdded"],
                "maxResults": HISTORY_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token
            try:
                result = await self._execute(
                    service.users().history().list(**params), "history.list"
                )
            except ProviderFetchFailed as e:
                if e.status_code == 404:
                    raise HistoryCursorExpired(start_history_id) from e
                raise
            if result.get("historyId"):
                next_cursor = str(result["historyId"])
            for record in result.get("history", []):
                added = [m.get("message", {}) for m in record.get("messagesAdded", [])]
                for message in added or record.get("messages", []):
                    message_id = message.get("id")
                    if not message_id:
                        continue
                    message_ids.setdefault(message_id, None)
                    if message.get("threadId"):
                        thread_ids.setdefault(message_id, message["threadId"])
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        return HistoryDelta(
            message_ids=list(message_ids), next_cursor=next_cursor, thread_ids=thread_ids
        )

    @traced("gmail.fetch_message")
    async def fetch_message(
        self, account: EmailAccount, provider_message_id: str
    ) -> CanonicalMessage:
        service = await self._service(account)
        message = await self._execute(
            service.users().messages().get(
                userId="me", id=provider_message_id, format="full"
            ),
            "messages.get",
        )
        payload = message.get("payload") or {}
        headers = payload.get("headers") or []
        body_text, body_html = extract_bodies(payload)
        internal_date = message.get("internalDate")
        received_at = from_timestamp_ms_utc(internal_date) if internal_date else utc_now()

        attachments: list[Attachment] = []
        for part in attachment_parts(payload):
            attachment_id = part["body"]["attachmentId"]
            try:
                data = await self._execute(
                    service.users().messages().attachments().get(
                        userId="me", messageId=provider_message_id, id=attachment_id
                    ),
                    "attachments.get",
                )
            except ProviderFetchFailed as e:
                logger.warning(
                    "Skipping Gmail attachment %s on message %s: %s",
                    part.get("filename"),
                    provider_message_id,
                    e.message,
                )
                continue
            attachments.append(
                Attachment(
                    filename=part["filename"],
                    mime_type=part.get("mimeType") or DEFAULT_MIME_TYPE,
                    base64=base64url_to_standard(data.get("data")),
                )
            )

        return CanonicalMessage(
            provider_message_id=provider_message_id,
            provider_thread_id=message.get("threadId"),
            from_address=_header(headers, "From") or None,
            to=parse_address_list(_header(headers, "To")),
            cc=parse_address_list(_header(headers, "Cc")),
            subject=_header(headers, "Subject"),
            received_at=received_at,
            body_text=body_text,
            body_html=body_html,
            attachments=attachments,
            internet_message_id=_header(headers, "Message-ID") or None,
        )

    def _watch_is_current(self, account: EmailAccount) -> bool:
        expires_at = ensure_utc(account.gmail_watch_expires_at)
        return expires_at is not None and expires_at - utc_now() > self._renew_within

    @traced("gmail.ensure_watch")
    async def ensure_watch(self, account: EmailAccount, force: bool = False) -> WatchInfo:
        """Start or renew the INBOX watch.

        A stored history id is never overwritten here; it is only seeded
        when absent so a renewal cannot skip unprocessed history.
        """
        if not force and account.gmail_history_id and self._watch_is_current(account):
            return WatchInfo(
                expires_at=ensure_utc(account.gmail_watch_expires_at),
                history_id=account.gmail_history_id,
            )
        if not self._topic:
            raise ProviderFetchFailed(
                self.provider_name, "watch", reason="GOOGLE_PUBSUB_TOPIC is not configured"
            )
        service = await self._service(account)
        response = await self._execute(
            service.users().watch(
                userId="me", body={"topicName": self._topic, "labelIds": ["INBOX"]}
            ),
            "watch",
        )
        expiration = response.get("expiration")
        expires_at = from_timestamp_ms_utc(expiration) if expiration else None
        history_id = account.gmail_history_id
        if response.get("historyId") and not history_id:
            history_id = str(response["historyId"])
            await self._accounts.set_history_id_if_absent(account.id, history_id)
            account.gmail_history_id = history_id
        await self._accounts.set_gmail_watch(account.id, expires_at)
        account.gmail_watch_expires_at = expires_at
        logger.info("Gmail watch active for account %s until %s", account.id, expires_at)
        return WatchInfo(expires_at=expires_at, history_id=history_id, renewed=True)

    @traced("gmail.send_reply")
    async def send_reply(self, account: EmailAccount, request: ReplyRequest) -> SendResult:
        if not request.provider_thread_id:
            raise MissingThreadContext(self.provider_name, "thread id")
        service = await self._service(account)
        response = await self._execute(
            service.users().messages().send(
                userId="me",
                body={
                    "raw": build_reply_mime(request),
                    "threadId": request.provider_thread_id,
                },
            ),
            "messages.send",
        )
        return SendResult(
            provider_message_id=response.get("id"),
            provider_thread_id=response.get("threadId") or request.provider_thread_id,
            provider_result={
                "id": response.get("id"),
                "threadId": response.get("threadId"),
            },
        )
