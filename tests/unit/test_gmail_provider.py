"""GmailProvider with a mocked Gmail API client (history, fetch, watch, send)."""

import base64
import email
from unittest.mock import AsyncMock, MagicMock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from mailbridge.application.services.connection_status import classify_auth_failure
from mailbridge.domain.enums import Provider
from mailbridge.domain.exceptions import (
    HistoryCursorExpired,
    MissingThreadContext,
    ProviderFetchFailed,
)
from mailbridge.infrastructure.external.email.protocols import ReplyRequest
from mailbridge.infrastructure.external.email.providers.gmail_provider import (
    GmailProvider,
    base64url_to_standard,
    build_reply_mime,
    extract_bodies,
)
from mailbridge.infrastructure.persistence.models.email_account import EmailAccount


def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b"error")


@pytest.fixture
def service() -> MagicMock:
    return MagicMock()


@pytest.fixture
def token_manager() -> AsyncMock:
    manager = AsyncMock()
    manager.get_valid_access_token = AsyncMock(return_value="access-token")
    return manager


@pytest.fixture
def repo() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def provider(service, token_manager, repo) -> GmailProvider:
    return GmailProvider(
        token_manager,
        repo,
        pubsub_topic="projects/p/topics/gmail",
        service_factory=lambda token, timeout: service,
    )


@pytest.fixture
def account() -> EmailAccount:
    return EmailAccount(
        id="acc1",
        tenant_id="t1",
        provider=Provider.GOOGLE.value,
        email_address="owner@example.com",
        gmail_history_id="100",
    )


async def test_history_ids_are_deduplicated_across_pages(provider, service, account) -> None:
    """m1 appearing twice is returned once; order is first-seen; the cursor is the last historyId."""
    history_list = service.users.return_value.history.return_value.list
    history_list.return_value.execute.side_effect = [
        {
            "history": [
                {"messagesAdded": [{"message": {"id": "m1", "threadId": "t1"}}]},
                {
                    "messagesAdded": [
                        {"message": {"id": "m1", "threadId": "t1"}},
                        {"message": {"id": "m2", "threadId": "t2"}},
                    ]
                },
            ],
            "historyId": "105",
            "nextPageToken": "page-2",
        },
        {"history": [{"messagesAdded": [{"message": {"id": "m3"}}]}], "historyId": "110"},
    ]

    delta = await provider.list_new_message_ids(account, "100")

    assert delta.message_ids == ["m1", "m2", "m3"]
    assert delta.next_cursor == "110"
    assert delta.thread_ids == {"m1": "t1", "m2": "t2"}
    first_call, second_call = history_list.call_args_list
    assert first_call.kwargs["startHistoryId"] == "100"
    assert first_call.kwargs["historyTypes"] == ["messageAdded"]
    assert "pageToken" not in first_call.kwargs
    assert second_call.kwargs["pageToken"] == "page-2"


async def test_empty_history_keeps_cursor(provider, service, account) -> None:
    history_list = service.users.return_value.history.return_value.list
    history_list.return_value.execute.return_value = {}

    delta = await provider.list_new_message_ids(account, "100")

    assert delta.message_ids == []
    assert delta.next_cursor == "100"


async def test_history_404_raises_cursor_expired(provider, service, account) -> None:
    history_list = service.users.return_value.history.return_value.list
    history_list.return_value.execute.side_effect = _http_error(404)

    with pytest.raises(HistoryCursorExpired):
        await provider.list_new_message_ids(account, "100")


async def test_history_server_error_is_transient(provider, service, account) -> None:
    history_list = service.users.return_value.history.return_value.list
    history_list.return_value.execute.side_effect = _http_error(503)

    with pytest.raises(ProviderFetchFailed) as exc_info:
        await provider.list_new_message_ids(account, "100")
    assert exc_info.value.status_code == 503


async def test_unauthorized_response_from_real_client_is_a_fetch_failure(
    token_manager, repo, account
) -> None:
    """A 401 makes google-auth attempt a refresh it cannot do; that surfaces as a fetch failure."""
    provider = GmailProvider(token_manager, repo, pubsub_topic="projects/p/topics/gmail")
    unauthorized = (
        httplib2.Response({"status": 401}),
        b'{"error": {"code": 401, "message": "Invalid Credentials"}}',
    )

    with patch.object(httplib2.Http, "request", return_value=unauthorized):
        with pytest.raises(ProviderFetchFailed) as exc_info:
            await provider.list_new_message_ids(account, "100")

    assert exc_info.value.status_code == 401
    assert "unauthorized" in exc_info.value.message
    assert classify_auth_failure(exc_info.value.message) is not None


async def test_fetch_message_builds_canonical_message(provider, service, account) -> None:
    """Headers, bodies and attachments are mapped; attachment data becomes standard base64."""
    messages = service.users.return_value.messages.return_value
    messages.get.return_value.execute.return_value = {
        "id": "m1",
        "threadId": "t1",
        "internalDate": "1700000000000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "owner@example.com, other@example.com"},
                {"name": "Cc", "value": "cc@example.com"},
                {"name": "Subject", "value": "Invoice"},
                {"name": "Message-ID", "value": "<abc@mail.example.com>"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": _b64url("Hello")}},
                        {"mimeType": "text/html", "body": {"data": _b64url("<p>Hello</p>")}},
                    ],
                },
                {
                    "mimeType": "application/pdf",
                    "filename": "invoice.pdf",
                    "body": {"attachmentId": "att1"},
                },
            ],
        },
    }
    messages.attachments.return_value.get.return_value.execute.return_value = {
        "data": _b64url("%PDF-1.4")
    }

    message = await provider.fetch_message(account, "m1")

    assert message.provider_thread_id == "t1"
    assert message.from_address == "Alice <alice@example.com>"
    assert message.to == ["owner@example.com", "other@example.com"]
    assert message.cc == ["cc@example.com"]
    assert message.subject == "Invoice"
    assert message.body_text == "Hello"
    assert message.body_html == "<p>Hello</p>"
    assert message.internet_message_id == "<abc@mail.example.com>"
    assert message.received_at.year == 2023
    assert len(message.attachments) == 1
    attachment = message.attachments[0]
    assert attachment.filename == "invoice.pdf"
    assert attachment.mime_type == "application/pdf"
    assert base64.b64decode(attachment.base64) == b"%PDF-1.4"


async def test_failed_attachment_is_skipped(provider, service, account) -> None:
    messages = service.users.return_value.messages.return_value
    messages.get.return_value.execute.return_value = {
        "threadId": "t1",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [],
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64url("Hi")}},
                {"filename": "a.bin", "body": {"attachmentId": "att1"}},
            ],
        },
    }
    messages.attachments.return_value.get.return_value.execute.side_effect = _http_error(500)

    message = await provider.fetch_message(account, "m1")

    assert message.body_text == "Hi"
    assert message.attachments == []


async def test_ensure_watch_seeds_missing_history_id(provider, service, repo, account) -> None:
    account.gmail_history_id = None
    service.users.return_value.watch.return_value.execute.return_value = {
        "historyId": "900",
        "expiration": "1893456000000",
    }

    info = await provider.ensure_watch(account, force=True)

    assert info.history_id == "900"
    assert info.renewed is True
    repo.set_history_id_if_absent.assert_awaited_once_with("acc1", "900")
    repo.set_gmail_watch.assert_awaited_once()
    watch_kwargs = service.users.return_value.watch.call_args.kwargs
    assert watch_kwargs["body"]["topicName"] == "projects/p/topics/gmail"
    assert watch_kwargs["body"]["labelIds"] == ["INBOX"]


async def test_ensure_watch_never_overwrites_stored_cursor(
    provider, service, repo, account
) -> None:
    service.users.return_value.watch.return_value.execute.return_value = {
        "historyId": "900",
        "expiration": "1893456000000",
    }

    info = await provider.ensure_watch(account, force=True)

    assert info.history_id == "100"
    repo.set_history_id_if_absent.assert_not_awaited()


async def test_ensure_watch_requires_topic(token_manager, repo, account) -> None:
    provider = GmailProvider(
        token_manager, repo, pubsub_topic="", service_factory=lambda t, s: MagicMock()
    )
    with pytest.raises(ProviderFetchFailed):
        await provider.ensure_watch(account, force=True)


async def test_send_reply_without_thread_fails_before_any_call(
    provider, service, token_manager, account
) -> None:
    request = ReplyRequest(
        to="alice@example.com",
        subject="Re: Invoice",
        body="Thanks",
        provider_message_id="m1",
        provider_thread_id=None,
    )
    with pytest.raises(MissingThreadContext):
        await provider.send_reply(account, request)
    token_manager.get_valid_access_token.assert_not_awaited()
    service.users.assert_not_called()


async def test_send_reply_posts_raw_mime_in_thread(provider, service, account) -> None:
    send = service.users.return_value.messages.return_value.send
    send.return_value.execute.return_value = {"id": "sent1", "threadId": "t1"}
    request = ReplyRequest(
        to="alice@example.com",
        subject="Re: Invoice",
        body="Thanks",
        provider_message_id="m1",
        provider_thread_id="t1",
        in_reply_to_header="<abc@mail.example.com>",
    )

    result = await provider.send_reply(account, request)

    assert result.provider_message_id == "sent1"
    assert result.provider_thread_id == "t1"
    body = send.call_args.kwargs["body"]
    assert body["threadId"] == "t1"
    raw = base64.urlsafe_b64decode(body["raw"] + "=" * (-len(body["raw"]) % 4))
    parsed = email.message_from_bytes(raw)
    assert parsed["In-Reply-To"] == "<abc@mail.example.com>"


def test_build_reply_mime_headers_and_body() -> None:
    raw = build_reply_mime(
        ReplyRequest(
            to="alice@example.com",
            subject="Re: Hello",
            body="Body text",
            provider_message_id="m1",
            provider_thread_id="t1",
        )
    )
    assert "=" not in raw
    parsed = email.message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
    assert parsed["To"] == "alice@example.com"
    assert parsed["Subject"] == "Re: Hello"
    assert parsed["In-Reply-To"] is None
    assert parsed.get_payload(decode=True).decode().strip() == "Body text"


def test_extract_bodies_falls_back_to_top_level_body() -> None:
    payload = {"mimeType": "text/plain", "body": {"data": _b64url("single part")}}
    assert extract_bodies(payload) == ("single part", "")


def test_extract_bodies_empty_payload() -> None:
    assert extract_bodies(None) == ("", "")


def test_base64url_to_standard() -> None:
    data = base64.urlsafe_b64encode(b"\xfb\xff binary").decode().rstrip("=")
    assert base64.b64decode(base64url_to_standard(data)) == b"\xfb\xff binary"
