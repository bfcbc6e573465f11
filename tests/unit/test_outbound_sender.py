"""OutboundSender: reply validation, provider send, outbound ledger rows."""

from unittest.mock import AsyncMock

import pytest

from mailbridge.application.dtos.email import SendReplyCommand
from mailbridge.application.use_cases.email import OutboundSender, build_reply_subject
from mailbridge.domain.enums import EventDirection, EventStatus, Provider
from mailbridge.domain.exceptions import (
    MissingThreadContext,
    ProviderFetchFailed,
    ResourceNotFoundException,
    ValidationException,
)
from mailbridge.infrastructure.external.email.protocols import SendResult
from mailbridge.shared.utils.datetime import utc_now


class FakeProviders:
    def __init__(self) -> None:
        self.adapter = AsyncMock()
        self.adapter.send_reply = AsyncMock(
            return_value=SendResult("sent-1", "thread-1", {"id": "sent-1"})
        )

    def for_account(self, account):
        return self.adapter


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def sender(account_repo, event_repo, providers) -> OutboundSender:
    return OutboundSender(account_repo, event_repo, providers)


async def _inbound(event_repo, account, message_id="m1", thread_id="thread-1", **fields):
    claim = await event_repo.init_inbound_event(account, message_id, utc_now(), thread_id)
    values = {"from_address": "alice@example.com", "subject": "Hello"}
    values.update(fields)
    await event_repo.update_fields(claim.event_id, **values)
    await event_repo.mark_processed(
        claim.event_id, {"internet_message_id": f"<{message_id}@example.com>"}
    )
    return claim.event_id


async def _outbound_events(event_repo, account_id):
    return [
        e
        for e in await event_repo.list_for_account(account_id)
        if e.direction == EventDirection.OUTBOUND.value
    ]


@pytest.mark.parametrize(
    ("subject", "override", "expected"),
    [
        ("Hello", None, "Re: Hello"),
        ("  Hello  ", None, "Re: Hello"),
        ("Re: Hello", None, "Re: Hello"),
        ("RE: Hello", None, "RE: Hello"),
        ("", None, "Re:"),
        (None, None, "Re:"),
        ("Hello", "  Custom subject ", "Custom subject"),
        ("Hello", "   ", "Re: Hello"),
    ],
)
def test_build_reply_subject(subject, override, expected) -> None:
    assert build_reply_subject(subject, override) == expected


async def test_reply_is_sent_and_recorded(make_account, event_repo, sender, providers) -> None:
    account = await make_account()
    inbound_id = await _inbound(event_repo, account)

    result = await sender.send_reply(
        SendReplyCommand(
            account_id=account.id,
            tenant_id=account.tenant_id,
            body="Thanks, received.",
            reply_to_event_id=inbound_id,
        )
    )

    request = providers.adapter.send_reply.await_args.args[1]
    assert request.to == "alice@example.com"
    assert request.subject == "Re: Hello"
    assert request.provider_thread_id == "thread-1"
    assert request.in_reply_to_header == "<m1@example.com>"
    assert result.provider_message_id == "sent-1"

    [outbound] = await _outbound_events(event_repo, account.id)
    assert outbound.id == result.event_id
    assert outbound.status == EventStatus.PROCESSED.value
    assert outbound.to_addresses == ["alice@example.com"]
    assert outbound.event_metadata["in_reply_to"] == "m1"
    assert outbound.event_metadata["reply_to_event_id"] == inbound_id
    assert outbound.event_metadata["provider_result"] == {"id": "sent-1"}


async def test_reply_by_job_id_uses_latest_inbound(make_account, event_repo, sender) -> None:
    account = await make_account()
    inbound_id = await _inbound(event_repo, account)
    await event_repo.update_fields(
        inbound_id,
        event_metadata={"job_id": "job-9", "internet_message_id": "<m1@example.com>"},
    )

    result = await sender.send_reply(
        SendReplyCommand(
            account_id=account.id, tenant_id=account.tenant_id, body="Done", job_id="job-9"
        )
    )

    [outbound] = await _outbound_events(event_repo, account.id)
    assert outbound.id == result.event_id
    assert outbound.event_metadata["job_id"] == "job-9"


async def test_gmail_reply_without_thread_records_nothing(
    make_account, event_repo, sender, providers
) -> None:
    """A missing thread id fails before the provider call and creates no event."""
    account = await make_account()
    inbound_id = await _inbound(event_repo, account, thread_id=None)

    with pytest.raises(MissingThreadContext):
        await sender.send_reply(
            SendReplyCommand(
                account_id=account.id,
                tenant_id=account.tenant_id,
                body="Hi",
                reply_to_event_id=inbound_id,
            )
        )

    providers.adapter.send_reply.assert_not_awaited()
    assert await _outbound_events(event_repo, account.id) == []


async def test_provider_failure_records_error_event(
    make_account, event_repo, sender, providers
) -> None:
    account = await make_account()
    inbound_id = await _inbound(event_repo, account)
    providers.adapter.send_reply.side_effect = ProviderFetchFailed(
        "google", "messages.send", 500, "backend"
    )

    with pytest.raises(ProviderFetchFailed):
        await sender.send_reply(
            SendReplyCommand(
                account_id=account.id,
                tenant_id=account.tenant_id,
                body="Hi",
                reply_to_event_id=inbound_id,
            )
        )

    [outbound] = await _outbound_events(event_repo, account.id)
    assert outbound.status == EventStatus.ERROR.value
    assert outbound.provider_message_id is None
    assert "backend" in outbound.last_error


async def test_unexpected_send_error_still_records_error_event(
    make_account, event_repo, sender, providers
) -> None:
    account = await make_account()
    inbound_id = await _inbound(event_repo, account)
    providers.adapter.send_reply.side_effect = RuntimeError("connection reset")

    with pytest.raises(RuntimeError):
        await sender.send_reply(
            SendReplyCommand(
                account_id=account.id,
                tenant_id=account.tenant_id,
                body="Hi",
                reply_to_event_id=inbound_id,
            )
        )

    [outbound] = await _outbound_events(event_repo, account.id)
    assert outbound.status == EventStatus.ERROR.value
    assert outbound.last_error == "connection reset"
    assert outbound.event_metadata["reply_to_event_id"] == inbound_id


async def test_inbound_event_of_other_tenant_is_not_found(
    make_account, event_repo, sender
) -> None:
    account = await make_account()
    other = await make_account(tenant_id="tenant-2", email_address="other@example.com")
    inbound_id = await _inbound(event_repo, other)

    with pytest.raises(ResourceNotFoundException):
        await sender.send_reply(
            SendReplyCommand(
                account_id=account.id,
                tenant_id=account.tenant_id,
                body="Hi",
                reply_to_event_id=inbound_id,
            )
        )


async def test_account_of_other_tenant_is_not_found(make_account, sender) -> None:
    account = await make_account()
    with pytest.raises(ResourceNotFoundException):
        await sender.send_reply(
            SendReplyCommand(
                account_id=account.id, tenant_id="tenant-2", body="Hi", job_id="job-1"
            )
        )


async def test_provider_mismatch_is_rejected(make_account, event_repo, sender) -> None:
    gmail = await make_account()
    outlook = await make_account(provider=Provider.MICROSOFT, email_address="o@contoso.com")
    inbound_id = await _inbound(event_repo, gmail)

    with pytest.raises(ValidationException):
        await sender.send_reply(
            SendReplyCommand(
                account_id=outlook.id,
                tenant_id=outlook.tenant_id,
                body="Hi",
                reply_to_event_id=inbound_id,
            )
        )


@pytest.mark.parametrize(
    ("body", "event_id", "job_id"),
    [("", "ev1", None), ("   ", "ev1", None), ("Hi", None, None)],
)
async def test_invalid_command_is_rejected(
    make_account, sender, providers, body, event_id, job_id
) -> None:
    account = await make_account()
    with pytest.raises(ValidationException):
        await sender.send_reply(
            SendReplyCommand(
                account_id=account.id,
                tenant_id=account.tenant_id,
                body=body,
                reply_to_event_id=event_id,
                job_id=job_id,
            )
        )
    providers.adapter.send_reply.assert_not_awaited()
