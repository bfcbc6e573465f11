"""RedriveSweep: errored and stuck events go back through the ingestion path."""

from datetime import timedelta
from unittest.mock import AsyncMock

from sqlalchemy import update

from mailbridge.application.use_cases.email import IngestionDispatcher, RedriveSweep
from mailbridge.domain.enums import EventStatus
from mailbridge.domain.exceptions import ProviderFetchFailed
from mailbridge.infrastructure.external.email.protocols import CanonicalMessage
from mailbridge.infrastructure.persistence.models.email_event import EmailEvent
from mailbridge.shared.utils.datetime import utc_now


class FakeProviders:
    def __init__(self) -> None:
        self.adapter = AsyncMock()
        self.adapter.fetch_message.side_effect = self._fetch

    async def _fetch(self, account, provider_message_id):
        return CanonicalMessage(
            provider_message_id=provider_message_id,
            provider_thread_id="t1",
            from_address="alice@example.com",
            to=[account.email_address],
            cc=[],
            subject="Hello",
            received_at=utc_now(),
            body_text="Hi",
            body_html="",
        )

    def for_account(self, account):
        return self.adapter

    def gmail(self):
        return self.adapter


async def test_redrive_processes_errored_and_stale_events(
    make_account, account_repo, event_repo, session_factory
) -> None:
    account = await make_account()
    errored = await event_repo.init_inbound_event(account, "err", utc_now())
    await event_repo.mark_error(errored.event_id, "downstream 500")
    stale = await event_repo.init_inbound_event(account, "stale", utc_now())
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(EmailEvent)
                .where(EmailEvent.id == stale.event_id)
                .values(claimed_at=utc_now() - timedelta(hours=1))
            )
    await event_repo.init_inbound_event(account, "fresh", utc_now())

    consumer = AsyncMock()
    dispatcher = IngestionDispatcher(account_repo, event_repo, FakeProviders(), consumer)
    sweep = RedriveSweep(event_repo, dispatcher, max_attempts=5, batch_size=10)

    results = await sweep.run()

    assert {(r.provider_message_id, r.status) for r in results} == {
        ("err", "processed"),
        ("stale", "processed"),
    }
    assert consumer.deliver.await_count == 2
    event = await event_repo.get_by_id(errored.event_id)
    assert event.status == EventStatus.PROCESSED.value
    assert event.attempt_count == 2


async def test_redrive_reports_repeated_failure(make_account, account_repo, event_repo) -> None:
    account = await make_account()
    claim = await event_repo.init_inbound_event(account, "m1", utc_now())
    await event_repo.mark_error(claim.event_id, "first failure")

    providers = FakeProviders()
    providers.adapter.fetch_message.side_effect = ProviderFetchFailed(
        "google", "messages.get", 503
    )
    dispatcher = IngestionDispatcher(account_repo, event_repo, providers, AsyncMock())

    [result] = await RedriveSweep(event_repo, dispatcher).run()

    assert result.status == "error"
    assert "503" in result.error


async def test_lost_reclaim_is_skipped() -> None:
    event = EmailEvent(id="ev1", account_id="acc1", provider_message_id="m1")
    event_repo = AsyncMock()
    event_repo.list_redrivable.return_value = [event]
    event_repo.reclaim.return_value = False
    dispatcher = AsyncMock()

    [result] = await RedriveSweep(event_repo, dispatcher).run()

    assert result.status == "skipped"
    dispatcher.process_claim.assert_not_awaited()
