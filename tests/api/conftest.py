"""Fixtures for HTTP tests: bearer tokens and fake provider/consumer wiring."""

from unittest.mock import AsyncMock

import pytest

from mailbridge.api.v1.dependencies import (
    get_downstream_consumer,
    get_mail_provider_factory,
)
from mailbridge.domain.enums import Provider
from mailbridge.infrastructure.external.email.protocols import CanonicalMessage, SendResult
from mailbridge.infrastructure.security.jwt import create_access_token
from mailbridge.shared.utils.datetime import utc_now


class FakeProviderFactory:
    """Stands in for MailProviderFactory; one AsyncMock adapter per provider."""

    def __init__(self) -> None:
        self.adapters = {p.value: AsyncMock() for p in Provider}
        for adapter in self.adapters.values():
            adapter.fetch_message.side_effect = self._fetch
            adapter.send_reply.return_value = SendResult("sent-1", "thread-1", {"id": "sent-1"})

    @staticmethod
    async def _fetch(account, provider_message_id):
        return CanonicalMessage(
            provider_message_id=provider_message_id,
            provider_thread_id="thread-1",
            from_address="alice@example.com",
            to=[account.email_address],
            cc=[],
            subject="Hello",
            received_at=utc_now(),
            body_text="Hi",
            body_html="",
        )

    def get(self, provider):
        return self.adapters[Provider(provider).value]

    def for_account(self, account):
        return self.get(account.provider)

    def gmail(self):
        return self.get(Provider.GOOGLE)


@pytest.fixture
def fake_providers(app) -> FakeProviderFactory:
    factory = FakeProviderFactory()
    app.dependency_overrides[get_mail_provider_factory] = lambda: factory
    return factory


@pytest.fixture
def fake_consumer(app) -> AsyncMock:
    consumer = AsyncMock()
    consumer.deliver.return_value = 200
    app.dependency_overrides[get_downstream_consumer] = lambda: consumer
    return consumer


@pytest.fixture
def bearer():
    """Build Authorization headers for a tenant-scoped JWT."""

    def _headers(tenant_id: str = "tenant-1") -> dict[str, str]:
        token = create_access_token({"sub": "user-1", "tenant_id": tenant_id})
        return {"Authorization": f"Bearer {token}"}

    return _headers
