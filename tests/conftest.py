"""Pytest configuration and fixtures for mailbridge.

Settings are read from the environment, so the required values are set
here before any mailbridge module is imported. Repository and HTTP tests
run against a throwaway SQLite database (aiosqlite) created per test from
the ORM metadata.
"""

import os
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import timedelta
from typing import Any

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()
TEST_INTERNAL_TOKEN = "internal-token"
TEST_PUSH_TOKEN = "push-token"
TEST_CLIENT_STATE = "expected-state"

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./mailbridge-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-signing-0123456789")
os.environ["EMAIL_TOKEN_ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["INTERNAL_JOBS_TOKEN"] = TEST_INTERNAL_TOKEN
os.environ["GOOGLE_PUBSUB_VERIFICATION_TOKEN"] = TEST_PUSH_TOKEN
os.environ["MICROSOFT_CLIENT_STATE"] = TEST_CLIENT_STATE
os.environ["INGESTION_ASYNC"] = "false"

from mailbridge.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from mailbridge.api.v1.dependencies import get_db_session_factory  # noqa: E402
from mailbridge.domain.enums import Provider  # noqa: E402
from mailbridge.infrastructure.external.email.encryption import (  # noqa: E402
    CredentialVault,
)
from mailbridge.infrastructure.persistence.database import (  # noqa: E402
    Base,
    build_session_factory,
)
from mailbridge.infrastructure.persistence.models import (  # noqa: E402
    EmailAccount,
)
from mailbridge.infrastructure.persistence.repositories import (  # noqa: E402
    EmailAccountRepository,
    EmailEventRepository,
)
from mailbridge.main import app as fastapi_app  # noqa: E402
from mailbridge.shared.utils.datetime import utc_now  # noqa: E402


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory over a fresh file-backed SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailbridge.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_ENCRYPTION_KEY)


@pytest.fixture
def account_repo(session_factory) -> EmailAccountRepository:
    return EmailAccountRepository(session_factory)


@pytest.fixture
def event_repo(session_factory) -> EmailEventRepository:
    return EmailEventRepository(session_factory, claim_timeout=timedelta(minutes=15))


@pytest.fixture
def make_account(
    account_repo: EmailAccountRepository, vault: CredentialVault
) -> Callable[..., Awaitable[EmailAccount]]:
    """Factory inserting a connected account with encrypted tokens."""

    async def _make(
        *,
        tenant_id: str = "tenant-1",
        provider: Provider = Provider.GOOGLE,
        email_address: str = "owner@example.com",
        **overrides: Any,
    ) -> EmailAccount:
        values: dict[str, Any] = {
            "access_token_encrypted": vault.encrypt("access-token"),
            "refresh_token_encrypted": vault.encrypt("refresh-token"),
            "token_expires_at": utc_now() + timedelta(hours=1),
            "scopes": [],
            "token_refresh_count": 0,
        }
        values.update(overrides)
        return await account_repo.create(
            EmailAccount(
                tenant_id=tenant_id,
                provider=provider.value,
                email_address=email_address,
                **values,
            )
        )

    return _make


@pytest.fixture
async def app(session_factory):
    """The FastAPI app bound to the per-test SQLite database."""
    fastapi_app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.oauth_drivers = None


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    """Async HTTP client against the FastAPI app (ASGI)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Token": TEST_INTERNAL_TOKEN}
