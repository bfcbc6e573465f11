"""Database dependencies (composition root)."""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailbridge.core.config import get_settings
from mailbridge.infrastructure.persistence.database import get_session_factory
from mailbridge.infrastructure.persistence.repositories import (
    EmailAccountRepository,
    EmailEventRepository,
)


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Process-wide session factory. Tests override this dependency."""
    return get_session_factory()


def get_email_account_repo(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_db_session_factory)
    ],
) -> EmailAccountRepository:
    return EmailAccountRepository(session_factory)


def get_email_event_repo(
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_db_session_factory)
    ],
) -> EmailEventRepository:
    settings = get_settings()
    return EmailEventRepository(
        session_factory,
        claim_timeout=timedelta(minutes=settings.event_claim_timeout_minutes),
    )
