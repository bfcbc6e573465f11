"""Base repository: generic reads, inserts and targeted column updates."""

from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailbridge.domain.exceptions import ResourceNotFoundException
from mailbridge.infrastructure.persistence.database import Base


class BaseRepository[ModelType: Base]:
    """Base repository with get_by_id, create and update_fields.

    Every operation opens its own short transaction from the session
    factory. Writes after creation are column-targeted UPDATE statements,
    so concurrent writers never overwrite columns they did not touch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: type[ModelType],
    ) -> None:
        self.session_factory = session_factory
        self.model = model

    async def get_by_id(self, entity_id: str) -> ModelType | None:
        """Return a single record by primary key, or None."""
        async with self.session_factory() as session:
            return await session.get(self.model, entity_id)

    async def get_or_raise(self, entity_id: str) -> ModelType:
        """Return a record by primary key or raise ResourceNotFoundException."""
        obj = await self.get_by_id(entity_id)
        if obj is None:
            raise ResourceNotFoundException(self.model.__tablename__, entity_id)
        return obj

    async def create(self, obj: ModelType) -> ModelType:
        """Insert a new record and return it with server defaults loaded."""
        async with self.session_factory() as session:
            async with session.begin():
                session.add(obj)
                await session.flush()
                await session.refresh(obj)
        return obj

    async def update_fields(self, entity_id: str, **values: Any) -> int:
        """Update only the given columns of one row; returns the affected row count."""
        model: Any = self.model
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(self.model).where(model.id == entity_id).values(**values)
                )
        return result.rowcount or 0

    async def _first(self, stmt: Any) -> ModelType | None:
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def _all(self, stmt: Any) -> list[ModelType]:
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
