"""Base Repository Pattern for the Outreach Agent.

Provides generic CRUD operations with async SQLAlchemy support.
All specialized repositories inherit from BaseRepository.
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.core.exceptions import RecordNotFoundError
from outreach_agent.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Generic base repository with async CRUD operations.

    Usage:
        class BatchRepository(BaseRepository[BatchModel]):
            def __init__(self, session: AsyncSession):
                super().__init__(BatchModel, session)
    """

    def __init__(self, model: type[ModelT], session: AsyncSession):
        """Initialize repository with model class and session.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self._model = model
        self._session = session

    # ========================================================================
    # Basic CRUD Operations
    # ========================================================================

    async def get(self, id: UUID | str) -> ModelT | None:
        """Get a single record by ID.

        Args:
            id: UUID or string primary key

        Returns:
            Model instance or None if not found
        """
        if isinstance(id, str):
            id = UUID(id)

        stmt = select(self._model).where(self._model.id == id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, id: UUID | str) -> ModelT:
        """Get a single record by ID, raising if not found.

        Raises:
            RecordNotFoundError: If record not found
        """
        obj = await self.get(id)
        if obj is None:
            raise RecordNotFoundError(
                f"{self._model.__name__} with id {id} not found",
                details={"id": str(id)},
            )
        return obj

    async def create(self, obj_in: ModelT) -> ModelT:
        """Create a new record.

        Args:
            obj_in: Model instance to create

        Returns:
            Created model instance with generated ID
        """
        self._session.add(obj_in)
        await self._session.flush()
        await self._session.refresh(obj_in)
        return obj_in

    async def create_multi(self, objs_in: list[ModelT]) -> list[ModelT]:
        """Create multiple records in one flush."""
        self._session.add_all(objs_in)
        await self._session.flush()
        return objs_in

    async def update(self, id: UUID | str, obj_in: dict[str, Any]) -> ModelT | None:
        """Update a record by ID.

        Returns:
            Updated model instance or None if not found
        """
        db_obj = await self.get(id)
        if db_obj is None:
            return None

        return await self.apply(db_obj, obj_in)

    async def apply(self, db_obj: ModelT, obj_in: dict[str, Any]) -> ModelT:
        """Set fields on a loaded instance and flush."""
        for field, value in obj_in.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)

        await self._session.flush()
        return db_obj

    # ========================================================================
    # Query Helpers
    # ========================================================================

    async def count(self, **filters: Any) -> int:
        """Count records matching column filters."""
        stmt = select(func.count()).select_from(self._model)
        for field, value in filters.items():
            if hasattr(self._model, field):
                stmt = stmt.where(getattr(self._model, field) == value)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def find_one(self, **filters: Any) -> ModelT | None:
        """Find a single record by arbitrary filters.

        Args:
            **filters: Column name to value mappings

        Returns:
            First matching model instance or None
        """
        stmt = select(self._model)
        for field, value in filters.items():
            if hasattr(self._model, field):
                stmt = stmt.where(getattr(self._model, field) == value)

        result = await self._session.execute(stmt.limit(1))
        return result.scalars().first()
