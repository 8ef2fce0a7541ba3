"""Batch and batch item repositories."""
from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from outreach_agent.core.exceptions import RecordNotFoundError
from outreach_agent.db.models.batches import BatchModel, BatchItemModel
from outreach_agent.db.repositories.base import BaseRepository


class BatchRepository(BaseRepository[BatchModel]):
    """Repository for dispatch batches."""

    def __init__(self, session: AsyncSession):
        super().__init__(BatchModel, session)

    async def get_with_items(self, batch_id: UUID) -> BatchModel | None:
        """Load a batch together with its items."""
        stmt = (
            select(self._model)
            .where(self._model.id == batch_id)
            .options(selectinload(self._model.items))
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_owner(self, owner_id: UUID, *, limit: int = 50) -> Sequence[BatchModel]:
        """Recent batches for an owner, newest first."""
        stmt = (
            select(self._model)
            .where(self._model.owner_id == owner_id)
            .order_by(self._model.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def update_fields(self, batch_id: UUID, values: dict[str, Any]) -> None:
        """Write ``values`` to a batch row.

        Raises:
            RecordNotFoundError: If the batch does not exist
        """
        stmt = (
            update(self._model)
            .where(self._model.id == batch_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if not result.rowcount:
            raise RecordNotFoundError(
                f"Batch {batch_id} not found",
                details={"batch_id": str(batch_id)},
            )


class BatchItemRepository(BaseRepository[BatchItemModel]):
    """Repository for per-case batch items, keyed by (batch_id, case_id)."""

    def __init__(self, session: AsyncSession):
        super().__init__(BatchItemModel, session)

    async def update_by_key(
        self,
        batch_id: UUID,
        case_id: UUID,
        values: dict[str, Any],
    ) -> None:
        """Update the item identified by batch and case.

        Raises:
            RecordNotFoundError: If no such item exists
        """
        stmt = (
            update(self._model)
            .where(self._model.batch_id == batch_id, self._model.case_id == case_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if not result.rowcount:
            raise RecordNotFoundError(
                f"Batch item for case {case_id} not found in batch {batch_id}",
                details={"batch_id": str(batch_id), "case_id": str(case_id)},
            )
