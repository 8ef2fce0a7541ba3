"""Case repository."""
from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from outreach_agent.db.models.cases import CaseModel
from outreach_agent.db.repositories.base import BaseRepository


class CaseRepository(BaseRepository[CaseModel]):
    """Repository for visit cases."""

    def __init__(self, session: AsyncSession):
        super().__init__(CaseModel, session)

    async def get_with_activity(
        self,
        owner_id: UUID,
        status: str = "completed",
    ) -> Sequence[CaseModel]:
        """Owner's cases in ``status`` with emails and calls loaded.

        Newest first. Related rows are fetched in the same pass so the
        caller can filter in memory without further queries.
        """
        stmt = (
            select(self._model)
            .where(self._model.owner_id == owner_id, self._model.status == status)
            .options(
                selectinload(self._model.scheduled_emails),
                selectinload(self._model.calls),
            )
            .order_by(self._model.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def mark_urgent(self, case_id: UUID) -> int:
        """Flag a case as urgent. Returns the number of rows touched."""
        stmt = (
            update(self._model)
            .where(self._model.id == case_id)
            .values(is_urgent=True)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0
