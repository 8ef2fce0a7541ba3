"""Call record repository."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.db.models.calls import CallRecordModel
from outreach_agent.db.repositories.base import BaseRepository


class CallRecordRepository(BaseRepository[CallRecordModel]):
    """Repository for outbound call records."""

    def __init__(self, session: AsyncSession):
        super().__init__(CallRecordModel, session)

    async def get_by_provider_call_id(self, provider_call_id: str) -> CallRecordModel | None:
        """Look up the record the provider knows as ``provider_call_id``."""
        return await self.find_one(provider_call_id=provider_call_id)
