"""Repository Layer for the Outreach Agent.

Base:
- BaseRepository: Generic CRUD operations

Specialized:
- CallRecordRepository: Outbound call records
- CaseRepository: Visit cases and eligibility reads
- BatchRepository: Dispatch batches
- BatchItemRepository: Per-case batch items
"""

from outreach_agent.db.repositories.base import BaseRepository
from outreach_agent.db.repositories.calls import CallRecordRepository
from outreach_agent.db.repositories.cases import CaseRepository
from outreach_agent.db.repositories.batches import BatchRepository, BatchItemRepository

__all__ = [
    "BaseRepository",
    "CallRecordRepository",
    "CaseRepository",
    "BatchRepository",
    "BatchItemRepository",
]
