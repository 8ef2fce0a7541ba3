"""Database Models for the Outreach Agent.

Call Models:
- CallRecordModel: Outbound calls driven by provider webhooks

Case Models:
- CaseModel: Visit cases eligible for follow-up
- ScheduledEmailModel: Discharge emails queued for a case

Batch Models:
- BatchModel: Cases dispatched together
- BatchItemModel: Per-case batch outcome
"""

from outreach_agent.db.models.calls import CallRecordModel
from outreach_agent.db.models.cases import CaseModel, ScheduledEmailModel
from outreach_agent.db.models.batches import BatchModel, BatchItemModel

__all__ = [
    "CallRecordModel",
    "CaseModel",
    "ScheduledEmailModel",
    "BatchModel",
    "BatchItemModel",
]
