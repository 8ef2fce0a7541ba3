"""Batch dispatch of discharge outreach."""

from outreach_agent.batch.orchestration import (
    CaseOrchestrator,
    HttpCaseOrchestrator,
    OrchestrationRequest,
    OrchestrationResult,
    create_orchestrator,
)
from outreach_agent.batch.processor import (
    BatchItemStatus,
    BatchProcessingOptions,
    BatchProcessingResult,
    BatchProcessor,
    BatchStatus,
    CaseError,
    EligibleCase,
    ScheduleTimes,
    calculate_schedule_times,
    is_eligible,
    load_eligible_cases,
)
from outreach_agent.batch.registry import BatchProcessorRegistry

__all__ = [
    "BatchItemStatus",
    "BatchProcessingOptions",
    "BatchProcessingResult",
    "BatchProcessor",
    "BatchProcessorRegistry",
    "BatchStatus",
    "CaseError",
    "CaseOrchestrator",
    "EligibleCase",
    "HttpCaseOrchestrator",
    "OrchestrationRequest",
    "OrchestrationResult",
    "ScheduleTimes",
    "calculate_schedule_times",
    "create_orchestrator",
    "is_eligible",
    "load_eligible_cases",
]
