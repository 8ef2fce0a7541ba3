"""Running batch registry.

Created once at startup and kept on the application state, so a request
can find and cancel a batch that another request started.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from outreach_agent.batch.processor import (
    BatchProcessingOptions,
    BatchProcessingResult,
    BatchProcessor,
    EligibleCase,
)
from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class RunningBatch:
    processor: BatchProcessor
    task: asyncio.Task[BatchProcessingResult]


class BatchProcessorRegistry:
    """Maps running batch ids to their processors."""

    def __init__(self) -> None:
        self._running: dict[UUID, RunningBatch] = {}

    def __contains__(self, batch_id: UUID) -> bool:
        return batch_id in self._running

    def __len__(self) -> int:
        return len(self._running)

    @property
    def batch_ids(self) -> list[UUID]:
        return list(self._running)

    def get(self, batch_id: UUID) -> BatchProcessor | None:
        running = self._running.get(batch_id)
        return running.processor if running else None

    def start(
        self,
        processor: BatchProcessor,
        cases: Sequence[EligibleCase],
        options: BatchProcessingOptions,
    ) -> asyncio.Task[BatchProcessingResult]:
        """Run ``process_batch`` in the background and track it until it ends."""
        batch_id = options.batch_id
        if batch_id in self._running:
            raise ValueError(f"Batch {batch_id} is already running")

        task = asyncio.create_task(processor.process_batch(cases, options))
        self._running[batch_id] = RunningBatch(processor=processor, task=task)
        task.add_done_callback(lambda finished: self._finished(batch_id, finished))
        return task

    def cancel(self, batch_id: UUID) -> bool:
        """Request cancellation. Returns False if the batch is not running."""
        running = self._running.get(batch_id)
        if running is None:
            return False
        running.processor.cancel_processing()
        log.info("Batch cancellation forwarded", batch_id=str(batch_id))
        return True

    async def wait(self, batch_id: UUID) -> BatchProcessingResult | None:
        """Wait for a running batch to end."""
        running = self._running.get(batch_id)
        if running is None:
            return None
        return await running.task

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Cancel every running batch and wait for them to stop."""
        if not self._running:
            return

        tasks = []
        for batch_id, running in list(self._running.items()):
            running.processor.cancel_processing()
            tasks.append(running.task)
            log.info("Stopping batch on shutdown", batch_id=str(batch_id))

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            log.warning("Batches still running after shutdown timeout", count=len(pending))

    def _finished(self, batch_id: UUID, task: asyncio.Task[BatchProcessingResult]) -> None:
        self._running.pop(batch_id, None)
        if task.cancelled():
            log.warning("Batch task cancelled", batch_id=str(batch_id))
            return

        error = task.exception()
        if error is not None:
            log.error(
                "Batch processing aborted",
                batch_id=str(batch_id),
                error=str(error),
                exc_info=error,
            )
            return

        result = task.result()
        log.info("Batch task finished", batch_id=str(batch_id), status=result.status.value)
