"""Background transcript enrichment.

End-of-call reports hand finished transcripts to an in-process queue;
a worker task cleans them and stores the result on the call record.
The webhook never waits for this work.

Usage:
    queue = EnrichmentQueue(session_factory)
    await queue.start()
    queue.submit(TranscriptJob(provider_call_id="abc", transcript="..."))
    await queue.stop()
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.core.logging import get_logger
from outreach_agent.db.base import utc_now
from outreach_agent.db.repositories.calls import CallRecordRepository

log = get_logger(__name__)


class TranscriptCleaner(Protocol):
    """Produces a cleaned transcript, or None when nothing changed."""

    async def clean(self, transcript: str, clinic_name: str | None = None) -> str | None: ...


class RuleBasedTranscriptCleaner:
    """Whitespace and clinic-name normalization.

    Speech recognition tends to split or lowercase proper names; the clinic
    name is restored to its configured spelling wherever it appears.
    """

    _spaces = re.compile(r"[ \t]+")
    _blank_lines = re.compile(r"\n{3,}")

    async def clean(self, transcript: str, clinic_name: str | None = None) -> str | None:
        cleaned = "\n".join(line.strip() for line in transcript.splitlines())
        cleaned = self._spaces.sub(" ", cleaned)
        cleaned = self._blank_lines.sub("\n\n", cleaned).strip()

        if clinic_name:
            words = [re.escape(word) for word in clinic_name.split()]
            pattern = re.compile(r"\b" + r"\s*".join(words) + r"\b", re.IGNORECASE)
            cleaned = pattern.sub(clinic_name, cleaned)

        return cleaned if cleaned != transcript else None


@dataclass
class TranscriptJob:
    """One transcript awaiting cleanup."""

    provider_call_id: str
    transcript: str
    clinic_name: str | None = None


class QueueState(str, Enum):
    """Worker states."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class EnrichmentMetrics:
    """Worker counters."""

    submitted: int = 0
    dropped: int = 0
    cleaned: int = 0
    unchanged: int = 0
    errors: int = 0
    last_error: str | None = None
    last_processed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitted": self.submitted,
            "dropped": self.dropped,
            "cleaned": self.cleaned,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "last_error": self.last_error,
            "last_processed_at": (
                self.last_processed_at.isoformat() if self.last_processed_at else None
            ),
        }


class EnrichmentQueue:
    """Bounded queue plus a single worker task."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cleaner: TranscriptCleaner | None = None,
        maxsize: int = 1000,
    ) -> None:
        self._session_factory = session_factory
        self._cleaner = cleaner or RuleBasedTranscriptCleaner()
        self._queue: asyncio.Queue[TranscriptJob] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None
        self._state = QueueState.STOPPED
        self._metrics = EnrichmentMetrics()

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def metrics(self) -> EnrichmentMetrics:
        return self._metrics

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the worker task."""
        if self._state != QueueState.STOPPED:
            log.warning("Enrichment queue already started", state=self._state.value)
            return

        self._task = asyncio.create_task(self._run_loop())
        self._state = QueueState.RUNNING
        log.info("Enrichment queue started")

    async def stop(self, timeout: float = 10.0) -> None:
        """Drain queued jobs for up to ``timeout`` seconds, then stop."""
        if self._state == QueueState.STOPPED:
            return

        self._state = QueueState.STOPPING
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Enrichment queue stopped with pending jobs", pending=self.pending)

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._state = QueueState.STOPPED
        log.info("Enrichment queue stopped", **self._metrics.to_dict())

    def submit(self, job: TranscriptJob) -> bool:
        """Enqueue a job without waiting. Returns False if it was dropped."""
        if not job.transcript or not job.transcript.strip():
            return False

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._metrics.dropped += 1
            log.warning("Enrichment queue full, dropping job", call_id=job.provider_call_id)
            return False

        self._metrics.submitted += 1
        return True

    async def process(self, job: TranscriptJob) -> bool:
        """Clean one transcript and persist it. Returns True if stored."""
        cleaned = await self._cleaner.clean(job.transcript, job.clinic_name)
        if cleaned is None:
            self._metrics.unchanged += 1
            return False

        async with self._session_factory() as session:
            repo = CallRecordRepository(session)
            record = await repo.get_by_provider_call_id(job.provider_call_id)
            if record is None:
                log.warning("Call vanished before enrichment", call_id=job.provider_call_id)
                return False
            await repo.apply(record, {"cleaned_transcript": cleaned})
            await session.commit()

        self._metrics.cleaned += 1
        log.debug(
            "Cleaned transcript saved",
            call_id=job.provider_call_id,
            original_length=len(job.transcript),
            cleaned_length=len(cleaned),
        )
        return True

    async def _run_loop(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            except Exception as e:
                # A failed cleanup leaves the raw transcript in place
                self._metrics.errors += 1
                self._metrics.last_error = str(e)
                log.exception("Transcript enrichment failed", call_id=job.provider_call_id)
            finally:
                self._metrics.last_processed_at = utc_now()
                self._queue.task_done()
