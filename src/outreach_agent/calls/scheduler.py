"""Delayed call execution.

A scheduler enqueues a job that fires at a given time and tells the
execution endpoint which call record to dial.

Supported providers:
- qstash: Upstash QStash publish API (delivery via HTTP callback)
- local: in-process timers for development and testing
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import UUID, uuid4

import httpx

from outreach_agent.config import Settings
from outreach_agent.core.exceptions import (
    ConfigurationError,
    SchedulingError,
    ScheduleInPastError,
)
from outreach_agent.core.logging import get_logger
from outreach_agent.core.retry import RetryConfig, retry_async

log = get_logger(__name__)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CallScheduler(ABC):
    """Abstract delayed job queue for call execution."""

    name: str = "base"

    @abstractmethod
    async def schedule(self, record_id: UUID | str, fire_at: datetime) -> str:
        """Enqueue execution of ``record_id`` at ``fire_at``.

        Returns:
            Job id assigned by the queue

        Raises:
            ScheduleInPastError: If ``fire_at`` has already passed
            SchedulingError: If the queue rejects or cannot be reached
        """

    @abstractmethod
    async def cancel(self, job_id: str) -> bool:
        """Cancel a pending job. Returns False if it was not found."""

    async def close(self) -> None:
        """Release resources held by the scheduler."""

    def ensure_future(self, fire_at: datetime, now: datetime | None = None) -> datetime:
        """Normalize ``fire_at`` to UTC and reject past times."""
        fire_at = _utc(fire_at)
        now = _utc(now) if now else datetime.now(timezone.utc)
        if fire_at <= now:
            raise ScheduleInPastError(
                "Cannot schedule a call in the past",
                details={"fire_at": fire_at.isoformat(), "now": now.isoformat()},
            )
        return fire_at


class QStashScheduler(CallScheduler):
    """Upstash QStash backed scheduler.

    Publishes ``{"callId": <record id>}`` to the execution callback with
    an ``Upstash-Not-Before`` header. Transport errors are retried with
    backoff; HTTP rejections are not.

    API Documentation: https://upstash.com/docs/qstash/api/publish
    """

    name = "qstash"

    def __init__(
        self,
        token: str,
        callback_url: str,
        base_url: str = "https://qstash.upstash.io",
        timeout: float = 10.0,
        max_attempts: int = 3,
        client: httpx.AsyncClient | None = None,
    ):
        if not token:
            raise ConfigurationError("QStash token is not configured")
        if not callback_url:
            raise ConfigurationError("QStash callback URL is not configured")

        self.callback_url = callback_url
        self.retry_config = RetryConfig(
            max_attempts=max_attempts,
            base_delay=0.5,
            max_delay=5.0,
            retryable_exceptions=(httpx.TransportError,),
        )
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
        )
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def schedule(self, record_id: UUID | str, fire_at: datetime) -> str:
        fire_at = self.ensure_future(fire_at)
        headers = {
            **self._headers,
            "Upstash-Not-Before": str(int(fire_at.timestamp())),
        }

        try:
            response = await retry_async(
                self._client.post,
                f"/v2/publish/{self.callback_url}",
                json={"callId": str(record_id)},
                headers=headers,
                config=self.retry_config,
            )
        except httpx.HTTPError as e:
            raise SchedulingError(
                "Job queue unreachable",
                details={"record_id": str(record_id)},
                cause=e,
            ) from e

        if response.status_code not in (200, 201, 202):
            raise SchedulingError(
                "Job queue rejected the request",
                details={
                    "record_id": str(record_id),
                    "status_code": response.status_code,
                    "body": response.text[:500],
                },
            )

        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None
        if not message_id:
            raise SchedulingError(
                "Job queue response has no message id",
                details={"record_id": str(record_id)},
            )

        log.info(
            "Call execution scheduled",
            provider=self.name,
            record_id=str(record_id),
            message_id=message_id,
            fire_at=fire_at.isoformat(),
        )
        return message_id

    async def cancel(self, job_id: str) -> bool:
        try:
            response = await retry_async(
                self._client.delete,
                f"/v2/messages/{job_id}",
                headers=self._headers,
                config=self.retry_config,
            )
        except httpx.HTTPError as e:
            raise SchedulingError(
                "Job queue unreachable",
                details={"job_id": job_id},
                cause=e,
            ) from e

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise SchedulingError(
                "Job queue rejected cancellation",
                details={"job_id": job_id, "status_code": response.status_code},
            )

        log.info("Scheduled call cancelled", provider=self.name, job_id=job_id)
        return True

    async def close(self) -> None:
        await self._client.aclose()


def http_callback(
    url: str,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[str], Awaitable[None]]:
    """Build an ``on_fire`` hook that posts ``{"callId": ...}`` to ``url``.

    This is the same request the job queue delivers, so local timers drive
    the execution endpoint exactly like QStash does.
    """

    async def fire(record_id: str) -> None:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json={"callId": record_id})
            response.raise_for_status()
        log.info("Scheduled call delivered", record_id=record_id, status_code=response.status_code)

    return fire


@dataclass
class LocalJob:
    """A job held by the local scheduler."""

    job_id: str
    record_id: str
    fire_at: datetime
    task: asyncio.Task[Any] | None = None


class LocalScheduler(CallScheduler):
    """In-process scheduler for development and testing.

    Jobs live in memory and are lost on restart. Every job leaves
    ``jobs`` once due; ``on_fire``, when given, is then awaited with the
    record id.
    """

    name = "local"

    def __init__(
        self,
        on_fire: Callable[[str], Awaitable[None]] | None = None,
    ):
        self.on_fire = on_fire
        self.jobs: dict[str, LocalJob] = {}

    async def schedule(self, record_id: UUID | str, fire_at: datetime) -> str:
        fire_at = self.ensure_future(fire_at)
        job = LocalJob(job_id=f"local-{uuid4()}", record_id=str(record_id), fire_at=fire_at)

        self.jobs[job.job_id] = job
        job.task = asyncio.create_task(self._run(job))
        log.info(
            "Call execution scheduled",
            provider=self.name,
            record_id=job.record_id,
            job_id=job.job_id,
            fire_at=fire_at.isoformat(),
        )
        return job.job_id

    async def cancel(self, job_id: str) -> bool:
        job = self.jobs.pop(job_id, None)
        if job is None:
            return False
        if job.task is not None:
            job.task.cancel()
        log.info("Scheduled call cancelled", provider=self.name, job_id=job_id)
        return True

    def pending_for(self, record_id: UUID | str) -> list[LocalJob]:
        """Jobs still waiting for ``record_id``."""
        return [job for job in self.jobs.values() if job.record_id == str(record_id)]

    async def _run(self, job: LocalJob) -> None:
        delay = (job.fire_at - datetime.now(timezone.utc)).total_seconds()
        await asyncio.sleep(max(0.0, delay))
        self.jobs.pop(job.job_id, None)
        if self.on_fire is None:
            log.warning("Scheduled call due with no execution hook", record_id=job.record_id, job_id=job.job_id)
            return
        try:
            await self.on_fire(job.record_id)
        except Exception:
            log.exception("Scheduled call execution failed", record_id=job.record_id)

    async def close(self) -> None:
        for job in list(self.jobs.values()):
            if job.task is not None:
                job.task.cancel()
        self.jobs.clear()


def create_scheduler(settings: Settings) -> CallScheduler:
    """Create the scheduler selected by configuration.

    Raises:
        ConfigurationError: For unknown providers or missing credentials
    """
    config = settings.scheduler
    provider = config.provider.lower()
    log.info("Initializing call scheduler", provider=provider)

    if provider == "qstash":
        return QStashScheduler(
            token=config.token,
            callback_url=config.callback_url,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_attempts=config.max_attempts,
        )

    if provider == "local":
        if settings.is_production:
            log.warning("Local scheduler in production; pending retries are lost on restart")
        on_fire = http_callback(config.callback_url, config.timeout_seconds) if config.callback_url else None
        return LocalScheduler(on_fire=on_fire)

    raise ConfigurationError(
        f"Unknown scheduler provider: {config.provider}",
        details={"supported": ["qstash", "local"]},
    )
