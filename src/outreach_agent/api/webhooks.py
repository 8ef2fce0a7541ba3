"""Voice provider webhook endpoint.

The provider posts ``{"message": {...}}`` for every call event. Once the
request passes security checks the endpoint always answers 200, even when
handling fails, so the provider does not redeliver endlessly; failures
are logged instead.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from outreach_agent.calls.events import parse_webhook_message
from outreach_agent.calls.lifecycle import CallLifecycleManager
from outreach_agent.core.logging import get_logger
from outreach_agent.dependencies import (
    DatabaseDep,
    EnrichmentDep,
    SchedulerDep,
    SettingsDep,
    WebhookSecurityDep,
)

log = get_logger(__name__)

router = APIRouter()


class WebhookAck(BaseModel):
    success: bool = True


@router.post("/webhooks/voice")
async def voice_webhook(
    request: Request,
    session: DatabaseDep,
    scheduler: SchedulerDep,
    enrichment: EnrichmentDep,
    settings: SettingsDep,
    security: WebhookSecurityDep,
) -> WebhookAck:
    """Apply one voice provider event to its call record."""
    await security.validate(request)

    try:
        payload: Any = await request.json()
    except ValueError:
        log.warning("Webhook body is not JSON", path=str(request.url.path))
        return WebhookAck()

    message = parse_webhook_message(payload)
    manager = CallLifecycleManager(
        session,
        scheduler,
        enrichment=enrichment,
        retry_settings=settings.retry,
    )

    try:
        outcome = await manager.handle_event(message)
    except Exception:
        await session.rollback()
        log.exception(
            "Webhook handling failed",
            event_type=message.type if message else None,
            call_id=message.call_id if message else None,
        )
        return WebhookAck()

    if outcome.ignored_reason:
        log.info("Webhook event ignored", **outcome.to_dict())
    elif outcome.error:
        log.warning("Webhook event handled with errors", **outcome.to_dict())

    return WebhookAck()
