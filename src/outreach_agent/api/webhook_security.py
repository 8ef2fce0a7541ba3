"""Webhook security for voice provider callbacks.

Two independent checks, both optional:
- Shared secret: the provider echoes a configured secret in a header
- HMAC signature: SHA256 of the raw body keyed with a signing secret
"""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

from outreach_agent.config import WebhookSettings
from outreach_agent.core.exceptions import InvalidSignatureError
from outreach_agent.core.logging import get_logger

if TYPE_CHECKING:
    from fastapi import Request

log = get_logger(__name__)


class SharedSecretValidator:
    """Compare a header value against the configured secret."""

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def validate(self, provided: str | None) -> bool:
        if not self.secret:
            log.warning("Webhook secret not configured")
            return False
        if not provided:
            return False
        # Constant-time comparison
        return hmac.compare_digest(self.secret.encode("utf-8"), provided.encode("utf-8"))


class HMACSignatureValidator:
    """HMAC-SHA256 body signature validator.

    Accepts hex digests with or without a ``sha256=`` prefix.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def sign(self, body: bytes) -> str:
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def validate(self, signature: str | None, body: bytes) -> bool:
        if not self.secret:
            log.warning("Webhook signing secret not configured")
            return False
        if not signature:
            return False

        if signature.startswith("sha256="):
            signature = signature[7:]

        return hmac.compare_digest(self.sign(body), signature)


class WebhookSecurityManager:
    """Validates inbound voice provider webhooks.

    Usage:
        security = WebhookSecurityManager(settings.webhooks)

        @router.post("/webhooks/voice")
        async def voice_webhook(request: Request):
            await security.validate(request)
            ...
    """

    def __init__(self, config: WebhookSettings) -> None:
        self.config = config
        self._secret = SharedSecretValidator(config.secret)
        self._signature = HMACSignatureValidator(config.signing_secret)

    async def validate(self, request: "Request") -> None:
        """Raise if the request fails any enabled check.

        Raises:
            InvalidSignatureError: If the secret or signature does not match
        """
        if self.config.validate_secret:
            provided = request.headers.get(self.config.secret_header)
            if not self._secret.validate(provided):
                log.warning("Invalid webhook secret", path=str(request.url.path))
                raise InvalidSignatureError("Invalid webhook secret")

        if self.config.signing_secret:
            signature = request.headers.get(self.config.signature_header)
            body = await request.body()
            if not self._signature.validate(signature, body):
                log.warning("Invalid webhook signature", path=str(request.url.path))
                raise InvalidSignatureError("Invalid webhook signature")

        log.debug("Webhook validated", path=str(request.url.path))
