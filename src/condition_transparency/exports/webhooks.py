"""
Webhook registration and signed delivery.

Key components:
- WebhookRegistry: register, rotate secrets, deactivate
- WebhookDispatcher: POST a signed payload to every active webhook
  concurrently, with a bounded timeout and per-webhook bookkeeping

A failed delivery, whether a TransientDeliveryFailure or any other error,
is logged and counted on the registration, and never affects sibling
webhooks or the export.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import httpx

from ..exceptions import NotFound, TransientDeliveryFailure, ValidationError
from ..models import Clock, WebhookRegistration, utcnow
from .signing import generate_secret, sign_payload

if TYPE_CHECKING:
    from ..permissions import GroupAccessResolver
    from ..storage import TransparencyStore

logger = logging.getLogger("condition-transparency.webhooks")

EVENT_HEADER = "X-Condition-Transparency-Event"


def encode_payload(payload: dict[str, Any]) -> bytes:
    """Canonical JSON body; the signature is computed over exactly these bytes."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class WebhookRegistry:
    """Manages a group's webhook registrations."""

    def __init__(
        self,
        store: "TransparencyStore",
        access: "GroupAccessResolver",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.access = access
        self.clock = clock

    def register(self, group_id: str, actor_id: str, url: str) -> WebhookRegistration:
        """
        Register a webhook with a fresh secret.

        Raises:
            Forbidden: If the actor is not privileged
            ValidationError: If the URL is not an absolute http(s) URL
        """
        self.access.require_privileged(group_id, actor_id)
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            parsed = None
        if parsed is None or parsed.scheme not in ("http", "https") or not parsed.host:
            raise ValidationError("Webhook URL must be an absolute http(s) URL", errors={"url": "invalid URL"})

        webhook = WebhookRegistration(
            group_id=group_id,
            url=url,
            secret=generate_secret(),
            created_at=self.clock(),
        )
        self.store.insert_webhook(webhook)
        logger.info(f"Webhook {webhook.id} registered for group {group_id}")
        return webhook

    def rotate_secret(self, group_id: str, webhook_id: str, actor_id: str) -> WebhookRegistration:
        self.access.require_privileged(group_id, actor_id)
        self._get(group_id, webhook_id)
        webhook = self.store.update_webhook(webhook_id, secret=generate_secret())
        logger.info(f"Webhook {webhook_id} secret rotated")
        return webhook

    def deactivate(self, group_id: str, webhook_id: str, actor_id: str) -> WebhookRegistration:
        self.access.require_privileged(group_id, actor_id)
        self._get(group_id, webhook_id)
        return self.store.update_webhook(webhook_id, active=False)

    def _get(self, group_id: str, webhook_id: str) -> WebhookRegistration:
        webhook = self.store.get_webhook(webhook_id)
        if webhook is None or webhook.group_id != group_id:
            raise NotFound(f"Webhook not found: {webhook_id}", resource="webhook")
        return webhook


@dataclass(frozen=True)
class DeliveryOutcome:
    webhook_id: str
    delivered: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class WebhookDispatcher:
    """
    Delivers signed payloads to webhooks.

    Attributes:
        store: Receives per-webhook success/failure bookkeeping
        signature_header: Header carrying the hex HMAC-SHA256 signature
        timeout: Seconds allowed per POST
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        store: "TransparencyStore",
        signature_header: str = "X-Condition-Transparency-Signature",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.signature_header = signature_header
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

    async def deliver_all(
        self,
        webhooks: list[WebhookRegistration],
        payload: dict[str, Any],
        event: str = "export.completed",
    ) -> list[DeliveryOutcome]:
        """POST ``payload`` to every webhook concurrently.

        Returns one outcome per webhook, in input order. A delivery whose
        bookkeeping itself fails is reported as undelivered.
        """
        if not webhooks:
            return []
        body = encode_payload(payload)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            results = await asyncio.gather(
                *(self._deliver(client, webhook, body, event) for webhook in webhooks),
                return_exceptions=True,
            )

        outcomes: list[DeliveryOutcome] = []
        for webhook, result in zip(webhooks, results):
            if isinstance(result, Exception):
                logger.error(f"Webhook {webhook.id} bookkeeping failed: {result}")
                result = DeliveryOutcome(webhook_id=webhook.id, delivered=False, error=str(result))
            elif isinstance(result, BaseException):
                raise result
            outcomes.append(result)
        return outcomes

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        webhook: WebhookRegistration,
        body: bytes,
        event: str,
    ) -> DeliveryOutcome:
        try:
            status_code = await self._post(client, webhook, body, event)
        except TransientDeliveryFailure as failure:
            logger.warning(f"Webhook {webhook.id} delivery failed: {failure.message}")
            return self._failed(webhook, failure.message, failure.status_code)
        except Exception as e:
            logger.error(f"Webhook {webhook.id} delivery raised unexpectedly: {e}", exc_info=True)
            return self._failed(webhook, f"Unexpected delivery error: {e}")

        self.store.record_webhook_success(webhook.id, self.clock())
        logger.info(f"Webhook {webhook.id} delivered ({status_code})")
        return DeliveryOutcome(webhook_id=webhook.id, delivered=True, status_code=status_code)

    def _failed(
        self,
        webhook: WebhookRegistration,
        error: str,
        status_code: Optional[int] = None,
    ) -> DeliveryOutcome:
        self.store.record_webhook_failure(webhook.id, self.clock())
        return DeliveryOutcome(webhook_id=webhook.id, delivered=False, status_code=status_code, error=error)

    async def _post(
        self,
        client: httpx.AsyncClient,
        webhook: WebhookRegistration,
        body: bytes,
        event: str,
    ) -> int:
        """
        Raises:
            TransientDeliveryFailure: On timeout, connection error or non-2xx
        """
        headers = {
            "Content-Type": "application/json",
            self.signature_header: sign_payload(body, webhook.secret),
            EVENT_HEADER: event,
        }
        try:
            response = await client.post(webhook.url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException:
            raise TransientDeliveryFailure(
                f"Webhook timed out after {self.timeout}s", webhook_id=webhook.id
            ) from None
        except httpx.HTTPStatusError as e:
            raise TransientDeliveryFailure(
                f"Webhook returned HTTP {e.response.status_code}",
                webhook_id=webhook.id,
                status_code=e.response.status_code,
            ) from None
        except httpx.RequestError as e:
            raise TransientDeliveryFailure(
                f"Failed to connect to webhook: {e}", webhook_id=webhook.id
            ) from None
        return response.status_code


__all__ = [
    "EVENT_HEADER",
    "encode_payload",
    "WebhookRegistry",
    "DeliveryOutcome",
    "WebhookDispatcher",
]
