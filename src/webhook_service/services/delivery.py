"""Delivery worker: signed HTTP POST, retry/backoff and state persistence."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import aiohttp
import structlog
from aiohttp import ClientSession, ClientTimeout

from webhook_service.core.exceptions import ConcurrentUpdateError, InvalidStatusTransitionError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import DeliveryAttempt, DeliveryMessage, Webhook
from webhook_service.otel import get_tracer
from webhook_service.queue.base import DeliveryQueue
from webhook_service.repositories.base import DeliveryStore, WebhookRepository
from webhook_service.services.signing import EventSigner, canonical_json

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
WEBHOOK_INACTIVE = "webhook inactive"


@dataclass(frozen=True)
class DeliveryOutcome:
    ok: bool
    status_code: int | None = None
    body: Any = None
    error: str | None = None

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class DeliveryWorker:
    """Processes one queued delivery message at a time.

    Every write goes through the store's compare-and-set, so a duplicate
    message handled concurrently by another worker loses with
    ``ConcurrentUpdateError`` and is dropped here.
    """

    def __init__(
        self,
        webhook_repository: WebhookRepository,
        delivery_store: DeliveryStore,
        queue: DeliveryQueue,
        session: ClientSession,
        *,
        signer: EventSigner | None = None,
        request_timeout_seconds: float = 5.0,
        response_max_chars: int = 2000,
    ):
        self._webhooks = webhook_repository
        self._deliveries = delivery_store
        self._queue = queue
        self._session = session
        self._signer = signer or EventSigner()
        self._timeout = request_timeout_seconds
        self._max_chars = response_max_chars

    async def process(self, message: DeliveryMessage) -> DeliveryAttempt | None:
        log = logger.bind(
            attempt_id=str(message.attempt_id),
            webhook_id=str(message.webhook_id),
            attempt=message.attempt,
        )
        attempt = await self._deliveries.get(message.attempt_id)
        if attempt is None:
            log.warning("delivery attempt not found, dropping message")
            return None
        if attempt.status.is_terminal:
            log.info("delivery already finished, skipping", status=attempt.status.value)
            return attempt
        if message.attempt < attempt.attempt or (
            message.attempt == attempt.attempt and attempt.status == DeliveryStatus.RETRY_SCHEDULED
        ):
            log.info(
                "stale delivery message, skipping",
                stored_attempt=attempt.attempt,
                status=attempt.status.value,
            )
            return attempt

        try:
            return await self._run(attempt, message, log)
        except ConcurrentUpdateError:
            log.warning("delivery attempt updated by another worker, dropping message")
            return None

    async def _run(
        self, attempt: DeliveryAttempt, message: DeliveryMessage, log: Any
    ) -> DeliveryAttempt:
        webhook = await self._webhooks.get(message.webhook_id)
        if webhook is None or not webhook.is_active:
            log.info("webhook inactive, failing delivery")
            return await self._transition(attempt, DeliveryStatus.FAILED, last_error=WEBHOOK_INACTIVE)

        attempt = await self._transition(
            attempt,
            DeliveryStatus.IN_FLIGHT,
            attempt=message.attempt,
            next_attempt_at=None,
        )
        outcome = await self._post(
            webhook, message.event_type, message.payload, message.secret or webhook.secret
        )

        if outcome.ok:
            log.info("webhook delivered", status_code=outcome.status_code)
            return await self._transition(
                attempt,
                DeliveryStatus.DELIVERED,
                last_error=None,
                delivered_at=datetime.now(timezone.utc),
                response={"status": outcome.status_code, "body": outcome.body},
            )

        retry = webhook.retry_config
        permanent = outcome.is_client_error and not retry.retry_on_client_error
        if message.attempt < retry.max_attempts and not permanent:
            delay_ms = retry.delay_ms(message.attempt)
            scheduled = await self._transition(
                attempt,
                DeliveryStatus.RETRY_SCHEDULED,
                last_error=outcome.error,
                next_attempt_at=datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms),
            )
            await self._queue.enqueue(message.next(), delay_ms=delay_ms)
            log.warning("webhook delivery failed, retry scheduled", error=outcome.error, delay_ms=delay_ms)
            return scheduled

        log.error("webhook delivery failed permanently", error=outcome.error)
        return await self._transition(attempt, DeliveryStatus.FAILED, last_error=outcome.error)

    async def give_up(self, message: DeliveryMessage, reason: str) -> DeliveryAttempt | None:
        """Fail the attempt behind a message that keeps crashing the worker."""
        attempt = await self._deliveries.get(message.attempt_id)
        if attempt is None or attempt.status.is_terminal or message.attempt < attempt.attempt:
            return attempt
        try:
            failed = await self._transition(attempt, DeliveryStatus.FAILED, last_error=reason)
        except (ConcurrentUpdateError, InvalidStatusTransitionError):
            logger.warning("delivery attempt changed while giving up", attempt_id=str(attempt.id))
            return None
        logger.error("delivery abandoned", attempt_id=str(attempt.id), reason=reason)
        return failed

    async def deliver_now(self, webhook: Webhook, event_type: str, payload: Any) -> DeliveryAttempt:
        """Single synchronous try without the queue; ends DELIVERED or FAILED."""
        attempt = await self._deliveries.save(DeliveryAttempt.new(webhook, event_type, payload))
        attempt = await self._transition(attempt, DeliveryStatus.IN_FLIGHT)
        outcome = await self._post(webhook, event_type, payload, webhook.secret)
        logger.info(
            "webhook test delivery",
            webhook_id=str(webhook.id),
            ok=outcome.ok,
            status_code=outcome.status_code,
        )
        if outcome.ok:
            return await self._transition(
                attempt,
                DeliveryStatus.DELIVERED,
                delivered_at=datetime.now(timezone.utc),
                response={"status": outcome.status_code, "body": outcome.body},
            )
        return await self._transition(attempt, DeliveryStatus.FAILED, last_error=outcome.error)

    async def _transition(
        self, record: DeliveryAttempt, status: DeliveryStatus, **changes: Any
    ) -> DeliveryAttempt:
        changes.update(status=status, updated_at=datetime.now(timezone.utc))
        return await self._deliveries.save(record.model_copy(update=changes))

    async def _post(self, webhook: Webhook, event_type: str, payload: Any, secret: str) -> DeliveryOutcome:
        signature = self._signer.sign(payload, secret)
        body = canonical_json({"event": event_type, "payload": payload, "signature": signature})
        headers = {
            **webhook.headers,
            "Content-Type": "application/json",
            SIGNATURE_HEADER: signature,
        }
        with tracer.start_as_current_span("webhook.deliver") as span:
            span.set_attribute("webhook.id", str(webhook.id))
            span.set_attribute("webhook.event_type", event_type)
            try:
                async with self._session.post(
                    webhook.url,
                    data=body,
                    headers=headers,
                    timeout=ClientTimeout(total=self._timeout),
                ) as resp:
                    # any bytes or charset; NUL is replaced since postgres text/jsonb reject it
                    raw = await resp.read()
                    text = raw.decode("utf-8", errors="replace").replace("\x00", "\ufffd")
                    span.set_attribute("http.status_code", resp.status)
                    if 200 <= resp.status < 300:
                        return DeliveryOutcome(ok=True, status_code=resp.status, body=self._summarize(text))
                    return DeliveryOutcome(
                        ok=False,
                        status_code=resp.status,
                        error=f"HTTP {resp.status}: {text[: self._max_chars]}",
                    )
            except asyncio.TimeoutError:
                return DeliveryOutcome(ok=False, error=f"timeout after {self._timeout}s")
            except (aiohttp.ClientError, OSError) as exc:
                return DeliveryOutcome(ok=False, error=str(exc) or type(exc).__name__)

    def _summarize(self, text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text) if len(text) <= self._max_chars else text[: self._max_chars]
        except ValueError:
            return text[: self._max_chars]
