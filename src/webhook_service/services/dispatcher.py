"""Fan-out of domain events to subscribed webhooks."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List

import structlog

from webhook_service.core.exceptions import ValidationError
from webhook_service.domain.dto import validate_webhook_url
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import DeliveryAttempt, DeliveryMessage, Webhook
from webhook_service.queue.base import DeliveryQueue
from webhook_service.repositories.base import DeliveryStore, WebhookRepository

logger = structlog.get_logger(__name__)


def _check_target(webhook: Webhook) -> None:
    try:
        validate_webhook_url(webhook.url)
    except ValueError as exc:
        raise ValidationError(f"invalid webhook url {webhook.url!r}") from exc


class DeliveryDispatcher:
    def __init__(
        self,
        webhook_repository: WebhookRepository,
        delivery_store: DeliveryStore,
        queue: DeliveryQueue,
    ):
        self._webhooks = webhook_repository
        self._deliveries = delivery_store
        self._queue = queue

    async def dispatch(self, tenant_id: str, event_type: str, payload: Any) -> List[DeliveryAttempt]:
        """Create and enqueue one attempt per matching ACTIVE webhook.

        Never raises for a single webhook: its failure is logged and, when the
        attempt record exists, persisted as FAILED so it shows up in the logs.
        """
        webhooks = await self._webhooks.list_active_matching(tenant_id, event_type)
        attempts: List[DeliveryAttempt] = []
        for webhook in webhooks:
            attempt = await self._dispatch_one(webhook, event_type, payload)
            if attempt is not None:
                attempts.append(attempt)
        logger.info(
            "event dispatched",
            tenant_id=tenant_id,
            event_type=event_type,
            matched=len(webhooks),
            enqueued=sum(1 for a in attempts if a.status == DeliveryStatus.PENDING),
        )
        return attempts

    async def _dispatch_one(
        self, webhook: Webhook, event_type: str, payload: Any
    ) -> DeliveryAttempt | None:
        attempt: DeliveryAttempt | None = None
        try:
            attempt = await self._deliveries.save(DeliveryAttempt.new(webhook, event_type, payload))
            _check_target(webhook)
            await self._queue.enqueue(
                DeliveryMessage(
                    attempt_id=attempt.id,
                    webhook_id=webhook.id,
                    event_type=event_type,
                    payload=payload,
                    attempt=1,
                    secret=webhook.secret,
                )
            )
            return attempt
        except Exception as exc:
            logger.exception(
                "delivery enqueue failed",
                webhook_id=str(webhook.id),
                event_type=event_type,
            )
            if attempt is None:
                return None
            return await self._fail_unqueued(attempt, exc)

    async def _fail_unqueued(self, attempt: DeliveryAttempt, exc: Exception) -> DeliveryAttempt:
        try:
            return await self._deliveries.save(
                attempt.model_copy(
                    update={
                        "status": DeliveryStatus.FAILED,
                        "last_error": f"enqueue failed: {exc}",
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
            )
        except Exception:
            logger.exception("could not record enqueue failure", attempt_id=str(attempt.id))
            return attempt
