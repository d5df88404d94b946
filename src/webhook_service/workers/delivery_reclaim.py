"""Worker: re-enqueue delivery attempts stranded in a non-terminal state."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from webhook_service.core.exceptions import ConcurrentUpdateError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import DeliveryMessage
from webhook_service.queue.base import DeliveryQueue
from webhook_service.repositories.base import DeliveryStore
from webhook_service.workers.background import TaskFn

logger = structlog.get_logger(__name__)


def make_delivery_reclaim(
    store: DeliveryStore,
    queue: DeliveryQueue,
    *,
    stuck_minutes: int,
    batch_size: int = 100,
) -> TaskFn:
    """Build the reclaim task.

    Covers attempts whose queue message was lost (crash between persisting and
    enqueueing). Each reclaimed record is touched through the store first, so a
    worker currently holding it wins and the reclaim is skipped.
    """

    async def delivery_reclaim(now: datetime) -> str | None:
        cutoff = now - timedelta(minutes=stuck_minutes)
        reclaimed = 0
        for attempt in await store.list_stranded(cutoff, limit=batch_size):
            try:
                touched = await store.save(
                    attempt.model_copy(update={"updated_at": datetime.now(timezone.utc)})
                )
            except ConcurrentUpdateError:
                continue
            next_try = touched.attempt
            if touched.status == DeliveryStatus.RETRY_SCHEDULED:
                next_try += 1
            await queue.enqueue(
                DeliveryMessage(
                    attempt_id=touched.id,
                    webhook_id=touched.webhook_id,
                    event_type=touched.event_type,
                    payload=touched.payload,
                    attempt=next_try,
                    secret=touched.signing_secret,
                )
            )
            logger.info(
                "delivery attempt reclaimed",
                attempt_id=str(touched.id),
                status=touched.status.value,
                attempt=next_try,
            )
            reclaimed += 1
        return f"reclaimed={reclaimed}" if reclaimed else None

    return delivery_reclaim
