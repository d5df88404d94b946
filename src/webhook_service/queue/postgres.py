"""Durable delivery queue stored in the ``delivery_queue`` table."""
from __future__ import annotations

import asyncio
import json
import time

from asyncpg import Pool  # type: ignore[import-untyped]

from webhook_service.domain.webhooks import DeliveryMessage
from webhook_service.queue.base import QueuedMessage
from webhook_service.repositories.base import BaseRepository


class PostgresDeliveryQueue(BaseRepository):
    def __init__(
        self,
        pool: Pool,
        *,
        visibility_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 0.2,
    ):
        super().__init__(pool)
        self._visibility_timeout = visibility_timeout_seconds
        self._poll_interval = poll_interval_seconds

    async def enqueue(self, message: DeliveryMessage, delay_ms: int = 0) -> None:
        await self._execute(
            """
            INSERT INTO delivery_queue (message, visible_at)
            VALUES ($1::jsonb, now() + make_interval(secs => $2))
            """,
            message.model_dump_json(),
            max(delay_ms, 0) / 1000,
        )

    async def _claim(self) -> QueuedMessage | None:
        """
        Claim the oldest visible message.

        FOR UPDATE SKIP LOCKED keeps concurrent consumers off the same row; the
        claimed row is hidden for the visibility timeout instead of deleted.
        """
        record = await self._fetchrow(
            """
            WITH cte AS (
                SELECT id
                FROM delivery_queue
                WHERE visible_at <= now()
                ORDER BY visible_at ASC, id ASC
                FOR UPDATE SKIP LOCKED
                LIMIT 1
            )
            UPDATE delivery_queue q
            SET visible_at = now() + make_interval(secs => $1),
                receive_count = q.receive_count + 1
            FROM cte
            WHERE q.id = cte.id
            RETURNING q.id, q.message, q.receive_count
            """,
            self._visibility_timeout,
        )
        if record is None:
            return None
        raw = record["message"]
        payload = json.loads(raw) if isinstance(raw, str) else raw
        return QueuedMessage(
            message=DeliveryMessage.model_validate(payload),
            receipt=str(record["id"]),
            receive_count=int(record["receive_count"]),
        )

    async def dequeue(self, timeout: float) -> QueuedMessage | None:
        deadline = time.monotonic() + timeout
        while True:
            queued = await self._claim()
            if queued is not None:
                return queued
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval, remaining))

    async def ack(self, queued: QueuedMessage) -> None:
        await self._execute("DELETE FROM delivery_queue WHERE id = $1", int(queued.receipt))
