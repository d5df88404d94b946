"""PostgreSQL delivery attempt store."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import ConcurrentUpdateError
from webhook_service.domain.enums import DeliveryStatus
from webhook_service.domain.webhooks import DeliveryAttempt
from webhook_service.repositories.base import BaseRepository, check_save


class PostgresDeliveryStore(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> DeliveryAttempt:
        return DeliveryAttempt.model_validate(PostgresDeliveryStore._normalize(dict(record)))

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
        payload.pop("total_count", None)
        for column in ("payload", "response"):
            value = payload.get(column)
            if isinstance(value, str):
                payload[column] = json.loads(value)
        return payload

    async def save(self, attempt: DeliveryAttempt) -> DeliveryAttempt:
        """Insert a new attempt or compare-and-set an existing one on ``version``."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                if attempt.version == 0:
                    record = await conn.fetchrow(
                        """
                        INSERT INTO delivery_attempts (
                            id, webhook_id, tenant_id, event_type, payload, attempt, status,
                            last_error, response, created_at, updated_at, delivered_at,
                            next_attempt_at, signing_secret, version
                        )
                        VALUES (
                            $1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9::jsonb, $10, $11, $12, $13, $14, 1
                        )
                        ON CONFLICT (id) DO NOTHING
                        RETURNING *
                        """,
                        attempt.id,
                        attempt.webhook_id,
                        attempt.tenant_id,
                        attempt.event_type,
                        json.dumps(attempt.payload),
                        attempt.attempt,
                        attempt.status.value,
                        attempt.last_error,
                        json.dumps(attempt.response) if attempt.response is not None else None,
                        attempt.created_at,
                        attempt.updated_at,
                        attempt.delivered_at,
                        attempt.next_attempt_at,
                        attempt.signing_secret,
                    )
                    if record is None:
                        raise ConcurrentUpdateError(f"Delivery attempt {attempt.id} already exists")
                    return self._to_model(record)

                current = await conn.fetchrow(
                    "SELECT * FROM delivery_attempts WHERE id = $1 FOR UPDATE",
                    attempt.id,
                )
                if current is None:
                    raise ConcurrentUpdateError(f"Delivery attempt {attempt.id} vanished")
                stored = self._to_model(current)
                if not check_save(stored, attempt):
                    return stored

                record = await conn.fetchrow(
                    """
                    UPDATE delivery_attempts
                    SET attempt = $3,
                        status = $4,
                        last_error = $5,
                        response = $6::jsonb,
                        updated_at = $7,
                        delivered_at = $8,
                        next_attempt_at = $9,
                        version = version + 1
                    WHERE id = $1 AND version = $2
                    RETURNING *
                    """,
                    attempt.id,
                    attempt.version,
                    attempt.attempt,
                    attempt.status.value,
                    attempt.last_error,
                    json.dumps(attempt.response) if attempt.response is not None else None,
                    attempt.updated_at,
                    attempt.delivered_at,
                    attempt.next_attempt_at,
                )
                if record is None:
                    raise ConcurrentUpdateError(f"Delivery attempt {attempt.id} changed concurrently")
                return self._to_model(record)

    async def get(self, attempt_id: UUID) -> DeliveryAttempt | None:
        record = await self._fetchrow("SELECT * FROM delivery_attempts WHERE id = $1", attempt_id)
        return self._to_model(record) if record is not None else None

    async def list_by_webhook(
        self,
        webhook_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DeliveryAttempt], int]:
        where = ["webhook_id = $1"]
        values: list[Any] = [webhook_id]
        idx = 2
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status.value)
            idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM delivery_attempts
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        values.extend([limit, offset])
        records = list(await self._fetch(query, *values))
        total = int(records[0]["total_count"]) if records else 0
        if not records and offset:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM delivery_attempts WHERE {where_sql}",
                *values[:-2],
            )
            total = int(record["total"]) if record else 0
        return [self._to_model(r) for r in records], total

    async def list_stranded(self, before: datetime, *, limit: int = 100) -> List[DeliveryAttempt]:
        """Non-terminal attempts untouched since ``before``."""
        records = await self._fetch(
            """
            SELECT *
            FROM delivery_attempts
            WHERE status IN ('PENDING', 'IN_FLIGHT', 'RETRY_SCHEDULED')
              AND updated_at < $1
              AND (next_attempt_at IS NULL OR next_attempt_at < $1)
            ORDER BY updated_at ASC
            LIMIT $2
            """,
            before,
            limit,
        )
        return [self._to_model(r) for r in records]
