"""PostgreSQL webhook subscription repository."""
from __future__ import annotations

import json
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import WebhookStatus
from webhook_service.domain.webhooks import Webhook
from webhook_service.repositories.base import BaseRepository

_JSON_COLUMNS = ("headers", "retry_config", "metadata")


class PostgresWebhookRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> Webhook:
        payload = dict(record)
        payload.pop("total_count", None)
        for column in _JSON_COLUMNS:
            value = payload.get(column)
            if isinstance(value, str):
                payload[column] = json.loads(value)
        return Webhook.model_validate(payload)

    async def create(self, webhook: Webhook) -> Webhook:
        record = await self._fetchrow(
            """
            INSERT INTO webhooks (
                id, tenant_id, name, url, events, secret, status,
                headers, retry_config, metadata, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5::text[], $6, $7, $8::jsonb, $9::jsonb, $10::jsonb, $11, $12)
            RETURNING *
            """,
            webhook.id,
            webhook.tenant_id,
            webhook.name,
            webhook.url,
            webhook.events,
            webhook.secret,
            webhook.status.value,
            json.dumps(webhook.headers),
            webhook.retry_config.model_dump_json(),
            json.dumps(webhook.metadata),
            webhook.created_at,
            webhook.updated_at,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, webhook_id: UUID) -> Webhook | None:
        record = await self._fetchrow("SELECT * FROM webhooks WHERE id = $1", webhook_id)
        return self._to_model(record) if record is not None else None

    async def update(self, webhook: Webhook) -> Webhook:
        record = await self._fetchrow(
            """
            UPDATE webhooks
            SET name = $2,
                url = $3,
                events = $4::text[],
                secret = $5,
                status = $6,
                headers = $7::jsonb,
                retry_config = $8::jsonb,
                metadata = $9::jsonb,
                updated_at = $10
            WHERE id = $1
            RETURNING *
            """,
            webhook.id,
            webhook.name,
            webhook.url,
            webhook.events,
            webhook.secret,
            webhook.status.value,
            json.dumps(webhook.headers),
            webhook.retry_config.model_dump_json(),
            json.dumps(webhook.metadata),
            webhook.updated_at,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def delete(self, webhook_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhooks WHERE id = $1 RETURNING id",
            webhook_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")

    async def list_by_tenant(
        self,
        tenant_id: str,
        *,
        status: WebhookStatus | None = None,
        event: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Webhook], int]:
        where = ["tenant_id = $1"]
        values: list[Any] = [tenant_id]
        idx = 2
        if status is not None:
            where.append(f"status = ${idx}")
            values.append(status.value)
            idx += 1
        if event is not None:
            where.append(f"${idx} = ANY(events)")
            values.append(event)
            idx += 1
        where_sql = " AND ".join(where)
        query = f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhooks
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
        """
        values.extend([limit, offset])
        records = list(await self._fetch(query, *values))
        total = int(records[0]["total_count"]) if records else 0
        if not records and offset:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhooks WHERE {where_sql}",
                *values[:-2],
            )
            total = int(record["total"]) if record else 0
        return [self._to_model(r) for r in records], total

    async def list_active_matching(self, tenant_id: str, event_type: str) -> List[Webhook]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhooks
            WHERE tenant_id = $1
              AND status = 'ACTIVE'
              AND $2 = ANY(events)
            ORDER BY created_at ASC
            """,
            tenant_id,
            event_type,
        )
        return [self._to_model(r) for r in records]
