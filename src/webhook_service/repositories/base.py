"""Repository contracts and shared asyncpg helpers."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Protocol, Tuple
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]

from webhook_service.core.exceptions import ConcurrentUpdateError, InvalidStatusTransitionError
from webhook_service.domain.enums import DeliveryStatus, WebhookStatus
from webhook_service.domain.webhooks import DeliveryAttempt, Webhook
from webhook_service.services.state_machine import validate_delivery_transition


class WebhookRepository(Protocol):
    async def create(self, webhook: Webhook) -> Webhook: ...

    async def get(self, webhook_id: UUID) -> Webhook | None: ...

    async def update(self, webhook: Webhook) -> Webhook: ...

    async def delete(self, webhook_id: UUID) -> None: ...

    async def list_by_tenant(
        self,
        tenant_id: str,
        *,
        status: WebhookStatus | None = None,
        event: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Webhook], int]: ...

    async def list_active_matching(self, tenant_id: str, event_type: str) -> List[Webhook]: ...


class DeliveryStore(Protocol):
    async def save(self, attempt: DeliveryAttempt) -> DeliveryAttempt: ...

    async def get(self, attempt_id: UUID) -> DeliveryAttempt | None: ...

    async def list_by_webhook(
        self,
        webhook_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DeliveryAttempt], int]: ...

    async def list_stranded(self, before: datetime, *, limit: int = 100) -> List[DeliveryAttempt]: ...


def check_save(stored: DeliveryAttempt, incoming: DeliveryAttempt) -> bool:
    """Decide whether ``incoming`` may overwrite ``stored``.

    Returns False for a replay of the stored terminal status (no-op) and True
    when the write should proceed. Raises on stale versions and illegal changes.
    """
    if stored.status.is_terminal:
        if incoming.status == stored.status:
            return False
        raise InvalidStatusTransitionError(
            f"Delivery attempt {stored.id} is {stored.status.value} and cannot change"
        )
    if incoming.version != stored.version:
        raise ConcurrentUpdateError(
            f"Delivery attempt {stored.id} changed concurrently "
            f"(expected version {incoming.version}, found {stored.version})"
        )
    validate_delivery_transition(stored.status, incoming.status)
    if incoming.attempt < stored.attempt:
        raise InvalidStatusTransitionError(
            f"Delivery attempt {stored.id} counter cannot go back "
            f"from {stored.attempt} to {incoming.attempt}"
        )
    return True


class BaseRepository:
    """Thin wrapper over asyncpg pool operations."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> Iterable[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._pool.acquire() as conn:
            return await conn.execute(query, *args)
