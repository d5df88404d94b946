"""In-process repositories for the ``memory`` storage backend."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import List, Tuple
from uuid import UUID

from webhook_service.core.exceptions import ConcurrentUpdateError, NotFoundError
from webhook_service.domain.enums import DeliveryStatus, WebhookStatus
from webhook_service.domain.webhooks import DeliveryAttempt, Webhook
from webhook_service.repositories.base import check_save


class InMemoryWebhookRepository:
    def __init__(self) -> None:
        self._items: dict[UUID, Webhook] = {}

    async def create(self, webhook: Webhook) -> Webhook:
        self._items[webhook.id] = webhook.model_copy(deep=True)
        return webhook.model_copy(deep=True)

    async def get(self, webhook_id: UUID) -> Webhook | None:
        webhook = self._items.get(webhook_id)
        return webhook.model_copy(deep=True) if webhook is not None else None

    async def update(self, webhook: Webhook) -> Webhook:
        if webhook.id not in self._items:
            raise NotFoundError("Webhook not found")
        self._items[webhook.id] = webhook.model_copy(deep=True)
        return webhook.model_copy(deep=True)

    async def delete(self, webhook_id: UUID) -> None:
        if self._items.pop(webhook_id, None) is None:
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
        matching = [
            w
            for w in self._items.values()
            if w.tenant_id == tenant_id
            and (status is None or w.status == status)
            and (event is None or w.subscribes_to(event))
        ]
        matching.sort(key=lambda w: w.created_at, reverse=True)
        page = matching[offset : offset + limit]
        return [w.model_copy(deep=True) for w in page], len(matching)

    async def list_active_matching(self, tenant_id: str, event_type: str) -> List[Webhook]:
        matching = [
            w
            for w in self._items.values()
            if w.tenant_id == tenant_id and w.is_active and w.subscribes_to(event_type)
        ]
        matching.sort(key=lambda w: w.created_at)
        return [w.model_copy(deep=True) for w in matching]


class InMemoryDeliveryStore:
    def __init__(self) -> None:
        self._items: dict[UUID, DeliveryAttempt] = {}
        self._lock = asyncio.Lock()

    async def save(self, attempt: DeliveryAttempt) -> DeliveryAttempt:
        async with self._lock:
            stored = self._items.get(attempt.id)
            if attempt.version == 0:
                if stored is not None:
                    raise ConcurrentUpdateError(f"Delivery attempt {attempt.id} already exists")
            else:
                if stored is None:
                    raise ConcurrentUpdateError(f"Delivery attempt {attempt.id} vanished")
                if not check_save(stored, attempt):
                    return stored.model_copy(deep=True)
            saved = attempt.model_copy(update={"version": attempt.version + 1}, deep=True)
            self._items[saved.id] = saved
            return saved.model_copy(deep=True)

    async def get(self, attempt_id: UUID) -> DeliveryAttempt | None:
        attempt = self._items.get(attempt_id)
        return attempt.model_copy(deep=True) if attempt is not None else None

    async def list_by_webhook(
        self,
        webhook_id: UUID,
        *,
        status: DeliveryStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DeliveryAttempt], int]:
        matching = [
            a
            for a in self._items.values()
            if a.webhook_id == webhook_id and (status is None or a.status == status)
        ]
        matching.sort(key=lambda a: a.created_at, reverse=True)
        page = matching[offset : offset + limit]
        return [a.model_copy(deep=True) for a in page], len(matching)

    async def list_stranded(self, before: datetime, *, limit: int = 100) -> List[DeliveryAttempt]:
        stranded = [
            a
            for a in self._items.values()
            if not a.status.is_terminal
            and a.updated_at < before
            and (a.next_attempt_at is None or a.next_attempt_at < before)
        ]
        stranded.sort(key=lambda a: a.updated_at)
        return [a.model_copy(deep=True) for a in stranded[:limit]]
