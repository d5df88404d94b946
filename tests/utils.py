from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from webhook_service.domain.enums import WebhookStatus
from webhook_service.domain.webhooks import DeliveryMessage, RetryConfig, Webhook
from webhook_service.queue.base import QueuedMessage


def make_headers(
    tenant_id: str,
    role: str = "admin",
    *,
    user_id: uuid.UUID | None = None,
) -> dict[str, str]:
    """Construct identity headers expected from the API gateway."""
    return {
        "X-User-Id": str(user_id or uuid.uuid4()),
        "X-Tenant-Id": tenant_id,
        "X-Tenant-Role": role,
    }


def make_webhook(
    url: str,
    *,
    tenant_id: str = "t1",
    events: list[str] | None = None,
    secret: str = "s" * 32,
    status: WebhookStatus = WebhookStatus.ACTIVE,
    headers: dict[str, str] | None = None,
    retry_config: RetryConfig | None = None,
) -> Webhook:
    """Build a webhook directly, skipping registry validation."""
    now = datetime.now(timezone.utc)
    return Webhook(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        name="hook",
        url=url,
        events=events or ["tenant.created"],
        secret=secret,
        status=status,
        headers=headers or {},
        retry_config=retry_config or RetryConfig(),
        created_at=now,
        updated_at=now,
    )


class RecordingQueue:
    """Queue double that keeps every enqueued (message, delay_ms) pair in order."""

    def __init__(self) -> None:
        self.enqueued: list[tuple[DeliveryMessage, int]] = []
        self.acked: list[QueuedMessage] = []
        self.fail_for: set[uuid.UUID] = set()

    async def enqueue(self, message: DeliveryMessage, delay_ms: int = 0) -> None:
        if message.webhook_id in self.fail_for:
            raise ConnectionError("queue unavailable")
        self.enqueued.append((message, delay_ms))

    async def dequeue(self, timeout: float) -> QueuedMessage | None:
        if not self.enqueued:
            return None
        message, _ = self.enqueued.pop(0)
        return QueuedMessage(message=message, receipt=uuid.uuid4().hex)

    async def ack(self, queued: QueuedMessage) -> None:
        self.acked.append(queued)

    def pop(self) -> tuple[DeliveryMessage, int]:
        return self.enqueued.pop(0)


class Receiver:
    """Scripted webhook endpoint: answers with ``statuses`` in order, then ``default_status``."""

    def __init__(self) -> None:
        self.statuses: list[int] = []
        self.default_status = 200
        self.delay_seconds = 0.0
        # when set, sent verbatim instead of the JSON acknowledgement
        self.raw_body: bytes | None = None
        self.content_type = "application/json; charset=utf-8"
        self.requests: list[tuple[dict[str, str], bytes]] = []
        self.url = ""

    def next_status(self) -> int:
        return self.statuses.pop(0) if self.statuses else self.default_status

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(raw) for _, raw in self.requests]
