"""Delivery queue contract.

At-least-once: a dequeued message stays invisible to other consumers for the
visibility timeout and comes back unless it is acked before then.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from webhook_service.domain.webhooks import DeliveryMessage


@dataclass(frozen=True)
class QueuedMessage:
    message: DeliveryMessage
    receipt: str
    receive_count: int = 1


class DeliveryQueue(Protocol):
    async def enqueue(self, message: DeliveryMessage, delay_ms: int = 0) -> None: ...

    async def dequeue(self, timeout: float) -> QueuedMessage | None: ...

    async def ack(self, queued: QueuedMessage) -> None: ...
