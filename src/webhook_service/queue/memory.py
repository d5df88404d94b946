"""asyncio-backed delivery queue for the ``memory`` storage backend."""
from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass
from uuid import uuid4

from webhook_service.domain.webhooks import DeliveryMessage
from webhook_service.queue.base import QueuedMessage


@dataclass
class _Entry:
    message: DeliveryMessage
    token: int
    receive_count: int = 0


class InMemoryDeliveryQueue:
    """Delayed queue with visibility timeouts, shared by the workers of one process."""

    def __init__(self, *, visibility_timeout_seconds: float = 60.0) -> None:
        self._visibility_timeout = visibility_timeout_seconds
        # (visible_at, token, receipt); entries whose token no longer matches are stale
        self._heap: list[tuple[float, int, str]] = []
        self._entries: dict[str, _Entry] = {}
        self._tokens = itertools.count()
        self._changed = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def _schedule(self, receipt: str, entry: _Entry, visible_at: float) -> None:
        entry.token = next(self._tokens)
        heapq.heappush(self._heap, (visible_at, entry.token, receipt))

    async def enqueue(self, message: DeliveryMessage, delay_ms: int = 0) -> None:
        async with self._changed:
            receipt = uuid4().hex
            entry = _Entry(message=message, token=-1)
            self._entries[receipt] = entry
            self._schedule(receipt, entry, self._now() + max(delay_ms, 0) / 1000)
            self._changed.notify_all()

    async def dequeue(self, timeout: float) -> QueuedMessage | None:
        deadline = self._now() + timeout
        async with self._changed:
            while True:
                now = self._now()
                while self._heap:
                    visible_at, token, receipt = self._heap[0]
                    entry = self._entries.get(receipt)
                    if entry is None or entry.token != token:
                        heapq.heappop(self._heap)
                        continue
                    if visible_at > now:
                        break
                    heapq.heappop(self._heap)
                    entry.receive_count += 1
                    self._schedule(receipt, entry, now + self._visibility_timeout)
                    return QueuedMessage(
                        message=entry.message,
                        receipt=receipt,
                        receive_count=entry.receive_count,
                    )

                remaining = deadline - now
                if remaining <= 0:
                    return None
                wait_for = remaining
                if self._heap:
                    wait_for = min(wait_for, max(self._heap[0][0] - now, 0))
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout=wait_for)
                except asyncio.TimeoutError:
                    pass

    async def ack(self, queued: QueuedMessage) -> None:
        async with self._changed:
            self._entries.pop(queued.receipt, None)
