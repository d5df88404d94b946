"""Pool of delivery worker loops fed by the delivery queue."""
from __future__ import annotations

import asyncio
from typing import Any

import structlog

from webhook_service.queue.base import DeliveryQueue, QueuedMessage
from webhook_service.services.delivery import DeliveryWorker

logger = structlog.get_logger(__name__)


class DeliveryWorkerPool:
    """Runs ``concurrency`` loops, each handling one message at a time.

    A message is acked only after it was processed; if processing raises, the
    message stays un-acked and the queue hands it out again after its
    visibility timeout. Once a message has been received ``max_receive_count``
    times without success its attempt is marked FAILED and the message acked.
    """

    def __init__(
        self,
        worker: DeliveryWorker,
        queue: DeliveryQueue,
        *,
        concurrency: int = 4,
        poll_timeout_seconds: float = 1.0,
        max_receive_count: int = 5,
    ):
        self._worker = worker
        self._queue = queue
        self._concurrency = max(concurrency, 1)
        self._poll_timeout = poll_timeout_seconds
        self._max_receive_count = max(max_receive_count, 1)
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self, _app: Any = None) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._loop(index), name=f"delivery-worker-{index}")
            for index in range(self._concurrency)
        ]
        logger.info("delivery worker pool started", concurrency=self._concurrency)

    async def stop(self, _app: Any = None) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("delivery worker pool stopped")

    async def handle(self, queued: QueuedMessage) -> None:
        message = queued.message
        if queued.receive_count > self._max_receive_count:
            await self._give_up(queued)
            return
        try:
            await self._worker.process(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "delivery processing failed",
                attempt_id=str(message.attempt_id),
                receive_count=queued.receive_count,
            )
            if queued.receive_count >= self._max_receive_count:
                await self._give_up(queued)
            return
        await self._queue.ack(queued)

    async def _give_up(self, queued: QueuedMessage) -> None:
        await self._worker.give_up(queued.message, f"gave up after {queued.receive_count} receives")
        await self._queue.ack(queued)

    async def _loop(self, index: int) -> None:
        while True:
            try:
                queued = await self._queue.dequeue(self._poll_timeout)
                if queued is not None:
                    await self.handle(queued)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("delivery worker loop failed", worker=index)
                await asyncio.sleep(self._poll_timeout)
