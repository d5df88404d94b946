"""Background maintenance workers for webhook-service.

Each task is an async function compatible with :class:`WorkerTask`;
:func:`build_background_worker` aggregates them into one periodic loop.
"""
from __future__ import annotations

from webhook_service.queue.base import DeliveryQueue
from webhook_service.repositories.base import DeliveryStore
from webhook_service.settings import Settings
from webhook_service.workers.background import BackgroundWorker, WorkerTask
from webhook_service.workers.delivery_reclaim import make_delivery_reclaim


def build_background_worker(
    settings: Settings, store: DeliveryStore, queue: DeliveryQueue
) -> BackgroundWorker:
    return BackgroundWorker(
        interval_seconds=settings.worker_interval_seconds,
        tasks=[
            WorkerTask(
                name="delivery_reclaim",
                fn=make_delivery_reclaim(
                    store, queue, stuck_minutes=settings.delivery_stuck_minutes
                ),
            ),
        ],
    )


__all__ = [
    "BackgroundWorker",
    "WorkerTask",
    "build_background_worker",
]
