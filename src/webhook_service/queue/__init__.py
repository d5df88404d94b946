"""Delivery queue implementations."""

from webhook_service.queue.base import DeliveryQueue, QueuedMessage
from webhook_service.queue.memory import InMemoryDeliveryQueue
from webhook_service.queue.postgres import PostgresDeliveryQueue

__all__ = [
    "DeliveryQueue",
    "QueuedMessage",
    "InMemoryDeliveryQueue",
    "PostgresDeliveryQueue",
]
