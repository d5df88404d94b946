"""Domain enums for webhooks and deliveries."""
from __future__ import annotations

from enum import Enum


class WebhookStatus(str, Enum):
    """Subscription states. Only ACTIVE webhooks receive dispatches."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    FAILED = "FAILED"


class DeliveryStatus(str, Enum):
    """Delivery attempt lifecycle."""

    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)
