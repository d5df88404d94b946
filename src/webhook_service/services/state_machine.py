"""Delivery attempt status transition validators."""
from __future__ import annotations

from webhook_service.core.exceptions import InvalidStatusTransitionError
from webhook_service.domain.enums import DeliveryStatus

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.IN_FLIGHT, DeliveryStatus.FAILED},
    DeliveryStatus.IN_FLIGHT: {
        DeliveryStatus.DELIVERED,
        DeliveryStatus.RETRY_SCHEDULED,
        DeliveryStatus.FAILED,
    },
    DeliveryStatus.RETRY_SCHEDULED: {DeliveryStatus.IN_FLIGHT, DeliveryStatus.FAILED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.FAILED: set(),
}


def validate_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> None:
    # IN_FLIGHT -> IN_FLIGHT happens when a redelivered message resends the same try
    if current == new and not current.is_terminal:
        return
    allowed = DELIVERY_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )
