"""Common exceptions for domain and repository layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class ConcurrentUpdateError(RepositoryError):
    """Raised when a compare-and-set write loses against another writer."""


class ValidationError(WebhookServiceError):
    """Raised when a webhook definition is rejected at registration time."""


class InvalidStatusTransitionError(WebhookServiceError):
    """Raised when an entity attempts an unsupported status change."""
