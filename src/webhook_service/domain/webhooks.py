"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from webhook_service.domain.enums import DeliveryStatus, WebhookStatus


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire; accepts both on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


MAX_RETRY_DELAY_MS = 7 * 24 * 60 * 60 * 1000  # one week


class RetryConfig(CamelModel):
    max_attempts: int = Field(default=3, ge=1, le=25)
    base_delay_ms: int = Field(default=5000, ge=0, le=MAX_RETRY_DELAY_MS)
    backoff_rate: float = Field(default=2.0, ge=1.0, le=10.0, allow_inf_nan=False)
    # False short-circuits 4xx responses straight to FAILED
    retry_on_client_error: bool = True

    def delay_ms(self, attempt: int) -> int:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        return int(self.base_delay_ms * self.backoff_rate ** (attempt - 1))

    @model_validator(mode="after")
    def _check_longest_delay(self) -> "RetryConfig":
        if self.max_attempts > 1 and self.delay_ms(self.max_attempts - 1) > MAX_RETRY_DELAY_MS:
            raise ValueError(
                f"retry delays grow past {MAX_RETRY_DELAY_MS} ms; lower baseDelayMs or backoffRate"
            )
        return self


class Webhook(CamelModel):
    id: UUID
    tenant_id: str
    name: str
    url: str
    events: list[str] = Field(default_factory=list)
    secret: str = Field(repr=False)
    status: WebhookStatus = WebhookStatus.ACTIVE
    headers: dict[str, str] = Field(default_factory=dict)
    retry_config: RetryConfig = Field(default_factory=RetryConfig)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == WebhookStatus.ACTIVE

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events

    def to_public(self, *, include_secret: bool = False) -> dict[str, Any]:
        exclude = None if include_secret else {"secret"}
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)


class DeliveryAttempt(CamelModel):
    id: UUID
    webhook_id: UUID
    tenant_id: str
    event_type: str
    payload: Any = None
    attempt: int = Field(default=1, ge=1)
    status: DeliveryStatus = DeliveryStatus.PENDING
    last_error: str | None = None
    response: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    delivered_at: datetime | None = None
    next_attempt_at: datetime | None = None
    # webhook secret at dispatch time; retries keep signing with it
    signing_secret: str | None = Field(default=None, repr=False)
    # optimistic concurrency counter; 0 means "not persisted yet"
    version: int = 0

    @classmethod
    def new(cls, webhook: Webhook, event_type: str, payload: Any) -> "DeliveryAttempt":
        now = datetime.now(timezone.utc)
        return cls(
            id=uuid4(),
            webhook_id=webhook.id,
            tenant_id=webhook.tenant_id,
            event_type=event_type,
            payload=payload,
            signing_secret=webhook.secret,
            created_at=now,
            updated_at=now,
        )

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"version", "signing_secret"})


class DeliveryMessage(CamelModel):
    """Queue payload for one delivery try."""

    attempt_id: UUID
    webhook_id: UUID
    event_type: str
    payload: Any = None
    attempt: int = Field(default=1, ge=1)
    # signing secret captured at dispatch time
    secret: str | None = Field(default=None, repr=False)

    def next(self) -> "DeliveryMessage":
        return self.model_copy(update={"attempt": self.attempt + 1})
