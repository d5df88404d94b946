"""Request DTOs for the webhook API."""
from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, HttpUrl, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from webhook_service.domain.enums import WebhookStatus
from webhook_service.domain.webhooks import CamelModel, RetryConfig

_HTTP_URL = TypeAdapter(HttpUrl)


def describe_errors(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into ``"loc: msg; loc: msg"`` for 400 responses."""
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )


def validate_webhook_url(value: str) -> str:
    """Return ``value`` stripped if it is an absolute http(s) URL, else raise ValueError."""
    value = value.strip()
    try:
        _HTTP_URL.validate_python(value)
    except PydanticValidationError as exc:
        raise ValueError("url must be an absolute http(s) URL") from exc
    return value


def normalize_events(values: list[str]) -> list[str]:
    events = [e.strip() for e in values if e and e.strip()]
    events = list(dict.fromkeys(events))
    if not events:
        raise ValueError("events must be a non-empty list")
    return events


class WebhookCreateDTO(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    url: str
    events: list[str] = Field(min_length=1)
    secret: str | None = Field(default=None, min_length=16, repr=False)
    headers: dict[str, str] = Field(default_factory=dict)
    retry_config: RetryConfig | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return validate_webhook_url(value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str]) -> list[str]:
        return normalize_events(value)


class WebhookUpdateDTO(CamelModel):
    # the secret only changes through rotation, so unknown keys are rejected
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = None
    events: list[str] | None = None
    status: WebhookStatus | None = None
    headers: dict[str, str] | None = None
    retry_config: RetryConfig | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        return None if value is None else validate_webhook_url(value)

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else normalize_events(value)


class EventDTO(CamelModel):
    event_type: str = Field(min_length=1)
    payload: Any = Field(default_factory=dict)
