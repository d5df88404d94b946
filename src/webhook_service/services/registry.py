"""Webhook subscription registry."""
from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, List, Mapping, Tuple
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError as SchemaError

from webhook_service.core.exceptions import NotFoundError, ValidationError
from webhook_service.domain.dto import WebhookCreateDTO, WebhookUpdateDTO, describe_errors
from webhook_service.domain.enums import WebhookStatus
from webhook_service.domain.webhooks import RetryConfig, Webhook
from webhook_service.repositories.base import WebhookRepository

logger = structlog.get_logger(__name__)

SECRET_BYTES = 32  # 256 bits


def generate_secret() -> str:
    return secrets.token_hex(SECRET_BYTES)


class WebhookRegistry:
    def __init__(
        self,
        repository: WebhookRepository,
        *,
        default_retry_config: RetryConfig | None = None,
    ):
        self._webhooks = repository
        self._default_retry = default_retry_config or RetryConfig()

    async def create(self, tenant_id: str, spec: Mapping[str, Any] | WebhookCreateDTO) -> Webhook:
        try:
            dto = (
                spec
                if isinstance(spec, WebhookCreateDTO)
                else WebhookCreateDTO.model_validate(dict(spec))
            )
        except SchemaError as exc:
            raise ValidationError(describe_errors(exc)) from exc

        now = datetime.now(timezone.utc)
        webhook = Webhook(
            id=uuid4(),
            tenant_id=tenant_id,
            name=dto.name,
            url=dto.url,
            events=dto.events,
            secret=dto.secret or generate_secret(),
            status=WebhookStatus.ACTIVE,
            headers=dto.headers,
            retry_config=dto.retry_config or self._default_retry,
            metadata=dto.metadata,
            created_at=now,
            updated_at=now,
        )
        created = await self._webhooks.create(webhook)
        logger.info(
            "webhook created",
            webhook_id=str(created.id),
            tenant_id=tenant_id,
            events=created.events,
        )
        return created

    async def get(self, webhook_id: UUID) -> Webhook:
        webhook = await self._webhooks.get(webhook_id)
        if webhook is None:
            raise NotFoundError("Webhook not found")
        return webhook

    async def update(self, webhook_id: UUID, patch: Mapping[str, Any] | WebhookUpdateDTO) -> Webhook:
        try:
            dto = (
                patch
                if isinstance(patch, WebhookUpdateDTO)
                else WebhookUpdateDTO.model_validate(dict(patch))
            )
        except SchemaError as exc:
            raise ValidationError(describe_errors(exc)) from exc

        webhook = await self.get(webhook_id)
        changes = dto.model_dump(exclude_unset=True, exclude_none=True)
        if dto.retry_config is not None:
            changes["retry_config"] = dto.retry_config
        if not changes:
            return webhook
        changes["updated_at"] = datetime.now(timezone.utc)
        updated = await self._webhooks.update(webhook.model_copy(update=changes))
        logger.info(
            "webhook updated",
            webhook_id=str(webhook_id),
            fields=sorted(k for k in changes if k != "updated_at"),
            status=updated.status.value,
        )
        return updated

    async def delete(self, webhook_id: UUID) -> None:
        await self._webhooks.delete(webhook_id)
        logger.info("webhook deleted", webhook_id=str(webhook_id))

    async def list(
        self,
        tenant_id: str,
        *,
        status: WebhookStatus | None = None,
        event: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Webhook], int]:
        return await self._webhooks.list_by_tenant(
            tenant_id, status=status, event=event, limit=limit, offset=offset
        )

    async def rotate_secret(self, webhook_id: UUID) -> Webhook:
        """Replace the signing secret.

        Attempts already queued keep the secret snapshotted at dispatch time.
        """
        webhook = await self.get(webhook_id)
        rotated = await self._webhooks.update(
            webhook.model_copy(
                update={"secret": generate_secret(), "updated_at": datetime.now(timezone.utc)}
            )
        )
        logger.info("webhook secret rotated", webhook_id=str(webhook_id))
        return rotated
