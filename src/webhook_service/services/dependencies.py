"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from aiohttp import web

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.webhooks import Webhook
from webhook_service.queue.base import DeliveryQueue
from webhook_service.repositories.base import DeliveryStore
from webhook_service.services.delivery import DeliveryWorker
from webhook_service.services.dispatcher import DeliveryDispatcher
from webhook_service.services.registry import WebhookRegistry

COMPONENTS_KEY = "webhook_components"

USER_ID_HEADER = "X-User-Id"
TENANT_ID_HEADER = "X-Tenant-Id"
TENANT_ROLE_HEADER = "X-Tenant-Role"

ADMIN_ROLE = "admin"


@dataclass
class Components:
    """Collaborators wired once per application."""

    registry: WebhookRegistry
    dispatcher: DeliveryDispatcher
    worker: DeliveryWorker
    store: DeliveryStore
    queue: DeliveryQueue


@dataclass
class TenantContext:
    user_id: UUID
    tenant_id: str
    role: str | None


def get_components(request: web.Request) -> Components:
    return request.app[COMPONENTS_KEY]


def require_tenant(
    request: web.Request,
    *,
    require_role: tuple[str, ...] | None = None,
) -> TenantContext:
    """Identity set by the API gateway: user, tenant and role headers."""
    user_header = request.headers.get(USER_ID_HEADER)
    if user_header is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    try:
        user_id = UUID(user_header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {USER_ID_HEADER}") from exc

    tenant_id = (request.headers.get(TENANT_ID_HEADER) or "").strip()
    if not tenant_id:
        raise web.HTTPBadRequest(text=f"Header {TENANT_ID_HEADER} is required")

    role = request.headers.get(TENANT_ROLE_HEADER)
    if require_role and role not in require_role:
        raise web.HTTPForbidden(reason="Insufficient tenant role")
    return TenantContext(user_id=user_id, tenant_id=tenant_id, role=role)


async def get_tenant_webhook(request: web.Request, tenant: TenantContext, webhook_id: UUID) -> Webhook:
    """Load a webhook owned by the caller's tenant; other tenants' webhooks are reported missing."""
    try:
        webhook = await get_components(request).registry.get(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    if webhook.tenant_id != tenant.tenant_id:
        raise web.HTTPNotFound(text="Webhook not found")
    return webhook
