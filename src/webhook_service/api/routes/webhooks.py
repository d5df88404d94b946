"""Webhook subscription endpoints."""
from __future__ import annotations

from datetime import datetime, timezone

from aiohttp import web

from webhook_service.api.utils import (
    paginated_response,
    pagination_params,
    parse_enum,
    parse_uuid,
    read_json,
)
from webhook_service.core.exceptions import NotFoundError, ValidationError
from webhook_service.domain.enums import DeliveryStatus, WebhookStatus
from webhook_service.services.dependencies import (
    ADMIN_ROLE,
    get_components,
    get_tenant_webhook,
    require_tenant,
)

routes = web.RouteTableDef()

TEST_EVENT_TYPE = "webhook.test"


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    tenant = require_tenant(request)
    query = request.rel_url.query
    status = parse_enum(WebhookStatus, query.get("status"), "status")
    limit, offset = pagination_params(request)
    items, total = await get_components(request).registry.list(
        tenant.tenant_id,
        status=status,
        event=query.get("event") or None,
        limit=limit,
        offset=offset,
    )
    payload = paginated_response(
        [item.to_public() for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    tenant = require_tenant(request, require_role=(ADMIN_ROLE,))
    body = await read_json(request)
    try:
        webhook = await get_components(request).registry.create(tenant.tenant_id, body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    # the secret is only ever returned here and on rotation
    return web.json_response(webhook.to_public(include_secret=True), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    tenant = require_tenant(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    webhook = await get_tenant_webhook(request, tenant, webhook_id)
    return web.json_response(webhook.to_public())


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    tenant = require_tenant(request, require_role=(ADMIN_ROLE,))
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    await get_tenant_webhook(request, tenant, webhook_id)
    body = await read_json(request)
    try:
        webhook = await get_components(request).registry.update(webhook_id, body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.to_public())


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    tenant = require_tenant(request, require_role=(ADMIN_ROLE,))
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    await get_tenant_webhook(request, tenant, webhook_id)
    try:
        await get_components(request).registry.delete(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/rotate-secret")
async def rotate_webhook_secret(request: web.Request):
    tenant = require_tenant(request, require_role=(ADMIN_ROLE,))
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    await get_tenant_webhook(request, tenant, webhook_id)
    try:
        webhook = await get_components(request).registry.rotate_secret(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(webhook.to_public(include_secret=True))


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    """Deliver a synthetic event right away, bypassing the queue."""
    tenant = require_tenant(request, require_role=(ADMIN_ROLE,))
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    webhook = await get_tenant_webhook(request, tenant, webhook_id)
    body = await read_json(request, allow_empty=True)
    payload = body.get("payload") or {
        "webhookId": str(webhook.id),
        "tenantId": webhook.tenant_id,
        "test": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    attempt = await get_components(request).worker.deliver_now(webhook, TEST_EVENT_TYPE, payload)
    return web.json_response(attempt.to_public())


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def list_webhook_logs(request: web.Request):
    tenant = require_tenant(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    await get_tenant_webhook(request, tenant, webhook_id)
    status = parse_enum(DeliveryStatus, request.rel_url.query.get("status"), "status")
    limit, offset = pagination_params(request)
    items, total = await get_components(request).store.list_by_webhook(
        webhook_id, status=status, limit=limit, offset=offset
    )
    payload = paginated_response(
        [item.to_public() for item in items],
        limit=limit,
        offset=offset,
        key="deliveries",
        total=total,
    )
    return web.json_response(payload)
